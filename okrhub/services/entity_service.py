"""
Generic write path for every locally stored OKR entity.

All kinds go through the same create/update/delete routine, driven by the
descriptor tables in ``okrhub.entities``. Each write is one transaction: the
idempotency check, hierarchy check, row insert/patch and outbox enqueue are
committed together or not at all.
"""
from datetime import datetime
from functools import partial

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from okrhub.datetime_utils import to_epoch_ms
from okrhub.entities import get_descriptor
from okrhub.errors import (
    InvalidExternalId,
    InvalidField,
    InvalidSourceApp,
    NotFound,
    OKRHubError,
    ParentNotFound,
)
from okrhub.external_id import (
    EntityKind,
    assert_valid_external_id,
    derive_id,
    generate_slug,
    parse_external_id,
    validate_source_app,
)
from okrhub.logging_config import get_logger
from okrhub.models import EntitySyncStatus, SyncConfig, db
from okrhub.payload_policy import to_outbound_payload
from okrhub.results import WriteResult
from okrhub.services.outbox_service import OutboxService

logger = get_logger(__name__)


class EntityService:
    """Create, update and soft-delete entities, queueing each change for LinkHub."""

    @staticmethod
    def create(entity_kind, source_app=None, external_id=None, source_url=None, metadata=None, **fields):
        """
        Create an entity locally and queue it for sync.

        Args:
            entity_kind: EntityKind (or wire value) to create
            source_app: id namespace; falls back to the stored config, then
                OKRHUB_SOURCE_APP
            external_id: optional caller-supplied id; derived from the
                natural key when omitted
            source_url: optional link back to the record in the source app
            metadata: optional JSON kept locally only
            **fields: business fields, snake_case

        Returns:
            WriteResult: ``existing=True`` when the id was already stored, in
            which case nothing new is written or queued; ``deleted=True``
            additionally when that stored row is soft-deleted
        """
        descriptor = get_descriptor(entity_kind)
        model = descriptor.model
        resolved_id = external_id or ""

        try:
            source_app = EntityService._resolve_source_app(source_app)
            EntityService._check_fields(descriptor, fields, creating=True)

            values = dict(descriptor.defaults)
            values.update({key: value for key, value in fields.items() if value is not None})

            if external_id is not None:
                EntityService._check_own_id(descriptor, external_id)
            EntityService._check_id_fields(descriptor, values)

            resolved_id = external_id or derive_id(
                source_app,
                descriptor.kind,
                EntityService._natural_key_parts(descriptor, values),
            )

            existing = model.query.filter_by(external_id=resolved_id).first()
            if existing is not None:
                logger.info(
                    "Entity already exists, skipping create",
                    entity_kind=descriptor.kind.value,
                    external_id=resolved_id,
                    local_id=existing.id,
                    deleted=existing.deleted_at is not None,
                )
                return EntityService._existing_result(existing)

            EntityService._check_parents(descriptor, values)

            now = datetime.utcnow()
            entity = model(
                external_id=resolved_id,
                source_app=source_app,
                source_url=source_url,
                meta=metadata,
                sync_status=EntitySyncStatus.PENDING.value,
                created_at=now,
                **values
            )
            if descriptor.slug_field:
                entity.slug = generate_slug(source_app, str(values.get(descriptor.slug_field, ""))[:30])
            db.session.add(entity)
            db.session.flush()

            payload = EntityService.outbound_payload(descriptor, entity, created_at=to_epoch_ms(now))
            queue_item = OutboxService.enqueue(descriptor.kind, resolved_id, payload)
            db.session.commit()

        except IntegrityError:
            # A concurrent writer inserted the same external id first
            db.session.rollback()
            existing = model.query.filter_by(external_id=resolved_id).first()
            if existing is None:
                raise
            logger.info("Concurrent create resolved to existing entity", external_id=resolved_id)
            return EntityService._existing_result(existing)

        except OKRHubError as e:
            db.session.rollback()
            logger.warning(
                "Create rejected",
                entity_kind=descriptor.kind.value,
                error_code=e.code,
                error=str(e),
            )
            return WriteResult.failure(e)

        logger.info(
            "Entity created and queued",
            entity_kind=descriptor.kind.value,
            external_id=resolved_id,
            local_id=entity.id,
            outbox_id=queue_item.id,
        )
        return WriteResult(
            success=True,
            external_id=resolved_id,
            local_id=entity.id,
            queue_id=queue_item.id,
        )

    @staticmethod
    def update(entity_kind, external_id, source_url=None, metadata=None, **fields):
        """
        Patch the supplied fields and queue the merged state for sync.

        Fields passed as None are treated as not supplied. The entity goes
        back to ``pending`` and a fresh outbox record carries the full merged
        payload, not just the changed fields.
        """
        descriptor = get_descriptor(entity_kind)

        try:
            assert_valid_external_id(external_id, "externalId")
            EntityService._check_fields(descriptor, fields, creating=False)

            entity = EntityService._find_live(descriptor, external_id)
            changes = {key: value for key, value in fields.items() if value is not None}
            EntityService._check_id_fields(descriptor, changes)
            EntityService._check_parents(descriptor, changes)

            for key, value in changes.items():
                setattr(entity, key, value)
            if source_url is not None:
                entity.source_url = source_url
            if metadata is not None:
                entity.meta = metadata

            now = datetime.utcnow()
            entity.sync_status = EntitySyncStatus.PENDING.value
            entity.updated_at = now

            payload = EntityService.outbound_payload(descriptor, entity, updated_at=to_epoch_ms(now))
            queue_item = OutboxService.enqueue(descriptor.kind, external_id, payload)
            db.session.commit()

        except OKRHubError as e:
            db.session.rollback()
            logger.warning("Update rejected", entity_kind=descriptor.kind.value, external_id=external_id, error=str(e))
            return WriteResult.failure(e, external_id=external_id)

        logger.info(
            "Entity updated and queued",
            entity_kind=descriptor.kind.value,
            external_id=external_id,
            changed_fields=sorted(changes),
            outbox_id=queue_item.id,
        )
        return WriteResult(success=True, external_id=external_id, local_id=entity.id, queue_id=queue_item.id)

    @staticmethod
    def soft_delete(entity_kind, external_id):
        """
        Mark an entity deleted and queue the deletion for LinkHub.

        Rows are never removed. Deleting an already deleted entity is a
        successful no-op.
        """
        descriptor = get_descriptor(entity_kind)

        try:
            assert_valid_external_id(external_id, "externalId")
            entity = descriptor.model.query.filter_by(external_id=external_id).first()
            if entity is None:
                raise NotFound(descriptor.kind.value, external_id)
            if entity.deleted_at is not None:
                return EntityService._existing_result(entity)

            now = datetime.utcnow()
            entity.deleted_at = now
            entity.updated_at = now
            entity.sync_status = EntitySyncStatus.PENDING.value

            payload = EntityService.outbound_payload(
                descriptor, entity, updated_at=to_epoch_ms(now), deleted_at=to_epoch_ms(now)
            )
            queue_item = OutboxService.enqueue(descriptor.kind, external_id, payload)
            db.session.commit()

        except OKRHubError as e:
            db.session.rollback()
            logger.warning("Delete rejected", entity_kind=descriptor.kind.value, external_id=external_id, error=str(e))
            return WriteResult.failure(e, external_id=external_id)

        logger.info("Entity soft-deleted and queued", entity_kind=descriptor.kind.value, external_id=external_id)
        return WriteResult(success=True, external_id=external_id, local_id=entity.id, queue_id=queue_item.id)

    # ==========================================================================
    # Queries
    # ==========================================================================

    @staticmethod
    def get_by_external_id(entity_kind, external_id):
        return get_descriptor(entity_kind).model.query.filter_by(external_id=external_id).first()

    @staticmethod
    def list_by_parent(entity_kind, parent_field, parent_external_id):
        """
        Live entities pointing at ``parent_external_id`` through ``parent_field``.

        Raises:
            InvalidField: if ``parent_field`` is not an id field of this kind
        """
        descriptor = get_descriptor(entity_kind)
        if parent_field not in descriptor.id_fields:
            raise InvalidField(parent_field, f"{descriptor.kind.value} has no reference field {parent_field}")

        model = descriptor.model
        return (
            model.query
            .filter(getattr(model, parent_field) == parent_external_id, model.deleted_at.is_(None))
            .order_by(model.created_at.asc(), model.id.asc())
            .all()
        )

    @staticmethod
    def list_all(entity_kind, include_deleted=False):
        model = get_descriptor(entity_kind).model
        query = model.query
        if not include_deleted:
            query = query.filter(model.deleted_at.is_(None))
        return query.order_by(model.created_at.asc(), model.id.asc()).all()

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @staticmethod
    def outbound_payload(descriptor, entity, created_at=None, updated_at=None, deleted_at=None):
        """Full wire payload for the entity's current state."""
        record = {"external_id": entity.external_id}
        for name in descriptor.fields:
            record[name] = getattr(entity, name)
        record["source_url"] = entity.source_url
        record["created_at"] = created_at
        record["updated_at"] = updated_at
        record["deleted_at"] = deleted_at
        return to_outbound_payload(descriptor.kind, record)

    @staticmethod
    def _existing_result(entity):
        # Soft-deleted rows still own their id; a create never revives them
        return WriteResult(
            success=True,
            external_id=entity.external_id,
            local_id=entity.id,
            existing=True,
            deleted=entity.deleted_at is not None,
        )

    @staticmethod
    def _resolve_source_app(source_app):
        if source_app is None:
            stored = SyncConfig.get_current()
            if stored is not None and stored.source_app:
                source_app = stored.source_app
            elif has_app_context():
                source_app = current_app.config.get("OKRHUB_SOURCE_APP")
        if not validate_source_app(source_app):
            raise InvalidSourceApp(source_app)
        return source_app

    @staticmethod
    def _check_fields(descriptor, fields, creating):
        unknown = set(fields) - set(descriptor.fields)
        if unknown:
            name = sorted(unknown)[0]
            raise InvalidField(name, f"Unknown field for {descriptor.kind.value}: {name}")

        if creating:
            for name in descriptor.required:
                if fields.get(name) is None:
                    raise InvalidField(name, f"Missing required field for {descriptor.kind.value}: {name}")

        for name, allowed in descriptor.choices.items():
            value = fields.get(name)
            if value is not None and value not in allowed:
                raise InvalidField(name, f"{name} must be one of {', '.join(allowed)}, got {value!r}")

    @staticmethod
    def _check_own_id(descriptor, external_id):
        assert_valid_external_id(external_id, "externalId")
        parsed = parse_external_id(external_id)
        if parsed.entity_kind != descriptor.kind:
            raise InvalidExternalId(
                "externalId",
                external_id,
                reason=f'externalId "{external_id}" is a {parsed.entity_kind.value} id, expected {descriptor.kind.value}',
            )

    @staticmethod
    def _check_id_fields(descriptor, values):
        for name in descriptor.id_fields:
            if values.get(name) is not None:
                assert_valid_external_id(values[name], name)

    @staticmethod
    def _check_parents(descriptor, values):
        for parent in descriptor.parents:
            parent_id = values.get(parent.field)
            if parent_id is None:
                continue
            parent_descriptor = get_descriptor(parent.kind)
            found = (
                parent_descriptor.model.query
                .filter_by(external_id=parent_id)
                .filter(parent_descriptor.model.deleted_at.is_(None))
                .first()
            )
            if found is None:
                raise ParentNotFound(parent_id, parent.kind.value, parent_descriptor.create_call)

    @staticmethod
    def _natural_key_parts(descriptor, values):
        parts = []
        for name in descriptor.natural_key:
            value = values.get(name)
            if value is None or value == "":
                # Incomplete natural key: fall back to a random id
                return None
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            parts.append(value)
        return parts

    @staticmethod
    def _find_live(descriptor, external_id):
        entity = descriptor.model.query.filter_by(external_id=external_id).first()
        if entity is None or entity.deleted_at is not None:
            raise NotFound(descriptor.kind.value, external_id)
        return entity


create_objective = partial(EntityService.create, EntityKind.OBJECTIVE)
create_key_result = partial(EntityService.create, EntityKind.KEY_RESULT)
create_risk = partial(EntityService.create, EntityKind.RISK)
create_initiative = partial(EntityService.create, EntityKind.INITIATIVE)
create_indicator = partial(EntityService.create, EntityKind.INDICATOR)
create_indicator_value = partial(EntityService.create, EntityKind.INDICATOR_VALUE)
create_indicator_forecast = partial(EntityService.create, EntityKind.INDICATOR_FORECAST)
create_milestone = partial(EntityService.create, EntityKind.MILESTONE)
