from datetime import datetime, timedelta

from sqlalchemy import func

from okrhub.datetime_utils import to_epoch_ms
from okrhub.entities import get_descriptor, get_model
from okrhub.errors import NotFound
from okrhub.logging_config import get_logger
from okrhub.models import (
    EntitySyncStatus,
    OutboxStatus,
    SyncAction,
    SyncLogEntry,
    SyncQueueItem,
    db,
)
from okrhub.payload_policy import serialize_payload

logger = get_logger(__name__)

# Statuses that end a delivery attempt
_ATTEMPT_FINISHED = (OutboxStatus.SUCCESS.value, OutboxStatus.FAILED.value)


class OutboxService:
    """Durable queue of LinkHub deliveries (the sync_queue table)."""

    @staticmethod
    def enqueue(entity_kind, external_id, payload):
        """
        Append a pending outbox record.

        The record is flushed, not committed: callers add it in the same
        transaction as the local entity change it describes.

        Args:
            entity_kind: EntityKind or its wire value
            external_id: external id of the entity
            payload: dict (serialized here) or an already serialized string

        Returns:
            SyncQueueItem: the new record, with its id assigned
        """
        kind = getattr(entity_kind, "value", entity_kind)
        body = payload if isinstance(payload, str) else serialize_payload(payload)

        item = SyncQueueItem(
            entity_kind=kind,
            external_id=external_id,
            payload=body,
            status=OutboxStatus.PENDING.value,
            attempts=0,
            created_at=datetime.utcnow(),
        )
        db.session.add(item)
        db.session.flush()

        logger.info("Outbox item enqueued", outbox_id=item.id, entity_kind=kind, external_id=external_id)
        return item

    @staticmethod
    def peek_pending(limit=50):
        """Pending records, oldest first. No reordering by kind or priority."""
        return (
            SyncQueueItem.query
            .filter(SyncQueueItem.status == OutboxStatus.PENDING.value)
            .order_by(SyncQueueItem.created_at.asc(), SyncQueueItem.id.asc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def claim(item_id):
        """
        Move an item from pending to processing.

        This is a compare-and-set: the UPDATE only matches while the row is
        still pending, so when two drain runs race for the same item exactly
        one of them sees a row count of 1.

        Returns:
            bool: True if this caller now owns the item
        """
        claimed = (
            SyncQueueItem.query
            .filter(
                SyncQueueItem.id == item_id,
                SyncQueueItem.status == OutboxStatus.PENDING.value,
            )
            .update(
                {
                    SyncQueueItem.status: OutboxStatus.PROCESSING.value,
                    SyncQueueItem.last_attempt_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.session.commit()

        if claimed != 1:
            logger.info("Outbox item already claimed elsewhere", outbox_id=item_id)
            return False
        return True

    @staticmethod
    def transition(item_id, status, error_message=None, remote_id=None, action=None):
        """
        Record the outcome of a delivery attempt.

        Stamps last_attempt_at and, when an attempt finishes (success or
        failed), increments attempts. On success the originating entity is
        marked synced and a sync log entry is appended.

        Returns:
            SyncQueueItem or None if the id is unknown
        """
        status = getattr(status, "value", status)
        item = db.session.get(SyncQueueItem, item_id)
        if item is None:
            logger.warning("Attempted to transition non-existent outbox item", outbox_id=item_id)
            return None

        item.status = status
        item.last_attempt_at = datetime.utcnow()
        if status in _ATTEMPT_FINISHED:
            item.attempts = (item.attempts or 0) + 1
        if error_message:
            item.error_message = error_message
        elif status == OutboxStatus.SUCCESS.value:
            item.error_message = None

        if status == OutboxStatus.SUCCESS.value:
            OutboxService._mark_entity_synced(item)
            db.session.add(SyncLogEntry(
                entity_kind=item.entity_kind,
                external_id=item.external_id,
                remote_id=remote_id,
                synced_at=datetime.utcnow(),
                action=getattr(action, "value", action) or SyncAction.CREATE.value,
            ))

        db.session.commit()

        log = logger.warning if status == OutboxStatus.FAILED.value else logger.info
        log(
            f"Outbox item {item.id} -> {status}",
            outbox_id=item.id,
            entity_kind=item.entity_kind,
            external_id=item.external_id,
            attempts=item.attempts,
            error=error_message,
        )
        return item

    @staticmethod
    def _mark_entity_synced(item):
        try:
            model = get_model(item.entity_kind)
        except KeyError:
            logger.warning("Outbox item has no local table", outbox_id=item.id, entity_kind=item.entity_kind)
            return

        entity = model.query.filter_by(external_id=item.external_id).first()
        if entity is None:
            return

        # A newer change still waiting in the queue means LinkHub is not
        # caught up yet, so the entity stays pending.
        newer = OutboxService._newer_item(item, (OutboxStatus.PENDING, OutboxStatus.PROCESSING))
        if newer is not None:
            logger.debug(
                "Newer outbox item pending, leaving entity pending",
                outbox_id=item.id,
                newer_outbox_id=newer.id,
            )
            return

        entity.sync_status = EntitySyncStatus.SYNCED.value

    @staticmethod
    def _newer_item(item, statuses):
        """Most recent record for the same entity appended after ``item``, in one of ``statuses``."""
        return (
            SyncQueueItem.query
            .filter(
                SyncQueueItem.entity_kind == item.entity_kind,
                SyncQueueItem.external_id == item.external_id,
                SyncQueueItem.id > item.id,
                SyncQueueItem.status.in_([status.value for status in statuses]),
            )
            .order_by(SyncQueueItem.id.desc())
            .first()
        )

    @staticmethod
    def release(item_id):
        """
        Put a processing item back to pending.

        Used when a run fails after claiming an item but before recording its
        outcome. Conditional on the item still being processing, so settled
        items are left alone.

        Returns:
            bool: True if the item was released
        """
        db.session.rollback()
        released = (
            SyncQueueItem.query
            .filter(
                SyncQueueItem.id == item_id,
                SyncQueueItem.status == OutboxStatus.PROCESSING.value,
            )
            .update({SyncQueueItem.status: OutboxStatus.PENDING.value}, synchronize_session=False)
        )
        db.session.commit()
        if released:
            logger.warning("Outbox item released back to pending", outbox_id=item_id)
        return released == 1

    @staticmethod
    def release_stale(older_than_seconds):
        """
        Return processing items whose claim is older than ``older_than_seconds``
        to pending. These were claimed by a run that died before settling them.

        Returns:
            int: number of items released
        """
        cutoff = datetime.utcnow() - timedelta(seconds=older_than_seconds)
        released = (
            SyncQueueItem.query
            .filter(
                SyncQueueItem.status == OutboxStatus.PROCESSING.value,
                SyncQueueItem.last_attempt_at < cutoff,
            )
            .update({SyncQueueItem.status: OutboxStatus.PENDING.value}, synchronize_session=False)
        )
        db.session.commit()
        if released:
            logger.warning("Stale processing items released", released=released, older_than_seconds=older_than_seconds)
        return released

    @staticmethod
    def resubmit_failed(item_id):
        """
        Queue a failed item again.

        The new record carries the entity's current state rather than the
        payload frozen at failure time, and the failed record moves to
        ``resubmitted`` pointing at it. When a newer record for the same
        entity is already queued or delivered, that record carries the change
        instead: the failed record moves to ``superseded`` and nothing is
        queued.

        Returns:
            SyncQueueItem: the new pending record, or None when superseded

        Raises:
            NotFound: if the item does not exist
            ValueError: if the item is not in the failed state
        """
        item = db.session.get(SyncQueueItem, item_id)
        if item is None:
            raise NotFound("outbox item", item_id)
        if item.status != OutboxStatus.FAILED.value:
            raise ValueError(f"Outbox item {item_id} is {item.status}, only failed items can be resubmitted")

        newer = OutboxService._newer_item(
            item, (OutboxStatus.PENDING, OutboxStatus.PROCESSING, OutboxStatus.SUCCESS)
        )
        if newer is not None:
            item.status = OutboxStatus.SUPERSEDED.value
            db.session.commit()
            logger.info(
                "Failed outbox item superseded, not resubmitting",
                outbox_id=item.id,
                newer_outbox_id=newer.id,
                external_id=item.external_id,
            )
            return None

        resubmitted = OutboxService.enqueue(item.entity_kind, item.external_id, OutboxService._current_payload(item))
        item.status = OutboxStatus.RESUBMITTED.value
        item.resubmitted_as = resubmitted.id
        db.session.commit()

        logger.info(
            "Failed outbox item resubmitted",
            outbox_id=item.id,
            new_outbox_id=resubmitted.id,
            external_id=item.external_id,
        )
        return resubmitted

    @staticmethod
    def _current_payload(item):
        # Imported here: the entity service queues through this module
        from okrhub.services.entity_service import EntityService

        try:
            descriptor = get_descriptor(item.entity_kind)
        except KeyError:
            return item.payload
        entity = descriptor.model.query.filter_by(external_id=item.external_id).first()
        if entity is None:
            return item.payload

        if entity.deleted_at is not None:
            return EntityService.outbound_payload(
                descriptor,
                entity,
                updated_at=to_epoch_ms(entity.updated_at or entity.deleted_at),
                deleted_at=to_epoch_ms(entity.deleted_at),
            )
        if entity.updated_at is not None:
            return EntityService.outbound_payload(descriptor, entity, updated_at=to_epoch_ms(entity.updated_at))
        return EntityService.outbound_payload(descriptor, entity, created_at=to_epoch_ms(entity.created_at))

    @staticmethod
    def list_items(status=None, limit=50):
        query = SyncQueueItem.query
        if status:
            query = query.filter(SyncQueueItem.status == getattr(status, "value", status))
        return query.order_by(SyncQueueItem.id.desc()).limit(limit).all()

    @staticmethod
    def counts_by_status():
        rows = (
            db.session.query(SyncQueueItem.status, func.count(SyncQueueItem.id))
            .group_by(SyncQueueItem.status)
            .all()
        )
        counts = {status.value: 0 for status in OutboxStatus}
        counts.update({status: count for status, count in rows})
        return counts
