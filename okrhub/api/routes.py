"""
HTTP surface for the sync engine: health, queue inspection, entity writes,
LinkHub config and manual drain runs.
"""
from datetime import datetime

from flask import current_app, jsonify, request

from okrhub.api import okrhub_bp
from okrhub.entities import get_descriptor
from okrhub.errors import InvalidField, InvalidSourceApp, NotConfigured, NotFound
from okrhub.external_id import OKRHUB_VERSION
from okrhub.logging_config import get_logger, log_sync_operation
from okrhub.services.config_service import ConfigService
from okrhub.services.entity_service import EntityService
from okrhub.services.outbox_service import OutboxService
from okrhub.sync.processor import process_sync_queue
from okrhub.utils import snakeify, snakeify_keys

logger = get_logger(__name__)

# Write-result error codes that are not plain bad input
_ERROR_STATUS = {
    "not_found": 404,
    "parent_not_found": 409,
}

# Keys that name the call rather than a business field
_RESERVED_FIELDS = ("entity_kind", "external_id", "source_app", "source_url", "metadata")


def _get_scheduler():
    return current_app.extensions.get("okrhub_scheduler")


def _limit_arg(default=50):
    try:
        return max(1, min(int(request.args.get("limit", default)), 500))
    except (TypeError, ValueError):
        return default


def _write_response(result, created=False):
    if result.success:
        status = 201 if created and not result.existing else 200
    else:
        status = _ERROR_STATUS.get(result.error_code, 400)
    return jsonify(result.to_dict()), status


def _descriptor_or_404(kind):
    try:
        return get_descriptor(kind), None
    except KeyError:
        return None, (jsonify({'error': f"Unknown entity kind: {kind}"}), 404)


@okrhub_bp.route("/health", methods=["GET"])
def health():
    return jsonify({
        "status": "ok",
        "version": OKRHUB_VERSION,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }), 200


# ==============================================================================
# Queue
# ==============================================================================

@okrhub_bp.route("/queue/pending", methods=["GET"])
def pending_queue():
    """Pending outbox records in the order the drain loop will take them."""
    try:
        items = OutboxService.peek_pending(_limit_arg())
        return jsonify([item.to_dict() for item in items]), 200
    except Exception as e:
        logger.error("Error in /okrhub/queue/pending", error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@okrhub_bp.route("/queue", methods=["GET"])
def list_queue():
    try:
        items = OutboxService.list_items(status=request.args.get("status"), limit=_limit_arg())
        return jsonify({
            "items": [item.to_dict() for item in items],
            "count": len(items),
        }), 200
    except Exception as e:
        logger.error("Error in /okrhub/queue", error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@okrhub_bp.route("/queue/stats", methods=["GET"])
def queue_stats():
    try:
        return jsonify(OutboxService.counts_by_status()), 200
    except Exception as e:
        logger.error("Error in /okrhub/queue/stats", error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@okrhub_bp.route("/queue/<int:item_id>/resubmit", methods=["POST"])
def resubmit_queue_item(item_id):
    try:
        item = OutboxService.resubmit_failed(item_id)
        if item is None:
            # A newer record for the same entity already carries the change
            log_sync_operation("resubmit", outbox_id=item_id, superseded=True)
            return jsonify({"superseded": True, "id": item_id}), 200
        log_sync_operation("resubmit", outbox_id=item_id, new_outbox_id=item.id)
        return jsonify(item.to_dict()), 201
    except NotFound as e:
        return jsonify({'error': str(e)}), 404
    except ValueError as e:
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        logger.error("Error resubmitting outbox item", outbox_id=item_id, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


# ==============================================================================
# Drain
# ==============================================================================

@okrhub_bp.route("/sync/run", methods=["POST"])
def run_sync():
    """
    Run one drain pass now.

    Optional JSON body: endpointUrl, apiKeyPrefix, signingSecret (all three
    or none), batchSize, useBatch.
    """
    data = request.get_json(silent=True) or {}
    scheduler = _get_scheduler()

    try:
        summary = process_sync_queue(
            endpoint_url=data.get("endpointUrl"),
            api_key_prefix=data.get("apiKeyPrefix"),
            signing_secret=data.get("signingSecret"),
            batch_size=data.get("batchSize"),
            use_batch=bool(data.get("useBatch", False)),
            rescheduler=scheduler.schedule_next if scheduler else None,
        )
        return jsonify(summary.to_dict()), 200
    except NotConfigured as e:
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        logger.error("Error in /okrhub/sync/run", error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


# ==============================================================================
# Config
# ==============================================================================

@okrhub_bp.route("/config", methods=["GET"])
def get_sync_config():
    settings = ConfigService.read_config()
    if settings is None:
        return jsonify({"configured": False}), 200
    return jsonify({"configured": True, **settings.to_dict()}), 200


@okrhub_bp.route("/config", methods=["PUT"])
def put_sync_config():
    data = request.get_json(silent=True) or {}

    try:
        settings = ConfigService.configure(
            data.get("endpointUrl"),
            data.get("apiKeyPrefix"),
            data.get("signingSecret"),
            auto_sync_enabled=data.get("autoSyncEnabled", True),
            sync_interval_ms=data.get("syncIntervalMs", 60000),
            source_app=data.get("sourceApp"),
        )
    except (ValueError, TypeError, InvalidSourceApp) as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Error in PUT /okrhub/config", error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500

    log_sync_operation("configure", endpoint_url=settings.endpoint_url, auto_sync_enabled=settings.auto_sync_enabled)

    scheduler = _get_scheduler()
    if scheduler is not None:
        if settings.auto_sync_enabled:
            scheduler.schedule_next(settings.sync_interval_ms)
        else:
            scheduler.cancel()

    return jsonify({"configured": True, **settings.to_dict()}), 200


@okrhub_bp.route("/config", methods=["DELETE"])
def delete_sync_config():
    cleared = ConfigService.clear_config()
    log_sync_operation("clear_config", cleared=cleared)

    scheduler = _get_scheduler()
    if scheduler is not None:
        scheduler.cancel()

    return jsonify({"cleared": cleared}), 200


# ==============================================================================
# Entities
# ==============================================================================

@okrhub_bp.route("/entities/<kind>", methods=["POST"])
def create_entity(kind):
    """Create a local entity and queue it. Body fields are camelCase."""
    descriptor, error = _descriptor_or_404(kind)
    if error:
        return error

    data = snakeify_keys(request.get_json(silent=True) or {})
    fields = {key: value for key, value in data.items() if key not in _RESERVED_FIELDS}

    try:
        result = EntityService.create(
            descriptor.kind,
            source_app=data.get("source_app"),
            external_id=data.get("external_id"),
            source_url=data.get("source_url"),
            metadata=data.get("metadata"),
            **fields
        )
        return _write_response(result, created=True)
    except Exception as e:
        logger.error("Error creating entity", entity_kind=kind, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@okrhub_bp.route("/entities/<kind>/<external_id>", methods=["PATCH"])
def update_entity(kind, external_id):
    descriptor, error = _descriptor_or_404(kind)
    if error:
        return error

    data = snakeify_keys(request.get_json(silent=True) or {})
    fields = {key: value for key, value in data.items() if key not in _RESERVED_FIELDS}

    try:
        result = EntityService.update(
            descriptor.kind,
            external_id,
            source_url=data.get("source_url"),
            metadata=data.get("metadata"),
            **fields
        )
        return _write_response(result)
    except Exception as e:
        logger.error("Error updating entity", entity_kind=kind, external_id=external_id, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@okrhub_bp.route("/entities/<kind>/<external_id>", methods=["DELETE"])
def delete_entity(kind, external_id):
    descriptor, error = _descriptor_or_404(kind)
    if error:
        return error

    try:
        return _write_response(EntityService.soft_delete(descriptor.kind, external_id))
    except Exception as e:
        logger.error("Error deleting entity", entity_kind=kind, external_id=external_id, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500


@okrhub_bp.route("/entities/<kind>/<external_id>", methods=["GET"])
def get_entity(kind, external_id):
    descriptor, error = _descriptor_or_404(kind)
    if error:
        return error

    entity = EntityService.get_by_external_id(descriptor.kind, external_id)
    if entity is None:
        return jsonify({'error': f"{descriptor.kind.value} not found: {external_id}"}), 404
    return jsonify(entity.to_dict()), 200


@okrhub_bp.route("/entities/<kind>", methods=["GET"])
def list_entities(kind):
    """
    List local entities of a kind.

    Query params:
        parent: reference field to filter on, camelCase (e.g. objectiveExternalId)
        id: external id the reference must equal
        includeDeleted: "true" to include soft-deleted rows (ignored with parent)
    """
    descriptor, error = _descriptor_or_404(kind)
    if error:
        return error

    parent = request.args.get("parent")
    parent_id = request.args.get("id")

    try:
        if parent:
            if not parent_id:
                return jsonify({'error': "id is required when filtering by parent"}), 400
            entities = EntityService.list_by_parent(descriptor.kind, snakeify(parent), parent_id)
        else:
            include_deleted = request.args.get("includeDeleted", "false").lower() == "true"
            entities = EntityService.list_all(descriptor.kind, include_deleted=include_deleted)
    except InvalidField as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.error("Error listing entities", entity_kind=kind, error=str(e), exc_info=True)
        return jsonify({'error': str(e)}), 500

    return jsonify({
        "items": [entity.to_dict() for entity in entities],
        "count": len(entities),
    }), 200
