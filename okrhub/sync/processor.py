"""
Drain loop: deliver pending outbox records to LinkHub.

One run resolves its config once, takes a bounded slice of the queue in FIFO
order and settles every record it claims as success or failed. Per-item
delivery failures are recorded on the record. ``NotConfigured`` and storage
errors while settling are the only errors that escape a run; a record whose
outcome could not be recorded goes back to pending.
"""
from flask import current_app, has_app_context

from okrhub.linkhub.client import get_linkhub_client
from okrhub.logging_config import SyncContext, get_logger
from okrhub.models import OutboxStatus
from okrhub.payloads import BatchItem
from okrhub.results import DrainSummary
from okrhub.services.config_service import ConfigService
from okrhub.services.outbox_service import OutboxService

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_STALE_AFTER_SECONDS = 300


def _app_setting(key, default):
    return current_app.config.get(key, default) if has_app_context() else default


def process_sync_queue(endpoint_url=None, api_key_prefix=None, signing_secret=None,
                       batch_size=None, use_batch=False, client=None, rescheduler=None):
    """
    Drain up to ``batch_size`` pending outbox records.

    Processing records left behind by a run that died longer than
    DRAIN_STALE_AFTER_SECONDS ago are released back to pending first.

    Args:
        endpoint_url, api_key_prefix, signing_secret: explicit connection
            details; used only when all three are given, otherwise the
            stored config applies
        batch_size: maximum records per run (default DRAIN_BATCH_SIZE)
        use_batch: send all claimed records in one batch call
        client: LinkHubAPI instance (default shared client)
        rescheduler: callable taking an interval in ms; invoked after the
            run when the freshly read config has auto sync enabled

    Returns:
        DrainSummary

    Raises:
        NotConfigured: when no usable config exists
    """
    if batch_size is None:
        batch_size = _app_setting("DRAIN_BATCH_SIZE", DEFAULT_BATCH_SIZE)
    summary = DrainSummary()

    with SyncContext("drain_queue") as ctx:
        settings = ConfigService.resolve(endpoint_url, api_key_prefix, signing_secret)
        client = client or get_linkhub_client()

        OutboxService.release_stale(_app_setting("DRAIN_STALE_AFTER_SECONDS", DEFAULT_STALE_AFTER_SECONDS))
        pending = OutboxService.peek_pending(batch_size)

        if use_batch:
            claimed = _claim_all(pending, summary)
            ctx.logger.info("Outbox items claimed", claimed=len(claimed), skipped=summary.skipped, use_batch=True)
            if claimed:
                claimed_ids = [item.id for item in claimed]
                try:
                    _deliver_batch(client, settings, claimed, summary)
                except Exception:
                    for item_id in claimed_ids:
                        OutboxService.release(item_id)
                    raise
        else:
            # Each record is claimed only once the previous one is settled
            for item in pending:
                item_id = item.id
                if not OutboxService.claim(item_id):
                    summary.skipped += 1
                    continue
                try:
                    _deliver_one(client, settings, item, summary)
                except Exception:
                    OutboxService.release(item_id)
                    raise

        ctx.summary = summary.to_dict()

    _rearm(rescheduler)
    return summary


def _claim_all(pending, summary):
    claimed = []
    for item in pending:
        if OutboxService.claim(item.id):
            claimed.append(item)
        else:
            summary.skipped += 1
    return claimed


def _newest_per_entity(claimed):
    """Split claimed records into the newest per entity and the older ones it supersedes."""
    newest = {}
    for item in claimed:
        key = (item.entity_kind, item.external_id)
        if key not in newest or item.id > newest[key].id:
            newest[key] = item
    keep, dropped = [], []
    for item in claimed:
        latest = newest[(item.entity_kind, item.external_id)]
        if latest is item:
            keep.append(item)
        else:
            dropped.append((item, latest))
    return keep, dropped


def _deliver_one(client, settings, item, summary):
    summary.processed += 1
    try:
        result = client.deliver(
            settings.endpoint_url,
            settings.api_key_prefix,
            settings.signing_secret,
            item.entity_kind,
            item.payload,
        )
    except Exception as e:
        logger.error("Unexpected error delivering outbox item", outbox_id=item.id, error=str(e), exc_info=True)
        OutboxService.transition(item.id, OutboxStatus.FAILED, error_message=str(e) or type(e).__name__)
        summary.failed += 1
        return

    if result.success:
        OutboxService.transition(item.id, OutboxStatus.SUCCESS, remote_id=result.remote_id, action=result.action)
        summary.succeeded += 1
    else:
        OutboxService.transition(item.id, OutboxStatus.FAILED, error_message=result.error or "Unknown error")
        summary.failed += 1


def _deliver_batch(client, settings, claimed, summary):
    claimed, dropped = _newest_per_entity(claimed)
    for item, latest in dropped:
        OutboxService.transition(
            item.id,
            OutboxStatus.SUPERSEDED,
            error_message=f"Superseded by outbox item {latest.id} in the same batch",
        )
        summary.superseded += 1

    try:
        result = client.deliver_batch(
            settings.endpoint_url,
            settings.api_key_prefix,
            settings.signing_secret,
            [BatchItem.from_queue_item(item) for item in claimed],
        )
    except Exception as e:
        logger.error("Unexpected error delivering batch", items=len(claimed), error=str(e), exc_info=True)
        for item in claimed:
            summary.processed += 1
            OutboxService.transition(item.id, OutboxStatus.FAILED, error_message=str(e) or type(e).__name__)
            summary.failed += 1
        return

    envelope_error = "; ".join(result.errors) or "No result for item in batch response"
    for item in claimed:
        summary.processed += 1
        item_result = result.result_for(item.external_id)
        if item_result is not None and item_result.success:
            OutboxService.transition(
                item.id,
                OutboxStatus.SUCCESS,
                remote_id=item_result.remote_id,
                action=item_result.action,
            )
            summary.succeeded += 1
        else:
            error = item_result.error if item_result is not None else envelope_error
            OutboxService.transition(item.id, OutboxStatus.FAILED, error_message=error)
            summary.failed += 1


def _rearm(rescheduler):
    if rescheduler is None:
        return
    # Read fresh: the config may have changed while the run was in flight
    settings = ConfigService.read_config()
    if settings is not None and settings.auto_sync_enabled:
        rescheduler(settings.sync_interval_ms)
    else:
        logger.info("Auto sync disabled or not configured, not re-arming")
