"""
Run the drain loop once from the command line, or resubmit failed items.

Usage:
    python -m okrhub.scripts.drain_queue                    # Drain with stored config
    python -m okrhub.scripts.drain_queue --batch-size 50 --use-batch
    python -m okrhub.scripts.drain_queue --resubmit-failed  # Re-queue every failed item
"""
import argparse
import sys

from okrhub import create_app
from okrhub.errors import NotConfigured
from okrhub.models import OutboxStatus, SyncQueueItem
from okrhub.services.outbox_service import OutboxService
from okrhub.sync.processor import process_sync_queue


def resubmit_all_failed(limit=None):
    """
    Re-queue every failed outbox item with its entity's current state.

    Items already covered by a newer record are marked superseded instead.
    Returns the ids of the new pending records.
    """
    query = (
        SyncQueueItem.query
        .filter(SyncQueueItem.status == OutboxStatus.FAILED.value)
        .order_by(SyncQueueItem.id.asc())
    )
    if limit:
        query = query.limit(limit)
    new_ids = []
    for item in query.all():
        resubmitted = OutboxService.resubmit_failed(item.id)
        if resubmitted is not None:
            new_ids.append(resubmitted.id)
    return new_ids


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Deliver pending OKR outbox items to LinkHub.")
    parser.add_argument("--batch-size", type=int, default=None, help="Max items to claim (default DRAIN_BATCH_SIZE)")
    parser.add_argument("--use-batch", action="store_true", help="Send claimed items in one batch request")
    parser.add_argument("--endpoint-url", default=None)
    parser.add_argument("--api-key-prefix", default=None)
    parser.add_argument("--signing-secret", default=None)
    parser.add_argument("--resubmit-failed", action="store_true", help="Re-queue failed items instead of draining")
    parser.add_argument("--limit", type=int, default=None, help="With --resubmit-failed: max items to re-queue")
    args = parser.parse_args(argv)

    app = create_app({"SCHEDULER_ENABLED": False})
    with app.app_context():
        if args.resubmit_failed:
            new_ids = resubmit_all_failed(args.limit)
            print(f"Resubmitted {len(new_ids)} failed item(s)")
            return 0

        try:
            summary = process_sync_queue(
                endpoint_url=args.endpoint_url,
                api_key_prefix=args.api_key_prefix,
                signing_secret=args.signing_secret,
                batch_size=args.batch_size,
                use_batch=args.use_batch,
            )
        except NotConfigured as e:
            print(f"[ERROR] {e}")
            return 2

        print(
            f"Processed: {summary.processed}  Succeeded: {summary.succeeded}  "
            f"Failed: {summary.failed}  Skipped: {summary.skipped}  Superseded: {summary.superseded}"
        )
        return 1 if summary.failed else 0


if __name__ == "__main__":
    sys.exit(main())
