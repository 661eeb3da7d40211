"""
Summarize the outbox and the sync log as CSV files.

Writes:
- queue_items.csv: every outbox record with its age and attempt count
- queue_summary.csv: counts and attempt stats per entity kind and status
- sync_log.csv: confirmed deliveries

Usage:
    python -m okrhub.scripts.queue_report --out-dir reports/queue
"""
import argparse
import os
from datetime import datetime

import pandas as pd

from okrhub import create_app
from okrhub.models import SyncLogEntry, SyncQueueItem


def _ensure_out_dir(path):
    os.makedirs(path, exist_ok=True)
    return path


def queue_dataframe(now=None):
    """Outbox records as a DataFrame, one row per record."""
    now = now or datetime.utcnow()
    rows = [
        {
            "id": item.id,
            "entity_kind": item.entity_kind,
            "external_id": item.external_id,
            "status": item.status,
            "attempts": item.attempts,
            "created_at": item.created_at,
            "last_attempt_at": item.last_attempt_at,
            "error_message": item.error_message,
        }
        for item in SyncQueueItem.query.order_by(SyncQueueItem.id.asc()).all()
    ]
    df = pd.DataFrame(rows, columns=[
        "id", "entity_kind", "external_id", "status", "attempts",
        "created_at", "last_attempt_at", "error_message",
    ])
    if not df.empty:
        df["age_minutes"] = (now - pd.to_datetime(df["created_at"])).dt.total_seconds() / 60.0
    else:
        df["age_minutes"] = pd.Series(dtype=float)
    return df


def summarize_queue(df):
    """Counts and attempt stats grouped by kind and status."""
    if df.empty:
        return pd.DataFrame(columns=["entity_kind", "status", "count", "mean_attempts", "max_age_minutes"])
    return (
        df.groupby(["entity_kind", "status"])
        .agg(
            count=("id", "count"),
            mean_attempts=("attempts", "mean"),
            max_age_minutes=("age_minutes", "max"),
        )
        .reset_index()
        .sort_values(["entity_kind", "status"])
    )


def sync_log_dataframe():
    rows = [entry.to_dict() for entry in SyncLogEntry.query.order_by(SyncLogEntry.id.asc()).all()]
    return pd.DataFrame(rows, columns=["id", "entityKind", "externalId", "remoteId", "syncedAt", "action"])


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Write outbox and sync log reports as CSV.")
    parser.add_argument("--out-dir", required=True, help="Directory for report outputs")
    args = parser.parse_args(argv)

    out_dir = _ensure_out_dir(args.out_dir)

    app = create_app({"SCHEDULER_ENABLED": False})
    with app.app_context():
        items = queue_dataframe()
        summary = summarize_queue(items)
        log = sync_log_dataframe()

        items.to_csv(os.path.join(out_dir, "queue_items.csv"), index=False)
        summary.to_csv(os.path.join(out_dir, "queue_summary.csv"), index=False)
        log.to_csv(os.path.join(out_dir, "sync_log.csv"), index=False)

        print(f"Outbox records: {len(items)}")
        for _, r in summary.iterrows():
            print(f"  {r['entity_kind']} / {r['status']}: count={r['count']}, mean attempts={r['mean_attempts']:.1f}")
        print(f"Confirmed deliveries: {len(log)}")
        print(f"\nOutputs written to: {out_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
