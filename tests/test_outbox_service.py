"""
Tests for the outbox store: FIFO peek, compare-and-set claim, outcome
transitions, stale-claim recovery and operator resubmission.
"""
import json
from datetime import datetime, timedelta

import pytest

from okrhub.errors import NotFound
from okrhub.models import Objective, OutboxStatus, SyncLogEntry, SyncQueueItem, db
from okrhub.services.entity_service import EntityService
from okrhub.services.outbox_service import OutboxService


def _item(objective):
    return db.session.get(SyncQueueItem, objective.queue_id)


def test_enqueue_serializes_dict_payload(app):
    item = OutboxService.enqueue("objective", "acme:objective:x", {"b": 2, "a": 1})
    db.session.commit()
    assert item.payload == '{"a":1,"b":2}'
    assert item.status == "pending"
    assert item.attempts == 0


def test_peek_pending_is_fifo(app):
    first = OutboxService.enqueue("objective", "o1", {})
    second = OutboxService.enqueue("risk", "r1", {})
    third = OutboxService.enqueue("objective", "o2", {})
    db.session.commit()

    assert [i.id for i in OutboxService.peek_pending(10)] == [first.id, second.id, third.id]
    assert [i.id for i in OutboxService.peek_pending(2)] == [first.id, second.id]


def test_claim_is_exclusive(objective):
    assert OutboxService.claim(objective.queue_id) is True
    assert OutboxService.claim(objective.queue_id) is False

    item = _item(objective)
    assert item.status == "processing"
    assert item.last_attempt_at is not None
    assert OutboxService.peek_pending() == []


def test_transition_success_closes_the_loop(objective):
    OutboxService.claim(objective.queue_id)
    item = OutboxService.transition(objective.queue_id, OutboxStatus.SUCCESS, remote_id="lh_1", action="create")

    assert item.status == "success"
    assert item.attempts == 1
    row = Objective.query.filter_by(external_id=objective.external_id).one()
    assert row.sync_status == "synced"

    logs = SyncLogEntry.query.filter_by(external_id=objective.external_id).all()
    assert len(logs) == 1
    assert logs[0].remote_id == "lh_1"
    assert logs[0].action == "create"


def test_transition_failed_records_error(objective):
    OutboxService.claim(objective.queue_id)
    item = OutboxService.transition(objective.queue_id, "failed", error_message="HTTP 500: boom")

    assert item.status == "failed"
    assert item.attempts == 1
    assert item.error_message == "HTTP 500: boom"
    assert Objective.query.filter_by(external_id=objective.external_id).one().sync_status == "pending"
    assert SyncLogEntry.query.count() == 0


def test_success_with_newer_change_leaves_entity_pending(objective):
    EntityService.update("objective", objective.external_id, title="Renamed")

    OutboxService.claim(objective.queue_id)
    OutboxService.transition(objective.queue_id, OutboxStatus.SUCCESS)

    assert Objective.query.filter_by(external_id=objective.external_id).one().sync_status == "pending"


def test_transition_unknown_item(app):
    assert OutboxService.transition(999, OutboxStatus.SUCCESS) is None


def _fail(queue_id, error="nope"):
    OutboxService.claim(queue_id)
    OutboxService.transition(queue_id, OutboxStatus.FAILED, error_message=error)


def test_resubmit_failed_queues_current_state(objective):
    _fail(objective.queue_id)
    row = Objective.query.filter_by(external_id=objective.external_id).one()
    row.title = "Edited after failure"
    db.session.commit()

    fresh = OutboxService.resubmit_failed(objective.queue_id)

    assert fresh.id != objective.queue_id
    assert fresh.status == "pending"
    assert json.loads(fresh.payload)["title"] == "Edited after failure"
    source = _item(objective)
    assert source.status == "resubmitted"
    assert source.resubmitted_as == fresh.id


def test_resubmit_failed_only_once(objective):
    _fail(objective.queue_id)
    OutboxService.resubmit_failed(objective.queue_id)

    with pytest.raises(ValueError):
        OutboxService.resubmit_failed(objective.queue_id)
    assert SyncQueueItem.query.count() == 2


def test_resubmit_skipped_when_newer_change_delivered(objective):
    _fail(objective.queue_id)
    update = EntityService.update("objective", objective.external_id, title="New title")
    OutboxService.claim(update.queue_id)
    OutboxService.transition(update.queue_id, OutboxStatus.SUCCESS, remote_id="lh_1", action="update")

    assert OutboxService.resubmit_failed(objective.queue_id) is None

    assert _item(objective).status == "superseded"
    assert OutboxService.peek_pending() == []
    assert Objective.query.filter_by(external_id=objective.external_id).one().sync_status == "synced"


def test_resubmit_skipped_when_newer_change_queued(objective):
    _fail(objective.queue_id)
    EntityService.update("objective", objective.external_id, title="New title")

    assert OutboxService.resubmit_failed(objective.queue_id) is None
    assert len(OutboxService.peek_pending()) == 1


def test_resubmit_deleted_entity_carries_deletion(objective):
    _fail(objective.queue_id)
    delete = EntityService.soft_delete("objective", objective.external_id)
    _fail(delete.queue_id)

    # The older failure is covered by the re-queued deletion
    fresh = OutboxService.resubmit_failed(delete.queue_id)
    assert json.loads(fresh.payload)["deletedAt"] is not None
    assert OutboxService.resubmit_failed(objective.queue_id) is None


def test_resubmit_rejects_non_failed(objective):
    with pytest.raises(ValueError):
        OutboxService.resubmit_failed(objective.queue_id)
    with pytest.raises(NotFound):
        OutboxService.resubmit_failed(12345)


def test_release_only_touches_processing(objective, indicator):
    OutboxService.claim(objective.queue_id)

    assert OutboxService.release(objective.queue_id) is True
    assert OutboxService.release(indicator.queue_id) is False
    assert _item(objective).status == "pending"


def test_release_stale_processing(objective, indicator):
    OutboxService.claim(objective.queue_id)
    OutboxService.claim(indicator.queue_id)
    _item(objective).last_attempt_at = datetime.utcnow() - timedelta(minutes=30)
    db.session.commit()

    assert OutboxService.release_stale(300) == 1

    assert _item(objective).status == "pending"
    assert db.session.get(SyncQueueItem, indicator.queue_id).status == "processing"


def test_counts_by_status(objective, key_result):
    OutboxService.claim(objective.queue_id)
    OutboxService.transition(objective.queue_id, OutboxStatus.FAILED, error_message="x")

    counts = OutboxService.counts_by_status()
    assert counts["failed"] == 1
    # indicator + key result still pending
    assert counts["pending"] == 2
    assert counts["success"] == 0


def test_list_items_filters_by_status(objective, indicator):
    OutboxService.claim(objective.queue_id)
    OutboxService.transition(objective.queue_id, OutboxStatus.SUCCESS)

    assert [i.id for i in OutboxService.list_items(status="success")] == [objective.queue_id]
    assert len(OutboxService.list_items()) == 2
