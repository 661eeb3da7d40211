"""
Tests for the generic entity write path: idempotent creation, hierarchy
checks, update merging, soft delete and the query surface.
"""
import json

import pytest

from okrhub.external_id import EntityKind, derive_id
from okrhub.models import KeyResult, Objective, SyncQueueItem, db
from okrhub.services.entity_service import EntityService, create_objective


def _queue_for(external_id):
    return (
        SyncQueueItem.query
        .filter_by(external_id=external_id)
        .order_by(SyncQueueItem.id.asc())
        .all()
    )


# ==============================================================================
# CREATE
# ==============================================================================

def test_create_objective_queues_payload(objective, team_id):
    row = Objective.query.filter_by(external_id=objective.external_id).one()
    assert row.sync_status == "pending"
    assert row.source_app == "acme"
    assert row.slug.startswith("acme-grow-revenue-")

    items = _queue_for(objective.external_id)
    assert len(items) == 1
    assert items[0].entity_kind == "objective"
    payload = json.loads(items[0].payload)
    assert payload["externalId"] == objective.external_id
    assert payload["title"] == "Grow revenue"
    assert payload["teamExternalId"] == team_id
    assert isinstance(payload["createdAt"], int)
    assert objective.queue_id == items[0].id


def test_create_twice_is_idempotent(objective, team_id):
    again = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        title="Grow revenue",
        description="Grow revenue",
        team_external_id=team_id,
    )
    assert again.success is True
    assert again.existing is True
    assert again.external_id == objective.external_id
    assert again.queue_id is None
    assert Objective.query.count() == 1
    assert len(_queue_for(objective.external_id)) == 1


def test_create_id_is_case_and_whitespace_insensitive(objective, team_id):
    again = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        title="Different title",
        description="  GROW   revenue ",
        team_external_id=team_id,
    )
    assert again.existing is True
    assert again.external_id == objective.external_id


def test_create_uses_app_source_app_by_default(app, team_id):
    result = create_objective(title="T", description="Be great", team_external_id=team_id)
    assert result.success
    assert result.external_id.startswith("acme:objective:")


def test_create_with_explicit_external_id(app, team_id):
    explicit = "acme:objective:550e8400-e29b-41d4-a716-446655440000"
    result = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        external_id=explicit,
        title="T",
        description="D",
        team_external_id=team_id,
    )
    assert result.success
    assert result.external_id == explicit


def test_create_rejects_external_id_of_another_kind(app, team_id):
    result = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        external_id="acme:risk:550e8400-e29b-41d4-a716-446655440000",
        title="T",
        description="D",
        team_external_id=team_id,
    )
    assert result.success is False
    assert result.error_code == "invalid_external_id"
    assert Objective.query.count() == 0


def test_create_rejects_malformed_reference(app):
    result = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        title="T",
        description="D",
        team_external_id="not-an-id",
    )
    assert result.success is False
    assert result.error_code == "invalid_external_id"
    assert "team_external_id" in result.error
    assert SyncQueueItem.query.count() == 0


def test_create_rejects_bad_source_app(app, team_id):
    result = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="Bad App",
        title="T",
        description="D",
        team_external_id=team_id,
    )
    assert result.success is False
    assert result.error_code == "invalid_source_app"


def test_create_requires_fields(app, team_id):
    result = EntityService.create(EntityKind.OBJECTIVE, source_app="acme", title="T", team_external_id=team_id)
    assert result.success is False
    assert result.error_code == "invalid_field"
    assert "description" in result.error


def test_create_rejects_value_outside_choices(key_result, team_id):
    result = EntityService.create(
        EntityKind.RISK,
        source_app="acme",
        description="Churn",
        team_external_id=team_id,
        key_result_external_id=key_result.external_id,
        priority="urgent",
    )
    assert result.success is False
    assert result.error_code == "invalid_field"


def test_unknown_team_is_accepted(app):
    # Teams live in LinkHub: only the id format is checked
    result = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        title="T",
        description="D",
        team_external_id=derive_id("acme", "team", ["nobody-created-this"]),
    )
    assert result.success


# ==============================================================================
# HIERARCHY
# ==============================================================================

def test_key_result_with_missing_objective_fails(app, team_id, indicator):
    missing = derive_id("acme", "objective", ["ghost"])
    result = EntityService.create(
        EntityKind.KEY_RESULT,
        source_app="acme",
        objective_external_id=missing,
        indicator_external_id=indicator.external_id,
        team_external_id=team_id,
    )
    assert result.success is False
    assert result.error_code == "parent_not_found"
    assert missing in result.error
    assert "create_objective()" in result.error
    assert KeyResult.query.count() == 0
    assert SyncQueueItem.query.filter_by(entity_kind="keyResult").count() == 0


def test_key_result_weight_is_stored_but_not_sent(key_result):
    row = KeyResult.query.filter_by(external_id=key_result.external_id).one()
    assert row.weight == 0

    payload = json.loads(_queue_for(key_result.external_id)[0].payload)
    assert "weight" not in payload
    assert payload["targetValue"] == 100.0


def test_risk_optional_indicator_must_exist_when_given(key_result, team_id):
    result = EntityService.create(
        EntityKind.RISK,
        source_app="acme",
        description="Churn",
        team_external_id=team_id,
        key_result_external_id=key_result.external_id,
        priority="high",
        indicator_external_id=derive_id("acme", "indicator", ["ghost"]),
    )
    assert result.success is False
    assert "create_indicator()" in result.error


def test_indicator_value_id_is_deterministic_by_date(indicator):
    kwargs = dict(source_app="acme", indicator_external_id=indicator.external_id, value=10.0, date=1700000000000)
    first = EntityService.create(EntityKind.INDICATOR_VALUE, **kwargs)
    second = EntityService.create(EntityKind.INDICATOR_VALUE, **dict(kwargs, value=12.0))
    assert first.success and second.success
    assert second.existing is True
    assert first.external_id == second.external_id


# ==============================================================================
# UPDATE
# ==============================================================================

def test_update_resets_sync_state_and_sends_merged_payload(key_result, objective, indicator, team_id):
    row = KeyResult.query.filter_by(external_id=key_result.external_id).one()
    row.sync_status = "synced"
    db.session.commit()

    result = EntityService.update(EntityKind.KEY_RESULT, key_result.external_id, forecast_value=42.0)
    assert result.success, result.error

    row = KeyResult.query.filter_by(external_id=key_result.external_id).one()
    assert row.sync_status == "pending"
    assert row.forecast_value == 42.0
    assert row.updated_at is not None

    items = _queue_for(key_result.external_id)
    assert len(items) == 2
    payload = json.loads(items[-1].payload)
    assert payload["forecastValue"] == 42.0
    assert payload["targetValue"] == 100.0
    assert payload["objectiveExternalId"] == objective.external_id
    assert payload["indicatorExternalId"] == indicator.external_id
    assert payload["teamExternalId"] == team_id
    assert isinstance(payload["updatedAt"], int)
    assert "weight" not in payload


def test_update_unknown_entity_fails(app):
    result = EntityService.update(EntityKind.OBJECTIVE, derive_id("acme", "objective", ["ghost"]), title="x")
    assert result.success is False
    assert result.error_code == "not_found"


def test_update_checks_new_parent(key_result):
    result = EntityService.update(
        EntityKind.KEY_RESULT,
        key_result.external_id,
        objective_external_id=derive_id("acme", "objective", ["ghost"]),
    )
    assert result.success is False
    assert result.error_code == "parent_not_found"
    assert len(_queue_for(key_result.external_id)) == 1


# ==============================================================================
# SOFT DELETE
# ==============================================================================

def test_soft_delete_queues_deletion(objective):
    result = EntityService.soft_delete(EntityKind.OBJECTIVE, objective.external_id)
    assert result.success

    row = Objective.query.filter_by(external_id=objective.external_id).one()
    assert row.deleted_at is not None
    assert row.sync_status == "pending"

    items = _queue_for(objective.external_id)
    assert len(items) == 2
    assert isinstance(json.loads(items[-1].payload)["deletedAt"], int)


def test_soft_delete_twice_is_a_noop(objective):
    EntityService.soft_delete(EntityKind.OBJECTIVE, objective.external_id)
    again = EntityService.soft_delete(EntityKind.OBJECTIVE, objective.external_id)
    assert again.success is True
    assert again.existing is True
    assert again.deleted is True
    assert len(_queue_for(objective.external_id)) == 2


def test_deleted_entity_cannot_be_updated(objective):
    EntityService.soft_delete(EntityKind.OBJECTIVE, objective.external_id)
    result = EntityService.update(EntityKind.OBJECTIVE, objective.external_id, title="New")
    assert result.error_code == "not_found"


def test_create_after_soft_delete_reports_deleted_row(objective, team_id):
    EntityService.soft_delete(EntityKind.OBJECTIVE, objective.external_id)

    again = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        title="Grow revenue",
        description="Grow revenue",
        team_external_id=team_id,
    )

    assert again.success is True
    assert again.existing is True
    assert again.deleted is True
    assert again.to_dict()["deleted"] is True
    assert again.local_id == objective.local_id
    assert len(_queue_for(objective.external_id)) == 2


def test_create_twice_live_row_not_flagged_deleted(objective, team_id):
    again = EntityService.create(
        EntityKind.OBJECTIVE,
        source_app="acme",
        title="Grow revenue",
        description="Grow revenue",
        team_external_id=team_id,
    )
    assert again.deleted is False
    assert "deleted" not in again.to_dict()


# ==============================================================================
# QUERIES
# ==============================================================================

def test_list_by_parent(key_result, objective):
    rows = EntityService.list_by_parent(EntityKind.KEY_RESULT, "objective_external_id", objective.external_id)
    assert [row.external_id for row in rows] == [key_result.external_id]


def test_list_by_parent_rejects_unknown_field(app):
    from okrhub.errors import InvalidField
    with pytest.raises(InvalidField):
        EntityService.list_by_parent(EntityKind.KEY_RESULT, "title", "x")


def test_list_all_hides_deleted(objective):
    EntityService.soft_delete(EntityKind.OBJECTIVE, objective.external_id)
    assert EntityService.list_all(EntityKind.OBJECTIVE) == []
    assert len(EntityService.list_all(EntityKind.OBJECTIVE, include_deleted=True)) == 1


def test_get_by_external_id(objective):
    row = EntityService.get_by_external_id("objective", objective.external_id)
    assert row.id == objective.local_id
    assert row.to_dict()["externalId"] == objective.external_id
