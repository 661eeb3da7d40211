# tests/test_payload_policy.py
import json

import pytest

from okrhub.external_id import EntityKind
from okrhub.payload_policy import serialize_payload, strip_managed_fields, to_outbound_payload
from okrhub.payloads import BatchItem, build_batch_payload


def test_key_result_weight_and_impact_are_never_sent():
    payload = to_outbound_payload(EntityKind.KEY_RESULT, {
        "external_id": "acme:keyResult:x",
        "weight": 0.5,
        "impact": 3,
        "target_value": 10.0,
    })
    assert "weight" not in payload
    assert "impact" not in payload
    assert payload["targetValue"] == 10.0
    assert payload["externalId"] == "acme:keyResult:x"


def test_initiative_managed_fields_are_stripped():
    payload = strip_managed_fields("initiative", {
        "description": "Ship it",
        "isNew": True,
        "relativeImpact": 1,
        "overallImpact": 2,
    })
    assert payload == {"description": "Ship it"}


def test_none_values_are_dropped():
    payload = to_outbound_payload(EntityKind.OBJECTIVE, {"title": "T", "source_url": None})
    assert payload == {"title": "T"}


def test_unmanaged_kind_passes_through():
    payload = {"description": "d", "value": 1.0}
    assert strip_managed_fields(EntityKind.MILESTONE, payload) == payload


def test_reference_kind_is_a_programming_error():
    with pytest.raises(KeyError):
        strip_managed_fields(EntityKind.TEAM, {})


def test_serialize_payload_is_compact_and_sorted():
    assert serialize_payload({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_build_batch_payload_groups_by_kind():
    items = [
        BatchItem(EntityKind.OBJECTIVE, {"externalId": "o1"}),
        BatchItem(EntityKind.KEY_RESULT, {"externalId": "k1"}),
        BatchItem(EntityKind.OBJECTIVE, {"externalId": "o2"}),
    ]
    batch = build_batch_payload(items)
    assert batch == {
        "objectives": [{"externalId": "o1"}, {"externalId": "o2"}],
        "keyResults": [{"externalId": "k1"}],
    }


def test_batch_item_from_queue_item():
    class Row:
        entity_kind = "indicatorValue"
        payload = json.dumps({"externalId": "v1", "value": 3})

    item = BatchItem.from_queue_item(Row())
    assert item.entity_kind is EntityKind.INDICATOR_VALUE
    assert item.payload == {"externalId": "v1", "value": 3}
