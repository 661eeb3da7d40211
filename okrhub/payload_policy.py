"""
Outbound payload policy.

Some fields belong to LinkHub once an entity exists there (a key result's
weight and impact, an initiative's impact scores and "is new" flag). The
client must never assert them, so they are stripped from every payload that
goes into the outbox regardless of what the local row holds.
"""
import json

from okrhub.external_id import EntityKind
from okrhub.utils import camelize

LINKHUB_MANAGED_FIELDS = {
    EntityKind.OBJECTIVE: (),
    EntityKind.KEY_RESULT: ("weight", "impact"),
    EntityKind.RISK: (),
    EntityKind.INITIATIVE: ("isNew", "relativeImpact", "overallImpact"),
    EntityKind.INDICATOR: (),
    EntityKind.INDICATOR_VALUE: (),
    EntityKind.INDICATOR_FORECAST: (),
    EntityKind.MILESTONE: (),
}


def strip_managed_fields(entity_kind, payload):
    """Return a copy of a camelCase ``payload`` without LinkHub-managed fields."""
    managed = LINKHUB_MANAGED_FIELDS[EntityKind(entity_kind)]
    return {key: value for key, value in payload.items() if key not in managed}


def to_outbound_payload(entity_kind, record_fields):
    """
    Shape a local record into the payload LinkHub accepts.

    Args:
        entity_kind: EntityKind (or its wire value) of the record
        record_fields: snake_case mapping of the full local state

    Returns:
        dict: camelCase payload with None values and managed fields removed

    Raises:
        KeyError: for a kind that is never sent to LinkHub
    """
    payload = {
        camelize(key): value
        for key, value in record_fields.items()
        if value is not None
    }
    return strip_managed_fields(entity_kind, payload)


def serialize_payload(payload):
    """Compact, key-sorted JSON. This exact string is stored and signed."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))
