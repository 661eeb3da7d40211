# tests/test_external_id.py
"""
Tests for external id derivation, validation and parsing.
Run with: pytest tests/test_external_id.py -v
"""
import re

import pytest

from okrhub.errors import InvalidExternalId, InvalidSourceApp
from okrhub.external_id import (
    EntityKind,
    assert_valid_external_id,
    derive_id,
    deterministic_token,
    extract_entity_kind,
    extract_source_app,
    generate_slug,
    key_result_id,
    normalize_part,
    parse_external_id,
    same_source_app,
    scoped_description_id,
    time_series_id,
    validate_external_id,
    validate_source_app,
)

UUID4_SHAPE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")

# ==============================================================================
# DETERMINISTIC IDS
# ==============================================================================

def test_derive_id_ignores_case_and_whitespace():
    first = derive_id("acme", "objective", ["T1", "Grow Revenue"])
    second = derive_id("acme", "objective", ["t1", "  grow   revenue "])
    assert first == second


def test_derive_id_differs_for_different_text():
    first = derive_id("acme", "objective", ["T1", "Grow Revenue"])
    other = derive_id("acme", "objective", ["T1", "Grow revenue."])
    assert first != other


def test_derive_id_is_namespaced_by_source_app_and_kind():
    base = derive_id("acme", "objective", ["T1", "Grow"])
    assert derive_id("other", "objective", ["T1", "Grow"]) != base
    assert derive_id("acme", "risk", ["T1", "Grow"]).split(":")[2] != base.split(":")[2]


def test_derive_id_has_expected_format():
    external_id = derive_id("acme", EntityKind.KEY_RESULT, ["a", "b", "c"])
    source_app, kind, token = external_id.split(":")
    assert source_app == "acme"
    assert kind == "keyResult"
    assert UUID4_SHAPE.match(token)
    assert validate_external_id(external_id)


def test_deterministic_token_is_stable():
    assert deterministic_token("acme|objective|t1|grow") == deterministic_token("acme|objective|t1|grow")


def test_derive_id_without_parts_is_random():
    first = derive_id("acme", "objective")
    second = derive_id("acme", "objective", [])
    assert first != second
    assert UUID4_SHAPE.match(first.split(":")[2])


def test_derive_id_rejects_bad_source_app():
    with pytest.raises(InvalidSourceApp):
        derive_id("ACME", "objective", ["x"])
    with pytest.raises(InvalidSourceApp):
        derive_id("a", "objective", ["x"])


def test_helpers_match_derive_id():
    team = derive_id("acme", "team", ["sales"])
    assert scoped_description_id("acme", "objective", team, "Grow") == derive_id("acme", "objective", [team, "Grow"])
    assert key_result_id("acme", "t", "o", "i") == derive_id("acme", "keyResult", ["t", "o", "i"])
    assert time_series_id("acme", "indicatorValue", "i", 1700000000000) == derive_id(
        "acme", "indicatorValue", ["i", "1700000000000"]
    )


def test_normalize_part():
    assert normalize_part("  Hello \t  World ") == "hello world"
    assert normalize_part(42) == "42"

# ==============================================================================
# VALIDATION / PARSING
# ==============================================================================

@pytest.mark.parametrize("value,expected", [
    ("acme", True),
    ("my-crm-2", True),
    ("a", False),
    ("Acme", False),
    ("a" * 33, False),
    (None, False),
])
def test_validate_source_app(value, expected):
    assert validate_source_app(value) is expected


def test_validate_external_id_rejects_unknown_kind():
    assert not validate_external_id("acme:widget:550e8400-e29b-41d4-a716-446655440000")
    assert not validate_external_id("acme:objective:not-a-uuid")
    assert validate_external_id("acme:objective:550e8400-e29b-41d4-a716-446655440000")


def test_assert_valid_external_id_names_the_field():
    with pytest.raises(InvalidExternalId) as exc:
        assert_valid_external_id("bogus", "teamExternalId")
    assert exc.value.field == "teamExternalId"
    assert "teamExternalId" in str(exc.value)


def test_parse_external_id():
    parsed = parse_external_id("acme:indicatorForecast:550e8400-e29b-41d4-a716-446655440000")
    assert parsed.source_app == "acme"
    assert parsed.entity_kind is EntityKind.INDICATOR_FORECAST
    assert parsed.token == "550e8400-e29b-41d4-a716-446655440000"
    assert parse_external_id("nope") is None


def test_extract_and_compare_source_app():
    first = derive_id("acme", "objective", ["x"])
    second = derive_id("acme", "risk", ["y"])
    third = derive_id("other", "risk", ["y"])
    assert extract_source_app(first) == "acme"
    assert extract_entity_kind(second) is EntityKind.RISK
    assert same_source_app(first, second)
    assert not same_source_app(first, third)
    assert not same_source_app("garbage", "garbage")


def test_generate_slug():
    slug = generate_slug("acme", "Grow Revenue!")
    assert slug.startswith("acme-grow-revenue-")
    assert len(slug.rsplit("-", 1)[1]) == 4
