"""
External identifiers shared between the local store and LinkHub.

Format: ``{sourceApp}:{entityKind}:{token}``, e.g.
``mycrm:objective:550e8400-e29b-41d4-a716-446655440000``.

The token is either a random UUID4 or a deterministic UUID-shaped value
hashed from normalized natural-key parts. Deterministic tokens make entity
creation safe to retry: the same inputs always produce the same id.
"""
import random
import re
import string
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from okrhub.errors import InvalidExternalId, InvalidSourceApp

OKRHUB_VERSION = "0.1.5"


class EntityKind(str, Enum):
    OBJECTIVE = "objective"
    KEY_RESULT = "keyResult"
    RISK = "risk"
    INITIATIVE = "initiative"
    INDICATOR = "indicator"
    INDICATOR_VALUE = "indicatorValue"
    INDICATOR_FORECAST = "indicatorForecast"
    MILESTONE = "milestone"
    # Reference kinds: owned by LinkHub, never stored locally
    TEAM = "team"
    COMPANY = "company"
    USER = "user"


ENTITY_KINDS = tuple(kind.value for kind in EntityKind)

_KINDS_PATTERN = "|".join(ENTITY_KINDS)
SOURCE_APP_REGEX = re.compile(r"^[a-z0-9-]{2,32}$")
EXTERNAL_ID_REGEX = re.compile(
    rf"^([a-z0-9-]{{2,32}}):({_KINDS_PATTERN}):([a-f0-9-]{{36}})$"
)

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ParsedExternalId:
    source_app: str
    entity_kind: EntityKind
    token: str


def validate_source_app(source_app) -> bool:
    return isinstance(source_app, str) and bool(SOURCE_APP_REGEX.match(source_app))


def validate_external_id(external_id) -> bool:
    return isinstance(external_id, str) and bool(EXTERNAL_ID_REGEX.match(external_id))


def assert_valid_external_id(external_id, field_name: str = "externalId") -> None:
    """Raise InvalidExternalId naming ``field_name`` if the id is malformed."""
    if not validate_external_id(external_id):
        raise InvalidExternalId(field_name, external_id)


def parse_external_id(external_id) -> Optional[ParsedExternalId]:
    if not isinstance(external_id, str):
        return None
    match = EXTERNAL_ID_REGEX.match(external_id)
    if not match:
        return None
    return ParsedExternalId(
        source_app=match.group(1),
        entity_kind=EntityKind(match.group(2)),
        token=match.group(3),
    )


def extract_source_app(external_id) -> Optional[str]:
    parsed = parse_external_id(external_id)
    return parsed.source_app if parsed else None


def extract_entity_kind(external_id) -> Optional[EntityKind]:
    parsed = parse_external_id(external_id)
    return parsed.entity_kind if parsed else None


def same_source_app(first, second) -> bool:
    app = extract_source_app(first)
    return app is not None and app == extract_source_app(second)


def normalize_part(value) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return _WHITESPACE.sub(" ", str(value).strip().lower())


def _fnv1a(text: str) -> int:
    # Hash UTF-16 code units so ids match those produced by JS clients
    data = text.encode("utf-16-le")
    h = _FNV_OFFSET
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def deterministic_token(seed: str) -> str:
    """
    Build a UUID-shaped token from ``seed``.

    Four FNV-1a hashes of the seed (suffixed ``|1``..``|4``) give 128 bits;
    the version nibble is pinned to 4 and the variant to ``10xx`` so the
    result passes any UUID4 validator.
    """
    raw = "".join(format(_fnv1a(f"{seed}|{n}"), "08x") for n in range(1, 5))
    variant = format((int(raw[16], 16) & 0x3) | 0x8, "x")
    return "-".join([
        raw[0:8],
        raw[8:12],
        "4" + raw[13:16],
        variant + raw[17:20],
        raw[20:32],
    ])


def derive_id(source_app: str, entity_kind, parts: Optional[Iterable] = None) -> str:
    """
    Return an external id for ``entity_kind``.

    With ``parts`` the id is deterministic: identical
    ``(source_app, entity_kind, parts)`` (modulo case and whitespace) always
    yields the same id. Without parts a random UUID4 token is used.

    Raises:
        InvalidSourceApp: if ``source_app`` is not 2-32 chars of [a-z0-9-]
    """
    if not validate_source_app(source_app):
        raise InvalidSourceApp(source_app)

    kind = EntityKind(entity_kind).value
    parts = list(parts or [])
    if not parts:
        return f"{source_app}:{kind}:{uuid.uuid4()}"

    normalized = [normalize_part(part) for part in parts]
    seed = "|".join([source_app, kind] + normalized)
    return f"{source_app}:{kind}:{deterministic_token(seed)}"


def generate_external_id(source_app: str, entity_kind) -> str:
    """Random external id, for entities without a natural key."""
    return derive_id(source_app, entity_kind)


def scoped_description_id(source_app, entity_kind, scope_id, description) -> str:
    """Objectives, risks, initiatives, indicators and milestones: scope + description."""
    return derive_id(source_app, entity_kind, [scope_id, description])


def key_result_id(source_app, team_external_id, objective_external_id, indicator_external_id) -> str:
    return derive_id(
        source_app,
        EntityKind.KEY_RESULT,
        [team_external_id, objective_external_id, indicator_external_id],
    )


def time_series_id(source_app, entity_kind, indicator_external_id, date_ms) -> str:
    """Indicator values and forecasts: indicator + timestamp."""
    return derive_id(source_app, entity_kind, [indicator_external_id, str(date_ms)])


def generate_slug(source_app: str, text: str, max_length: int = 50) -> str:
    """
    Generate a slug with a source app prefix.
    Pattern: {sourceApp}-{baseSlug}-{suffix}
    """
    base = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    base = base[:max(0, max_length - len(source_app) - 7)]
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"{source_app}-{base}-{suffix}"
