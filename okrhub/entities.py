"""
Entity-kind descriptor tables.

Each of the eight locally stored kinds is described once here: which fields
it carries, which parents must already exist locally, which ids are only
format-checked references (teams, companies, users live in LinkHub), and
which fields form its natural key for deterministic ids. The generic write
path in ``okrhub.services.entity_service`` is driven entirely by these
tables.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Type

from okrhub.external_id import EntityKind
from okrhub.models import (
    Indicator,
    IndicatorForecast,
    IndicatorValue,
    Initiative,
    KeyResult,
    Milestone,
    Objective,
    Risk,
)

PRIORITIES = ("lowest", "low", "medium", "high", "highest")
PERIODICITIES = ("weekly", "monthly", "quarterly", "semesterly", "yearly")
INITIATIVE_STATUSES = ("ON_TIME", "OVERDUE", "FINISHED")
MILESTONE_STATUSES = ("ON_TIME", "OVERDUE", "ACHIEVED_ON_TIME", "ACHIEVED_LATE")
INDICATOR_TYPES = ("OUTPUT", "OUTCOME")


@dataclass(frozen=True)
class ParentRef:
    field: str
    kind: EntityKind
    required: bool = True


@dataclass(frozen=True)
class EntityDescriptor:
    kind: EntityKind
    model: Type
    fields: Tuple[str, ...]
    required: Tuple[str, ...]
    natural_key: Tuple[str, ...]
    parents: Tuple[ParentRef, ...] = ()
    references: Tuple[str, ...] = ()
    defaults: Dict[str, object] = field(default_factory=dict)
    choices: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    slug_field: Optional[str] = None

    @property
    def create_call(self):
        """Name of the create helper a caller runs to make this kind exist."""
        return f"create_{self.model.__tablename__[:-1]}"

    @property
    def id_fields(self):
        """Every field holding an external id (parents first)."""
        return tuple(p.field for p in self.parents) + self.references

    def parent_for(self, field_name):
        for parent in self.parents:
            if parent.field == field_name:
                return parent
        return None


DESCRIPTORS = {
    EntityKind.OBJECTIVE: EntityDescriptor(
        kind=EntityKind.OBJECTIVE,
        model=Objective,
        fields=("title", "description", "team_external_id"),
        required=("title", "description", "team_external_id"),
        natural_key=("team_external_id", "description"),
        references=("team_external_id",),
        slug_field="title",
    ),
    EntityKind.KEY_RESULT: EntityDescriptor(
        kind=EntityKind.KEY_RESULT,
        model=KeyResult,
        fields=(
            "objective_external_id", "indicator_external_id", "team_external_id",
            "weight", "impact", "forecast_value", "target_value",
        ),
        required=("objective_external_id", "indicator_external_id", "team_external_id"),
        natural_key=("team_external_id", "objective_external_id", "indicator_external_id"),
        parents=(
            ParentRef("objective_external_id", EntityKind.OBJECTIVE),
            ParentRef("indicator_external_id", EntityKind.INDICATOR),
        ),
        references=("team_external_id",),
        # LinkHub assigns the real weight
        defaults={"weight": 0},
    ),
    EntityKind.RISK: EntityDescriptor(
        kind=EntityKind.RISK,
        model=Risk,
        fields=(
            "description", "team_external_id", "key_result_external_id", "priority",
            "indicator_external_id", "trigger_value", "triggered_if_lower",
            "use_forecast_as_trigger", "is_red",
        ),
        required=("description", "team_external_id", "key_result_external_id", "priority"),
        natural_key=("key_result_external_id", "description"),
        parents=(
            ParentRef("key_result_external_id", EntityKind.KEY_RESULT),
            ParentRef("indicator_external_id", EntityKind.INDICATOR, required=False),
        ),
        references=("team_external_id",),
        choices={"priority": PRIORITIES},
        slug_field="description",
    ),
    EntityKind.INITIATIVE: EntityDescriptor(
        kind=EntityKind.INITIATIVE,
        model=Initiative,
        fields=(
            "description", "team_external_id", "risk_external_id",
            "assignee_external_id", "created_by_external_id", "status", "priority",
            "finished_at", "external_url", "notes", "is_new",
        ),
        required=(
            "description", "team_external_id", "assignee_external_id",
            "created_by_external_id", "priority",
        ),
        natural_key=("team_external_id", "description"),
        parents=(ParentRef("risk_external_id", EntityKind.RISK, required=False),),
        references=("team_external_id", "assignee_external_id", "created_by_external_id"),
        defaults={"status": "ON_TIME"},
        choices={"priority": PRIORITIES, "status": INITIATIVE_STATUSES},
        slug_field="description",
    ),
    EntityKind.INDICATOR: EntityDescriptor(
        kind=EntityKind.INDICATOR,
        model=Indicator,
        fields=(
            "company_external_id", "description", "symbol", "periodicity",
            "assignee_external_id", "is_reverse", "type", "notes",
            "automation_url", "automation_description", "forecast_date",
        ),
        required=("company_external_id", "description", "symbol", "periodicity"),
        natural_key=("company_external_id", "description"),
        references=("company_external_id", "assignee_external_id"),
        choices={"periodicity": PERIODICITIES, "type": INDICATOR_TYPES},
        slug_field="description",
    ),
    EntityKind.INDICATOR_VALUE: EntityDescriptor(
        kind=EntityKind.INDICATOR_VALUE,
        model=IndicatorValue,
        fields=("indicator_external_id", "value", "date"),
        required=("indicator_external_id", "value", "date"),
        natural_key=("indicator_external_id", "date"),
        parents=(ParentRef("indicator_external_id", EntityKind.INDICATOR),),
    ),
    EntityKind.INDICATOR_FORECAST: EntityDescriptor(
        kind=EntityKind.INDICATOR_FORECAST,
        model=IndicatorForecast,
        fields=("indicator_external_id", "value", "date"),
        required=("indicator_external_id", "value", "date"),
        natural_key=("indicator_external_id", "date"),
        parents=(ParentRef("indicator_external_id", EntityKind.INDICATOR),),
    ),
    EntityKind.MILESTONE: EntityDescriptor(
        kind=EntityKind.MILESTONE,
        model=Milestone,
        fields=(
            "indicator_external_id", "description", "value", "forecast_date",
            "status", "achieved_at",
        ),
        required=("indicator_external_id", "description", "value"),
        natural_key=("indicator_external_id", "description"),
        parents=(ParentRef("indicator_external_id", EntityKind.INDICATOR),),
        defaults={"status": "ON_TIME"},
        choices={"status": MILESTONE_STATUSES},
        slug_field="description",
    ),
}


def get_descriptor(entity_kind) -> EntityDescriptor:
    """
    Look up the descriptor for a stored kind.

    Raises:
        KeyError: for reference kinds (team/company/user) or unknown values
    """
    try:
        kind = EntityKind(entity_kind)
    except ValueError:
        raise KeyError(entity_kind)
    return DESCRIPTORS[kind]


def get_model(entity_kind):
    return get_descriptor(entity_kind).model
