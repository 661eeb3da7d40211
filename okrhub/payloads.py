"""
Wire payloads accepted by LinkHub's ingest endpoints, one shape per kind,
and the batch envelope that groups them.
"""
import json
from dataclasses import dataclass
from typing import Dict, List, Optional, TypedDict, Union

from okrhub.external_id import EntityKind


class _Tracked(TypedDict, total=False):
    sourceUrl: str
    createdAt: int
    updatedAt: int
    deletedAt: int


class ObjectivePayload(_Tracked):
    externalId: str
    title: str
    description: str
    teamExternalId: str


class KeyResultPayload(_Tracked):
    externalId: str
    objectiveExternalId: str
    indicatorExternalId: str
    teamExternalId: str
    forecastValue: Optional[float]
    targetValue: Optional[float]


class RiskPayload(_Tracked):
    externalId: str
    description: str
    teamExternalId: str
    keyResultExternalId: str
    priority: str
    indicatorExternalId: Optional[str]
    triggerValue: Optional[float]
    triggeredIfLower: Optional[bool]
    useForecastAsTrigger: Optional[bool]
    isRed: Optional[bool]


class InitiativePayload(_Tracked):
    externalId: str
    description: str
    teamExternalId: str
    assigneeExternalId: str
    createdByExternalId: str
    priority: str
    riskExternalId: Optional[str]
    status: Optional[str]
    finishedAt: Optional[int]
    externalUrl: Optional[str]
    notes: Optional[str]


class IndicatorPayload(_Tracked):
    externalId: str
    companyExternalId: str
    description: str
    symbol: str
    periodicity: str
    assigneeExternalId: Optional[str]
    isReverse: Optional[bool]
    type: Optional[str]
    notes: Optional[str]
    automationUrl: Optional[str]
    automationDescription: Optional[str]
    forecastDate: Optional[int]


class IndicatorValuePayload(_Tracked):
    externalId: str
    indicatorExternalId: str
    value: float
    date: int


class IndicatorForecastPayload(IndicatorValuePayload):
    pass


class MilestonePayload(_Tracked):
    externalId: str
    indicatorExternalId: str
    description: str
    value: float
    forecastDate: Optional[int]
    status: Optional[str]
    achievedAt: Optional[int]


EntityPayload = Union[
    ObjectivePayload,
    KeyResultPayload,
    RiskPayload,
    InitiativePayload,
    IndicatorPayload,
    IndicatorValuePayload,
    IndicatorForecastPayload,
    MilestonePayload,
]

# Batch envelope keys, in the order LinkHub applies them (parents first)
BATCH_KEYS = {
    EntityKind.INDICATOR: "indicators",
    EntityKind.OBJECTIVE: "objectives",
    EntityKind.KEY_RESULT: "keyResults",
    EntityKind.RISK: "risks",
    EntityKind.INITIATIVE: "initiatives",
    EntityKind.MILESTONE: "milestones",
    EntityKind.INDICATOR_VALUE: "indicatorValues",
    EntityKind.INDICATOR_FORECAST: "indicatorForecasts",
}


@dataclass
class BatchItem:
    """One tagged entry of a batch: the kind says which payload shape it holds."""
    entity_kind: EntityKind
    payload: EntityPayload

    @classmethod
    def from_queue_item(cls, queue_item):
        return cls(
            entity_kind=EntityKind(queue_item.entity_kind),
            payload=json.loads(queue_item.payload),
        )


def build_batch_payload(items: List[BatchItem]) -> Dict[str, List[EntityPayload]]:
    """Group tagged items under their envelope keys, dropping empty groups."""
    batch: Dict[str, List[EntityPayload]] = {}
    for key in BATCH_KEYS.values():
        batch[key] = []
    for item in items:
        batch[BATCH_KEYS[EntityKind(item.entity_kind)]].append(item.payload)
    return {key: payloads for key, payloads in batch.items() if payloads}
