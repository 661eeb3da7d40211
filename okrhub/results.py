from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class WriteResult:
    """Outcome of a create/update/delete on the local store."""
    success: bool
    external_id: str = ""
    local_id: Optional[int] = None
    queue_id: Optional[int] = None
    existing: bool = False
    deleted: bool = False  # the existing row is soft-deleted
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def failure(cls, error, external_id=""):
        """Build a failed result from an OKRHubError."""
        return cls(
            success=False,
            external_id=external_id or "",
            error=str(error),
            error_code=getattr(error, "code", "error"),
        )

    def to_dict(self) -> dict:
        """Serialize for JSON response"""
        data = {
            "success": self.success,
            "externalId": self.external_id,
            "localId": self.local_id,
            "queueId": self.queue_id,
        }
        if self.existing:
            data["existing"] = True
        if self.deleted:
            data["deleted"] = True
        if self.error:
            data["error"] = self.error
            data["errorCode"] = self.error_code
        return data


@dataclass
class DeliveryResult:
    success: bool
    external_id: str = ""
    remote_id: Optional[str] = None
    action: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "externalId": self.external_id,
            "remoteId": self.remote_id,
            "action": self.action,
            "error": self.error,
        }


@dataclass
class BatchItemResult:
    entity_kind: str
    external_id: str
    remote_id: Optional[str] = None
    action: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class BatchDeliveryResult:
    """
    Outcome of a batch call. ``success`` is the envelope flag: a batch with
    some rejected items reports False even though other items went through,
    so callers must look at ``results``.
    """
    success: bool
    results: List[BatchItemResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return not self.success and any(item.success for item in self.results)

    def result_for(self, external_id) -> Optional[BatchItemResult]:
        """Result for one entity. The drain loop sends at most one record per entity in a batch."""
        for item in self.results:
            if item.external_id == external_id:
                return item
        return None


@dataclass
class DrainSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0  # claimed by a concurrent run before this one got to it
    superseded: int = 0  # dropped from a batch in favour of a newer record for the same entity

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "superseded": self.superseded,
        }
