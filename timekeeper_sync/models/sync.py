"""Sync outcome and remote work item models."""

from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from enum import Enum


class SyncStatus(str, Enum):
    """Result of one sync pass for one integration."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailureKind(str, Enum):
    """Why a sync pass failed."""
    CONFIGURATION = "configuration"
    AUTH = "auth"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNSUPPORTED_PROVIDER = "unsupported_provider"
    UNKNOWN = "unknown"


class RemoteWorkItem(BaseModel):
    """Provider-normalized work item, produced fresh on every fetch.

    Identity and title may be missing when the provider returns malformed
    data; the mapping step rejects such items individually.
    """
    external_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    state: Optional[str] = None
    url: Optional[str] = None
    work_item_type: Optional[str] = None


class SyncOutcome(BaseModel):
    """Outcome of syncing one integration."""
    integration_id: str
    provider: str
    status: SyncStatus
    reason: Optional[str] = None
    error_kind: Optional[FailureKind] = None

    # Item counters
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped_items: int = 0

    completed_at: Optional[datetime] = None

    @classmethod
    def failed(cls, integration_id: str, provider: str, kind: FailureKind, reason: str) -> "SyncOutcome":
        return cls(
            integration_id=integration_id,
            provider=provider,
            status=SyncStatus.FAILED,
            error_kind=kind,
            reason=reason,
        )

    @classmethod
    def skipped(cls, integration_id: str, provider: str, reason: str) -> "SyncOutcome":
        return cls(
            integration_id=integration_id,
            provider=provider,
            status=SyncStatus.SKIPPED,
            reason=reason,
        )

    @property
    def succeeded(self) -> bool:
        return self.status == SyncStatus.SUCCEEDED

    def summary(self) -> Dict[str, Any]:
        """Per-integration line for the CLI and API."""
        data = {
            "integration_id": self.integration_id,
            "provider": self.provider,
            "status": self.status.value,
            "reason": self.reason,
        }
        if self.succeeded:
            data.update(
                created=self.created,
                updated=self.updated,
                unchanged=self.unchanged,
                skipped_items=self.skipped_items,
            )
        return data


class SyncCycleReport(BaseModel):
    """Outcomes of one sync cycle keyed by integration id."""
    as_of: datetime
    outcomes: Dict[str, SyncOutcome] = Field(default_factory=dict)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == SyncStatus.SUCCEEDED)

    @property
    def failed_count(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == SyncStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes.values() if o.status == SyncStatus.SKIPPED)

    def summary(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "skipped": self.skipped_count,
            "integrations": {key: outcome.summary() for key, outcome in self.outcomes.items()},
        }
