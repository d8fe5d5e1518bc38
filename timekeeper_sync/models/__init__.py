"""Domain and database models for the timekeeper sync service."""

from .integration import ProviderCredentials, ProviderIntegration, ProviderType
from .sync import FailureKind, RemoteWorkItem, SyncCycleReport, SyncOutcome, SyncStatus
from .task import Priority, Task, TaskFields, TaskStatus, TaskUpsert, UpsertResult

__all__ = [
    "ProviderCredentials",
    "ProviderIntegration",
    "ProviderType",
    "FailureKind",
    "RemoteWorkItem",
    "SyncCycleReport",
    "SyncOutcome",
    "SyncStatus",
    "Priority",
    "Task",
    "TaskFields",
    "TaskStatus",
    "TaskUpsert",
    "UpsertResult",
]
