"""Stores, scheduling and sync orchestration."""

from .integration_store import IntegrationRepository
from .task_store import TaskRepository
from .scheduler import SyncScheduler, select_due, select_recently_failed
from .integration_manager import IntegrationManager

__all__ = [
    "IntegrationRepository",
    "TaskRepository",
    "SyncScheduler",
    "select_due",
    "select_recently_failed",
    "IntegrationManager",
]
