"""Local task models."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from enum import Enum


class TaskStatus(str, Enum):
    """Local task status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


class Priority(str, Enum):
    """Local task priority."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class UpsertResult(str, Enum):
    """What an upsert did to the task store."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


class TaskFields(BaseModel):
    """Fields written by a sync upsert.

    Fields left as None are not written when updating an existing task.
    """
    title: str
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[Priority] = None
    category: Optional[str] = None
    tags: Optional[str] = None
    estimated_time_minutes: Optional[int] = None
    external_url: Optional[str] = None
    external_state: Optional[str] = None


class Task(BaseModel):
    """Local task record."""
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    priority: Priority = Priority.MEDIUM
    category: Optional[str] = None
    tags: Optional[str] = None
    estimated_time_minutes: int = 0
    external_provider: Optional[str] = None
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    external_state: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TaskUpsert(BaseModel):
    """Result of upserting one task by external reference."""
    task_id: str
    result: UpsertResult
