"""SQLAlchemy tables for integrations and synced tasks."""

import uuid

from sqlalchemy import Column, DateTime, String, Boolean, Text, Integer, UniqueConstraint, Index
from sqlalchemy.orm import declarative_base, declared_attr

from timekeeper_sync.utils.time import utcnow

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin for timestamp fields."""

    @declared_attr
    def created_at(cls):
        return Column(DateTime, default=utcnow, nullable=False)

    @declared_attr
    def updated_at(cls):
        return Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ProviderIntegrationRow(TimestampMixin, Base):
    """Credentials and sync state for one external provider connection."""

    __tablename__ = "provider_integrations"

    id = Column(String(36), primary_key=True, default=_new_id)
    provider = Column(String(50), nullable=False, index=True)
    organization_url = Column(String(500), nullable=False)
    personal_access_token = Column(Text, nullable=False)
    project_name = Column(String(200), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime, nullable=True)

    # Most recent failed attempt, cleared by the next successful sync
    last_failure_at = Column(DateTime, nullable=True)
    last_failure_kind = Column(String(50), nullable=True)
    last_failure_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_provider_integrations_active_last_sync", "is_active", "last_sync_at"),
    )


class TaskRow(TimestampMixin, Base):
    """Local task, optionally mirrored from an external work item."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    priority = Column(String(20), nullable=False, default="medium")
    category = Column(String(100), nullable=True)
    tags = Column(String(500), nullable=True)
    estimated_time_minutes = Column(Integer, nullable=False, default=0)

    # Back-reference to the provider work item
    external_provider = Column(String(50), nullable=True)
    external_id = Column(String(200), nullable=True)
    external_url = Column(String(1000), nullable=True)
    external_state = Column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("external_provider", "external_id", name="uq_tasks_external_reference"),
    )
