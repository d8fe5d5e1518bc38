"""Integration API schemas."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from timekeeper_sync.models import ProviderIntegration


class IntegrationCreate(BaseModel):
    """Schema for configuring a new integration."""
    provider: str = Field(..., min_length=1)
    organization_url: str = Field(..., min_length=1)
    personal_access_token: str = Field(..., min_length=1)
    project_name: Optional[str] = None
    is_active: bool = True


class CredentialsUpdate(BaseModel):
    """Schema for replacing an integration's credentials."""
    organization_url: Optional[str] = None
    personal_access_token: Optional[str] = None
    project_name: Optional[str] = None


class ProjectsRequest(BaseModel):
    """Credential bundle to list projects for."""
    provider: str
    organization_url: str
    personal_access_token: str


class IntegrationResponse(BaseModel):
    """Integration response schema. The token is never returned."""
    id: str
    provider: str
    organization_url: str
    project_name: Optional[str] = None
    is_active: bool
    last_sync_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_failure_kind: Optional[str] = None
    last_failure_reason: Optional[str] = None
    needs_attention: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_integration(cls, integration: ProviderIntegration) -> "IntegrationResponse":
        data = integration.model_dump(exclude={"personal_access_token"})
        return cls(**data, needs_attention=integration.needs_attention)


class IntegrationListResponse(BaseModel):
    """List of integrations response."""
    items: List[IntegrationResponse]
    total: int


class ConnectionTestResponse(BaseModel):
    """Connection test response."""
    is_connected: bool
    message: str
    tested_at: datetime


class SyncCycleRequest(BaseModel):
    """Parameters of an on-demand sync cycle."""
    provider: Optional[str] = None
    max_age_minutes: Optional[int] = Field(None, ge=0)


class SyncResponse(BaseModel):
    """Sync result for one or many integrations."""
    as_of: Optional[datetime] = None
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    integrations: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    """Active integration counts."""
    active_by_provider: Dict[str, int]
    total_active: int
    needs_attention: int
    in_flight: int


class BulkDeactivateRequest(BaseModel):
    """Deactivate every integration, or those of one provider."""
    provider: Optional[str] = None


class BulkDeactivateResponse(BaseModel):
    deactivated: int
