"""Provider integration models."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, SecretStr
from enum import Enum


class ProviderType(str, Enum):
    """Providers with a built-in adapter."""
    AZURE_DEVOPS = "AzureDevOps"
    GITHUB = "GitHub"


class ProviderCredentials(BaseModel):
    """Credential bundle handed to a provider adapter."""
    organization_url: str
    personal_access_token: SecretStr
    project_name: Optional[str] = None

    class Config:
        frozen = True

    @property
    def token(self) -> str:
        return self.personal_access_token.get_secret_value()


class ProviderIntegration(BaseModel):
    """A configured connection to one external provider."""
    id: Optional[str] = None
    provider: str
    organization_url: str
    personal_access_token: SecretStr
    project_name: Optional[str] = None
    is_active: bool = True

    # Sync state
    last_sync_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_failure_kind: Optional[str] = None
    last_failure_reason: Optional[str] = None

    # Metadata
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def never_synced(self) -> bool:
        return self.last_sync_at is None

    @property
    def needs_attention(self) -> bool:
        """True when the last failure can only be fixed by the operator."""
        return self.last_failure_kind in ("auth", "configuration")

    def credentials(self) -> ProviderCredentials:
        return ProviderCredentials(
            organization_url=self.organization_url,
            personal_access_token=self.personal_access_token,
            project_name=self.project_name,
        )
