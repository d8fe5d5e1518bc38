"""Provider adapter implementations."""

from .base import (
    BaseProviderAdapter,
    ConfigurationError,
    IntegrationError,
    IntegrationBusyError,
    IntegrationNotFoundError,
    MappingError,
    ProviderError,
    ProviderErrorKind,
    ProviderTimeoutError,
)
from .registry import AdapterRegistry
from .github import GitHubAdapter
from .azure_devops import AzureDevOpsAdapter

__all__ = [
    "BaseProviderAdapter",
    "ConfigurationError",
    "IntegrationError",
    "IntegrationBusyError",
    "IntegrationNotFoundError",
    "MappingError",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderTimeoutError",
    "AdapterRegistry",
    "GitHubAdapter",
    "AzureDevOpsAdapter",
]
