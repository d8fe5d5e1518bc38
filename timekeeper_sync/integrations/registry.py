"""Adapter registry for looking up provider implementations."""

from typing import Dict, Type, Optional

import httpx

from timekeeper_sync.core.config import Settings
from timekeeper_sync.integrations.base import BaseProviderAdapter


class AdapterRegistry:
    """Registry of provider adapter implementations keyed by provider tag."""

    _adapters: Dict[str, Type[BaseProviderAdapter]] = {}

    @classmethod
    def register(cls, provider: str):
        """Decorator to register an adapter class."""
        def decorator(adapter_class: Type[BaseProviderAdapter]):
            cls._adapters[provider] = adapter_class
            return adapter_class
        return decorator

    @classmethod
    def get(cls, provider: str) -> Optional[Type[BaseProviderAdapter]]:
        """Get adapter class by provider tag."""
        return cls._adapters.get(provider)

    @classmethod
    def list_providers(cls) -> list[str]:
        """List all registered provider tags."""
        return sorted(cls._adapters.keys())

    @classmethod
    def create_all(
        cls,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> Dict[str, BaseProviderAdapter]:
        """Instantiate one adapter per registered provider.

        The returned mapping is what the integration manager dispatches on.
        """
        return {
            provider: adapter_class(http_client=http_client, settings=settings)
            for provider, adapter_class in cls._adapters.items()
        }
