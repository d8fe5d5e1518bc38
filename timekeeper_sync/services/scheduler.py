"""Decides which integrations are due for a sync and which recently failed."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from timekeeper_sync.models import FailureKind, ProviderIntegration
from timekeeper_sync.services.integration_store import IntegrationRepository
from timekeeper_sync.utils.time import utcnow


def _sync_order(integration: ProviderIntegration):
    # Never-synced first, then oldest sync, then oldest record
    return (
        integration.last_sync_at is not None,
        integration.last_sync_at or datetime.min,
        integration.created_at or datetime.min,
    )


def select_due(
    integrations: Iterable[ProviderIntegration],
    max_age: timedelta,
    now: datetime,
) -> List[ProviderIntegration]:
    """Active integrations never synced or last synced more than ``max_age`` before ``now``.

    Integrations whose last failure was a configuration error wait for the
    operator to correct them and are never due.
    """
    cutoff = now - max_age
    due = [
        integration
        for integration in integrations
        if integration.is_active
        and integration.last_failure_kind != FailureKind.CONFIGURATION.value
        and (integration.last_sync_at is None or integration.last_sync_at < cutoff)
    ]
    return sorted(due, key=_sync_order)


def select_recently_failed(
    integrations: Iterable[ProviderIntegration],
    window: timedelta,
    now: datetime,
) -> List[ProviderIntegration]:
    """Integrations whose last failure falls inside ``window`` and no success came after it."""
    since = now - window
    failed = [
        integration
        for integration in integrations
        if integration.last_failure_at is not None
        and integration.last_failure_at >= since
        and (integration.last_sync_at is None or integration.last_sync_at < integration.last_failure_at)
    ]
    return sorted(failed, key=lambda i: i.last_failure_at, reverse=True)


class SyncScheduler:
    """Reads integrations through the store and applies the selection rules."""

    def __init__(self, store: IntegrationRepository):
        self.store = store
        self.settings = store.settings

    async def due(
        self,
        max_age: Optional[timedelta] = None,
        provider: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[ProviderIntegration]:
        if max_age is None:
            max_age = timedelta(seconds=self.settings.default_max_age_seconds)
        integrations = await self.store.get_all_active(provider)
        return select_due(integrations, max_age, now or utcnow())

    async def recently_failed(
        self,
        window: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> List[ProviderIntegration]:
        if window is None:
            window = timedelta(seconds=self.settings.recently_failed_window_seconds)
        integrations = await self.store.get_all()
        return select_recently_failed(integrations, window, now or utcnow())
