"""Orchestrates sync passes across provider integrations."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Set
import logging

from timekeeper_sync.core.config import Settings, get_settings
from timekeeper_sync.integrations.base import (
    BaseProviderAdapter,
    ConfigurationError,
    IntegrationBusyError,
    IntegrationNotFoundError,
    MappingError,
    ProviderError,
    ProviderErrorKind,
    ProviderTimeoutError,
)
from timekeeper_sync.models import (
    FailureKind,
    ProviderCredentials,
    ProviderIntegration,
    RemoteWorkItem,
    SyncCycleReport,
    SyncOutcome,
    SyncStatus,
    UpsertResult,
)
from timekeeper_sync.services.integration_store import IntegrationRepository
from timekeeper_sync.services.mapping import map_work_item
from timekeeper_sync.services.scheduler import SyncScheduler
from timekeeper_sync.services.task_store import TaskRepository
from timekeeper_sync.utils.rate_limiter import ProviderLimiter
from timekeeper_sync.utils.time import utcnow

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "timeout"
UNSUPPORTED_PROVIDER_REASON = "unsupported provider"
IN_PROGRESS_REASON = "sync already in progress"


class IntegrationManager:
    """Runs sync passes and the integration configuration flow.

    Collaborators are passed in explicitly: the integration store, the task
    store, and a mapping of provider tag to adapter instance. Failures of a
    single integration resolve to a ``SyncOutcome``; only store errors and
    cancellation escape ``sync_one``.
    """

    def __init__(
        self,
        store: IntegrationRepository,
        task_store: TaskRepository,
        adapters: Mapping[str, BaseProviderAdapter],
        settings: Optional[Settings] = None,
        limiter: Optional[ProviderLimiter] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.task_store = task_store
        self.adapters = dict(adapters)
        self.settings = settings or get_settings()
        self.scheduler = SyncScheduler(store)
        self.clock = clock
        self.limiter = limiter or ProviderLimiter(
            default_limit=self.settings.provider_concurrency,
            limits=self.settings.provider_concurrency_limits,
        )
        self._in_flight: Set[str] = set()

    @property
    def in_flight(self) -> Set[str]:
        """Ids of integrations with a sync pass currently running."""
        return set(self._in_flight)

    def _adapter_for(self, provider: str) -> BaseProviderAdapter:
        adapter = self.adapters.get(provider)
        if adapter is None:
            raise ConfigurationError(f"Unsupported provider: {provider!r}")
        return adapter

    # Sync passes

    async def sync_one(
        self,
        integration: ProviderIntegration,
        as_of: Optional[datetime] = None,
    ) -> SyncOutcome:
        """Sync one integration's work items into the task store.

        On success the integration's ``last_sync_at`` is set to ``as_of``.
        Failures are recorded on the integration and never touch
        ``last_sync_at``.
        """
        if not integration.id:
            raise ValueError("Only stored integrations can be synced")

        if integration.id in self._in_flight:
            logger.info(f"Sync of integration {integration.id} already in progress")
            return SyncOutcome.skipped(integration.id, integration.provider, IN_PROGRESS_REASON)
        if not integration.is_active:
            return SyncOutcome.skipped(integration.id, integration.provider, "integration is inactive")

        as_of = as_of or self.clock()
        self._in_flight.add(integration.id)
        try:
            return await self._run_pass(integration, as_of, stamp=True)
        finally:
            self._in_flight.discard(integration.id)

    async def _run_pass(self, integration: ProviderIntegration, as_of: datetime, stamp: bool) -> SyncOutcome:
        # Caller holds the in-flight marker for integration.id
        outcome = await self._sync(integration)

        if outcome.status == SyncStatus.FAILED:
            await self.store.record_failure(
                integration.id, self.clock(), outcome.error_kind, outcome.reason
            )
        elif stamp:
            await self.store.update_last_sync(integration.id, as_of)

        return outcome

    async def _sync(self, integration: ProviderIntegration) -> SyncOutcome:
        def failed(kind: FailureKind, reason: str) -> SyncOutcome:
            return SyncOutcome.failed(integration.id, integration.provider, kind, reason)

        adapter = self.adapters.get(integration.provider)
        if adapter is None:
            logger.warning(f"No adapter for provider {integration.provider!r} (integration {integration.id})")
            return failed(FailureKind.UNSUPPORTED_PROVIDER, UNSUPPORTED_PROVIDER_REASON)

        credentials = integration.credentials()
        async with self.limiter.acquire(integration.provider):
            try:
                connected = await asyncio.wait_for(
                    adapter.test_connection(credentials),
                    timeout=self.settings.connect_timeout_seconds,
                )
                if not connected:
                    logger.warning(f"Integration {integration.id} failed the connection test")
                    return failed(FailureKind.AUTH, "connection test failed: credentials rejected")

                items = await asyncio.wait_for(
                    self._collect(adapter, credentials, integration.project_name),
                    timeout=self.settings.fetch_timeout_seconds,
                )
            except (asyncio.TimeoutError, ProviderTimeoutError):
                logger.warning(f"Integration {integration.id} timed out talking to {integration.provider}")
                return failed(FailureKind.TIMEOUT, TIMEOUT_REASON)
            except ConfigurationError as e:
                logger.warning(f"Integration {integration.id} is misconfigured: {e}")
                return failed(FailureKind.CONFIGURATION, str(e))
            except ProviderError as e:
                logger.warning(f"Integration {integration.id} provider error: {e}")
                return failed(FailureKind(e.kind.value), str(e))
            except Exception as e:
                logger.exception(f"Unexpected adapter error for integration {integration.id}")
                return failed(FailureKind.UNKNOWN, f"{type(e).__name__}: {e}")

        return await self._apply(integration, items)

    @staticmethod
    async def _collect(
        adapter: BaseProviderAdapter,
        credentials: ProviderCredentials,
        project_filter: Optional[str],
    ) -> List[RemoteWorkItem]:
        return [item async for item in adapter.fetch_work_items(credentials, project_filter)]

    async def _apply(self, integration: ProviderIntegration, items: List[RemoteWorkItem]) -> SyncOutcome:
        """Map and upsert fetched items. A malformed item is skipped, not fatal."""
        outcome = SyncOutcome(
            integration_id=integration.id,
            provider=integration.provider,
            status=SyncStatus.SUCCEEDED,
        )
        provider = integration.provider

        for item in items:
            existing = None
            if item.external_id:
                existing = await self.task_store.get_by_external_reference(provider, item.external_id)

            try:
                fields = map_work_item(provider, item, existing, self.settings.closed_states)
            except MappingError as e:
                logger.warning(f"Skipping work item from integration {integration.id}: {e}")
                outcome.skipped_items += 1
                continue

            upsert = await self.task_store.upsert_by_external_reference(provider, item.external_id, fields)
            if upsert.result == UpsertResult.CREATED:
                outcome.created += 1
            elif upsert.result == UpsertResult.UPDATED:
                outcome.updated += 1
            else:
                outcome.unchanged += 1

        outcome.completed_at = self.clock()
        logger.info(
            f"Synced integration {integration.id} ({provider}): "
            f"{outcome.created} created, {outcome.updated} updated, "
            f"{outcome.unchanged} unchanged, {outcome.skipped_items} skipped"
        )
        return outcome

    async def sync_due(
        self,
        max_age: Optional[timedelta] = None,
        provider: Optional[str] = None,
    ) -> Dict[str, SyncOutcome]:
        """Sync every due integration and stamp the successes with one as-of time."""
        report = await self.run_sync_cycle(provider_filter=provider, max_age=max_age)
        return report.outcomes

    async def run_sync_cycle(
        self,
        provider_filter: Optional[str] = None,
        max_age: Optional[timedelta] = None,
    ) -> SyncCycleReport:
        """One sync cycle over the due set.

        Integrations run concurrently, capped per provider. Every claimed
        integration stays in flight until the batch stamp is written. A store
        error in any pass cancels the rest and propagates.
        """
        as_of = self.clock()
        due = await self.scheduler.due(max_age=max_age, provider=provider_filter, now=as_of)
        report = SyncCycleReport(as_of=as_of)
        if not due:
            logger.info("No integrations due for sync")
            return report

        logger.info(f"Starting sync cycle for {len(due)} integrations")
        claimed = [integration for integration in due if integration.id not in self._in_flight]
        claimed_ids = {integration.id for integration in claimed}
        self._in_flight.update(claimed_ids)
        try:
            tasks = [
                asyncio.ensure_future(self._run_pass(integration, as_of, stamp=False))
                for integration in claimed
            ]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            finished = {integration.id: outcome for integration, outcome in zip(claimed, results)}
            for integration in due:
                report.outcomes[integration.id] = finished.get(integration.id) or SyncOutcome.skipped(
                    integration.id, integration.provider, IN_PROGRESS_REASON
                )

            succeeded = [key for key, outcome in finished.items() if outcome.succeeded]
            if succeeded:
                await self.store.update_last_sync_bulk(succeeded, as_of)
        finally:
            self._in_flight.difference_update(claimed_ids)

        logger.info(
            f"Sync cycle finished: {report.succeeded_count} succeeded, "
            f"{report.failed_count} failed, {report.skipped_count} skipped"
        )
        return report

    async def run_periodically(self, interval_seconds: float) -> None:
        """Run sync cycles forever, ``interval_seconds`` apart, until cancelled."""
        logger.info(f"Periodic sync every {interval_seconds}s")
        while True:
            try:
                await self.run_sync_cycle()
            except Exception:
                logger.exception("Periodic sync cycle failed")
            await asyncio.sleep(interval_seconds)

    # Configuration flow

    async def _check_connection(self, adapter: BaseProviderAdapter, credentials: ProviderCredentials) -> None:
        try:
            connected = await asyncio.wait_for(
                adapter.test_connection(credentials),
                timeout=self.settings.connect_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"{adapter.provider} connection test timed out") from e
        if not connected:
            raise ProviderError(ProviderErrorKind.AUTH, f"{adapter.provider} rejected the credentials")

    async def configure_integration(
        self,
        provider: str,
        organization_url: str,
        personal_access_token: str,
        project_name: Optional[str] = None,
        is_active: bool = True,
    ) -> ProviderIntegration:
        """Validate a credential bundle and persist it as a new integration.

        Nothing is stored unless the connection test passes.

        Raises:
            ConfigurationError: unknown provider or unusable credentials
            ProviderError: the provider rejected the credentials or could not be reached
        """
        if not provider:
            raise ConfigurationError("Provider is required")
        adapter = self._adapter_for(provider)

        integration = ProviderIntegration(
            provider=provider,
            organization_url=organization_url.strip(),
            personal_access_token=personal_access_token.strip(),
            project_name=project_name or None,
            is_active=is_active,
        )
        await self._check_connection(adapter, integration.credentials())

        created = await self.store.add(integration)
        logger.info(f"Configured {provider} integration {created.id} for {created.organization_url}")
        return created

    async def get_integration(self, integration_id: str) -> ProviderIntegration:
        integration = await self.store.get_by_id(integration_id)
        if integration is None:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found")
        return integration

    async def test_integration(self, integration_id: str) -> bool:
        """Run the connection test for a stored integration without changing it."""
        integration = await self.get_integration(integration_id)
        adapter = self._adapter_for(integration.provider)
        try:
            return await asyncio.wait_for(
                adapter.test_connection(integration.credentials()),
                timeout=self.settings.connect_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"{integration.provider} connection test timed out") from e

    async def list_projects(
        self,
        provider: str,
        organization_url: str,
        personal_access_token: str,
    ) -> List[str]:
        """List projects visible to a credential bundle, for interactive setup."""
        adapter = self._adapter_for(provider)
        credentials = ProviderCredentials(
            organization_url=organization_url.strip(),
            personal_access_token=personal_access_token.strip(),
        )
        try:
            return await asyncio.wait_for(
                adapter.fetch_projects(credentials),
                timeout=self.settings.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"{provider} project listing timed out") from e

    async def update_credentials(
        self,
        integration_id: str,
        organization_url: Optional[str] = None,
        personal_access_token: Optional[str] = None,
        project_name: Optional[str] = None,
    ) -> ProviderIntegration:
        """Replace credentials after they pass the connection test.

        A successful update clears the recorded failure so the integration
        no longer needs attention.
        """
        integration = await self.get_integration(integration_id)
        adapter = self._adapter_for(integration.provider)

        changes = {
            "last_failure_at": None,
            "last_failure_kind": None,
            "last_failure_reason": None,
        }
        if organization_url is not None:
            changes["organization_url"] = organization_url.strip()
        if personal_access_token is not None:
            changes["personal_access_token"] = personal_access_token.strip()
        if project_name is not None:
            changes["project_name"] = project_name or None

        candidate = ProviderIntegration.model_validate({**integration.model_dump(), **changes})
        await self._check_connection(adapter, candidate.credentials())

        updated = await self.store.update(candidate)
        if updated is None:
            raise IntegrationNotFoundError(f"Integration {integration_id} not found")
        logger.info(f"Updated credentials of integration {integration_id}")
        return updated

    async def remove_integration(self, integration_id: str) -> bool:
        """Delete an integration. Tasks it created are kept.

        Raises:
            IntegrationBusyError: a sync pass for the integration is running
        """
        if integration_id in self._in_flight:
            raise IntegrationBusyError(f"Integration {integration_id} is syncing; try again when it finishes")
        return await self.store.delete(integration_id)
