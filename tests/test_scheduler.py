"""Tests for due and recently-failed selection."""

from datetime import timedelta

import pytest

from timekeeper_sync.services.scheduler import SyncScheduler, select_due, select_recently_failed
from conftest import BASE_TIME, make_integration

NOW = BASE_TIME
HOUR = timedelta(hours=1)


class TestSelectDue:
    """Test the pure due filter."""

    def test_inactive_integrations_are_never_due(self):
        integrations = [
            make_integration(id="never", is_active=False),
            make_integration(id="stale", is_active=False, last_sync_at=NOW - timedelta(days=30)),
            make_integration(id="fresh", is_active=False, last_sync_at=NOW),
        ]

        assert select_due(integrations, HOUR, NOW) == []
        assert select_due(integrations, timedelta(0), NOW) == []

    def test_never_synced_is_always_due(self):
        integration = make_integration(id="new", last_sync_at=None)

        for max_age in (timedelta(0), HOUR, timedelta(days=3650)):
            assert select_due([integration], max_age, NOW) == [integration]

    def test_never_synced_ordered_before_oldest(self):
        a = make_integration(id="a", last_sync_at=None)
        b = make_integration(id="b", last_sync_at=NOW - timedelta(hours=2))

        due = select_due([b, a], HOUR, NOW)

        assert [i.id for i in due] == ["a", "b"]

    def test_recently_synced_is_not_due(self):
        fresh = make_integration(id="fresh", last_sync_at=NOW - timedelta(minutes=10))
        stale = make_integration(id="stale", last_sync_at=NOW - timedelta(hours=3))
        staler = make_integration(id="staler", last_sync_at=NOW - timedelta(hours=5))

        due = select_due([fresh, stale, staler], HOUR, NOW)

        assert [i.id for i in due] == ["staler", "stale"]

    def test_exactly_max_age_is_not_due(self):
        boundary = make_integration(id="edge", last_sync_at=NOW - HOUR)

        assert select_due([boundary], HOUR, NOW) == []

    def test_never_synced_ties_break_on_creation(self):
        older = make_integration(id="older", created_at=NOW - timedelta(days=2))
        newer = make_integration(id="newer", created_at=NOW - timedelta(days=1))

        assert [i.id for i in select_due([newer, older], HOUR, NOW)] == ["older", "newer"]

    def test_configuration_failure_is_not_due(self):
        misconfigured = make_integration(id="bad", last_failure_at=NOW, last_failure_kind="configuration")
        rejected = make_integration(id="auth", last_failure_at=NOW, last_failure_kind="auth")
        flaky = make_integration(id="net", last_sync_at=NOW - timedelta(hours=2), last_failure_kind="network")

        assert [i.id for i in select_due([misconfigured, rejected, flaky], HOUR, NOW)] == ["auth", "net"]


class TestSelectRecentlyFailed:
    """Test the pure recently-failed filter."""

    def test_failure_inside_window_without_later_success(self):
        failed = make_integration(
            id="failed",
            last_sync_at=NOW - timedelta(hours=5),
            last_failure_at=NOW - timedelta(hours=1),
        )
        never_synced = make_integration(id="never", last_failure_at=NOW - timedelta(minutes=5))

        result = select_recently_failed([failed, never_synced], timedelta(days=1), NOW)

        assert [i.id for i in result] == ["never", "failed"]

    def test_success_after_failure_clears_it(self):
        recovered = make_integration(
            id="recovered",
            last_failure_at=NOW - timedelta(hours=2),
            last_sync_at=NOW - timedelta(hours=1),
        )

        assert select_recently_failed([recovered], timedelta(days=1), NOW) == []

    def test_failure_outside_window_is_ignored(self):
        old = make_integration(id="old", last_failure_at=NOW - timedelta(days=2))

        assert select_recently_failed([old], timedelta(days=1), NOW) == []

    def test_never_failed_is_ignored(self):
        assert select_recently_failed([make_integration(id="ok")], timedelta(days=1), NOW) == []


class TestSyncScheduler:
    """Test the scheduler reading through the store."""

    @pytest.mark.asyncio
    async def test_due_reads_active_integrations(self, store):
        a = await store.add(make_integration())
        b = await store.add(make_integration(last_sync_at=NOW - timedelta(hours=2)))
        await store.add(make_integration(last_sync_at=NOW - timedelta(minutes=5)))
        inactive = await store.add(make_integration(is_active=False))

        due = await SyncScheduler(store).due(max_age=HOUR, now=NOW)

        assert [i.id for i in due] == [a.id, b.id]
        assert inactive.id not in [i.id for i in due]

    @pytest.mark.asyncio
    async def test_due_filters_by_provider(self, store):
        await store.add(make_integration("GitHub"))
        azure = await store.add(make_integration("AzureDevOps"))

        due = await SyncScheduler(store).due(max_age=HOUR, provider="AzureDevOps", now=NOW)

        assert [i.id for i in due] == [azure.id]

    @pytest.mark.asyncio
    async def test_recently_failed_reads_recorded_failures(self, store):
        integration = await store.add(make_integration())
        await store.record_failure(integration.id, NOW - timedelta(minutes=30), "auth", "bad token")

        failed = await SyncScheduler(store).recently_failed(now=NOW)

        assert [i.id for i in failed] == [integration.id]
        assert failed[0].needs_attention
