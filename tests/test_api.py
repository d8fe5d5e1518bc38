"""Tests for the HTTP API."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from timekeeper_sync.integrations.base import (
    ConfigurationError,
    IntegrationBusyError,
    IntegrationNotFoundError,
    ProviderError,
    ProviderErrorKind,
    ProviderTimeoutError,
)
from timekeeper_sync.main import create_app
from timekeeper_sync.models import FailureKind, SyncCycleReport, SyncOutcome, SyncStatus
from conftest import BASE_TIME, make_integration

PREFIX = "/api/v1/integrations"


def stored(integration_id="int-1", **kwargs):
    return make_integration(id=integration_id, created_at=BASE_TIME, **kwargs)


@pytest.fixture
def manager():
    manager = MagicMock()
    manager.adapters = {"AzureDevOps": object(), "GitHub": object()}
    manager.in_flight = set()
    manager.store = AsyncMock()
    manager.scheduler = AsyncMock()
    for name in (
        "configure_integration",
        "get_integration",
        "test_integration",
        "list_projects",
        "update_credentials",
        "remove_integration",
        "sync_one",
        "run_sync_cycle",
    ):
        setattr(manager, name, AsyncMock())
    return manager


@pytest.fixture
def client(manager):
    app = create_app()
    app.state.manager = manager
    return TestClient(app)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_detailed_health_without_database(client):
    body = client.get("/health/detailed").json()

    assert body["status"] == "degraded"
    assert body["checks"]["database"]["status"] == "disconnected"
    assert body["checks"]["sync"]["providers"] == ["AzureDevOps", "GitHub"]


def test_missing_manager_is_unavailable():
    client = TestClient(create_app())

    assert client.get(f"{PREFIX}/").status_code == 503


class TestIntegrationEndpoints:
    """Test integration CRUD endpoints."""

    def test_list_never_returns_tokens(self, client, manager):
        manager.store.get_all.return_value = [stored()]

        response = client.get(f"{PREFIX}/")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert "personal_access_token" not in body["items"][0]
        assert "secret-token" not in response.text

    def test_list_active_by_provider(self, client, manager):
        manager.store.get_all_active.return_value = []

        client.get(f"{PREFIX}/", params={"provider": "GitHub", "active_only": True})

        manager.store.get_all_active.assert_awaited_once_with("GitHub")

    def test_create(self, client, manager):
        manager.configure_integration.return_value = stored()

        response = client.post(f"{PREFIX}/", json={
            "provider": "GitHub",
            "organization_url": "https://github.com/acme",
            "personal_access_token": "ghp_test",
        })

        assert response.status_code == 201
        assert response.json()["id"] == "int-1"
        assert manager.configure_integration.await_args.kwargs["personal_access_token"] == "ghp_test"

    @pytest.mark.parametrize("error,status_code", [
        (ConfigurationError("Unsupported provider: 'Jira'"), 400),
        (ProviderError(ProviderErrorKind.AUTH, "rejected"), 400),
        (ProviderError(ProviderErrorKind.RATE_LIMITED, "slow down"), 429),
        (ProviderError(ProviderErrorKind.NETWORK, "unreachable"), 502),
        (ProviderTimeoutError("timed out"), 504),
    ])
    def test_create_errors(self, client, manager, error, status_code):
        manager.configure_integration.side_effect = error

        response = client.post(f"{PREFIX}/", json={
            "provider": "GitHub",
            "organization_url": "https://github.com/acme",
            "personal_access_token": "ghp_test",
        })

        assert response.status_code == status_code

    def test_create_requires_token(self, client, manager):
        response = client.post(f"{PREFIX}/", json={
            "provider": "GitHub",
            "organization_url": "https://github.com/acme",
            "personal_access_token": "",
        })

        assert response.status_code == 422
        manager.configure_integration.assert_not_awaited()

    def test_get_missing(self, client, manager):
        manager.get_integration.side_effect = IntegrationNotFoundError("Integration nope not found")

        assert client.get(f"{PREFIX}/nope").status_code == 404

    def test_get_reports_needs_attention(self, client, manager):
        manager.get_integration.return_value = stored(
            last_failure_at=BASE_TIME, last_failure_kind="auth", last_failure_reason="rejected"
        )

        body = client.get(f"{PREFIX}/int-1").json()

        assert body["needs_attention"] is True
        assert body["last_failure_kind"] == "auth"

    def test_delete(self, client, manager):
        manager.remove_integration.return_value = True
        assert client.delete(f"{PREFIX}/int-1").status_code == 204

        manager.remove_integration.return_value = False
        assert client.delete(f"{PREFIX}/int-1").status_code == 404

    def test_delete_while_syncing(self, client, manager):
        manager.remove_integration.side_effect = IntegrationBusyError("Integration int-1 is syncing")

        assert client.delete(f"{PREFIX}/int-1").status_code == 409

    def test_update_credentials(self, client, manager):
        manager.update_credentials.return_value = stored(personal_access_token=SecretStr("fresh"))

        response = client.put(f"{PREFIX}/int-1/credentials", json={"personal_access_token": "fresh"})

        assert response.status_code == 200
        manager.update_credentials.assert_awaited_once_with(
            "int-1", organization_url=None, personal_access_token="fresh", project_name=None
        )

    def test_activate_missing(self, client, manager):
        manager.store.activate.return_value = False

        assert client.post(f"{PREFIX}/nope/activate").status_code == 404

    def test_deactivate(self, client, manager):
        manager.store.deactivate.return_value = True
        manager.get_integration.return_value = stored(is_active=False)

        response = client.post(f"{PREFIX}/int-1/deactivate")

        assert response.status_code == 200
        assert response.json()["is_active"] is False

    def test_bulk_deactivate(self, client, manager):
        manager.store.deactivate_by_provider.return_value = 3

        response = client.post(f"{PREFIX}/deactivate", json={"provider": "GitHub"})

        assert response.json() == {"deactivated": 3}
        manager.store.deactivate_all.assert_not_awaited()

    def test_connection_test(self, client, manager):
        manager.test_integration.return_value = False

        body = client.post(f"{PREFIX}/int-1/test").json()

        assert body["is_connected"] is False

    def test_list_projects(self, client, manager):
        manager.list_projects.return_value = ["Web", "Mobile"]

        response = client.post(f"{PREFIX}/projects", json={
            "provider": "AzureDevOps",
            "organization_url": "https://dev.azure.com/acme",
            "personal_access_token": "pat",
        })

        assert response.json() == ["Web", "Mobile"]


class TestSyncEndpoints:
    """Test sync triggers and scheduling views."""

    def test_sync_cycle(self, client, manager):
        manager.run_sync_cycle.return_value = SyncCycleReport(
            as_of=BASE_TIME,
            outcomes={
                "a": SyncOutcome(integration_id="a", provider="GitHub", status=SyncStatus.SUCCEEDED, created=2),
                "b": SyncOutcome.failed("b", "AzureDevOps", FailureKind.TIMEOUT, "timeout"),
            },
        )

        response = client.post(f"{PREFIX}/sync", json={"provider": "GitHub", "max_age_minutes": 30})

        assert response.status_code == 200
        body = response.json()
        assert (body["succeeded"], body["failed"], body["skipped"]) == (1, 1, 0)
        assert body["integrations"]["a"]["created"] == 2
        assert body["integrations"]["b"]["reason"] == "timeout"
        manager.run_sync_cycle.assert_awaited_once_with(provider_filter="GitHub", max_age=timedelta(minutes=30))

    def test_sync_cycle_without_body(self, client, manager):
        manager.run_sync_cycle.return_value = SyncCycleReport(as_of=BASE_TIME)

        response = client.post(f"{PREFIX}/sync")

        assert response.status_code == 200
        manager.run_sync_cycle.assert_awaited_once_with(provider_filter=None, max_age=None)

    def test_sync_one(self, client, manager):
        manager.get_integration.return_value = stored()
        manager.sync_one.return_value = SyncOutcome.skipped("int-1", "GitHub", "sync already in progress")

        body = client.post(f"{PREFIX}/int-1/sync").json()

        assert body["skipped"] == 1
        assert body["integrations"]["int-1"]["reason"] == "sync already in progress"

    def test_sync_one_missing(self, client, manager):
        manager.get_integration.side_effect = IntegrationNotFoundError("missing")

        assert client.post(f"{PREFIX}/missing/sync").status_code == 404
        manager.sync_one.assert_not_awaited()

    def test_due(self, client, manager):
        manager.scheduler.due.return_value = [stored("a"), stored("b")]

        body = client.get(f"{PREFIX}/due", params={"max_age_minutes": 15}).json()

        assert [i["id"] for i in body["items"]] == ["a", "b"]
        manager.scheduler.due.assert_awaited_once_with(max_age=timedelta(minutes=15), provider=None)

    def test_recently_failed(self, client, manager):
        manager.scheduler.recently_failed.return_value = []

        client.get(f"{PREFIX}/recently-failed", params={"window_hours": 6})

        manager.scheduler.recently_failed.assert_awaited_once_with(window=timedelta(hours=6))

    def test_stats(self, client, manager):
        manager.store.get_active_count_by_all_providers.return_value = {"GitHub": 2, "AzureDevOps": 1}
        manager.store.get_all_active.return_value = [
            stored("a", last_failure_kind="configuration"),
            stored("b"),
            stored("c", last_failure_kind="timeout"),
        ]
        manager.in_flight = {"a"}

        body = client.get(f"{PREFIX}/stats").json()

        assert body == {
            "active_by_provider": {"GitHub": 2, "AzureDevOps": 1},
            "total_active": 3,
            "needs_attention": 1,
            "in_flight": 1,
        }
