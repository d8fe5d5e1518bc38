"""Pytest configuration and fixtures for timekeeper sync tests."""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import pytest
import pytest_asyncio

from timekeeper_sync.core.config import Settings
from timekeeper_sync.core.database import Database
from timekeeper_sync.integrations.base import BaseProviderAdapter
from timekeeper_sync.models import ProviderIntegration, RemoteWorkItem
from timekeeper_sync.services import IntegrationManager, IntegrationRepository, TaskRepository

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


class FakeAdapter(BaseProviderAdapter):
    """In-memory adapter that records its calls."""

    def __init__(
        self,
        provider: str = "GitHub",
        items: Optional[List[RemoteWorkItem]] = None,
        connected: bool = True,
        connect_error: Optional[Exception] = None,
        fetch_error: Optional[Exception] = None,
        connect_delay: float = 0.0,
        fetch_delay: float = 0.0,
        projects: Optional[List[str]] = None,
    ):
        # No HTTP client: nothing here touches the network
        self.provider = provider
        self.items = list(items or [])
        self.connected = connected
        self.connect_error = connect_error
        self.fetch_error = fetch_error
        self.connect_delay = connect_delay
        self.fetch_delay = fetch_delay
        self.projects = list(projects or [])
        self.test_calls = 0
        self.fetch_calls = 0
        self.active = 0
        self.max_active = 0

    async def aclose(self) -> None:
        pass

    def auth_headers(self, credentials):
        return {}

    async def test_connection(self, credentials) -> bool:
        self.test_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.connect_delay:
                await asyncio.sleep(self.connect_delay)
            if self.connect_error:
                raise self.connect_error
            return self.connected
        finally:
            self.active -= 1

    async def fetch_work_items(self, credentials, project_filter=None):
        self.fetch_calls += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fetch_error:
            raise self.fetch_error
        for item in self.items:
            yield item

    async def fetch_projects(self, credentials) -> List[str]:
        return list(self.projects)


class TickingClock:
    """Clock that advances one second on every call."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def make_integration(provider: str = "GitHub", **kwargs) -> ProviderIntegration:
    data = {
        "provider": provider,
        "organization_url": "https://github.com/acme" if provider == "GitHub" else "https://dev.azure.com/acme",
        "personal_access_token": "secret-token",
    }
    data.update(kwargs)
    return ProviderIntegration(**data)


def work_item(external_id: str = "101", state: str = "open", **kwargs) -> RemoteWorkItem:
    data = {
        "external_id": external_id,
        "title": f"Work item {external_id}",
        "description": "Details",
        "state": state,
        "url": f"https://github.com/acme/app/issues/{external_id}",
        "work_item_type": "Issue",
    }
    data.update(kwargs)
    return RemoteWorkItem(**data)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings backed by a throwaway sqlite file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'timekeeper-test.db'}",
        encryption_key=None,
        connect_timeout_seconds=0.5,
        fetch_timeout_seconds=0.5,
        max_work_items=50,
    )


@pytest_asyncio.fixture
async def database(settings) -> Database:
    """Connected database with all tables created."""
    db = Database(settings.database_url)
    await db.connect()
    yield db
    await db.disconnect()


@pytest_asyncio.fixture
async def store(database, settings) -> IntegrationRepository:
    return IntegrationRepository(database, settings)


@pytest_asyncio.fixture
async def task_store(database) -> TaskRepository:
    return TaskRepository(database)


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def make_manager(store, task_store, settings, clock):
    """Factory for managers over the test stores with the given adapters."""

    def _make(*adapters: FakeAdapter, **kwargs) -> IntegrationManager:
        return IntegrationManager(
            store=store,
            task_store=task_store,
            adapters={adapter.provider: adapter for adapter in adapters},
            settings=kwargs.pop("settings", settings),
            clock=kwargs.pop("clock", clock),
            **kwargs,
        )

    return _make
