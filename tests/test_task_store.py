"""Tests for the local task store."""

import pytest

from timekeeper_sync.models import Priority, TaskFields, TaskStatus, UpsertResult


@pytest.mark.asyncio
async def test_upsert_creates_task(task_store):
    fields = TaskFields(
        title="Fix login",
        status=TaskStatus.PENDING,
        priority=Priority.HIGH,
        estimated_time_minutes=120,
        external_url="https://github.com/acme/app/issues/1",
        external_state="open",
    )

    upsert = await task_store.upsert_by_external_reference("GitHub", "1", fields)

    assert upsert.result == UpsertResult.CREATED
    task = await task_store.get_by_external_reference("GitHub", "1")
    assert task.id == upsert.task_id
    assert task.title == "Fix login"
    assert task.status == TaskStatus.PENDING
    assert task.priority == Priority.HIGH
    assert task.estimated_time_minutes == 120
    assert task.external_state == "open"


@pytest.mark.asyncio
async def test_identical_upsert_is_a_no_op(task_store):
    fields = TaskFields(title="Fix login", status=TaskStatus.PENDING, external_state="open")

    first = await task_store.upsert_by_external_reference("GitHub", "1", fields)
    before = await task_store.get_by_external_reference("GitHub", "1")
    second = await task_store.upsert_by_external_reference("GitHub", "1", fields)
    after = await task_store.get_by_external_reference("GitHub", "1")

    assert second.result == UpsertResult.UNCHANGED
    assert second.task_id == first.task_id
    assert after == before


@pytest.mark.asyncio
async def test_upsert_updates_changed_fields_only(task_store):
    await task_store.upsert_by_external_reference(
        "GitHub", "1", TaskFields(title="Old", priority=Priority.HIGH, status=TaskStatus.PENDING)
    )

    upsert = await task_store.upsert_by_external_reference("GitHub", "1", TaskFields(title="New"))

    assert upsert.result == UpsertResult.UPDATED
    task = await task_store.get_by_external_reference("GitHub", "1")
    assert task.title == "New"
    assert task.priority == Priority.HIGH
    assert task.status == TaskStatus.PENDING


@pytest.mark.asyncio
async def test_references_are_scoped_by_provider(task_store):
    await task_store.upsert_by_external_reference("GitHub", "7", TaskFields(title="Issue 7"))
    await task_store.upsert_by_external_reference("AzureDevOps", "7", TaskFields(title="Work item 7"))

    assert await task_store.count() == 2
    assert [t.title for t in await task_store.list_tasks("AzureDevOps")] == ["Work item 7"]
    assert await task_store.get_by_external_reference("Jira", "7") is None
