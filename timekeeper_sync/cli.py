"""
Command line interface for provider integrations and sync.
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Coroutine, Optional

import click
import httpx

from timekeeper_sync.core.config import Settings, get_settings
from timekeeper_sync.core.database import Database
from timekeeper_sync.integrations import AdapterRegistry, IntegrationError
from timekeeper_sync.models import ProviderIntegration, SyncStatus
from timekeeper_sync.services import IntegrationManager, IntegrationRepository, TaskRepository
from timekeeper_sync.utils.logging import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_manager(settings: Settings) -> AsyncIterator[IntegrationManager]:
    """Connect the database and wire up a manager for one command."""
    db = Database(settings.database_url)
    await db.connect()
    http_client = httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        headers={"User-Agent": f"{settings.service_name}/1.0"},
    )
    try:
        yield IntegrationManager(
            store=IntegrationRepository(db, settings),
            task_store=TaskRepository(db),
            adapters=AdapterRegistry.create_all(http_client=http_client, settings=settings),
            settings=settings,
        )
    finally:
        await http_client.aclose()
        await db.disconnect()


def run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run a coroutine to completion. Ctrl-C cancels it and exits with 130."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        click.echo("Cancelled.", err=True)
        sys.exit(130)
    except IntegrationError as e:
        raise click.ClickException(str(e)) from e


def format_integration_row(integration: ProviderIntegration) -> str:
    state = "active" if integration.is_active else "inactive"
    last_sync = integration.last_sync_at.isoformat(timespec="seconds") if integration.last_sync_at else "never"
    line = f"{integration.id} {integration.provider:<12} {state:<8} last sync: {last_sync}  {integration.organization_url}"
    if integration.project_name:
        line += f" [{integration.project_name}]"
    if integration.needs_attention:
        line += "  (needs attention)"
    return line


def echo_integrations(integrations: list, empty_message: str) -> None:
    if not integrations:
        click.echo(empty_message)
        return
    for integration in integrations:
        click.echo(format_integration_row(integration))


@click.group()
@click.option("--database-url", help="Database URL (defaults to TIMEKEEPER_DATABASE_URL)")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], verbose: bool) -> None:
    """Timekeeper provider integrations and work item sync."""
    updates: dict = {"log_format": "text", "log_level": "DEBUG" if verbose else "WARNING"}
    if database_url:
        updates["database_url"] = database_url
    settings = get_settings().model_copy(update=updates)
    setup_logging(settings)
    ctx.obj = settings


@cli.command()
@click.option("--provider", help="Only sync integrations of this provider")
@click.option("--max-age-minutes", type=click.IntRange(min=0), help="Sync integrations older than this")
@click.option("--json", "json_format", is_flag=True, help="Output as JSON")
@click.pass_obj
def sync(settings: Settings, provider: Optional[str], max_age_minutes: Optional[int], json_format: bool) -> None:
    """Sync every integration that is due."""
    max_age = timedelta(minutes=max_age_minutes) if max_age_minutes is not None else None

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.run_sync_cycle(provider_filter=provider, max_age=max_age)

    report = run_async(_run())

    if json_format:
        click.echo(json.dumps(report.summary(), indent=2))
        return

    if not report.outcomes:
        click.echo("No integrations due for sync.")
        return

    for integration_id, outcome in report.outcomes.items():
        if outcome.status == SyncStatus.SUCCEEDED:
            detail = (
                f"{outcome.created} created, {outcome.updated} updated, "
                f"{outcome.unchanged} unchanged, {outcome.skipped_items} skipped"
            )
        else:
            detail = outcome.reason or ""
        click.echo(f"{integration_id} {outcome.provider:<12} {outcome.status.value:<9} {detail}")

    click.echo(
        f"Synced {report.succeeded_count} integrations "
        f"({report.failed_count} failed, {report.skipped_count} skipped)"
    )


@cli.group()
def integrations() -> None:
    """Manage provider integrations."""
    pass


@integrations.command("list")
@click.option("--provider", help="Filter by provider")
@click.option("--active-only", is_flag=True, help="Show only active integrations")
@click.pass_obj
def list_integrations(settings: Settings, provider: Optional[str], active_only: bool) -> None:
    """List configured integrations."""

    async def _run():
        async with open_manager(settings) as manager:
            if active_only:
                return await manager.store.get_all_active(provider)
            if provider:
                return await manager.store.get_by_provider(provider)
            return await manager.store.get_all()

    echo_integrations(run_async(_run()), "No integrations configured.")


@integrations.command("add")
@click.argument("provider", type=click.Choice(AdapterRegistry.list_providers()))
@click.argument("organization_url")
@click.option("--token", prompt=True, hide_input=True, help="Personal access token")
@click.option("--project", help="Only sync this project or repository")
@click.pass_obj
def add_integration(
    settings: Settings,
    provider: str,
    organization_url: str,
    token: str,
    project: Optional[str],
) -> None:
    """Test credentials and save a new integration."""

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.configure_integration(provider, organization_url, token, project)

    integration = run_async(_run())
    click.echo(f"Added {integration.provider} integration {integration.id}")


@integrations.command("remove")
@click.argument("integration_id")
@click.pass_obj
def remove_integration(settings: Settings, integration_id: str) -> None:
    """Delete an integration. Its synced tasks are kept."""

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.remove_integration(integration_id)

    if not run_async(_run()):
        raise click.ClickException(f"Integration {integration_id} not found")
    click.echo(f"Removed integration {integration_id}")


@integrations.command("test")
@click.argument("integration_id")
@click.pass_obj
def test_integration(settings: Settings, integration_id: str) -> None:
    """Test the connection of an integration."""

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.test_integration(integration_id)

    if run_async(_run()):
        click.echo("Connection successful")
    else:
        click.echo("Connection failed: credentials rejected", err=True)
        sys.exit(1)


@integrations.command("activate")
@click.argument("integration_id")
@click.pass_obj
def activate_integration(settings: Settings, integration_id: str) -> None:
    """Include an integration in sync cycles again."""

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.store.activate(integration_id)

    if not run_async(_run()):
        raise click.ClickException(f"Integration {integration_id} not found")
    click.echo(f"Activated integration {integration_id}")


@integrations.command("deactivate")
@click.argument("integration_id", required=False)
@click.option("--provider", help="Deactivate every integration of this provider")
@click.option("--all", "all_integrations", is_flag=True, help="Deactivate every integration")
@click.pass_obj
def deactivate_integration(
    settings: Settings,
    integration_id: Optional[str],
    provider: Optional[str],
    all_integrations: bool,
) -> None:
    """Exclude one integration, a provider's, or all from sync cycles."""
    if sum(bool(x) for x in (integration_id, provider, all_integrations)) != 1:
        raise click.UsageError("Give exactly one of INTEGRATION_ID, --provider or --all")

    async def _run():
        async with open_manager(settings) as manager:
            if integration_id:
                return int(await manager.store.deactivate(integration_id))
            if provider:
                return await manager.store.deactivate_by_provider(provider)
            return await manager.store.deactivate_all()

    count = run_async(_run())
    if integration_id and not count:
        raise click.ClickException(f"Integration {integration_id} not found")
    click.echo(f"Deactivated {count} integration(s)")


@integrations.command("due")
@click.option("--provider", help="Filter by provider")
@click.option("--max-age-minutes", type=click.IntRange(min=0), help="Override the default max age")
@click.pass_obj
def due_integrations(settings: Settings, provider: Optional[str], max_age_minutes: Optional[int]) -> None:
    """Show integrations due for sync, in the order they would run."""
    max_age = timedelta(minutes=max_age_minutes) if max_age_minutes is not None else None

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.scheduler.due(max_age=max_age, provider=provider)

    echo_integrations(run_async(_run()), "No integrations due for sync.")


@integrations.command("failed")
@click.option("--window-hours", type=click.IntRange(min=1), help="Look back this many hours")
@click.pass_obj
def failed_integrations(settings: Settings, window_hours: Optional[int]) -> None:
    """Show integrations whose last sync failed."""
    window = timedelta(hours=window_hours) if window_hours is not None else None

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.scheduler.recently_failed(window=window)

    failed = run_async(_run())
    if not failed:
        click.echo("No recent failures.")
        return
    for integration in failed:
        click.echo(format_integration_row(integration))
        click.echo(f"    {integration.last_failure_kind}: {integration.last_failure_reason}")


@cli.command()
@click.argument("provider", type=click.Choice(AdapterRegistry.list_providers()))
@click.argument("organization_url")
@click.option("--token", prompt=True, hide_input=True, help="Personal access token")
@click.pass_obj
def projects(settings: Settings, provider: str, organization_url: str, token: str) -> None:
    """List projects visible to a token."""

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.list_projects(provider, organization_url, token)

    names = run_async(_run())
    if not names:
        click.echo("No projects found.")
    for name in names:
        click.echo(name)


@cli.command()
@click.option("--provider", help="Only tasks synced from this provider")
@click.pass_obj
def tasks(settings: Settings, provider: Optional[str]) -> None:
    """List local tasks."""

    async def _run():
        async with open_manager(settings) as manager:
            return await manager.task_store.list_tasks(provider)

    task_list = run_async(_run())
    if not task_list:
        click.echo("No tasks found.")
        return
    for task in task_list:
        source = f"{task.external_provider}:{task.external_id}" if task.external_provider else "local"
        click.echo(f"{task.id} {task.status.value:<11} {task.priority.value:<8} {task.title} ({source})")


@cli.command()
def serve() -> None:
    """Run the HTTP API."""
    from timekeeper_sync.main import run

    run()


if __name__ == "__main__":
    cli()
