"""Integration management API endpoints."""

from datetime import timedelta
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from timekeeper_sync.api.dependencies import get_manager, http_error
from timekeeper_sync.integrations.base import IntegrationError
from timekeeper_sync.models import SyncStatus
from timekeeper_sync.schemas.integration import (
    BulkDeactivateRequest,
    BulkDeactivateResponse,
    ConnectionTestResponse,
    CredentialsUpdate,
    IntegrationCreate,
    IntegrationListResponse,
    IntegrationResponse,
    ProjectsRequest,
    StatsResponse,
    SyncCycleRequest,
    SyncResponse,
)
from timekeeper_sync.services.integration_manager import IntegrationManager
from timekeeper_sync.utils.time import utcnow

logger = logging.getLogger(__name__)
router = APIRouter()


def _integration_list(integrations) -> IntegrationListResponse:
    items = [IntegrationResponse.from_integration(i) for i in integrations]
    return IntegrationListResponse(items=items, total=len(items))


@router.get("/", response_model=IntegrationListResponse)
async def list_integrations(
    provider: Optional[str] = None,
    active_only: bool = False,
    manager: IntegrationManager = Depends(get_manager),
):
    """List configured integrations."""
    if active_only:
        integrations = await manager.store.get_all_active(provider)
    elif provider:
        integrations = await manager.store.get_by_provider(provider)
    else:
        integrations = await manager.store.get_all()
    return _integration_list(integrations)


@router.post("/", response_model=IntegrationResponse, status_code=status.HTTP_201_CREATED)
async def create_integration(
    request: IntegrationCreate,
    manager: IntegrationManager = Depends(get_manager),
):
    """Configure a new integration. Its credentials must pass a connection test first."""
    try:
        integration = await manager.configure_integration(
            provider=request.provider,
            organization_url=request.organization_url,
            personal_access_token=request.personal_access_token,
            project_name=request.project_name,
            is_active=request.is_active,
        )
    except IntegrationError as e:
        raise http_error(e)
    return IntegrationResponse.from_integration(integration)


@router.post("/sync", response_model=SyncResponse)
async def run_sync_cycle(
    request: Optional[SyncCycleRequest] = None,
    manager: IntegrationManager = Depends(get_manager),
):
    """Sync every integration that is due."""
    request = request or SyncCycleRequest()
    max_age = timedelta(minutes=request.max_age_minutes) if request.max_age_minutes is not None else None

    report = await manager.run_sync_cycle(provider_filter=request.provider, max_age=max_age)
    return SyncResponse(**report.summary())


@router.get("/due", response_model=IntegrationListResponse)
async def list_due_integrations(
    provider: Optional[str] = None,
    max_age_minutes: Optional[int] = Query(None, ge=0),
    manager: IntegrationManager = Depends(get_manager),
):
    """Integrations a sync cycle would pick up now, in processing order."""
    max_age = timedelta(minutes=max_age_minutes) if max_age_minutes is not None else None
    return _integration_list(await manager.scheduler.due(max_age=max_age, provider=provider))


@router.get("/recently-failed", response_model=IntegrationListResponse)
async def list_recently_failed(
    window_hours: Optional[int] = Query(None, ge=1),
    manager: IntegrationManager = Depends(get_manager),
):
    """Integrations whose last sync attempt failed and was not followed by a success."""
    window = timedelta(hours=window_hours) if window_hours is not None else None
    return _integration_list(await manager.scheduler.recently_failed(window=window))


@router.get("/stats", response_model=StatsResponse)
async def integration_stats(manager: IntegrationManager = Depends(get_manager)):
    """Active integration counts per provider."""
    counts = await manager.store.get_active_count_by_all_providers()
    integrations = await manager.store.get_all_active()
    return StatsResponse(
        active_by_provider=counts,
        total_active=sum(counts.values()),
        needs_attention=sum(1 for i in integrations if i.needs_attention),
        in_flight=len(manager.in_flight),
    )


@router.post("/deactivate", response_model=BulkDeactivateResponse)
async def deactivate_integrations(
    request: BulkDeactivateRequest,
    manager: IntegrationManager = Depends(get_manager),
):
    """Deactivate all integrations, or all of one provider."""
    if request.provider:
        count = await manager.store.deactivate_by_provider(request.provider)
    else:
        count = await manager.store.deactivate_all()
    return BulkDeactivateResponse(deactivated=count)


@router.post("/projects", response_model=List[str])
async def list_projects(
    request: ProjectsRequest,
    manager: IntegrationManager = Depends(get_manager),
):
    """List projects visible to a credential bundle, before configuring it."""
    try:
        return await manager.list_projects(
            request.provider,
            request.organization_url,
            request.personal_access_token,
        )
    except IntegrationError as e:
        raise http_error(e)


@router.get("/{integration_id}", response_model=IntegrationResponse)
async def get_integration(
    integration_id: str,
    manager: IntegrationManager = Depends(get_manager),
):
    """Get integration details."""
    try:
        integration = await manager.get_integration(integration_id)
    except IntegrationError as e:
        raise http_error(e)
    return IntegrationResponse.from_integration(integration)


@router.delete("/{integration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_integration(
    integration_id: str,
    manager: IntegrationManager = Depends(get_manager),
):
    """Delete an integration. Refused while it is syncing."""
    try:
        removed = await manager.remove_integration(integration_id)
    except IntegrationError as e:
        raise http_error(e)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Integration {integration_id} not found",
        )


@router.put("/{integration_id}/credentials", response_model=IntegrationResponse)
async def update_credentials(
    integration_id: str,
    request: CredentialsUpdate,
    manager: IntegrationManager = Depends(get_manager),
):
    """Replace credentials. The new bundle must pass a connection test."""
    try:
        integration = await manager.update_credentials(
            integration_id,
            organization_url=request.organization_url,
            personal_access_token=request.personal_access_token,
            project_name=request.project_name,
        )
    except IntegrationError as e:
        raise http_error(e)
    return IntegrationResponse.from_integration(integration)


@router.post("/{integration_id}/activate", response_model=IntegrationResponse)
async def activate_integration(
    integration_id: str,
    manager: IntegrationManager = Depends(get_manager),
):
    if not await manager.store.activate(integration_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Integration {integration_id} not found")
    return IntegrationResponse.from_integration(await manager.get_integration(integration_id))


@router.post("/{integration_id}/deactivate", response_model=IntegrationResponse)
async def deactivate_integration(
    integration_id: str,
    manager: IntegrationManager = Depends(get_manager),
):
    if not await manager.store.deactivate(integration_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Integration {integration_id} not found")
    return IntegrationResponse.from_integration(await manager.get_integration(integration_id))


@router.post("/{integration_id}/test", response_model=ConnectionTestResponse)
async def test_integration_connection(
    integration_id: str,
    manager: IntegrationManager = Depends(get_manager),
):
    """Test the connection of a stored integration."""
    try:
        is_connected = await manager.test_integration(integration_id)
    except IntegrationError as e:
        raise http_error(e)

    return ConnectionTestResponse(
        is_connected=is_connected,
        message="Connection successful" if is_connected else "Credentials rejected by provider",
        tested_at=utcnow(),
    )


@router.post("/{integration_id}/sync", response_model=SyncResponse)
async def sync_integration(
    integration_id: str,
    manager: IntegrationManager = Depends(get_manager),
):
    """Sync one integration now, whether or not it is due."""
    try:
        integration = await manager.get_integration(integration_id)
    except IntegrationError as e:
        raise http_error(e)

    outcome = await manager.sync_one(integration)
    return SyncResponse(
        as_of=outcome.completed_at,
        succeeded=int(outcome.status == SyncStatus.SUCCEEDED),
        failed=int(outcome.status == SyncStatus.FAILED),
        skipped=int(outcome.status == SyncStatus.SKIPPED),
        integrations={integration_id: outcome.summary()},
    )
