"""API dependencies."""

from fastapi import HTTPException, Request, status
import logging

from timekeeper_sync.integrations.base import (
    ConfigurationError,
    IntegrationError,
    IntegrationBusyError,
    IntegrationNotFoundError,
    ProviderError,
    ProviderErrorKind,
    ProviderTimeoutError,
)
from timekeeper_sync.services.integration_manager import IntegrationManager

logger = logging.getLogger(__name__)


def get_manager(request: Request) -> IntegrationManager:
    """Get the integration manager wired up by the application lifespan."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return manager


def http_error(error: IntegrationError) -> HTTPException:
    """Translate an integration error into an HTTP error response."""
    if isinstance(error, IntegrationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, IntegrationBusyError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, ProviderTimeoutError):
        return HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(error))
    if isinstance(error, ProviderError):
        if error.kind == ProviderErrorKind.AUTH:
            return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
        if error.kind == ProviderErrorKind.RATE_LIMITED:
            return HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(error))
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(error))

    logger.error(f"Unhandled integration error: {error}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
