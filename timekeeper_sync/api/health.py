"""Health check endpoints."""

from fastapi import APIRouter, Request

from timekeeper_sync.core.config import get_settings
from timekeeper_sync.utils.time import utcnow

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request):
    """Detailed health check with database connectivity and sync activity."""
    health_status = {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
        "checks": {
            "database": {"status": "unknown"},
            "sync": {"status": "unknown"},
        }
    }

    database = getattr(request.app.state, "database", None)
    try:
        if database is not None and database.is_connected:
            await database.ping()
            health_status["checks"]["database"]["status"] = "healthy"
        else:
            health_status["checks"]["database"]["status"] = "disconnected"
            health_status["status"] = "degraded"
    except Exception as e:
        health_status["checks"]["database"]["status"] = "unhealthy"
        health_status["checks"]["database"]["error"] = str(e)
        health_status["status"] = "unhealthy"

    manager = getattr(request.app.state, "manager", None)
    if manager is not None:
        health_status["checks"]["sync"] = {
            "status": "healthy",
            "providers": sorted(manager.adapters),
            "in_flight": len(manager.in_flight),
        }
    else:
        health_status["checks"]["sync"]["status"] = "not_configured"
        health_status["status"] = "degraded" if health_status["status"] == "healthy" else health_status["status"]

    return health_status
