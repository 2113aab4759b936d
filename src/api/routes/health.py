"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter

from src.api.dependencies import StorageDep
from src.core.config import settings
from src.core.timeutils import utc_now

router = APIRouter(prefix="/health", tags=["Health"])


@router.get("")
@router.get("/")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "environment": settings.app_env,
    }


@router.get("/ready")
async def readiness_check(storage: StorageDep) -> dict[str, Any]:
    """Readiness check - verifies the document store is reachable."""
    checks = {"storage": False}

    try:
        checks["storage"] = await storage.health_check()
    except Exception:
        checks["storage"] = False

    all_healthy = all(checks.values())

    return {
        "status": "ready" if all_healthy else "degraded",
        "timestamp": utc_now().isoformat(),
        "checks": checks,
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Liveness check - basic endpoint for kubernetes probes."""
    return {"status": "alive"}
