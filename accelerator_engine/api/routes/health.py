from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from accelerator_engine.core.config import get_settings
from accelerator_engine.db import ping_database, ping_redis

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Liveness check. Returns 503 while the app is draining."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "accelerator-engine"},
        )
    return {"status": "healthy", "service": "accelerator-engine"}


@router.get("/ready")
async def readiness_check():
    """Readiness check: verifies the configured session store is reachable."""
    settings = get_settings()
    checks = {"redis": await ping_redis()}
    if settings.session_store == "sql":
        checks["database"] = await ping_database()

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
