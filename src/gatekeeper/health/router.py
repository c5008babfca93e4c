"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends

from gatekeeper.config import get_settings
from gatekeeper.dependencies import Services, get_services
from gatekeeper.redis_client import get_redis_or_none

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe — returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(services: Services = Depends(get_services)) -> dict[str, object]:  # noqa: B008
    """Readiness probe — storage, rank definitions and Redis."""
    checks: dict[str, object] = {}

    try:
        await services.storage.get_player_rank("00000000-0000-0000-0000-000000000000")
        checks["storage"] = "ok"
    except Exception as exc:
        checks["storage"] = f"error: {exc}"

    checks["rank_definitions"] = "ok" if len(services.definitions) else "empty"

    redis = get_redis_or_none()
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    all_ok = all(v in ("ok", "disabled") for v in checks.values())
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return service version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
