"""GET /health — liveness plus a database check."""

import logging
from fastapi import APIRouter, Request
from autoflow.api.schemas import HealthResponse
from autoflow.version import __version__

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    services: dict[str, bool] = {"api": True, "database": False}

    session_factory = request.app.state.services.session_factory
    if session_factory is None:
        # in-process store, nothing to check
        services["database"] = True
    else:
        try:
            async with session_factory() as session:
                from sqlalchemy import text
                await session.execute(text("SELECT 1"))
            services["database"] = True
        except Exception as exc:
            logger.warning("[health] DB check failed: %s", exc)

    overall = "ok" if all(services.values()) else "degraded"
    return HealthResponse(status=overall, version=__version__, services=services)
