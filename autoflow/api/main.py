"""FastAPI application factory with lifespan management."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware

from autoflow.config import AutoflowConfig, config as default_config
from autoflow.version import __version__
from autoflow.wiring import Services


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        return response

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # ── Startup ──
    logger.info("autoflow v%s starting...", __version__)
    messaging = None

    build = app.state.services_factory
    if build is not None:
        services = build()
    else:
        # 1. Database
        from autoflow.db.database import async_session, init_db
        await init_db()

        # 2. Messaging provider (one pooled httpx client for the process)
        from autoflow.clients.messaging import WhatsAppClient
        messaging = WhatsAppClient(app.state.config)

        # 3. Runner, matcher, webhook handler and poller over a session-per-call repository
        from autoflow.wiring import build_services
        services = build_services(
            messaging, session_factory=async_session, config=app.state.config
        )

    app.state.services = services
    logger.info("autoflow v%s ready", __version__)

    yield

    # ── Shutdown ──
    logger.info("autoflow shutting down...")
    await services.runner.drain()
    if messaging is not None:
        await messaging.close()


def create_app(
    services_factory: Optional[Callable[[], Services]] = None,
    config: AutoflowConfig = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``services_factory`` replaces the database-backed wiring, e.g. with
    in-memory stores in tests.
    """
    app = FastAPI(
        title="autoflow",
        description="Messaging-CRM automation engine.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services_factory = services_factory
    app.state.config = config or default_config

    app.add_middleware(SecurityHeadersMiddleware)

    from autoflow.api.routes import cron, events, health, messaging, webhooks
    app.include_router(webhooks.router, prefix="/v1")
    app.include_router(cron.router, prefix="/v1")
    app.include_router(events.router, prefix="/v1")
    app.include_router(messaging.router, prefix="/v1")
    app.include_router(health.router)

    return app


app = create_app()
