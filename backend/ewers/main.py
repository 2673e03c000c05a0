"""
FastAPI application entry point.

Run with:
    uvicorn backend.ewers.main:app --reload --port 8000

Or, once installed, with HOST / PORT from settings:
    ewers-gateway
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from backend.ewers.core.config import Settings, settings as default_settings
from backend.ewers.core.logging_config import setup_logging, get_logger
from backend.ewers.core.errors import register_error_handlers
from backend.ewers.core.middleware import RequestLoggingMiddleware
from backend.ewers.core.health import HealthStatus, run_health_check
from backend.ewers.container import ServiceContainer, build_container

# ── API routers ──
from backend.ewers.api.v1.integrations import router as integrations_router
from backend.ewers.api.v1.alerts import router as alerts_router
from backend.ewers.api.v1.external import router as external_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


async def _health_report(request: Request):
    container: ServiceContainer = request.app.state.container
    return await run_health_check(
        settings=container.settings,
        store=container.store,
        dispatcher=container.dispatcher,
        engine=container.engine,
    )


def create_app(
    container: Optional[ServiceContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    A prebuilt ``container`` (tests) is used as-is and still closed on
    shutdown; otherwise one is built from ``settings`` at startup.
    """
    settings = container.settings if container else (settings or default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        services = container or await build_container(settings)
        app.state.container = services
        yield
        logger.info("Shutting down %s", settings.APP_NAME)
        await services.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Early-warning integration gateway: scoped, expiring API keys for "
            "third-party consumers, HMAC-signed webhook deliveries for system "
            "events, and multi-channel alert broadcasting over email, SMS, "
            "WhatsApp, call center and social media."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Middleware stack (last added runs outermost) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware, api_key_header=settings.API_KEY_HEADER)

    # ── Error handlers ──
    register_error_handlers(app)

    # ── Register routers ──
    app.include_router(integrations_router)
    app.include_router(alerts_router)
    app.include_router(external_router)

    # ── Root & health endpoints ──

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "modules": [
                "api-key-gate",
                "webhook-dispatch",
                "alert-broadcasting",
                "integration-management",
            ],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check(request: Request):
        """Deep health probe — checks all subsystems."""
        report = await _health_report(request)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness(request: Request):
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await _health_report(request)
        if report.status == HealthStatus.UNHEALTHY:
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    uvicorn.run(
        "backend.ewers.main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        log_config=None,
    )
