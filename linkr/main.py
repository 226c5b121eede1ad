"""
Nostr Linkr - Identity Linking Registry

Main application entry point.

An account and a Nostr key are linked only when the key has signed an
event naming the account. The registry keeps the link one-to-one in
both directions.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.routes import router as links_router
from .config import LinkrSettings
from .core import LinkRegistry, LoggingNotificationSink
from .db import LockTimeoutError, StoreError, create_link_store
from .errors import ConflictingLinkError, LinkrError, NoLinkFoundError
from .observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


def build_registry() -> LinkRegistry:
    """Registry wired from the environment (LINKR_*, DATABASE_*)."""
    return LinkRegistry(
        store=create_link_store(),
        settings=LinkrSettings.from_env(),
        sinks=[LoggingNotificationSink()],
    )


def _status_for(error: LinkrError) -> int:
    if isinstance(error, NoLinkFoundError):
        return 404
    if isinstance(error, ConflictingLinkError):
        return 409
    return 400


def create_app(registry: Optional[LinkRegistry] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        registry: Use this registry instead of building one from the
                  environment at startup (tests, embedding).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        if getattr(app.state, "registry", None) is None:
            app.state.registry = build_registry()

        registry = app.state.registry
        if not registry.verify_bijection():
            logger.error("Bijection check FAILED at startup")

        logger.info(
            "Application startup complete",
            link_count=registry.link_count,
            store_type=type(registry.store).__name__,
            conflict_policy=registry.settings.conflict_policy.value,
            schnorr_verification=registry.settings.schnorr_verification.value,
            require_account_signature=registry.settings.require_account_signature,
        )

        yield

        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Nostr Linkr",
        description="""
## Identity Linking Registry

Links an account to a Nostr key, one-to-one, both directions.

### Core Principles

- **Verified**: A link exists only if the key signed an event naming the account
- **Bijective**: One key per account, one account per key
- **Atomic**: Both directions change together or not at all

### API Design

**Commands**:
- `POST /links` pushes a link
- `POST /links/{account}/pull` pulls one
- No PATCH, no PUT, no DELETE

**Queries**:
- Lookups return `null` for unlinked identities, never an error

### Errors

Every refusal is `{"code": ..., "detail": ...}` with a stable code.

### Storage Backends

- **InMemoryLinkStore**: Development/testing (default)
- **PostgresLinkStore**: Production with full durability

Set `DATABASE_URL` or `DATABASE_HOST` environment variables to use PostgreSQL.
        """,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.registry = registry

    # Add request context middleware for logging
    app.add_middleware(RequestContextMiddleware)

    app.include_router(links_router)

    @app.exception_handler(LinkrError)
    async def linkr_error_handler(request: Request, exc: LinkrError):
        return JSONResponse(
            status_code=_status_for(exc),
            content={"code": exc.code, "detail": str(exc)},
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        if isinstance(exc, LockTimeoutError):
            return JSONResponse(
                status_code=503,
                content={"code": exc.code, "detail": str(exc)},
                headers={"Retry-After": "1"},
            )
        logger.error("Link store failure", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"code": "StoreError", "detail": str(exc)},
        )

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For detailed health, use /health/detailed
        """
        return {"status": "healthy", "service": "linkr"}

    @app.get("/health/detailed", tags=["System"])
    def health_detailed(request: Request):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Link store reachability
        - Bijection between forward and reverse maps

        Returns 200 if healthy, 503 if unhealthy.
        """
        health_status = check_health(registry=request.app.state.registry)
        return JSONResponse(
            status_code=200 if health_status.healthy else 503,
            content={
                "status": "healthy" if health_status.healthy else "unhealthy",
                "checks": health_status.checks,
                "duration_ms": health_status.duration_ms,
            },
        )

    @app.get("/metrics", tags=["System"])
    async def metrics():
        """
        Get application metrics.

        Returns counters and latency percentiles.
        """
        return get_metrics().get_summary()

    return app


app = create_app()
