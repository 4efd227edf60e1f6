"""
GiveCore - crowdfunding and resource sharing on a public ledger

Main application entry point.

Money and quantities live on the ledger. Everything else (profiles,
categories, chat, receipts, notifications) lives in the off-chain store.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api import router
from .config import Settings
from .observability import (
    RequestContextMiddleware,
    check_health,
    get_logger,
    get_metrics,
    setup_logging,
)
from .services import Services, build_services

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    services: Optional[Services] = getattr(app.state, "services", None)
    if services is None:
        services = await build_services()
        app.state.services = services
    app.state.ledger = services.ledger
    app.state.store = services.store

    logger.info(
        "Application startup complete",
        ledger_ready=services.ledger.is_ready,
        chain_id=services.ledger.chain_id,
        account=services.ledger.account,
        transport=type(services.ledger.transport).__name__,
        remote_store=services.store.remote_configured,
    )
    if not services.ledger.is_ready:
        logger.warning("Ledger not ready", reason=services.ledger.not_ready_reason)

    yield

    await services.close()
    logger.info("Application shutdown complete")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI app. Pass prebuilt ``services`` to skip environment
    configuration (tests, embedding).
    """
    app = FastAPI(
        title="GiveCore",
        description="""
## Crowdfunding and Resource Sharing

Campaigns raise funds toward a target before a deadline. Resources are
posted in whole units and claimed by others, then collected or cancelled.

### Source of Truth

- **Ledger**: campaigns, donations, resources, claims, balances
- **Off-chain store**: profiles, category labels, chat, receipts, notifications

### Claim Lifecycle

```
Pending → Completed
        → Cancelled (quantity restored)
```

### Failures

| Kind             | Status |
|------------------|--------|
| readiness        | 503    |
| transaction      | 502    |
| validation       | 422    |
| already_terminal | 409    |

### Configuration

- `LEDGER_DRIVER=memory|web3`, `LEDGER_RPC_URL`, contract addresses
- `REMOTE_STORE_URL` or `REMOTE_STORE_HOST` for the PostgreSQL backend
- `LOCAL_CACHE_PATH` to persist the local backend
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # Add request context middleware for logging
    app.add_middleware(RequestContextMiddleware)

    settings = services.settings if services is not None else Settings.from_env()
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_origins),
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["*"],
        )

    app.include_router(router, prefix="/api")

    @app.get("/health", tags=["System"])
    async def health():
        """
        Basic health check endpoint.

        Returns 200 if the service is running.
        For detailed health, use /health/detailed
        """
        return {"status": "healthy", "service": "givecore"}

    @app.get("/health/detailed", tags=["System"])
    async def health_detailed(request: Request):
        """
        Detailed health check.

        Checks:
        - Service liveness
        - Ledger readiness (network, chain id, in-flight transactions)
        - Off-chain store (remote reachability, local collection sizes)

        Returns 200 if healthy, 503 if unhealthy.
        """
        health_status = await check_health(
            ledger=getattr(request.app.state, "ledger", None),
            store=getattr(request.app.state, "store", None),
        )
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
        """Transaction and request counters, latencies, remote-store fallbacks."""
        return get_metrics().get_summary()

    @app.get("/api", tags=["System"])
    async def api_info(request: Request):
        ledger = request.app.state.ledger
        return {
            "name": "GiveCore API",
            "version": __version__,
            "transport": type(ledger.transport).__name__,
            "ledger_ready": ledger.is_ready,
            "endpoints": {
                "campaigns": "/api/campaigns",
                "resources": "/api/resources",
                "dashboard": "/api/dashboard/{identity}",
                "notifications": "/api/notifications",
                "reports": "/api/reports/platform",
                "session": "/api/session",
            },
        }

    return app


app = create_app()
