"""FastAPI application entry point for the Escrow Market.

Lifecycle:
    1. Startup: Initialize logging, database, the ledger row and Redis.
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Close database and Redis connections gracefully.

The MCP server is mounted at /mcp so agents can discover tools alongside the
REST API at /api/v1/*.

Run with:
    uv run uvicorn escrow_market.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from escrow_market.config import get_settings
from escrow_market.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def _initialize_ledger(admin: str) -> None:
    """Create the ledger row with the configured admin, if it does not exist yet."""
    from escrow_market.infrastructure.database.engine import get_async_session
    from escrow_market.services.ledger_service import LedgerService
    from escrow_market.services.settlement_service import get_settlement_gateway

    async for session in get_async_session():
        await LedgerService(session, get_settlement_gateway()).initialize(admin)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from escrow_market.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize the ledger
    if settings.ledger_admin:
        await _initialize_ledger(settings.ledger_admin)
    else:
        logger.warning("app.ledger_admin_missing")

    # 4. Initialize Redis
    from escrow_market.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Escrow Market",
        description=(
            "Peer-to-peer marketplace ledger. Payments are held in escrow "
            "until the buyer confirms, the seller refunds, or the admin arbitrates."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from escrow_market.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from escrow_market.api.routes.health import router as health_router
    from escrow_market.api.routes.items import router as items_router

    app.include_router(health_router)
    app.include_router(items_router)

    # --- MCP Server (mounted as sub-application) ---
    from escrow_market.mcp_server.tools import mcp

    mcp_app = mcp.sse_app()
    app.mount("/mcp", mcp_app)

    return app


# The app instance used by Uvicorn
app = create_app()
