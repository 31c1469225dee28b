"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the ledger service, the caller's principal, Redis and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_market.config import Settings, get_settings
from escrow_market.domain.settlement_protocol import SettlementGateway
from escrow_market.infrastructure.database.engine import get_async_session
from escrow_market.infrastructure.redis_client import get_redis
from escrow_market.services.ledger_service import LedgerService, validate_principal
from escrow_market.services.settlement_service import get_settlement_gateway

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    import redis.asyncio as aioredis


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_settlement() -> SettlementGateway:
    """Provide the settlement gateway."""
    return get_settlement_gateway()


async def get_ledger_service(
    session: AsyncSession = Depends(get_db_session),
    settlement: SettlementGateway = Depends(get_settlement),
) -> LedgerService:
    """Provide a LedgerService bound to the current session."""
    return LedgerService(session, settlement)


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_caller(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> str:
    """Read the calling principal from the identity header, verbatim."""
    return validate_principal(request.headers.get(settings.principal_header))


def get_redis_client() -> aioredis.Redis | None:
    """Provide the Redis client, or None when Redis was unavailable at startup."""
    try:
        return get_redis()
    except RuntimeError:
        return None
