"""Shared test fixtures for the Escrow Market test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) shared through one connection
    - A ledger service initialized with an admin
    - A recording settlement gateway
    - Principals for the seller, buyers and admin
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from escrow_market.infrastructure.database.orm_models import Base
from escrow_market.services.ledger_service import LedgerService
from escrow_market.services.settlement_service import SimulatedSettlement

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@pytest.fixture
def admin() -> str:
    return "0x" + "A" * 40


@pytest.fixture
def seller() -> str:
    return "0x" + "5" * 40


@pytest.fixture
def buyer() -> str:
    return "0x" + "B" * 40


@pytest.fixture
def other_buyer() -> str:
    return "0x" + "C" * 40


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Service Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settlement() -> SimulatedSettlement:
    """A settlement gateway that records every payout."""
    return SimulatedSettlement()


@pytest_asyncio.fixture
async def ledger(session, settlement, admin) -> LedgerService:
    """A ledger service with an initialized ledger."""
    svc = LedgerService(session, settlement)
    await svc.initialize(admin)
    return svc


@pytest_asyncio.fixture
async def listed_item(ledger, seller) -> int:
    """Register 'Widget' at 100 and return its id."""
    item = await ledger.register_item("Widget", "desc", 100, seller)
    return item.id


@pytest_asyncio.fixture
async def sold_item(ledger, listed_item, buyer) -> int:
    """An item bought for 100, now IN_TRANSACTION."""
    await ledger.buy_item(listed_item, buyer, 100)
    return listed_item


@pytest_asyncio.fixture
async def disputed_item(ledger, sold_item, seller, buyer) -> int:
    """An item whose refund request the seller refused, now DISPUTED."""
    await ledger.request_refund(sold_item, buyer, "damaged")
    await ledger.refuse_refund(sold_item, seller, "not damaged")
    return sold_item
