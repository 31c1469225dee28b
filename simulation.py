#!/usr/bin/env python3
"""Escrow Market: End-to-End Simulation.

Drives the ledger with SellerBot, BuyerBot and AdminBot agents through six
scenarios:

    Scenario 1: Listing
        - Seller registers "Widget" at 100 -> ON_SALE, escrow 0

    Scenario 2: Purchase guards
        - Buyer pays 100 -> IN_TRANSACTION, escrow 100
        - Seller tries to buy their own item -> SELF_TRADE
        - Second buyer underpays -> INSUFFICIENT_PAYMENT

    Scenario 3: Refund approved
        - Buyer requests a refund, seller approves -> REFUNDED, buyer repaid

    Scenario 4: Arbitration
        - Seller refuses the refund -> DISPUTED
        - Admin resolves for the buyer -> DISPUTED_RESOLVED, buyer repaid

    Scenario 5: Confirmation guards
        - Confirming an unsold item -> INVALID_STATE
        - Seller confirming on the buyer's behalf -> NOT_AUTHORIZED

    Scenario 6: Rating
        - Buyer rates 5 once; a second rating -> ALREADY_RATED
        - Rating 6 -> OUT_OF_RANGE

Usage:
    # Option A: Against the configured database (DATABASE_URL):
    uv run python simulation.py

    # Option B: SQLite in-memory (no Docker needed):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 4
"""

from __future__ import annotations

import argparse
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from escrow_market.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from escrow_market.domain.exceptions import MarketError  # noqa: E402
from escrow_market.services.ledger_service import LedgerService  # noqa: E402
from escrow_market.services.settlement_service import SimulatedSettlement  # noqa: E402

ADMIN = "0x" + "A" * 40
SELLER = "0x" + "5" * 40
BUYER = "0x" + "B" * 40
SECOND_BUYER = "0x" + "C" * 40

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None
_settlement = SimulatedSettlement()


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine, create tables and the ledger row."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
        from sqlalchemy.pool import StaticPool

        from escrow_market.infrastructure.database.orm_models import Base

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from escrow_market.infrastructure.database.engine import init_db

        await init_db()

    async with ledger() as svc:
        await svc.initialize(ADMIN)


def get_session() -> Any:
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from escrow_market.infrastructure.database.engine import _get_session_factory

    return _get_session_factory()()


@asynccontextmanager
async def ledger():
    """One ledger transaction: committed on success, rolled back on error."""
    async with get_session() as session:
        try:
            yield LedgerService(session, _settlement)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from escrow_market.infrastructure.database.engine import close_db

        await close_db()


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class SellerBot:
    """Simulated seller agent that lists items and answers refund requests."""

    principal: str = SELLER

    async def register(self, name: str, description: str, price: int) -> int:
        async with ledger() as svc:
            item = await svc.register_item(name, description, price, self.principal)
        logger.info("🟠 SELLER: Item listed", item_id=item.id, name=name, price=price)
        return item.id

    async def buy_own(self, item_id: int, amount: int) -> None:
        async with ledger() as svc:
            await svc.buy_item(item_id, self.principal, amount)

    async def confirm_for_buyer(self, item_id: int) -> None:
        async with ledger() as svc:
            await svc.confirm_item(item_id, self.principal)

    async def approve_refund(self, item_id: int) -> None:
        async with ledger() as svc:
            await svc.approve_refund(item_id, self.principal)
        logger.info("🟠 SELLER: Refund approved", item_id=item_id)

    async def refuse_refund(self, item_id: int, reason: str) -> None:
        async with ledger() as svc:
            await svc.refuse_refund(item_id, self.principal, reason)
        logger.info("🟠 SELLER: Refund refused", item_id=item_id, reason=reason)


@dataclass
class BuyerBot:
    """Simulated buyer agent that pays, confirms, asks for refunds and rates."""

    principal: str = BUYER

    async def buy(self, item_id: int, amount: int) -> None:
        async with ledger() as svc:
            await svc.buy_item(item_id, self.principal, amount)
        logger.info("🔵 BUYER: Item bought", item_id=item_id, amount=amount)

    async def confirm(self, item_id: int) -> None:
        async with ledger() as svc:
            await svc.confirm_item(item_id, self.principal)
        logger.info("🔵 BUYER: Delivery confirmed", item_id=item_id)

    async def request_refund(self, item_id: int, reason: str) -> None:
        async with ledger() as svc:
            await svc.request_refund(item_id, self.principal, reason)
        logger.info("🔵 BUYER: Refund requested", item_id=item_id, reason=reason)

    async def rate(self, item_id: int, rating: int) -> None:
        async with ledger() as svc:
            await svc.rate_transaction(item_id, self.principal, rating)
        logger.info("🔵 BUYER: Transaction rated", item_id=item_id, rating=rating)

    async def check_status(self, item_id: int) -> dict:
        async with ledger() as svc:
            status = await svc.get_status(item_id)
        logger.info(
            "🔵 BUYER: Status check",
            item_id=item_id,
            status=status["status"],
            escrow=status["escrow"],
        )
        return status


@dataclass
class AdminBot:
    """Simulated arbitrator that settles disputed items."""

    principal: str = ADMIN

    async def resolve(self, item_id: int, favor_buyer: bool, reason: str) -> None:
        async with ledger() as svc:
            await svc.resolve_dispute(item_id, self.principal, favor_buyer, reason)
        logger.info(
            "🟣 ADMIN: Dispute resolved",
            item_id=item_id,
            favor="buyer" if favor_buyer else "seller",
        )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


async def expect_rejection(action: Any, code: str) -> None:
    """Await `action` and assert the ledger rejects it with `code`."""
    try:
        await action
    except MarketError as exc:
        assert exc.code == code, f"Expected {code}, got {exc.code}"
        print(f"  ✅ Rejected as expected: {exc.code} ({exc.message})")
        return
    raise AssertionError(f"Expected {code}, but the operation succeeded")


def expect_status(status: dict, expected: str, escrow: int) -> None:
    assert status["status"] == expected, f"Expected {expected}, got {status['status']}"
    assert status["escrow"] == escrow, f"Expected escrow {escrow}, got {status['escrow']}"
    print(f"  ✅ Item is {expected} with escrow {escrow}")


def print_payouts(recipient: str) -> None:
    paid = _settlement.paid_to(recipient)
    print(f"  💸 Paid to {recipient[:10]}...: {paid}")


async def print_audit_trail(item_id: int) -> None:
    """Print the full notification trail for an item."""
    async with ledger() as svc:
        events = await svc.get_events(item_id)
    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "-"
        print(f"    {i}. [{evt.event_type}] {old} -> {evt.new_status} (by {evt.actor[:10]}...)")
    print()


# ===========================================================================
# Scenario 1: Listing
# ===========================================================================
async def scenario_1_listing() -> int:
    """Seller lists an item; it starts on sale with nothing in escrow."""
    banner("SCENARIO 1: Listing")

    seller = SellerBot()
    buyer = BuyerBot()

    section("Step 1: Seller registers Widget at 100")
    item_id = await seller.register("Widget", "desc", 100)

    section("Step 2: Status check")
    expect_status(await buyer.check_status(item_id), "ON_SALE", 0)

    await print_audit_trail(item_id)
    return item_id


# ===========================================================================
# Scenario 2: Purchase guards
# ===========================================================================
async def scenario_2_purchase_guards() -> None:
    """A purchase moves funds into escrow; self-trade and underpayment are refused."""
    banner("SCENARIO 2: Purchase Guards")

    seller = SellerBot()
    buyer = BuyerBot()
    second_buyer = BuyerBot(principal=SECOND_BUYER)
    item_id = await seller.register("Widget", "desc", 100)

    section("Step 1: Seller tries to buy their own item")
    await expect_rejection(seller.buy_own(item_id, 100), "SELF_TRADE")

    section("Step 2: Second buyer offers 50")
    await expect_rejection(second_buyer.buy(item_id, 50), "INSUFFICIENT_PAYMENT")

    section("Step 3: Buyer pays 100")
    await buyer.buy(item_id, 100)
    expect_status(await buyer.check_status(item_id), "IN_TRANSACTION", 100)

    section("Step 4: Buying an item already in transaction")
    await expect_rejection(second_buyer.buy(item_id, 100), "INVALID_STATE")

    await print_audit_trail(item_id)


# ===========================================================================
# Scenario 3: Refund approved
# ===========================================================================
async def scenario_3_refund_approved() -> None:
    """Buyer asks for a refund and the seller agrees."""
    banner("SCENARIO 3: Refund Approved")

    seller = SellerBot()
    buyer = BuyerBot()
    item_id = await seller.register("Widget", "desc", 100)
    await buyer.buy(item_id, 100)
    before = _settlement.paid_to(buyer.principal)

    section("Step 1: Buyer requests a refund")
    await buyer.request_refund(item_id, "damaged")
    expect_status(await buyer.check_status(item_id), "REFUND_REQUESTED", 100)

    section("Step 2: Seller approves")
    await seller.approve_refund(item_id)
    expect_status(await buyer.check_status(item_id), "REFUNDED", 0)
    assert _settlement.paid_to(buyer.principal) - before == 100
    print_payouts(buyer.principal)

    await print_audit_trail(item_id)


# ===========================================================================
# Scenario 4: Arbitration
# ===========================================================================
async def scenario_4_arbitration() -> None:
    """Seller refuses the refund and the admin rules for the buyer."""
    banner("SCENARIO 4: Refused Refund -> Arbitration")

    seller = SellerBot()
    buyer = BuyerBot()
    admin = AdminBot()
    item_id = await seller.register("Widget", "desc", 100)
    await buyer.buy(item_id, 100)
    before = _settlement.paid_to(buyer.principal)

    section("Step 1: Buyer requests a refund")
    await buyer.request_refund(item_id, "damaged")

    section("Step 2: Seller refuses")
    await seller.refuse_refund(item_id, "not damaged")
    expect_status(await buyer.check_status(item_id), "DISPUTED", 100)

    section("Step 3: A non-admin tries to arbitrate")
    await expect_rejection(
        AdminBot(principal=SECOND_BUYER).resolve(item_id, True, "verified"),
        "NOT_AUTHORIZED",
    )

    section("Step 4: Admin resolves in favor of the buyer")
    await admin.resolve(item_id, favor_buyer=True, reason="verified")
    expect_status(await buyer.check_status(item_id), "DISPUTED_RESOLVED", 0)
    assert _settlement.paid_to(buyer.principal) - before == 100
    print_payouts(buyer.principal)

    await print_audit_trail(item_id)


# ===========================================================================
# Scenario 5: Confirmation guards
# ===========================================================================
async def scenario_5_confirmation_guards() -> None:
    """Only the buyer can confirm, and only once the item is in transaction."""
    banner("SCENARIO 5: Confirmation Guards")

    seller = SellerBot()
    buyer = BuyerBot()
    item_id = await seller.register("Widget", "desc", 100)

    section("Step 1: Buyer confirms an item nobody bought")
    await expect_rejection(buyer.confirm(item_id), "INVALID_STATE")

    section("Step 2: Buyer pays; seller confirms on the buyer's behalf")
    await buyer.buy(item_id, 100)
    await expect_rejection(seller.confirm_for_buyer(item_id), "NOT_AUTHORIZED")
    expect_status(await buyer.check_status(item_id), "IN_TRANSACTION", 100)

    section("Step 3: Buyer confirms")
    await buyer.confirm(item_id)
    expect_status(await buyer.check_status(item_id), "COMPLETED", 0)
    print_payouts(seller.principal)

    await print_audit_trail(item_id)


# ===========================================================================
# Scenario 6: Rating
# ===========================================================================
async def scenario_6_rating() -> None:
    """A finished transaction can be rated once, between 1 and 5."""
    banner("SCENARIO 6: Rating")

    seller = SellerBot()
    buyer = BuyerBot()
    item_id = await seller.register("Widget", "desc", 100)
    await buyer.buy(item_id, 100)
    await buyer.confirm(item_id)

    section("Step 1: Buyer rates 5")
    await buyer.rate(item_id, 5)

    section("Step 2: Buyer rates again")
    await expect_rejection(buyer.rate(item_id, 3), "ALREADY_RATED")

    section("Step 3: Rating out of range")
    await expect_rejection(buyer.rate(item_id, 6), "OUT_OF_RANGE")

    await print_audit_trail(item_id)


SCENARIOS = {
    1: scenario_1_listing,
    2: scenario_2_purchase_guards,
    3: scenario_3_refund_approved,
    4: scenario_4_arbitration,
    5: scenario_5_confirmation_guards,
    6: scenario_6_rating,
}


# ===========================================================================
# Main
# ===========================================================================
async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "🚀" * 35)
        print("  ESCROW MARKET: SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "configured database"
        print(f"  Database: {db_type}")
        print("🚀" * 35 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        async with ledger() as svc:
            custody = await svc.get_custody_summary()
        print(f"\n  🏦 Escrow still held: {custody['total_escrow']}")
        print(f"  🏦 Total disbursed: {_settlement.total_disbursed}")

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


async def run_scenario(num: int, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    await init_database(use_sqlite=use_sqlite)

    try:
        if num not in SCENARIOS:
            print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
            return
        await SCENARIOS[num]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Escrow Market Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-6). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of the configured database (no Docker needed).",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
