"""MCP Tool definitions for the Escrow Market.

These tools expose the ledger via the Model Context Protocol, allowing agents
to discover and call them programmatically.

Tools:
    - get_ledger: Admin, item count and escrow currently held
    - register_item: List an item for sale
    - buy_item: Buy an item; funds go to escrow
    - confirm_item: Buyer confirms delivery; seller is paid
    - request_refund / approve_refund / refuse_refund: Refund negotiation
    - resolve_dispute: Admin arbitrates a disputed item
    - rate_transaction: Buyer rates a finished transaction
    - get_item / check_status / get_item_events: Read an item
    - get_items_by_seller / get_items_by_buyer: Principal indexes

The MCP server is mounted into FastAPI at /mcp via app.mount().
Each tool manages its own database session (no FastAPI Depends available),
so every tool call is one ledger transaction. There is no identity header
over MCP: the acting principal is passed as the `caller` argument.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from mcp.server.fastmcp import FastMCP

from escrow_market.domain.exceptions import MarketError
from escrow_market.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from escrow_market.infrastructure.database.orm_models import Item
    from escrow_market.services.ledger_service import LedgerService

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Escrow Market",
    json_response=True,
)


@asynccontextmanager
async def _ledger() -> AsyncGenerator[LedgerService, None]:
    """Open a session for MCP tool context and commit it when the tool succeeds."""
    from escrow_market.infrastructure.database.engine import _get_session_factory
    from escrow_market.services.ledger_service import LedgerService
    from escrow_market.services.settlement_service import get_settlement_gateway

    factory = _get_session_factory()
    async with factory() as session:
        try:
            yield LedgerService(session, get_settlement_gateway())
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def _item_dict(item: Item) -> dict[str, Any]:
    return {
        "item_id": item.id,
        "name": item.name,
        "description": item.description,
        "price": item.price,
        "seller": item.seller,
        "buyer": item.buyer,
        "status": item.status,
        "escrow": item.escrow,
        "rating": item.rating,
        "is_rated": item.is_rated,
    }


def _error(tool: str, exc: Exception) -> dict[str, str]:
    if isinstance(exc, MarketError):
        logger.warning(f"mcp.{tool}.rejected", code=exc.code, error=exc.message)
        return {"error": exc.code, "message": exc.message}
    logger.exception(f"mcp.{tool}.error", error_type=type(exc).__name__)
    return {"error": "INTERNAL_ERROR", "message": "An unexpected error occurred"}


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_ledger() -> dict:
    """Get the ledger's admin, item count and the escrow it currently holds.

    Returns:
        admin, item_count, total_escrow and items_in_custody.
    """
    try:
        async with _ledger() as ledger:
            return {
                "admin": await ledger.get_admin(),
                "item_count": await ledger.get_item_count(),
                **await ledger.get_custody_summary(),
            }
    except Exception as exc:
        return _error("get_ledger", exc)


# ---------------------------------------------------------------------------
# Selling & buying
# ---------------------------------------------------------------------------


@mcp.tool()
async def register_item(
    caller: str,
    name: str,
    price: int,
    description: str = "",
) -> dict:
    """List a new item for sale. You become its seller.

    Args:
        caller: Your principal (account address).
        name: Item name shown to buyers. Must not be empty.
        price: Asking price in the smallest currency unit. Must be positive.
        description: Free-text description.

    Returns:
        Item details including the item_id you'll need for future calls.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.register_item(
                name=name,
                description=description,
                price=price,
                caller=caller,
            )
            return {**_item_dict(item), "message": "Item listed. Waiting for a buyer."}
    except Exception as exc:
        return _error("register_item", exc)


@mcp.tool()
async def buy_item(caller: str, item_id: int, paid_amount: int) -> dict:
    """Buy an item that is on sale. The whole amount paid is held in escrow.

    Args:
        caller: Your principal. Must not be the seller.
        item_id: Id of the item to buy.
        paid_amount: Amount tendered; must be at least the price. Any excess
            stays in escrow and is paid out with the rest.

    Returns:
        Updated item details with IN_TRANSACTION status.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.buy_item(item_id, caller, paid_amount)
            return {
                **_item_dict(item),
                "message": "Payment held in escrow. Confirm once the item is delivered.",
            }
    except Exception as exc:
        return _error("buy_item", exc)


@mcp.tool()
async def confirm_item(caller: str, item_id: int) -> dict:
    """Confirm delivery as the buyer. The escrow is paid to the seller.

    Args:
        caller: Your principal. Must be the item's buyer.
        item_id: Id of the item.

    Returns:
        Updated item details with COMPLETED status.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.confirm_item(item_id, caller)
            return {**_item_dict(item), "message": "Delivery confirmed. Seller has been paid."}
    except Exception as exc:
        return _error("confirm_item", exc)


# ---------------------------------------------------------------------------
# Refunds & disputes
# ---------------------------------------------------------------------------


@mcp.tool()
async def request_refund(caller: str, item_id: int, reason: str) -> dict:
    """Ask the seller for a refund. Funds stay in escrow.

    Args:
        caller: Your principal. Must be the item's buyer.
        item_id: Id of the item.
        reason: Why you want a refund. Must not be empty.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.request_refund(item_id, caller, reason)
            return {**_item_dict(item), "message": "Refund requested. Waiting for the seller."}
    except Exception as exc:
        return _error("request_refund", exc)


@mcp.tool()
async def approve_refund(caller: str, item_id: int) -> dict:
    """Approve a refund as the seller. The escrow is returned to the buyer.

    Args:
        caller: Your principal. Must be the item's seller.
        item_id: Id of the item.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.approve_refund(item_id, caller)
            return {**_item_dict(item), "message": "Refund approved. Buyer has been repaid."}
    except Exception as exc:
        return _error("approve_refund", exc)


@mcp.tool()
async def refuse_refund(caller: str, item_id: int, reason: str) -> dict:
    """Refuse a refund as the seller. The item goes to the admin for arbitration.

    Args:
        caller: Your principal. Must be the item's seller.
        item_id: Id of the item.
        reason: Why the refund is refused. Must not be empty.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.refuse_refund(item_id, caller, reason)
            return {**_item_dict(item), "message": "Refund refused. The item is now DISPUTED."}
    except Exception as exc:
        return _error("refuse_refund", exc)


@mcp.tool()
async def resolve_dispute(
    caller: str,
    item_id: int,
    favor_buyer: bool,
    reason: str = "",
) -> dict:
    """Arbitrate a disputed item. Only the ledger admin may call this.

    Args:
        caller: Your principal. Must be the ledger admin.
        item_id: Id of the disputed item.
        favor_buyer: True refunds the buyer, False pays the seller.
        reason: Optional note recorded with the decision.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.resolve_dispute(item_id, caller, favor_buyer, reason)
            winner = "buyer" if favor_buyer else "seller"
            return {**_item_dict(item), "message": f"Dispute resolved in favor of the {winner}."}
    except Exception as exc:
        return _error("resolve_dispute", exc)


@mcp.tool()
async def rate_transaction(caller: str, item_id: int, rating: int) -> dict:
    """Rate a finished transaction from 1 to 5. Each item can be rated once.

    Args:
        caller: Your principal. Must be the item's buyer.
        item_id: Id of a COMPLETED, REFUNDED or DISPUTED_RESOLVED item.
        rating: Integer score between 1 and 5.
    """
    try:
        async with _ledger() as ledger:
            item = await ledger.rate_transaction(item_id, caller, rating)
            return _item_dict(item)
    except Exception as exc:
        return _error("rate_transaction", exc)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@mcp.tool()
async def get_item(item_id: int) -> dict:
    """Get an item's full record."""
    try:
        async with _ledger() as ledger:
            return _item_dict(await ledger.get_item(item_id))
    except Exception as exc:
        return _error("get_item", exc)


@mcp.tool()
async def check_status(item_id: int) -> dict:
    """Check the current status of an item.

    Returns:
        Current status, escrow held, and the operations allowed next.
    """
    try:
        async with _ledger() as ledger:
            return await ledger.get_status(item_id)
    except Exception as exc:
        return _error("check_status", exc)


@mcp.tool()
async def get_item_events(item_id: int) -> dict:
    """Get every notification emitted for an item, oldest first."""
    try:
        async with _ledger() as ledger:
            events = await ledger.get_events(item_id)
            return {
                "item_id": item_id,
                "events": [
                    {
                        "event_type": e.event_type,
                        "old_status": e.old_status,
                        "new_status": e.new_status,
                        "actor": e.actor,
                        "metadata": e.metadata_json,
                        "created_at": e.created_at.isoformat(),
                    }
                    for e in events
                ],
            }
    except Exception as exc:
        return _error("get_item_events", exc)


@mcp.tool()
async def get_items_by_seller(principal: str) -> dict:
    """List the ids of every item a principal has put on sale."""
    try:
        async with _ledger() as ledger:
            return {
                "principal": principal,
                "item_ids": await ledger.get_items_by_seller(principal),
            }
    except Exception as exc:
        return _error("get_items_by_seller", exc)


@mcp.tool()
async def get_items_by_buyer(principal: str) -> dict:
    """List the ids of every item a principal has bought."""
    try:
        async with _ledger() as ledger:
            return {
                "principal": principal,
                "item_ids": await ledger.get_items_by_buyer(principal),
            }
    except Exception as exc:
        return _error("get_items_by_buyer", exc)
