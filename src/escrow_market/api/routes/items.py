"""Market REST API routes.

These endpoints provide the HTTP interface to the escrow ledger. The calling
principal comes from the identity header (X-Principal by default) and is
trusted verbatim. The MCP tools in mcp_server/tools.py call the same service
layer, ensuring consistency.

Routes:
    GET    /api/v1/ledger                          Admin, item count, custody totals
    POST   /api/v1/items                           Register an item
    GET    /api/v1/items/{id}                      Get item details
    GET    /api/v1/items/{id}/status               Status + allowed operations
    GET    /api/v1/items/{id}/events               Notification trail
    POST   /api/v1/items/{id}/buy                  Buy (funds go to escrow)
    POST   /api/v1/items/{id}/confirm              Buyer confirms delivery
    POST   /api/v1/items/{id}/refund-request       Buyer requests refund
    POST   /api/v1/items/{id}/refund-approve       Seller approves refund
    POST   /api/v1/items/{id}/refund-refuse        Seller refuses refund
    POST   /api/v1/items/{id}/resolve              Admin arbitrates a dispute
    POST   /api/v1/items/{id}/rate                 Buyer rates the transaction
    GET    /api/v1/principals/{principal}/selling  Items listed by a principal
    GET    /api/v1/principals/{principal}/buying   Items bought by a principal
"""

from __future__ import annotations

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Header

from escrow_market.api.deps import get_caller, get_ledger_service, get_redis_client
from escrow_market.domain.exceptions import DuplicateOperationError, MarketError
from escrow_market.infrastructure.redis_client import claim_idempotency, release_idempotency
from escrow_market.logging_config import get_logger
from escrow_market.schemas.market import (
    BuyItemRequest,
    ItemEventResponse,
    ItemResponse,
    ItemStatusResponse,
    LedgerResponse,
    PrincipalItemsResponse,
    RateTransactionRequest,
    ReasonRequest,
    RegisterItemRequest,
    ResolveDisputeRequest,
)
from escrow_market.services.ledger_service import LedgerService

router = APIRouter(prefix="/api/v1", tags=["Market"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@router.get("/ledger", response_model=LedgerResponse, summary="Get ledger fields")
async def get_ledger(
    ledger: LedgerService = Depends(get_ledger_service),
) -> LedgerResponse:
    """Return the admin, the item count and the escrow currently held."""
    admin = await ledger.get_admin()
    custody = await ledger.get_custody_summary()
    return LedgerResponse(
        admin=admin,
        item_count=await ledger.get_item_count(),
        **custody,
    )


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


@router.post(
    "/items",
    response_model=ItemResponse,
    status_code=201,
    summary="Register a new item",
)
async def register_item(
    request: RegisterItemRequest,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
    redis: aioredis.Redis | None = Depends(get_redis_client),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> ItemResponse:
    """List an item for sale. The caller becomes the seller.

    A repeated Idempotency-Key from the same caller is rejected with 409
    instead of listing the item twice.
    """
    claimed = False
    if idempotency_key:
        if redis is None:
            logger.warning("idempotency.unavailable", key=idempotency_key)
        elif await claim_idempotency(redis, idempotency_key, caller):
            claimed = True
        else:
            raise DuplicateOperationError(idempotency_key)

    try:
        item = await ledger.register_item(
            name=request.name,
            description=request.description,
            price=request.price,
            caller=caller,
        )
    except MarketError:
        if claimed:
            await release_idempotency(redis, idempotency_key, caller)
        raise
    return ItemResponse.model_validate(item)


# ---------------------------------------------------------------------------
# Purchase
# ---------------------------------------------------------------------------


@router.post("/items/{item_id}/buy", response_model=ItemResponse, summary="Buy an item")
async def buy_item(
    item_id: int,
    request: BuyItemRequest,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Buy an item. Transitions ON_SALE -> IN_TRANSACTION."""
    item = await ledger.buy_item(item_id, caller, request.paid_amount)
    return ItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/confirm",
    response_model=ItemResponse,
    summary="Confirm delivery",
)
async def confirm_item(
    item_id: int,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Buyer confirms delivery and escrow is paid to the seller. IN_TRANSACTION -> COMPLETED."""
    item = await ledger.confirm_item(item_id, caller)
    return ItemResponse.model_validate(item)


# ---------------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------------


@router.post(
    "/items/{item_id}/refund-request",
    response_model=ItemResponse,
    summary="Request a refund",
)
async def request_refund(
    item_id: int,
    request: ReasonRequest,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Buyer requests a refund. IN_TRANSACTION -> REFUND_REQUESTED."""
    item = await ledger.request_refund(item_id, caller, request.reason)
    return ItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/refund-approve",
    response_model=ItemResponse,
    summary="Approve a refund",
)
async def approve_refund(
    item_id: int,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Seller approves the refund and escrow returns to the buyer. REFUND_REQUESTED -> REFUNDED."""
    item = await ledger.approve_refund(item_id, caller)
    return ItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/refund-refuse",
    response_model=ItemResponse,
    summary="Refuse a refund",
)
async def refuse_refund(
    item_id: int,
    request: ReasonRequest,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Seller refuses the refund. REFUND_REQUESTED -> DISPUTED."""
    item = await ledger.refuse_refund(item_id, caller, request.reason)
    return ItemResponse.model_validate(item)


# ---------------------------------------------------------------------------
# Arbitration & rating
# ---------------------------------------------------------------------------


@router.post(
    "/items/{item_id}/resolve",
    response_model=ItemResponse,
    summary="Resolve a dispute (admin)",
)
async def resolve_dispute(
    item_id: int,
    request: ResolveDisputeRequest,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Admin pays the escrow to the buyer or the seller. DISPUTED -> DISPUTED_RESOLVED."""
    item = await ledger.resolve_dispute(item_id, caller, request.favor_buyer, request.reason)
    return ItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/rate",
    response_model=ItemResponse,
    summary="Rate a finished transaction",
)
async def rate_transaction(
    item_id: int,
    request: RateTransactionRequest,
    caller: str = Depends(get_caller),
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Buyer rates the transaction once it has reached a terminal status."""
    item = await ledger.rate_transaction(item_id, caller, request.rating)
    return ItemResponse.model_validate(item)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get("/items/{item_id}", response_model=ItemResponse, summary="Get item details")
async def get_item(
    item_id: int,
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemResponse:
    """Fetch an item by id."""
    item = await ledger.get_item(item_id)
    return ItemResponse.model_validate(item)


@router.get(
    "/items/{item_id}/status",
    response_model=ItemStatusResponse,
    summary="Get lightweight status check",
)
async def get_status(
    item_id: int,
    ledger: LedgerService = Depends(get_ledger_service),
) -> ItemStatusResponse:
    """Return the current status and the operations allowed next."""
    return ItemStatusResponse(**await ledger.get_status(item_id))


@router.get(
    "/items/{item_id}/events",
    response_model=list[ItemEventResponse],
    summary="Get notification trail",
)
async def get_events(
    item_id: int,
    ledger: LedgerService = Depends(get_ledger_service),
) -> list[ItemEventResponse]:
    """Return every notification emitted for an item, oldest first."""
    events = await ledger.get_events(item_id)
    return [ItemEventResponse.model_validate(e) for e in events]


@router.get(
    "/principals/{principal}/selling",
    response_model=PrincipalItemsResponse,
    summary="Items listed by a principal",
)
async def get_items_by_seller(
    principal: str,
    ledger: LedgerService = Depends(get_ledger_service),
) -> PrincipalItemsResponse:
    item_ids = await ledger.get_items_by_seller(principal)
    return PrincipalItemsResponse(principal=principal, item_ids=item_ids)


@router.get(
    "/principals/{principal}/buying",
    response_model=PrincipalItemsResponse,
    summary="Items bought by a principal",
)
async def get_items_by_buyer(
    principal: str,
    ledger: LedgerService = Depends(get_ledger_service),
) -> PrincipalItemsResponse:
    item_ids = await ledger.get_items_by_buyer(principal)
    return PrincipalItemsResponse(principal=principal, item_ids=item_ids)
