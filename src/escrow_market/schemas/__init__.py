"""Pydantic API schemas."""

from escrow_market.schemas.market import (
    BuyItemRequest,
    HealthResponse,
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

__all__ = [
    "BuyItemRequest",
    "HealthResponse",
    "ItemEventResponse",
    "ItemResponse",
    "ItemStatusResponse",
    "LedgerResponse",
    "PrincipalItemsResponse",
    "RateTransactionRequest",
    "ReasonRequest",
    "RegisterItemRequest",
    "ResolveDisputeRequest",
]
