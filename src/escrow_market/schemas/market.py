"""Pydantic schemas for the Market API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models to maintain clean boundaries between the API
and database layers.

Request schemas only enforce types and string sizes. Business preconditions
such as amount bounds are left to the ledger, so that REST and MCP callers
receive the same error codes.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class RegisterItemRequest(BaseModel):
    """Request body for listing a new item."""

    name: str = Field(
        ...,
        max_length=255,
        description="Item name shown to buyers",
        examples=["Widget"],
    )
    description: str = Field(
        default="",
        max_length=10_000,
        description="Free-text description of the item",
        examples=["Barely used, original box"],
    )
    price: int = Field(
        ...,
        description="Asking price in the smallest currency unit",
        examples=[100],
    )


class BuyItemRequest(BaseModel):
    """Request body for buying an item."""

    paid_amount: int = Field(
        ...,
        description="Amount tendered; anything above the price stays in escrow",
        examples=[100],
    )


class ReasonRequest(BaseModel):
    """Request body for refund requests and refusals."""

    reason: str = Field(
        ...,
        max_length=2000,
        description="Why the refund is requested or refused",
        examples=["Item arrived damaged"],
    )


class ResolveDisputeRequest(BaseModel):
    """Request body for arbitrating a disputed item."""

    favor_buyer: bool = Field(
        ...,
        description="True pays the escrow to the buyer, False to the seller",
    )
    reason: str = Field(
        default="",
        max_length=2000,
        description="Arbitrator's note, recorded on the DISPUTE_RESOLVED event",
    )


class RateTransactionRequest(BaseModel):
    """Request body for rating a finished transaction."""

    rating: int = Field(..., description="Score from 1 to 5", examples=[5])


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ItemResponse(BaseModel):
    """Response schema for an item."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    price: int
    seller: str
    buyer: str | None
    status: str
    escrow: int
    rating: int | None
    is_rated: bool
    created_at: datetime
    updated_at: datetime


class ItemStatusResponse(BaseModel):
    """Lightweight status check response."""

    item_id: int
    status: str
    escrow: int
    buyer: str | None
    is_rated: bool
    allowed_operations: list[str] = Field(
        description="Operations the transition table allows from the current status"
    )


class ItemEventResponse(BaseModel):
    """Response schema for a notification."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class PrincipalItemsResponse(BaseModel):
    """Item ids associated with a principal, in append order."""

    principal: str
    item_ids: list[int]


class LedgerResponse(BaseModel):
    """Ledger-wide fields."""

    admin: str
    item_count: int
    total_escrow: int
    items_in_custody: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
