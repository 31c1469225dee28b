"""SQLAlchemy 2.0 ORM models for the Escrow Market.

Five tables:
    1. ledger_state  Single row holding the admin principal and item counter.
    2. items         Marketplace listings and their escrow balances.
    3. seller_index  Append-only item ids per seller.
    4. buyer_index   Append-only item ids per buyer.
    5. item_events   Append-only notification log of every state change.

Design decisions:
    - Item ids come from ledger_state.item_count, not a database sequence,
      so they stay dense even when a transaction rolls back.
    - Integer amounts in the smallest currency unit (BigInteger).
    - Portable column types so the same models run on PostgreSQL and SQLite.
    - CHECK constraints mirror the ledger invariants (buyer/status pairing,
      escrow only in holding statuses, rating bounds).
    - Index tables and item_events are append-only: no UPDATE or DELETE at the
      application level.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

PRINCIPAL_LENGTH = 128
NAME_LENGTH = 255
# Largest value a BigInteger column holds.
MAX_AMOUNT = 2**63 - 1


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. ledger_state
# ---------------------------------------------------------------------------
class LedgerState(Base):
    """The ledger's own fields: the arbitrator and the item counter."""

    __tablename__ = "ledger_state"

    LEDGER_ROW_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    admin: Mapped[str] = mapped_column(
        String(PRINCIPAL_LENGTH),
        nullable=False,
        comment="Arbitrator principal, fixed at initialization",
    )
    item_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Number of items ever registered (highest assigned id)",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        CheckConstraint("id = 1", name="ck_ledger_single_row"),
        CheckConstraint("item_count >= 0", name="ck_ledger_item_count"),
    )

    def __repr__(self) -> str:
        return f"<LedgerState admin={self.admin} item_count={self.item_count}>"


# ---------------------------------------------------------------------------
# 2. items
# ---------------------------------------------------------------------------
class Item(Base):
    """A marketplace listing and its transaction state."""

    __tablename__ = "items"

    # --- Identity ---
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    # --- Listing (immutable after registration) ---
    name: Mapped[str] = mapped_column(String(NAME_LENGTH), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Asking price in the smallest currency unit",
    )

    # --- Participants ---
    seller: Mapped[str] = mapped_column(String(PRINCIPAL_LENGTH), nullable=False)
    buyer: Mapped[str | None] = mapped_column(
        String(PRINCIPAL_LENGTH),
        nullable=True,
        default=None,
        comment="Set exactly once, on purchase",
    )

    # --- Status (guarded by ItemStateMachine) ---
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ON_SALE")

    # --- Custody ---
    escrow: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        comment="Amount held in custody for this item",
    )

    # --- Rating ---
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    is_rated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('ON_SALE', 'IN_TRANSACTION', 'COMPLETED', 'REFUNDED', "
            "'REFUND_REQUESTED', 'DISPUTED', 'DISPUTED_RESOLVED')",
            name="ck_item_valid_status",
        ),
        CheckConstraint("price > 0", name="ck_item_positive_price"),
        CheckConstraint("escrow >= 0", name="ck_item_escrow_non_negative"),
        CheckConstraint(
            "escrow = 0 OR status IN ('IN_TRANSACTION', 'REFUND_REQUESTED', 'DISPUTED')",
            name="ck_item_escrow_only_while_pending",
        ),
        CheckConstraint(
            "(status = 'ON_SALE' AND buyer IS NULL) OR "
            "(status <> 'ON_SALE' AND buyer IS NOT NULL)",
            name="ck_item_buyer_matches_status",
        ),
        CheckConstraint(
            "rating IS NULL OR (rating BETWEEN 1 AND 5)",
            name="ck_item_rating_bounds",
        ),
        Index("idx_item_status", "status"),
        Index("idx_item_seller", "seller"),
        Index("idx_item_buyer", "buyer"),
    )

    def __repr__(self) -> str:
        return f"<Item id={self.id} status={self.status} price={self.price} escrow={self.escrow}>"


# ---------------------------------------------------------------------------
# 3 & 4. principal indexes
# ---------------------------------------------------------------------------
class SellerIndexEntry(Base):
    """One item id in a seller's append-only listing history."""

    __tablename__ = "seller_index"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    principal: Mapped[str] = mapped_column(String(PRINCIPAL_LENGTH), nullable=False)
    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id"),
        nullable=False,
    )

    __table_args__ = (Index("idx_seller_index_principal", "principal", "id"),)


class BuyerIndexEntry(Base):
    """One item id in a buyer's append-only purchase history."""

    __tablename__ = "buyer_index"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    principal: Mapped[str] = mapped_column(String(PRINCIPAL_LENGTH), nullable=False)
    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id"),
        nullable=False,
    )

    __table_args__ = (Index("idx_buyer_index_principal", "principal", "id"),)


# ---------------------------------------------------------------------------
# 5. item_events (Append-Only Notification Log)
# ---------------------------------------------------------------------------
class ItemEvent(Base):
    """Immutable record of one notification emitted by a ledger operation.

    This table is APPEND-ONLY. The ledger writes it and never reads it back
    to make a decision.
    """

    __tablename__ = "item_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("items.id"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Item status before the operation (null for registration)",
    )
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(PRINCIPAL_LENGTH), nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        default=None,
        comment="Operation fields: amounts, recipients, reasons, tx refs",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("idx_event_item", "item_id"),
        Index("idx_event_type", "event_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<ItemEvent id={self.id} item={self.item_id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )

