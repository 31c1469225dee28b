"""Domain enumerations for the Escrow Market.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class ItemStatus(enum.StrEnum):
    """Lifecycle states of a marketplace item.

    State transitions are enforced by the ItemStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    ON_SALE = "ON_SALE"
    IN_TRANSACTION = "IN_TRANSACTION"
    COMPLETED = "COMPLETED"
    REFUNDED = "REFUNDED"
    REFUND_REQUESTED = "REFUND_REQUESTED"
    DISPUTED = "DISPUTED"
    DISPUTED_RESOLVED = "DISPUTED_RESOLVED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def holds_escrow(self) -> bool:
        return self in ESCROW_HOLDING_STATUSES


TERMINAL_STATUSES = frozenset(
    {ItemStatus.COMPLETED, ItemStatus.REFUNDED, ItemStatus.DISPUTED_RESOLVED}
)

# The only statuses in which an item may carry a non-zero escrow balance.
ESCROW_HOLDING_STATUSES = frozenset(
    {ItemStatus.IN_TRANSACTION, ItemStatus.REFUND_REQUESTED, ItemStatus.DISPUTED}
)


class Operation(enum.StrEnum):
    """Ledger operations that are gated by status and caller role.

    The transition operations share their names with the state machine events.
    """

    BUY_ITEM = "buy_item"
    CONFIRM_ITEM = "confirm_item"
    REQUEST_REFUND = "request_refund"
    APPROVE_REFUND = "approve_refund"
    REFUSE_REFUND = "refuse_refund"
    RESOLVE_DISPUTE = "resolve_dispute"
    RATE_TRANSACTION = "rate_transaction"


class Role(enum.StrEnum):
    """Roles a caller can hold with respect to an item."""

    ANYONE = "ANYONE"
    SELLER = "SELLER"
    BUYER = "BUYER"
    ADMIN = "ADMIN"


class EventType(enum.StrEnum):
    """Types of notifications recorded in the item_events table.

    Every state-changing operation produces its own event; every status change
    additionally produces ITEM_STATUS_CHANGED.
    """

    ITEM_REGISTERED = "ITEM_REGISTERED"
    ITEM_STATUS_CHANGED = "ITEM_STATUS_CHANGED"
    ITEM_BOUGHT = "ITEM_BOUGHT"

    # Refund events
    REFUND_REQUESTED = "REFUND_REQUESTED"
    REFUND_APPROVED = "REFUND_APPROVED"
    REFUND_REFUSED = "REFUND_REFUSED"

    # Arbitration
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"

    TRANSACTION_RATED = "TRANSACTION_RATED"


class DisputeOutcome(enum.StrEnum):
    """Direction of an arbitration, carried on DISPUTE_RESOLVED events."""

    REFUNDED = "Refunded"
    COMPLETED = "Completed"
