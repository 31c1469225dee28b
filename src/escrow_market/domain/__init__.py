"""Domain layer: pure business logic with zero framework dependencies."""

from escrow_market.domain.enums import (
    DisputeOutcome,
    EventType,
    ItemStatus,
    Operation,
    Role,
)
from escrow_market.domain.exceptions import (
    InvalidStateError,
    ItemNotFoundError,
    MarketError,
    NotAuthorizedError,
    TransferFailedError,
)
from escrow_market.domain.settlement_protocol import (
    SettlementGateway,
    TransferResult,
)
from escrow_market.domain.state_machine import (
    ItemStateMachine,
    allowed,
    caller_roles,
)

__all__ = [
    "DisputeOutcome",
    "EventType",
    "ItemStatus",
    "Operation",
    "Role",
    "MarketError",
    "InvalidStateError",
    "ItemNotFoundError",
    "NotAuthorizedError",
    "TransferFailedError",
    "SettlementGateway",
    "TransferResult",
    "ItemStateMachine",
    "allowed",
    "caller_roles",
]
