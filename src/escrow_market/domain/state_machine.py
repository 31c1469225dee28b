"""Item Lifecycle State Machine Guard.

Uses python-statemachine to enforce legal status transitions at the domain level.
No matter what the API or an MCP client asks for, an illegal transition
(e.g., ON_SALE -> COMPLETED) will raise TransitionNotAllowed.

Transition table:
    ON_SALE           -> IN_TRANSACTION     (buy_item)
    IN_TRANSACTION    -> COMPLETED          (confirm_item)
    IN_TRANSACTION    -> REFUND_REQUESTED   (request_refund)
    REFUND_REQUESTED  -> REFUNDED           (approve_refund)
    REFUND_REQUESTED  -> DISPUTED           (refuse_refund)
    DISPUTED          -> DISPUTED_RESOLVED  (resolve_dispute)

Role table (who may fire each operation):
    buy_item          anyone (self-trade is rejected separately by the ledger)
    confirm_item      buyer
    request_refund    buyer
    approve_refund    seller
    refuse_refund     seller
    resolve_dispute   admin
    rate_transaction  buyer (terminal statuses only, no transition)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from escrow_market.domain.enums import ItemStatus, Operation, Role
from escrow_market.domain.exceptions import InvalidStateError, NotAuthorizedError

if TYPE_CHECKING:
    from collections.abc import Iterable


class ItemStateMachine(StateMachine):
    """State machine that guards item lifecycle transitions.

    Usage:
        sm = ItemStateMachine(current_status="ON_SALE")
        sm.buy_item()        # transitions to IN_TRANSACTION
        sm.status            # "IN_TRANSACTION"
    """

    # --- States ---
    ON_SALE = State("ON_SALE", initial=True)
    IN_TRANSACTION = State("IN_TRANSACTION")
    REFUND_REQUESTED = State("REFUND_REQUESTED")
    DISPUTED = State("DISPUTED")
    COMPLETED = State("COMPLETED", final=True)
    REFUNDED = State("REFUNDED", final=True)
    DISPUTED_RESOLVED = State("DISPUTED_RESOLVED", final=True)

    # --- Events / Transitions ---

    # Purchase
    buy_item = ON_SALE.to(IN_TRANSACTION)

    # Delivery outcome
    confirm_item = IN_TRANSACTION.to(COMPLETED)
    request_refund = IN_TRANSACTION.to(REFUND_REQUESTED)

    # Seller's answer to a refund request
    approve_refund = REFUND_REQUESTED.to(REFUNDED)
    refuse_refund = REFUND_REQUESTED.to(DISPUTED)

    # Arbitration: both directions end in the same terminal state
    resolve_dispute = DISPUTED.to(DISPUTED_RESOLVED)

    def __init__(self, current_status: str = "ON_SALE") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current ItemStatus value (e.g., "IN_TRANSACTION").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=str(current_status))

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches ItemStatus enum)."""
        return str(self.current_state_value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


REQUIRED_ROLES: dict[Operation, Role] = {
    Operation.BUY_ITEM: Role.ANYONE,
    Operation.CONFIRM_ITEM: Role.BUYER,
    Operation.REQUEST_REFUND: Role.BUYER,
    Operation.APPROVE_REFUND: Role.SELLER,
    Operation.REFUSE_REFUND: Role.SELLER,
    Operation.RESOLVE_DISPUTE: Role.ADMIN,
    Operation.RATE_TRANSACTION: Role.BUYER,
}


def caller_roles(
    caller: str,
    seller: str,
    buyer: str | None,
    admin: str | None,
) -> frozenset[Role]:
    """Return every role the caller holds with respect to one item."""
    roles = {Role.ANYONE}
    if caller == seller:
        roles.add(Role.SELLER)
    if buyer is not None and caller == buyer:
        roles.add(Role.BUYER)
    if admin is not None and caller == admin:
        roles.add(Role.ADMIN)
    return frozenset(roles)


def allowed(
    current_status: str,
    operation: Operation | str,
    roles: Iterable[Role],
    caller: str = "",
) -> ItemStatus:
    """Check an operation against the transition and role tables.

    Status is checked before role, so an operation fired from the wrong status
    reports InvalidStateError even when the caller also lacks the role.

    Args:
        current_status: Current ItemStatus value.
        operation: The operation to perform.
        roles: Roles held by the caller (see caller_roles).
        caller: Caller principal, used only in the error message.

    Returns:
        The status the item will have after the operation. For
        rate_transaction this is the unchanged current status.

    Raises:
        InvalidStateError: If the operation is not valid from current_status.
        NotAuthorizedError: If the caller lacks the required role.
        ValueError: If the status or operation is unknown.
    """
    op = Operation(operation)
    status = ItemStatus(current_status)

    if op is Operation.RATE_TRANSACTION:
        if not status.is_terminal:
            raise InvalidStateError(status, op)
        next_status = status
    else:
        sm = ItemStateMachine(current_status=status)
        try:
            getattr(sm, op.value)()
        except TransitionNotAllowed as err:
            raise InvalidStateError(status, op) from err
        next_status = ItemStatus(sm.status)

    required = REQUIRED_ROLES[op]
    if required not in set(roles):
        raise NotAuthorizedError(op, required, caller)
    return next_status


def allowed_operations(current_status: str) -> list[str]:
    """Return the operations that may fire from a status, ignoring roles."""
    status = ItemStatus(current_status)
    if status.is_terminal:
        return [Operation.RATE_TRANSACTION.value]
    return ItemStateMachine(current_status=status).get_allowed_events()
