"""Ledger Service: the escrow ledger's operations.

This is the application layer that coordinates between:
    - Domain state machine and role table (transition guard)
    - Repositories (items, principal indexes, ledger row)
    - Settlement gateway (disbursements)
    - Event log (notifications)

Both REST routes and MCP tools call into this service, ensuring a single
source of truth for all business rules.

Every operation follows the same discipline: load and lock the item, run
every precondition check, then mutate the item and append its events. An
operation that pays out flushes the item in its final state before asking
the settlement gateway to transfer, and restores it if the transfer is
refused. A failed check or a failed transfer therefore leaves the item
exactly as it was. Committing the surrounding transaction is the caller's
job; each payout carries a per-item reference so a retry after a lost
commit is settled once.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from escrow_market.domain.enums import DisputeOutcome, EventType, ItemStatus, Operation
from escrow_market.domain.exceptions import (
    AlreadyRatedError,
    EmptyReasonError,
    InsufficientPaymentError,
    InvalidListingError,
    InvalidPaymentError,
    InvalidPrincipalError,
    ItemNotFoundError,
    LedgerNotInitializedError,
    OutOfRangeError,
    SelfTradeError,
    TransferFailedError,
)
from escrow_market.domain.state_machine import allowed, allowed_operations, caller_roles
from escrow_market.infrastructure.database.orm_models import (
    MAX_AMOUNT,
    NAME_LENGTH,
    PRINCIPAL_LENGTH,
    Item,
    ItemEvent,
    LedgerState,
)
from escrow_market.infrastructure.database.repositories import (
    EventRepository,
    ItemRepository,
    LedgerRepository,
    PrincipalIndexRepository,
)
from escrow_market.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_market.domain.settlement_protocol import SettlementGateway

logger = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5

_ZERO_PRINCIPAL = re.compile(r"^0x0+$", re.IGNORECASE)


def validate_principal(principal: str | None) -> str:
    """Reject empty, all-zero and over-long principals; return the rest verbatim."""
    if principal is None or not principal.strip() or _ZERO_PRINCIPAL.match(principal):
        raise InvalidPrincipalError(principal or "")
    if len(principal) > PRINCIPAL_LENGTH:
        raise InvalidPrincipalError(principal[:PRINCIPAL_LENGTH] + "...")
    return principal


def disbursement_reference(item_id: int) -> str:
    """Settlement reference for an item's escrow, which is released at most once."""
    return f"item-{item_id}:escrow"


class LedgerService:
    """Owns the item table, the principal indexes and the escrowed funds."""

    def __init__(self, session: AsyncSession, settlement: SettlementGateway) -> None:
        self._session = session
        self._settlement = settlement
        self._ledger_repo = LedgerRepository(session)
        self._item_repo = ItemRepository(session)
        self._index_repo = PrincipalIndexRepository(session)
        self._event_repo = EventRepository(session)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def initialize(self, admin: str) -> LedgerState:
        """Create the ledger with `admin` as arbitrator.

        The admin is fixed for the ledger's lifetime: initializing an existing
        ledger returns it unchanged, whatever admin is passed.
        """
        validate_principal(admin)
        state = await self._ledger_repo.get(for_update=True)
        if state is not None:
            if state.admin != admin:
                logger.warning("ledger.admin_unchanged", admin=state.admin, requested=admin)
            return state

        state = await self._ledger_repo.create(admin)
        logger.info("ledger.initialized", admin=admin)
        return state

    async def get_admin(self) -> str:
        state = await self._require_ledger()
        return state.admin

    async def get_item_count(self) -> int:
        state = await self._ledger_repo.get()
        return state.item_count if state is not None else 0

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_item(
        self,
        name: str,
        description: str,
        price: int,
        caller: str,
    ) -> Item:
        """List a new item for sale; the caller becomes its seller."""
        validate_principal(caller)
        if not name or not name.strip():
            raise InvalidListingError("Item name must not be empty")
        if len(name) > NAME_LENGTH:
            raise InvalidListingError(f"Item name must be at most {NAME_LENGTH} characters")
        if price <= 0:
            raise InvalidListingError(f"Price must be a positive integer, got {price}")
        if price > MAX_AMOUNT:
            raise InvalidListingError(f"Price must not exceed {MAX_AMOUNT}, got {price}")

        state = await self._require_ledger(for_update=True)
        item_id = await self._ledger_repo.allocate_item_id(state)

        item = Item(
            id=item_id,
            name=name,
            description=description or "",
            price=price,
            seller=caller,
            buyer=None,
            status=ItemStatus.ON_SALE.value,
            escrow=0,
            rating=None,
            is_rated=False,
        )
        item = await self._item_repo.create(item)
        await self._index_repo.append_seller(caller, item_id)

        await self._event_repo.record(
            item_id=item_id,
            event_type=EventType.ITEM_REGISTERED,
            old_status=None,
            new_status=ItemStatus.ON_SALE,
            actor=caller,
            metadata={"name": name, "seller": caller, "price": price},
        )
        await self._record_status_change(item, None, caller)

        logger.info("item.registered", item_id=item_id, seller=caller, price=price)
        return item

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    async def buy_item(self, item_id: int, caller: str, paid_amount: int) -> Item:
        """Buy an item; the full amount tendered is held in escrow."""
        validate_principal(caller)
        item, _ = await self._load_item(item_id)
        old_status = ItemStatus(item.status)
        new_status = self._check(item, Operation.BUY_ITEM, caller)

        if paid_amount < item.price:
            raise InsufficientPaymentError(item.price, paid_amount)
        if paid_amount > MAX_AMOUNT:
            raise InvalidPaymentError(paid_amount, MAX_AMOUNT)
        if caller == item.seller:
            raise SelfTradeError(item_id)

        # Overpayment is kept in escrow; there is no refund-of-excess path.
        item.buyer = caller
        item.escrow = paid_amount
        item.status = new_status.value
        await self._item_repo.save(item)
        await self._index_repo.append_buyer(caller, item_id)

        await self._event_repo.record(
            item_id=item_id,
            event_type=EventType.ITEM_BOUGHT,
            old_status=old_status,
            new_status=new_status,
            actor=caller,
            metadata={"buyer": caller, "amount": paid_amount},
        )
        await self._record_status_change(item, old_status, caller)

        logger.info("item.bought", item_id=item_id, buyer=caller, amount=paid_amount)
        return item

    async def confirm_item(self, item_id: int, caller: str) -> Item:
        """Buyer confirms delivery: escrow is released to the seller."""
        validate_principal(caller)
        item, _ = await self._load_item(item_id)
        old_status = ItemStatus(item.status)
        new_status = self._check(item, Operation.CONFIRM_ITEM, caller)

        amount = item.escrow
        tx_ref = await self._release_escrow(item, item.seller, new_status)

        await self._record_status_change(
            item,
            old_status,
            caller,
            metadata={"recipient": item.seller, "amount": amount, "tx_ref": tx_ref},
        )

        logger.info("item.confirmed", item_id=item_id, seller=item.seller, amount=amount)
        return item

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def request_refund(self, item_id: int, caller: str, reason: str) -> Item:
        """Buyer asks for a refund; funds stay in escrow."""
        validate_principal(caller)
        item, _ = await self._load_item(item_id)
        old_status = ItemStatus(item.status)
        new_status = self._check(item, Operation.REQUEST_REFUND, caller)
        self._require_reason(reason, Operation.REQUEST_REFUND)

        item.status = new_status.value
        await self._item_repo.save(item)

        await self._event_repo.record(
            item_id=item_id,
            event_type=EventType.REFUND_REQUESTED,
            old_status=old_status,
            new_status=new_status,
            actor=caller,
            metadata={"buyer": caller, "reason": reason},
        )
        await self._record_status_change(item, old_status, caller)

        logger.info("refund.requested", item_id=item_id, buyer=caller)
        return item

    async def approve_refund(self, item_id: int, caller: str) -> Item:
        """Seller accepts the refund: escrow goes back to the buyer."""
        validate_principal(caller)
        item, _ = await self._load_item(item_id)
        old_status = ItemStatus(item.status)
        new_status = self._check(item, Operation.APPROVE_REFUND, caller)

        amount = item.escrow
        tx_ref = await self._release_escrow(item, item.buyer, new_status)

        await self._event_repo.record(
            item_id=item_id,
            event_type=EventType.REFUND_APPROVED,
            old_status=old_status,
            new_status=new_status,
            actor=caller,
            metadata={"seller": caller, "recipient": item.buyer, "amount": amount, "tx_ref": tx_ref},
        )
        await self._record_status_change(item, old_status, caller)

        logger.info("refund.approved", item_id=item_id, buyer=item.buyer, amount=amount)
        return item

    async def refuse_refund(self, item_id: int, caller: str, reason: str) -> Item:
        """Seller contests the refund; the item goes to arbitration."""
        validate_principal(caller)
        item, _ = await self._load_item(item_id)
        old_status = ItemStatus(item.status)
        new_status = self._check(item, Operation.REFUSE_REFUND, caller)
        self._require_reason(reason, Operation.REFUSE_REFUND)

        item.status = new_status.value
        await self._item_repo.save(item)

        await self._event_repo.record(
            item_id=item_id,
            event_type=EventType.REFUND_REFUSED,
            old_status=old_status,
            new_status=new_status,
            actor=caller,
            metadata={"seller": caller, "reason": reason},
        )
        await self._record_status_change(item, old_status, caller)

        logger.info("refund.refused", item_id=item_id, seller=caller)
        return item

    # ------------------------------------------------------------------
    # Arbitration
    # ------------------------------------------------------------------

    async def resolve_dispute(
        self,
        item_id: int,
        caller: str,
        favor_buyer: bool,
        reason: str = "",
    ) -> Item:
        """Admin settles a dispute, paying either the buyer or the seller.

        Both directions end in DISPUTED_RESOLVED; only the recipient differs.
        """
        validate_principal(caller)
        item, state = await self._load_item(item_id)
        old_status = ItemStatus(item.status)
        new_status = self._check(item, Operation.RESOLVE_DISPUTE, caller, admin=state.admin)

        recipient = item.buyer if favor_buyer else item.seller
        outcome = DisputeOutcome.REFUNDED if favor_buyer else DisputeOutcome.COMPLETED
        amount = item.escrow
        tx_ref = await self._release_escrow(item, recipient, new_status)

        await self._event_repo.record(
            item_id=item_id,
            event_type=EventType.DISPUTE_RESOLVED,
            old_status=old_status,
            new_status=new_status,
            actor=caller,
            metadata={
                "admin": caller,
                "outcome": outcome.value,
                "reason": reason,
                "recipient": recipient,
                "amount": amount,
                "tx_ref": tx_ref,
            },
        )
        await self._record_status_change(item, old_status, caller)

        logger.info(
            "dispute.resolved",
            item_id=item_id,
            outcome=outcome.value,
            recipient=recipient,
            amount=amount,
        )
        return item

    # ------------------------------------------------------------------
    # Rating
    # ------------------------------------------------------------------

    async def rate_transaction(self, item_id: int, caller: str, rating: int) -> Item:
        """Buyer records a 1-5 rating once the transaction is over."""
        validate_principal(caller)
        item, _ = await self._load_item(item_id)
        status = self._check(item, Operation.RATE_TRANSACTION, caller)

        if not MIN_RATING <= rating <= MAX_RATING:
            raise OutOfRangeError(rating, MIN_RATING, MAX_RATING)
        if item.is_rated:
            raise AlreadyRatedError(item_id)

        item.rating = rating
        item.is_rated = True
        await self._item_repo.save(item)

        await self._event_repo.record(
            item_id=item_id,
            event_type=EventType.TRANSACTION_RATED,
            old_status=status,
            new_status=status,
            actor=caller,
            metadata={"buyer": caller, "rating": rating},
        )

        logger.info("item.rated", item_id=item_id, rating=rating)
        return item

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_item(self, item_id: int) -> Item:
        """Get an item or raise ItemNotFoundError."""
        item, _ = await self._load_item(item_id, for_update=False)
        return item

    async def get_items_by_seller(self, principal: str) -> list[int]:
        validate_principal(principal)
        return await self._index_repo.get_seller_items(principal)

    async def get_items_by_buyer(self, principal: str) -> list[int]:
        validate_principal(principal)
        return await self._index_repo.get_buyer_items(principal)

    async def get_status(self, item_id: int) -> dict:
        """Get item status with the operations the transition table allows next."""
        item = await self.get_item(item_id)
        return {
            "item_id": item.id,
            "status": item.status,
            "escrow": item.escrow,
            "buyer": item.buyer,
            "is_rated": item.is_rated,
            "allowed_operations": allowed_operations(item.status),
        }

    async def get_events(self, item_id: int) -> list[ItemEvent]:
        """Get an item's notification trail in emission order."""
        await self.get_item(item_id)
        return await self._event_repo.get_by_item(item_id)

    async def get_custody_summary(self) -> dict:
        """Total escrow currently held and the number of items holding it."""
        total, count = await self._item_repo.get_custody_totals()
        return {"total_escrow": total, "items_in_custody": count}

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _require_ledger(self, for_update: bool = False) -> LedgerState:
        state = await self._ledger_repo.get(for_update=for_update)
        if state is None:
            raise LedgerNotInitializedError()
        return state

    async def _load_item(self, item_id: int, for_update: bool = True) -> tuple[Item, LedgerState]:
        """Fetch an item within [1, item_count], locking its row for mutation."""
        state = await self._ledger_repo.get()
        if state is None or not 1 <= item_id <= state.item_count:
            raise ItemNotFoundError(item_id)
        item = await self._item_repo.get_by_id(item_id, for_update=for_update)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item, state

    @staticmethod
    def _check(
        item: Item,
        operation: Operation,
        caller: str,
        admin: str | None = None,
    ) -> ItemStatus:
        roles = caller_roles(caller, item.seller, item.buyer, admin)
        return allowed(item.status, operation, roles, caller)

    @staticmethod
    def _require_reason(reason: str | None, operation: Operation) -> None:
        if not reason or not reason.strip():
            raise EmptyReasonError(operation)

    async def _release_escrow(
        self,
        item: Item,
        recipient: str | None,
        new_status: ItemStatus,
    ) -> str:
        """Move the item to `new_status` and pay its whole escrow to `recipient`.

        The emptied item is flushed before any money moves, so database errors
        surface while the funds are still held. A refused transfer puts the
        escrow and status back. The transfer carries the item's disbursement
        reference, so replaying the operation after a lost commit does not pay
        a second time.
        """
        amount = item.escrow
        old_status = item.status
        item.escrow = 0
        item.status = new_status.value
        await self._item_repo.save(item)

        try:
            return await self._disburse(item.id, recipient or "", amount)
        except TransferFailedError:
            item.escrow = amount
            item.status = old_status
            await self._item_repo.save(item)
            raise

    async def _disburse(self, item_id: int, recipient: str, amount: int) -> str:
        reference = disbursement_reference(item_id)
        try:
            result = await self._settlement.transfer(recipient, amount, reference=reference)
        except Exception as exc:
            logger.exception("settlement.transfer_error", item_id=item_id, to=recipient)
            raise TransferFailedError(item_id, recipient, amount, str(exc)) from exc

        if not result.success:
            logger.warning(
                "settlement.transfer_failed",
                item_id=item_id,
                to=recipient,
                amount=amount,
                error=result.error,
            )
            raise TransferFailedError(item_id, recipient, amount, result.error or "")
        return result.tx_ref or ""

    async def _record_status_change(
        self,
        item: Item,
        old_status: ItemStatus | None,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._event_repo.record(
            item_id=item.id,
            event_type=EventType.ITEM_STATUS_CHANGED,
            old_status=old_status,
            new_status=ItemStatus(item.status),
            actor=actor,
            metadata=metadata,
        )
