"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import func, select

from escrow_market.domain.enums import ItemStatus
from escrow_market.infrastructure.database.orm_models import (
    BuyerIndexEntry,
    Item,
    ItemEvent,
    LedgerState,
    SellerIndexEntry,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from escrow_market.domain.enums import EventType


class LedgerRepository:
    """Data access for the single ledger_state row."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, for_update: bool = False) -> LedgerState | None:
        """Fetch the ledger row, optionally locking it for id allocation."""
        stmt = select(LedgerState).where(LedgerState.id == LedgerState.LEDGER_ROW_ID)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, admin: str) -> LedgerState:
        """Insert the ledger row with a fixed admin and a zero item counter."""
        state = LedgerState(id=LedgerState.LEDGER_ROW_ID, admin=admin, item_count=0)
        self._session.add(state)
        await self._session.flush()
        return state

    async def allocate_item_id(self, state: LedgerState) -> int:
        """Bump the counter and return the next dense item id."""
        state.item_count += 1
        await self._session.flush()
        return state.item_count


class ItemRepository:
    """Data access for items."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, item: Item) -> Item:
        """Insert a new item."""
        self._session.add(item)
        await self._session.flush()
        return item

    async def get_by_id(self, item_id: int, for_update: bool = False) -> Item | None:
        """Fetch an item by id, optionally locking its row."""
        stmt = select(Item).where(Item.id == item_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def save(self, item: Item) -> Item:
        """Flush in-place changes to an item (call AFTER all checks passed)."""
        await self._session.flush()
        return item

    async def get_custody_totals(self) -> tuple[int, int]:
        """Return (total escrow held, number of items holding escrow)."""
        result = await self._session.execute(
            select(func.coalesce(func.sum(Item.escrow), 0), func.count(Item.id)).where(
                Item.status.in_([s.value for s in ItemStatus if s.holds_escrow])
            )
        )
        total, count = result.one()
        return int(total), int(count)


class PrincipalIndexRepository:
    """Data access for the append-only seller and buyer indexes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append_seller(self, principal: str, item_id: int) -> None:
        self._session.add(SellerIndexEntry(principal=principal, item_id=item_id))
        await self._session.flush()

    async def append_buyer(self, principal: str, item_id: int) -> None:
        self._session.add(BuyerIndexEntry(principal=principal, item_id=item_id))
        await self._session.flush()

    async def get_seller_items(self, principal: str) -> list[int]:
        """Item ids listed by a seller, in listing order."""
        result = await self._session.execute(
            select(SellerIndexEntry.item_id)
            .where(SellerIndexEntry.principal == principal)
            .order_by(SellerIndexEntry.id.asc())
        )
        return list(result.scalars().all())

    async def get_buyer_items(self, principal: str) -> list[int]:
        """Item ids bought by a buyer, in purchase order."""
        result = await self._session.execute(
            select(BuyerIndexEntry.item_id)
            .where(BuyerIndexEntry.principal == principal)
            .order_by(BuyerIndexEntry.id.asc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only notification log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        item_id: int,
        event_type: EventType,
        old_status: ItemStatus | None,
        new_status: ItemStatus,
        actor: str,
        metadata: dict | None = None,
    ) -> ItemEvent:
        """Append a new event. This is the ONLY write operation allowed."""
        evt = ItemEvent(
            item_id=item_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_item(self, item_id: int) -> list[ItemEvent]:
        """Fetch all events for an item in emission order."""
        result = await self._session.execute(
            select(ItemEvent)
            .where(ItemEvent.item_id == item_id)
            .order_by(ItemEvent.id.asc())
        )
        return list(result.scalars().all())
