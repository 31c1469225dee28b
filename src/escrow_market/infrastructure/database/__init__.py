"""Database infrastructure: engine, ORM models, and repositories."""

from escrow_market.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from escrow_market.infrastructure.database.orm_models import (
    Base,
    BuyerIndexEntry,
    Item,
    ItemEvent,
    LedgerState,
    SellerIndexEntry,
)
from escrow_market.infrastructure.database.repositories import (
    EventRepository,
    ItemRepository,
    LedgerRepository,
    PrincipalIndexRepository,
)

__all__ = [
    "Base",
    "BuyerIndexEntry",
    "Item",
    "ItemEvent",
    "LedgerState",
    "SellerIndexEntry",
    "EventRepository",
    "ItemRepository",
    "LedgerRepository",
    "PrincipalIndexRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
