"""Application services: use case orchestration."""

from escrow_market.services.ledger_service import LedgerService
from escrow_market.services.settlement_service import SimulatedSettlement

__all__ = ["LedgerService", "SimulatedSettlement"]
