"""Settlement Gateway Protocol.

Defines the single primitive the ledger needs from the settlement substrate:
move an amount out of custody to a principal and report success or failure.
This is a Protocol (structural subtyping) so gateways don't need to inherit
from a base class; they just need to match the shape.

The domain layer has ZERO imports from any chain or payment SDK.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a disbursement.

    Attributes:
        success: Whether the funds reached the recipient.
        tx_ref: Transaction reference assigned by the substrate.
        error: Reason reported by the substrate when success is False.
    """

    success: bool
    tx_ref: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, tx_ref: str) -> TransferResult:
        return cls(success=True, tx_ref=tx_ref)

    @classmethod
    def failed(cls, error: str) -> TransferResult:
        return cls(success=False, error=error)


@runtime_checkable
class SettlementGateway(Protocol):
    """Protocol that every settlement substrate must satisfy.

    Concrete implementations:
        - services/settlement_service.py (SimulatedSettlement)
    """

    async def transfer(self, to: str, amount: int, reference: str | None = None) -> TransferResult:
        """Disburse `amount` from custody to `to`.

        `reference` identifies the disbursement. A substrate that has already
        settled a reference must return that settlement instead of paying
        again, so a ledger operation retried after a lost commit pays once.

        Implementations report failure through the result rather than raising;
        the ledger also treats a raised exception as a failed transfer.
        """
        ...
