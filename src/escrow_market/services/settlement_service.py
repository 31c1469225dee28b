"""Settlement Service: the bundled settlement substrate.

SimulatedSettlement satisfies the SettlementGateway protocol without touching
a real chain. It generates fake transaction references and keeps an in-memory
record of every payout, keyed by disbursement reference so a retried payout
is settled once. It can also be told to fail transfers to chosen recipients,
so the ledger's rollback path can be exercised end to end.
"""

from __future__ import annotations

import uuid
from collections import defaultdict
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

from escrow_market.config import get_settings
from escrow_market.domain.settlement_protocol import TransferResult
from escrow_market.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = get_logger(__name__)


@dataclass(frozen=True)
class PayoutRecord:
    """One successful simulated disbursement."""

    tx_ref: str
    to: str
    amount: int
    reference: str | None = None


class SimulatedSettlement:
    """Handles escrow disbursements with simulated transactions."""

    def __init__(self, failing_recipients: Iterable[str] = ()) -> None:
        """Initialize the simulator.

        Args:
            failing_recipients: Principals whose transfers always fail until
                restored with restore_recipient().
        """
        self._failing = set(failing_recipients)
        self._balances: dict[str, int] = defaultdict(int)
        self.payouts: list[PayoutRecord] = []
        self._settled: dict[str, PayoutRecord] = {}

    def fail_transfers_to(self, principal: str) -> None:
        self._failing.add(principal)

    def restore_recipient(self, principal: str) -> None:
        self._failing.discard(principal)

    def paid_to(self, principal: str) -> int:
        """Total amount disbursed to a principal so far."""
        return self._balances[principal]

    @property
    def total_disbursed(self) -> int:
        return sum(p.amount for p in self.payouts)

    async def transfer(self, to: str, amount: int, reference: str | None = None) -> TransferResult:
        """Disburse `amount` to `to`, or report a failure for blocked recipients.

        A reference that was already settled returns the original transaction
        when it names the same payout, and fails when it names another one.
        """
        if reference is not None and reference in self._settled:
            prior = self._settled[reference]
            if prior.to != to or prior.amount != amount:
                logger.warning(
                    "settlement.reference_conflict",
                    reference=reference,
                    to=to,
                    amount=amount,
                    settled_to=prior.to,
                    settled_amount=prior.amount,
                )
                return TransferResult.failed(f"reference {reference} was settled to another payout")
            logger.info("settlement.already_settled", reference=reference, tx_ref=prior.tx_ref)
            return TransferResult.ok(prior.tx_ref)

        if amount <= 0:
            logger.warning("settlement.rejected", to=to, amount=amount, reason="non-positive amount")
            return TransferResult.failed(f"non-positive amount {amount}")

        if to in self._failing:
            logger.warning("settlement.simulated_failure", to=to, amount=amount)
            return TransferResult.failed("recipient rejected the transfer")

        tx_ref = "0x" + uuid.uuid4().hex + uuid.uuid4().hex
        record = PayoutRecord(tx_ref=tx_ref, to=to, amount=amount, reference=reference)
        self._balances[to] += amount
        self.payouts.append(record)
        if reference is not None:
            self._settled[reference] = record
        logger.info(
            "settlement.transfer_simulated",
            tx_ref=tx_ref,
            to=to,
            amount=amount,
            reference=reference,
        )
        return TransferResult.ok(tx_ref)


@lru_cache(maxsize=1)
def get_settlement_gateway() -> SimulatedSettlement:
    """Return the process-wide settlement gateway configured from settings."""
    settings = get_settings()
    return SimulatedSettlement(failing_recipients=settings.failing_recipient_list)
