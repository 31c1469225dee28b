"""Tests for the simulated settlement substrate."""

from __future__ import annotations

from escrow_market.domain.settlement_protocol import SettlementGateway, TransferResult
from escrow_market.services.settlement_service import SimulatedSettlement


class TestSimulatedSettlement:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(SimulatedSettlement(), SettlementGateway)

    async def test_transfer_records_payout(self) -> None:
        settlement = SimulatedSettlement()
        result = await settlement.transfer("0xseller", 100)

        assert result.success
        assert result.tx_ref.startswith("0x")
        assert len(result.tx_ref) == 66
        assert settlement.paid_to("0xseller") == 100
        assert settlement.payouts[0].tx_ref == result.tx_ref

    async def test_transfer_refs_are_unique(self) -> None:
        settlement = SimulatedSettlement()
        first = await settlement.transfer("0xa", 1)
        second = await settlement.transfer("0xa", 1)
        assert first.tx_ref != second.tx_ref
        assert settlement.total_disbursed == 2

    async def test_failing_recipient(self) -> None:
        settlement = SimulatedSettlement(failing_recipients=["0xbuyer"])
        result = await settlement.transfer("0xbuyer", 100)

        assert not result.success
        assert result.error
        assert settlement.paid_to("0xbuyer") == 0
        assert settlement.payouts == []

    async def test_restore_recipient(self) -> None:
        settlement = SimulatedSettlement()
        settlement.fail_transfers_to("0xbuyer")
        assert not (await settlement.transfer("0xbuyer", 5)).success

        settlement.restore_recipient("0xbuyer")
        assert (await settlement.transfer("0xbuyer", 5)).success

    async def test_non_positive_amount(self) -> None:
        settlement = SimulatedSettlement()
        assert not (await settlement.transfer("0xseller", 0)).success

    async def test_same_reference_settles_once(self) -> None:
        settlement = SimulatedSettlement()
        first = await settlement.transfer("0xseller", 100, reference="item-1:escrow")
        again = await settlement.transfer("0xseller", 100, reference="item-1:escrow")

        assert again.success
        assert again.tx_ref == first.tx_ref
        assert settlement.paid_to("0xseller") == 100
        assert len(settlement.payouts) == 1
        assert settlement.payouts[0].reference == "item-1:escrow"

    async def test_settled_reference_rejects_other_recipient(self) -> None:
        settlement = SimulatedSettlement()
        await settlement.transfer("0xseller", 100, reference="item-1:escrow")

        result = await settlement.transfer("0xbuyer", 100, reference="item-1:escrow")
        assert not result.success
        assert "item-1:escrow" in result.error
        assert settlement.paid_to("0xbuyer") == 0

    async def test_failed_transfer_does_not_consume_reference(self) -> None:
        settlement = SimulatedSettlement(failing_recipients=["0xseller"])
        assert not (await settlement.transfer("0xseller", 100, reference="item-1:escrow")).success

        settlement.restore_recipient("0xseller")
        assert (await settlement.transfer("0xseller", 100, reference="item-1:escrow")).success
        assert settlement.paid_to("0xseller") == 100


class TestTransferResult:
    def test_ok(self) -> None:
        assert TransferResult.ok("0xabc") == TransferResult(success=True, tx_ref="0xabc")

    def test_failed(self) -> None:
        result = TransferResult.failed("nope")
        assert not result.success
        assert result.tx_ref is None
        assert result.error == "nope"
