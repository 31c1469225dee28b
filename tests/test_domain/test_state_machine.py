"""Tests for the ItemStateMachine domain guard and the allowed() check.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. allowed() checks status before role.
    4. Terminal statuses only permit rating.
"""

from __future__ import annotations

import warnings

import pytest
from statemachine.exceptions import TransitionNotAllowed

from escrow_market.domain.enums import ItemStatus, Operation, Role
from escrow_market.domain.exceptions import InvalidStateError, NotAuthorizedError
from escrow_market.domain.state_machine import (
    ItemStateMachine,
    allowed,
    allowed_operations,
    caller_roles,
)

SELLER = "0xseller"
BUYER = "0xbuyer"
ADMIN = "0xadmin"


class TestHappyPath:
    """Buy then confirm: ON_SALE -> COMPLETED."""

    def test_full_lifecycle(self) -> None:
        sm = ItemStateMachine("ON_SALE")
        assert sm.status == "ON_SALE"

        sm.buy_item()
        assert sm.status == "IN_TRANSACTION"

        sm.confirm_item()
        assert sm.status == "COMPLETED"

    def test_status_reads_emit_no_deprecation_warnings(self) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            sm = ItemStateMachine("IN_TRANSACTION")
            sm.confirm_item()
            assert sm.status == "COMPLETED"
            assert sm.get_allowed_events() == []


class TestRefundPath:
    def test_refund_approved(self) -> None:
        sm = ItemStateMachine("IN_TRANSACTION")
        sm.request_refund()
        assert sm.status == "REFUND_REQUESTED"

        sm.approve_refund()
        assert sm.status == "REFUNDED"

    def test_refund_refused_then_resolved(self) -> None:
        sm = ItemStateMachine("REFUND_REQUESTED")
        sm.refuse_refund()
        assert sm.status == "DISPUTED"

        sm.resolve_dispute()
        assert sm.status == "DISPUTED_RESOLVED"


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_on_sale_to_completed(self) -> None:
        sm = ItemStateMachine("ON_SALE")
        with pytest.raises(TransitionNotAllowed):
            sm.confirm_item()

    def test_cannot_buy_twice(self) -> None:
        sm = ItemStateMachine("IN_TRANSACTION")
        with pytest.raises(TransitionNotAllowed):
            sm.buy_item()

    def test_no_second_refund_request(self) -> None:
        sm = ItemStateMachine("REFUND_REQUESTED")
        with pytest.raises(TransitionNotAllowed):
            sm.request_refund()

    def test_cannot_confirm_disputed(self) -> None:
        sm = ItemStateMachine("DISPUTED")
        with pytest.raises(TransitionNotAllowed):
            sm.confirm_item()

    @pytest.mark.parametrize("status", ["COMPLETED", "REFUNDED", "DISPUTED_RESOLVED"])
    def test_terminal_is_final(self, status: str) -> None:
        sm = ItemStateMachine(status)
        assert sm.get_allowed_events() == []

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            ItemStateMachine("SHIPPED")


class TestAllowedEvents:
    def test_on_sale_allowed(self) -> None:
        assert ItemStateMachine("ON_SALE").get_allowed_events() == ["buy_item"]

    def test_in_transaction_allowed(self) -> None:
        allowed_events = ItemStateMachine("IN_TRANSACTION").get_allowed_events()
        assert set(allowed_events) == {"confirm_item", "request_refund"}

    def test_refund_requested_allowed(self) -> None:
        allowed_events = ItemStateMachine("REFUND_REQUESTED").get_allowed_events()
        assert set(allowed_events) == {"approve_refund", "refuse_refund"}


class TestCallerRoles:
    def test_seller(self) -> None:
        roles = caller_roles(SELLER, SELLER, BUYER, ADMIN)
        assert roles == {Role.ANYONE, Role.SELLER}

    def test_buyer_before_purchase(self) -> None:
        assert caller_roles(BUYER, SELLER, None, ADMIN) == {Role.ANYONE}

    def test_admin(self) -> None:
        assert Role.ADMIN in caller_roles(ADMIN, SELLER, BUYER, ADMIN)

    def test_admin_unknown(self) -> None:
        assert caller_roles(ADMIN, SELLER, BUYER, None) == {Role.ANYONE}

    def test_comparison_is_verbatim(self) -> None:
        assert Role.BUYER not in caller_roles("0xBUYER", SELLER, BUYER, ADMIN)


class TestAllowed:
    def test_buy_by_anyone(self) -> None:
        result = allowed("ON_SALE", Operation.BUY_ITEM, {Role.ANYONE})
        assert result is ItemStatus.IN_TRANSACTION

    def test_accepts_operation_name(self) -> None:
        result = allowed("IN_TRANSACTION", "confirm_item", {Role.ANYONE, Role.BUYER})
        assert result is ItemStatus.COMPLETED

    def test_wrong_role(self) -> None:
        with pytest.raises(NotAuthorizedError) as exc_info:
            allowed("IN_TRANSACTION", Operation.CONFIRM_ITEM, {Role.ANYONE, Role.SELLER}, SELLER)
        assert exc_info.value.code == "NOT_AUTHORIZED"

    def test_status_checked_before_role(self) -> None:
        with pytest.raises(InvalidStateError):
            allowed("ON_SALE", Operation.CONFIRM_ITEM, {Role.ANYONE, Role.SELLER}, SELLER)

    def test_only_admin_resolves(self) -> None:
        with pytest.raises(NotAuthorizedError):
            allowed("DISPUTED", Operation.RESOLVE_DISPUTE, {Role.ANYONE, Role.BUYER})
        result = allowed("DISPUTED", Operation.RESOLVE_DISPUTE, {Role.ANYONE, Role.ADMIN})
        assert result is ItemStatus.DISPUTED_RESOLVED

    def test_seller_answers_refund(self) -> None:
        roles = {Role.ANYONE, Role.SELLER}
        assert allowed("REFUND_REQUESTED", Operation.APPROVE_REFUND, roles) is ItemStatus.REFUNDED
        assert allowed("REFUND_REQUESTED", Operation.REFUSE_REFUND, roles) is ItemStatus.DISPUTED

    @pytest.mark.parametrize("status", ["COMPLETED", "REFUNDED", "DISPUTED_RESOLVED"])
    def test_rating_keeps_terminal_status(self, status: str) -> None:
        result = allowed(status, Operation.RATE_TRANSACTION, {Role.ANYONE, Role.BUYER})
        assert result == status

    @pytest.mark.parametrize("status", ["ON_SALE", "IN_TRANSACTION", "DISPUTED"])
    def test_rating_requires_terminal_status(self, status: str) -> None:
        with pytest.raises(InvalidStateError):
            allowed(status, Operation.RATE_TRANSACTION, {Role.ANYONE, Role.BUYER})

    def test_unknown_operation(self) -> None:
        with pytest.raises(ValueError):
            allowed("ON_SALE", "ship_item", {Role.ANYONE})


class TestAllowedOperations:
    def test_non_terminal(self) -> None:
        assert allowed_operations("ON_SALE") == ["buy_item"]

    def test_terminal_only_rating(self) -> None:
        assert allowed_operations("REFUNDED") == ["rate_transaction"]
