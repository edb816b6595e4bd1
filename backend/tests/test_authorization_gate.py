"""
test_authorization_gate.py: Unit tests for the quote lifecycle state machine.

Tests cover:
  - send: compliant quotes go to sent; below-floor quotes are redirected to
    awaiting_authorization instead of failing
  - admin approve (idempotent) and admin reject (back to draft, revision bump)
  - resending an unchanged rejected quote lands in awaiting_authorization again
  - client approve / reject and conversion
  - every transition outside the table returns a StaleStateError with the
    untouched quote instead of raising
  - optimistic preconditions on lifecycle / authorization status

All tests are pure unit tests; no database or external services required.
"""

from decimal import Decimal

import pytest

from margindesk.services.authorization_gate import (
    TRANSITIONS,
    GateAction,
    admin_approve,
    admin_reject,
    apply_transition,
    client_approve,
    client_reject,
    convert_quote,
    send_quote,
)
from margindesk.services.errors import StaleStateError, ValidationError
from margindesk.services.pricing_models import AuthorizationStatus, DiscountKind, LifecycleStatus, Quote


# ===========================================================================
# Class 1: Sending
# ===========================================================================

class TestSend:
    """draft -> sent | awaiting_authorization"""

    def test_compliant_quote_is_sent(self, compliant_quote):
        result = send_quote(compliant_quote)
        assert result.applied and result.ok
        assert result.quote.lifecycle_status == LifecycleStatus.SENT
        assert result.quote.authorization_status == AuthorizationStatus.NONE
        assert result.quote.is_client_visible

    def test_below_floor_quote_is_redirected(self, below_floor_quote):
        """unit_price 8 < floor 10 -> awaiting_authorization, not sent, no error."""
        result = send_quote(below_floor_quote)
        assert result.applied and result.ok
        assert result.quote.lifecycle_status == LifecycleStatus.AWAITING_AUTHORIZATION
        assert result.quote.authorization_status == AuthorizationStatus.AWAITING
        assert not result.quote.is_client_visible

    def test_previously_authorized_below_floor_quote_is_sent(self, below_floor_quote):
        quote = below_floor_quote.with_changes(authorization_status=AuthorizationStatus.APPROVED)
        result = send_quote(quote)
        assert result.quote.lifecycle_status == LifecycleStatus.SENT

    def test_empty_quote_cannot_be_sent(self):
        with pytest.raises(ValidationError) as exc:
            send_quote(Quote(id="empty"))
        assert exc.value.field == "lines"

    def test_negative_total_blocks_send(self, compliant_quote):
        quote = compliant_quote.with_changes(discount_kind=DiscountKind.FLAT, discount_value=Decimal("1000"))
        with pytest.raises(ValidationError):
            send_quote(quote)

    def test_send_does_not_mutate_input(self, below_floor_quote):
        send_quote(below_floor_quote)
        assert below_floor_quote.lifecycle_status == LifecycleStatus.DRAFT
        assert below_floor_quote.authorization_status == AuthorizationStatus.NONE


# ===========================================================================
# Class 2: Admin authorization
# ===========================================================================

class TestAdminActions:
    """awaiting_authorization -> sent (approve) | draft (reject)"""

    @pytest.fixture
    def awaiting(self, below_floor_quote):
        return send_quote(below_floor_quote).quote

    def test_approve_advances_to_sent(self, awaiting):
        result = admin_approve(awaiting)
        assert result.applied
        assert result.quote.lifecycle_status == LifecycleStatus.SENT
        assert result.quote.authorization_status == AuthorizationStatus.APPROVED

    def test_duplicate_approve_is_silent_noop(self, awaiting):
        approved = admin_approve(awaiting).quote
        again = admin_approve(approved)
        assert again.ok
        assert not again.applied
        assert again.quote == approved

    def test_repeated_approve_with_same_precondition_is_noop(self, awaiting):
        """
        A double-clicked approve resends the state seen before the first click.
        The quote has moved to sent/approved, but the second click is still a no-op.
        """
        first = admin_approve(awaiting, expected_lifecycle=LifecycleStatus.AWAITING_AUTHORIZATION)
        second = admin_approve(first.quote, expected_lifecycle=LifecycleStatus.AWAITING_AUTHORIZATION)
        assert first.applied
        assert second.error is None
        assert not second.applied
        assert second.quote == first.quote

    def test_reject_returns_to_draft(self, awaiting):
        result = admin_reject(awaiting, reason="  floor too far below cost  ")
        assert result.applied
        assert result.quote.lifecycle_status == LifecycleStatus.DRAFT
        assert result.quote.authorization_status == AuthorizationStatus.NONE
        assert result.quote.revision == awaiting.revision + 1
        assert result.quote.rejection_reason == "floor too far below cost"
        assert result.reason == "  floor too far below cost  "

    def test_blank_reason_is_stored_as_none(self, awaiting):
        assert admin_reject(awaiting, reason="   ").quote.rejection_reason is None

    def test_resend_after_reject_is_held_again(self, awaiting):
        """No edits after rejection: below_minimum is unchanged, so send holds it again."""
        rejected = admin_reject(awaiting).quote
        resent = send_quote(rejected)
        assert resent.quote.lifecycle_status == LifecycleStatus.AWAITING_AUTHORIZATION
        assert resent.quote.rejection_reason is None

    def test_duplicate_reject_is_stale(self, awaiting):
        rejected = admin_reject(awaiting).quote
        again = admin_reject(rejected)
        assert not again.applied
        assert isinstance(again.error, StaleStateError)
        assert again.quote == rejected
        assert again.error.current == rejected

    def test_approve_after_reject_is_stale(self, awaiting):
        rejected = admin_reject(awaiting).quote
        result = admin_approve(rejected)
        assert not result.applied
        assert isinstance(result.error, StaleStateError)
        assert result.quote.lifecycle_status == LifecycleStatus.DRAFT


# ===========================================================================
# Class 3: Client actions and conversion
# ===========================================================================

class TestClientAndConversion:
    """sent -> approved | rejected; approved -> converted"""

    @pytest.fixture
    def sent(self, compliant_quote):
        return send_quote(compliant_quote).quote

    def test_client_approve_then_convert(self, sent):
        approved = client_approve(sent).quote
        assert approved.lifecycle_status == LifecycleStatus.APPROVED
        converted = convert_quote(approved)
        assert converted.applied
        assert converted.quote.lifecycle_status == LifecycleStatus.CONVERTED

    def test_client_reject_is_terminal(self, sent):
        rejected = client_reject(sent).quote
        assert rejected.lifecycle_status == LifecycleStatus.REJECTED
        for action in GateAction:
            assert not apply_transition(rejected, action).applied

    def test_converted_is_terminal(self, sent):
        converted = convert_quote(client_approve(sent).quote).quote
        for action in GateAction:
            assert not apply_transition(converted, action).applied

    def test_client_cannot_act_on_awaiting_quote(self, below_floor_quote):
        awaiting = send_quote(below_floor_quote).quote
        result = client_approve(awaiting)
        assert isinstance(result.error, StaleStateError)
        assert result.quote == awaiting


# ===========================================================================
# Class 4: Transition table and preconditions
# ===========================================================================

class TestTransitionTable:
    """Anything outside TRANSITIONS is a stale attempt."""

    @pytest.mark.parametrize("status", list(LifecycleStatus))
    @pytest.mark.parametrize("action", list(GateAction))
    def test_only_listed_transitions_apply(self, compliant_quote, status, action):
        quote = compliant_quote.with_changes(lifecycle_status=status)
        result = apply_transition(quote, action)
        if status in TRANSITIONS[action]:
            assert result.applied
            assert result.error is None
        else:
            assert not result.applied
            assert isinstance(result.error, StaleStateError)
            assert result.quote is quote
            assert result.error.action == action.value

    def test_precondition_mismatch_is_stale(self, below_floor_quote):
        awaiting = send_quote(below_floor_quote).quote
        result = admin_approve(awaiting, expected_lifecycle=LifecycleStatus.DRAFT)
        assert not result.applied
        assert isinstance(result.error, StaleStateError)
        assert result.quote == awaiting

    def test_authorization_precondition_mismatch_is_stale(self, below_floor_quote):
        awaiting = send_quote(below_floor_quote).quote
        result = admin_reject(awaiting, expected_authorization=AuthorizationStatus.APPROVED)
        assert not result.applied
        assert result.error.field == "lifecycle_status"

    def test_matching_precondition_applies(self, below_floor_quote):
        awaiting = send_quote(below_floor_quote).quote
        result = admin_approve(
            awaiting,
            expected_lifecycle="awaiting_authorization",
            expected_authorization="awaiting",
        )
        assert result.applied
