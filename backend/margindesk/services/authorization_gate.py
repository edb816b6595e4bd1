"""
Authorization Gate: quote lifecycle state machine.

    draft ──send──▶ sent ──client_approve──▶ approved ──convert──▶ converted
      │  ▲            └──client_reject──▶ rejected
      │  │
      │  └─admin_reject── awaiting_authorization ──admin_approve──▶ sent
      └──send (below minimum, not yet authorized)──▶ awaiting_authorization

Only the transitions in TRANSITIONS exist.  Anything else is a stale attempt:
the gate does not raise, it returns a TransitionResult carrying the untouched
authoritative quote plus a StaleStateError, so double-clicks and retries
never apply side effects twice.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from margindesk.services.errors import StaleStateError, ValidationError
from margindesk.services.pricing_models import AuthorizationStatus, LifecycleStatus, Quote
from margindesk.services.quote_aggregator import aggregate_quote

logger = logging.getLogger("margindesk-gate")


class GateAction(str, Enum):
    SEND = "send"
    ADMIN_APPROVE = "admin_approve"
    ADMIN_REJECT = "admin_reject"
    CLIENT_APPROVE = "client_approve"
    CLIENT_REJECT = "client_reject"
    CONVERT = "convert"


# action -> lifecycle states it may start from
TRANSITIONS: Dict[GateAction, FrozenSet[LifecycleStatus]] = {
    GateAction.SEND: frozenset({LifecycleStatus.DRAFT}),
    GateAction.ADMIN_APPROVE: frozenset({LifecycleStatus.AWAITING_AUTHORIZATION}),
    GateAction.ADMIN_REJECT: frozenset({LifecycleStatus.AWAITING_AUTHORIZATION}),
    GateAction.CLIENT_APPROVE: frozenset({LifecycleStatus.SENT}),
    GateAction.CLIENT_REJECT: frozenset({LifecycleStatus.SENT}),
    GateAction.CONVERT: frozenset({LifecycleStatus.APPROVED}),
}


@dataclass(frozen=True)
class TransitionResult:
    action: GateAction
    previous: Quote
    quote: Quote                  # authoritative state after the call
    applied: bool
    error: Optional[StaleStateError] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _stale(quote: Quote, action: GateAction, message: str) -> TransitionResult:
    logger.warning(f"Quote {quote.id}: {action.value} refused: {message}")
    return TransitionResult(
        action=action,
        previous=quote,
        quote=quote,
        applied=False,
        error=StaleStateError(message, current=quote, action=action.value),
    )


def _send(quote: Quote) -> Quote:
    if not quote.lines:
        raise ValidationError("Cannot send a quote without line items", field="lines")
    aggregate_quote(quote)   # blocks on negative totals or bad terms
    if not quote.below_minimum or quote.authorization_status == AuthorizationStatus.APPROVED:
        return quote.with_changes(lifecycle_status=LifecycleStatus.SENT, rejection_reason=None)
    return quote.with_changes(
        lifecycle_status=LifecycleStatus.AWAITING_AUTHORIZATION,
        authorization_status=AuthorizationStatus.AWAITING,
        rejection_reason=None,
    )


def _admin_approve(quote: Quote) -> Quote:
    return quote.with_changes(
        lifecycle_status=LifecycleStatus.SENT,
        authorization_status=AuthorizationStatus.APPROVED,
    )


def _admin_reject(quote: Quote, reason: Optional[str]) -> Quote:
    return quote.with_changes(
        lifecycle_status=LifecycleStatus.DRAFT,
        authorization_status=AuthorizationStatus.NONE,
        revision=quote.revision + 1,
        rejection_reason=(reason or "").strip() or None,
    )


def apply_transition(
    quote: Quote,
    action: GateAction,
    *,
    reason: Optional[str] = None,
    expected_lifecycle: Optional[LifecycleStatus] = None,
    expected_authorization: Optional[AuthorizationStatus] = None,
) -> TransitionResult:
    """
    Run `action` against `quote`.

    `expected_*` is the optimistic precondition the caller observed; a mismatch
    means someone else moved the quote first.  ValidationError (empty quote,
    negative total) is raised, not returned: it is a calculation failure, not a
    race.
    """
    # Duplicate approval: no error, no side effects.
    if action == GateAction.ADMIN_APPROVE and quote.authorization_status == AuthorizationStatus.APPROVED:
        logger.info(f"Quote {quote.id}: admin_approve ignored, already approved")
        return TransitionResult(action=action, previous=quote, quote=quote, applied=False)

    if expected_lifecycle is not None and quote.lifecycle_status != LifecycleStatus(expected_lifecycle):
        return _stale(
            quote, action,
            f"expected lifecycle '{LifecycleStatus(expected_lifecycle).value}', "
            f"found '{quote.lifecycle_status.value}'",
        )
    if expected_authorization is not None and quote.authorization_status != AuthorizationStatus(expected_authorization):
        return _stale(
            quote, action,
            f"expected authorization '{AuthorizationStatus(expected_authorization).value}', "
            f"found '{quote.authorization_status.value}'",
        )

    allowed = TRANSITIONS[action]
    if quote.lifecycle_status not in allowed:
        return _stale(
            quote, action,
            f"cannot {action.value} from '{quote.lifecycle_status.value}' "
            f"(allowed from: {sorted(s.value for s in allowed)})",
        )

    if action == GateAction.SEND:
        updated = _send(quote)
    elif action == GateAction.ADMIN_APPROVE:
        updated = _admin_approve(quote)
    elif action == GateAction.ADMIN_REJECT:
        updated = _admin_reject(quote, reason)
    elif action == GateAction.CLIENT_APPROVE:
        updated = quote.with_changes(lifecycle_status=LifecycleStatus.APPROVED)
    elif action == GateAction.CLIENT_REJECT:
        updated = quote.with_changes(lifecycle_status=LifecycleStatus.REJECTED)
    else:
        updated = quote.with_changes(lifecycle_status=LifecycleStatus.CONVERTED)

    logger.info(
        f"Quote {quote.id}: {action.value} "
        f"{quote.lifecycle_status.value}/{quote.authorization_status.value} -> "
        f"{updated.lifecycle_status.value}/{updated.authorization_status.value}"
    )
    return TransitionResult(action=action, previous=quote, quote=updated, applied=True, reason=reason)


# ── Operation wrappers ───────────────────────────────────────────────────────

def send_quote(quote: Quote, **precondition) -> TransitionResult:
    return apply_transition(quote, GateAction.SEND, **precondition)


def admin_approve(quote: Quote, **precondition) -> TransitionResult:
    return apply_transition(quote, GateAction.ADMIN_APPROVE, **precondition)


def admin_reject(quote: Quote, reason: Optional[str] = None, **precondition) -> TransitionResult:
    return apply_transition(quote, GateAction.ADMIN_REJECT, reason=reason, **precondition)


def client_approve(quote: Quote, **precondition) -> TransitionResult:
    return apply_transition(quote, GateAction.CLIENT_APPROVE, **precondition)


def client_reject(quote: Quote, **precondition) -> TransitionResult:
    return apply_transition(quote, GateAction.CLIENT_REJECT, **precondition)


def convert_quote(quote: Quote, **precondition) -> TransitionResult:
    return apply_transition(quote, GateAction.CONVERT, **precondition)
