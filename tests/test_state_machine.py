import pytest

from doorstep.booking.state_machine import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    Actor,
    BookingAction,
    allowed_actions,
    check_invariants,
    require_reason,
    resolve_transition,
    settle_payment_for_completion,
)
from doorstep.core.errors import BookingRuleError, ConflictError
from doorstep.models.booking import BookingStatus as S, PaymentStatus
from doorstep.booking.state_machine import BookingAction as A


@pytest.mark.parametrize("action,current,actor,expected", [
    (A.ACCEPT, S.PENDING, Actor.PROVIDER, S.ACCEPTED),
    (A.REJECT, S.PENDING, Actor.PROVIDER, S.REJECTED),
    (A.RESCHEDULE, S.PENDING, Actor.CUSTOMER, S.RESCHEDULED_PENDING_PROVIDER_APPROVAL),
    (A.RESCHEDULE, S.ACCEPTED, Actor.PROVIDER, S.RESCHEDULED_BY_PROVIDER),
    (A.ACCEPT, S.RESCHEDULED_PENDING_PROVIDER_APPROVAL, Actor.PROVIDER, S.ACCEPTED),
    (A.ACCEPT, S.RESCHEDULED_BY_PROVIDER, Actor.CUSTOMER, S.ACCEPTED),
    (A.REJECT, S.RESCHEDULED_BY_PROVIDER, Actor.CUSTOMER, S.REJECTED),
    (A.MARK_EN_ROUTE, S.ACCEPTED, Actor.PROVIDER, S.EN_ROUTE),
    (A.SUBMIT_PAYMENT, S.EN_ROUTE, Actor.CUSTOMER, S.AWAITING_PAYMENT),
    (A.SUBMIT_PAYMENT, S.AWAITING_PAYMENT, Actor.CUSTOMER, S.AWAITING_PAYMENT),
    (A.FAIL_PAYMENT, S.AWAITING_PAYMENT, Actor.PROVIDER, S.AWAITING_PAYMENT),
    (A.COMPLETE, S.AWAITING_PAYMENT, Actor.PROVIDER, S.COMPLETED),
    (A.DISPUTE, S.COMPLETED, Actor.CUSTOMER, S.DISPUTED),
    (A.DISPUTE, S.AWAITING_PAYMENT, Actor.SYSTEM, S.DISPUTED),
    (A.RESOLVE_COMPLETED, S.DISPUTED, Actor.ADMIN, S.COMPLETED),
    (A.RESOLVE_CANCELLED, S.DISPUTED, Actor.ADMIN, S.CANCELLED),
    (A.CANCEL, S.ACCEPTED, Actor.CUSTOMER, S.CANCELLED),
    (A.EXPIRE, S.PENDING, Actor.SYSTEM, S.EXPIRED),
])
def test_valid_transitions(action, current, actor, expected):
    assert resolve_transition(action, current, actor) == expected


@pytest.mark.parametrize("action,current,actor", [
    (A.ACCEPT, S.ACCEPTED, Actor.PROVIDER),          # already accepted
    (A.ACCEPT, S.PENDING, Actor.CUSTOMER),           # wrong actor
    (A.ACCEPT, S.RESCHEDULED_BY_PROVIDER, Actor.PROVIDER),  # cannot approve own proposal
    (A.COMPLETE, S.PENDING, Actor.PROVIDER),
    (A.EXPIRE, S.ACCEPTED, Actor.SYSTEM),
    (A.RESOLVE_COMPLETED, S.COMPLETED, Actor.ADMIN),
    (A.CANCEL, S.EN_ROUTE, Actor.CUSTOMER),
])
def test_invalid_transitions_raise_conflict(action, current, actor):
    with pytest.raises(ConflictError) as exc_info:
        resolve_transition(action, current, actor)
    assert exc_info.value.current == current.value
    assert exc_info.value.requested == action.value


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_statuses_only_leave_through_dispute(status):
    for actor in Actor:
        for action in allowed_actions(status, actor):
            assert action == BookingAction.DISPUTE
            assert status == S.COMPLETED


def test_every_table_target_is_a_known_status():
    for targets in TRANSITIONS.values():
        for target in targets.values():
            assert isinstance(target, S)


def test_allowed_actions_for_pending_provider():
    actions = allowed_actions(S.PENDING, Actor.PROVIDER)
    assert actions == [A.ACCEPT, A.REJECT, A.RESCHEDULE]


def test_completion_settles_payment():
    assert settle_payment_for_completion(PaymentStatus.VERIFYING) == PaymentStatus.PAID
    assert settle_payment_for_completion(PaymentStatus.PENDING) == PaymentStatus.PAID
    with pytest.raises(BookingRuleError):
        settle_payment_for_completion(PaymentStatus.FAILED)


def test_completed_booking_cannot_carry_failed_payment():
    check_invariants(S.COMPLETED, PaymentStatus.PAID)
    check_invariants(S.AWAITING_PAYMENT, PaymentStatus.FAILED)
    with pytest.raises(BookingRuleError):
        check_invariants(S.COMPLETED, PaymentStatus.FAILED)


def test_reject_and_dispute_require_a_reason():
    assert require_reason(A.REJECT, "  busy  ") == "busy"
    assert require_reason(A.ACCEPT, None) == ""
    with pytest.raises(BookingRuleError):
        require_reason(A.DISPUTE, "   ")
