"""
Booking lifecycle rules.

Everything here is pure: given the current status, the requested action and
who is asking, decide the next status or raise. Persistence, race handling and
notifications live in doorstep.services.booking_service.
"""
from enum import Enum
from typing import Dict, FrozenSet, Tuple

from doorstep.core.errors import BookingRuleError, ConflictError
from doorstep.models.booking import BookingStatus, PaymentStatus


class Actor(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class BookingAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    RESCHEDULE = "reschedule"
    MARK_EN_ROUTE = "mark_en_route"
    SUBMIT_PAYMENT = "submit_payment"
    FAIL_PAYMENT = "fail_payment"
    COMPLETE = "complete"
    DISPUTE = "dispute"
    RESOLVE_COMPLETED = "resolve_completed"
    RESOLVE_CANCELLED = "resolve_cancelled"
    CANCEL = "cancel"
    EXPIRE = "expire"


S = BookingStatus
A = BookingAction

INITIAL_STATUS = S.PENDING
TERMINAL_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {S.COMPLETED, S.CANCELLED, S.REJECTED, S.EXPIRED}
)
RESCHEDULED_STATUSES = (S.RESCHEDULED_PENDING_PROVIDER_APPROVAL, S.RESCHEDULED_BY_PROVIDER)

# (action, current status) -> {actor: next status}
TRANSITIONS: Dict[Tuple[BookingAction, BookingStatus], Dict[Actor, BookingStatus]] = {
    (A.ACCEPT, S.PENDING): {Actor.PROVIDER: S.ACCEPTED},
    (A.ACCEPT, S.RESCHEDULED_PENDING_PROVIDER_APPROVAL): {Actor.PROVIDER: S.ACCEPTED},
    (A.ACCEPT, S.RESCHEDULED_BY_PROVIDER): {Actor.CUSTOMER: S.ACCEPTED},

    (A.REJECT, S.PENDING): {Actor.PROVIDER: S.REJECTED},
    (A.REJECT, S.RESCHEDULED_PENDING_PROVIDER_APPROVAL): {Actor.PROVIDER: S.REJECTED},
    (A.REJECT, S.RESCHEDULED_BY_PROVIDER): {Actor.CUSTOMER: S.REJECTED},

    (A.RESCHEDULE, S.PENDING): {
        Actor.CUSTOMER: S.RESCHEDULED_PENDING_PROVIDER_APPROVAL,
        Actor.PROVIDER: S.RESCHEDULED_BY_PROVIDER,
    },
    (A.RESCHEDULE, S.ACCEPTED): {
        Actor.CUSTOMER: S.RESCHEDULED_PENDING_PROVIDER_APPROVAL,
        Actor.PROVIDER: S.RESCHEDULED_BY_PROVIDER,
    },

    (A.MARK_EN_ROUTE, S.ACCEPTED): {Actor.PROVIDER: S.EN_ROUTE},

    (A.SUBMIT_PAYMENT, S.ACCEPTED): {Actor.CUSTOMER: S.AWAITING_PAYMENT},
    (A.SUBMIT_PAYMENT, S.EN_ROUTE): {Actor.CUSTOMER: S.AWAITING_PAYMENT},
    (A.SUBMIT_PAYMENT, S.AWAITING_PAYMENT): {Actor.CUSTOMER: S.AWAITING_PAYMENT},
    (A.FAIL_PAYMENT, S.AWAITING_PAYMENT): {Actor.PROVIDER: S.AWAITING_PAYMENT},

    (A.COMPLETE, S.ACCEPTED): {Actor.PROVIDER: S.COMPLETED},
    (A.COMPLETE, S.EN_ROUTE): {Actor.PROVIDER: S.COMPLETED},
    (A.COMPLETE, S.AWAITING_PAYMENT): {Actor.PROVIDER: S.COMPLETED},

    (A.DISPUTE, S.ACCEPTED): {Actor.CUSTOMER: S.DISPUTED, Actor.PROVIDER: S.DISPUTED},
    (A.DISPUTE, S.AWAITING_PAYMENT): {
        Actor.CUSTOMER: S.DISPUTED,
        Actor.PROVIDER: S.DISPUTED,
        Actor.SYSTEM: S.DISPUTED,
    },
    (A.DISPUTE, S.COMPLETED): {Actor.CUSTOMER: S.DISPUTED, Actor.PROVIDER: S.DISPUTED},

    (A.RESOLVE_COMPLETED, S.DISPUTED): {Actor.ADMIN: S.COMPLETED},
    (A.RESOLVE_CANCELLED, S.DISPUTED): {Actor.ADMIN: S.CANCELLED},

    (A.CANCEL, S.PENDING): {Actor.CUSTOMER: S.CANCELLED},
    (A.CANCEL, S.ACCEPTED): {Actor.CUSTOMER: S.CANCELLED},
    (A.CANCEL, S.RESCHEDULED_PENDING_PROVIDER_APPROVAL): {Actor.CUSTOMER: S.CANCELLED},
    (A.CANCEL, S.RESCHEDULED_BY_PROVIDER): {Actor.CUSTOMER: S.CANCELLED},

    (A.EXPIRE, S.PENDING): {Actor.SYSTEM: S.EXPIRED},
}

# Actions whose caller must explain themselves
REASON_REQUIRED = frozenset({A.REJECT, A.DISPUTE})


def resolve_transition(action: BookingAction, current: BookingStatus, actor: Actor) -> BookingStatus:
    """Returns the status `action` leads to, or raises ConflictError."""
    targets = TRANSITIONS.get((BookingAction(action), BookingStatus(current)))
    if not targets or Actor(actor) not in targets:
        raise ConflictError(current, action)
    return targets[Actor(actor)]


def allowed_actions(current: BookingStatus, actor: Actor):
    """Actions `actor` may take on a booking in `current` status."""
    return sorted(
        {action for (action, status), targets in TRANSITIONS.items()
         if status == current and actor in targets},
        key=lambda a: a.value,
    )


def settle_payment_for_completion(payment_status: PaymentStatus) -> PaymentStatus:
    """
    Payment status a booking carries once completed. A failed payment blocks
    completion; anything short of failed is treated as paid.
    """
    if PaymentStatus(payment_status) == PaymentStatus.FAILED:
        raise BookingRuleError("Cannot complete a booking whose payment failed")
    return PaymentStatus.PAID


def check_invariants(status: BookingStatus, payment_status: PaymentStatus) -> None:
    if status == BookingStatus.COMPLETED and payment_status == PaymentStatus.FAILED:
        raise BookingRuleError("A completed booking cannot carry a failed payment")


def require_reason(action: BookingAction, reason) -> str:
    if action in REASON_REQUIRED and not (reason or "").strip():
        raise BookingRuleError(f"A reason is required to {action.value}")
    return (reason or "").strip()
