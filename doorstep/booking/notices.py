from typing import List, NamedTuple, Optional

from doorstep.booking.state_machine import RESCHEDULED_STATUSES, Actor, BookingAction
from doorstep.models.booking import Booking, BookingStatus


class Notice(NamedTuple):
    user_id: Optional[int]
    type: str
    title: str
    message: str


def _when(booking: Booking) -> str:
    if booking.booking_date is None:
        return "N/A"
    label = booking.booking_date.strftime("%d %b %Y %H:%M")
    return f"{label} ({booking.time_slot_label})" if booking.time_slot_label else label


def booking_notices(booking: Booking, action: BookingAction, previous: BookingStatus, actor: Actor) -> List[Notice]:
    """Inbox entries to create after `action` moved `booking` out of `previous`."""
    ref = f"#{str(booking.id)[:8]}"
    customer, provider = booking.customer_id, booking.provider_id
    counterpart = provider if actor == Actor.CUSTOMER else customer

    if action == BookingAction.ACCEPT:
        if previous == BookingStatus.RESCHEDULED_PENDING_PROVIDER_APPROVAL:
            return [Notice(customer, "booking_confirmed", "Reschedule Confirmed",
                           f"Your reschedule request for booking {ref} has been accepted. New date: {_when(booking)}")]
        if previous == BookingStatus.RESCHEDULED_BY_PROVIDER:
            return [Notice(provider, "booking_confirmed", "Reschedule Accepted",
                           f"The customer accepted the new time for booking {ref}: {_when(booking)}")]
        return [Notice(customer, "booking_confirmed", "Booking Accepted",
                       f"Your booking {ref} has been accepted for {_when(booking)}.")]

    if action == BookingAction.REJECT:
        reason = booking.rejection_reason or ""
        if previous in RESCHEDULED_STATUSES:
            return [Notice(counterpart, "booking_rejected", "Reschedule Rejected",
                           f"The reschedule of booking {ref} was rejected: {reason}")]
        return [Notice(customer, "booking_rejected", "Booking Rejected",
                       f"Your booking {ref} has been rejected: {reason}")]

    if action == BookingAction.RESCHEDULE:
        if actor == Actor.CUSTOMER:
            return [Notice(provider, "booking_rescheduled_request", "Reschedule Request",
                           f"The customer requested to move booking {ref} to {_when(booking)}. Please review.")]
        return [Notice(customer, "booking_rescheduled_by_provider", "Booking Rescheduled by Provider",
                       f"Your provider moved booking {ref} to {_when(booking)}. Please accept or reject the new time.")]

    if action == BookingAction.MARK_EN_ROUTE:
        return [Notice(customer, "booking_en_route", "Provider On The Way",
                       f"Your provider is on the way for booking {ref}.")]

    if action == BookingAction.SUBMIT_PAYMENT:
        return [Notice(provider, "booking_update", "Payment Submitted",
                       f"Customer submitted payment reference for booking {ref}. Please confirm receipt.")]

    if action == BookingAction.FAIL_PAYMENT:
        return [Notice(customer, "booking_update", "Payment Not Received",
                       f"The provider could not confirm your payment for booking {ref}. Please submit a new reference.")]

    if action == BookingAction.COMPLETE:
        return [Notice(customer, "booking_update", "Booking Completed",
                       f"Booking {ref} is complete and payment is confirmed.")]

    if action == BookingAction.DISPUTE:
        reason = booking.dispute_reason or ""
        return [Notice(user_id, "booking_disputed", "Booking Disputed",
                       f"Booking {ref} has been disputed: {reason}") for user_id in (customer, provider)]

    if action in (BookingAction.RESOLVE_COMPLETED, BookingAction.RESOLVE_CANCELLED):
        outcome = "completed" if action == BookingAction.RESOLVE_COMPLETED else "cancelled"
        return [Notice(user_id, "booking_dispute_resolved", "Dispute Resolved",
                       f"The dispute on booking {ref} was resolved; the booking is {outcome}.")
                for user_id in (customer, provider)]

    if action == BookingAction.CANCEL:
        return [Notice(provider, "booking_cancelled", "Booking Cancelled",
                       f"The customer cancelled booking {ref}.")]

    if action == BookingAction.EXPIRE:
        return [
            Notice(customer, "booking_expired", "Booking Request Expired",
                   f"Your booking request {ref} has expired as the provider did not respond in time."),
            Notice(provider, "booking_expired", "Booking Request Expired",
                   f"A booking request {ref} has expired as you did not respond in time."),
        ]

    return []
