import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from tortoise import timezone
from tortoise.transactions import in_transaction

from doorstep.booking.notices import booking_notices
from doorstep.booking.state_machine import (
    Actor,
    BookingAction,
    check_invariants,
    require_reason,
    resolve_transition,
    settle_payment_for_completion,
)
from doorstep.core.config import (
    BOOKING_EXPIRATION_DAYS,
    CRON_TZ,
    PAYMENT_DISPUTE_DAYS,
    PAYMENT_REMINDER_DAYS,
)
from doorstep.core.errors import BookingNotFound, BookingRuleError, ConflictError, StaleStateError
from doorstep.events.dispatch import SideEffectDispatcher
from doorstep.models.booking import Booking, BookingHistory, BookingStatus, PaymentStatus
from doorstep.realtime.bus import NotificationBus
from doorstep.realtime.recipients import BookingParticipants
from doorstep.services.notification_service import create_notification
from doorstep.storage import bookings as store

log = logging.getLogger(__name__)

OVERDUE_PAYMENT_REASON = "Payment confirmation overdue."


class BookingService:
    """
    Drives the booking state machine against storage.

    Every mutation is a conditional update inside a transaction; the caller
    gets the updated booking or an error, and notifications are dispatched
    only after the transaction committed.
    """

    def __init__(
        self,
        bus: NotificationBus,
        dispatcher: SideEffectDispatcher,
        expiration_days: int = BOOKING_EXPIRATION_DAYS,
        reminder_days: int = PAYMENT_REMINDER_DAYS,
        dispute_days: int = PAYMENT_DISPUTE_DAYS,
        service_timezone: str = CRON_TZ,
    ):
        self.bus = bus
        self.dispatcher = dispatcher
        self.expiration_days = expiration_days
        self.reminder_days = reminder_days
        self.dispute_days = dispute_days
        self.service_timezone = ZoneInfo(service_timezone)

    # ----------- Reads -----------

    async def get_booking(self, booking_id: UUID) -> Booking:
        booking = await store.get_booking(booking_id)
        if not booking:
            raise BookingNotFound(booking_id)
        return booking

    async def get_history(self, booking_id: UUID) -> List[BookingHistory]:
        return await store.get_history(booking_id)

    # ----------- Creation -----------

    async def create_booking(
        self,
        customer_id: int,
        service_id: int,
        booking_date: datetime,
        provider_id: Optional[int] = None,
        time_slot_label: Optional[str] = None,
    ) -> Booking:
        booking = await store.create_booking(
            customer_id=customer_id,
            service_id=service_id,
            booking_date=booking_date,
            provider_id=provider_id,
            time_slot_label=time_slot_label,
        )
        log.info(f"Booking {booking.id} requested by customer {customer_id}.")
        self._publish(booking)
        if provider_id:
            self.dispatcher.fire(
                create_notification(
                    self.bus,
                    provider_id,
                    "booking_request",
                    "New Booking Request",
                    f"You have a new booking request for {booking_date:%d %b %Y %H:%M}.",
                    related_booking_id=booking.id,
                ),
                label=f"inbox notice for booking {booking.id}",
            )
        return booking

    # ----------- Transitions -----------

    async def accept(self, booking_id: UUID, actor: Actor, user_id: Optional[int] = None,
                     comments: Optional[str] = None) -> Booking:
        return await self._transition(booking_id, BookingAction.ACCEPT, actor, user_id, comments or "Booking confirmed")

    async def reject(self, booking_id: UUID, actor: Actor, reason: str, user_id: Optional[int] = None) -> Booking:
        reason = require_reason(BookingAction.REJECT, reason)
        return await self._transition(
            booking_id, BookingAction.REJECT, actor, user_id, reason,
            changes={"rejection_reason": reason},
        )

    async def reschedule(self, booking_id: UUID, actor: Actor, booking_date: datetime,
                         time_slot_label: Optional[str] = None, user_id: Optional[int] = None,
                         comments: Optional[str] = None) -> Booking:
        changes: Dict[str, Any] = {"booking_date": booking_date}
        if time_slot_label is not None:
            changes["time_slot_label"] = time_slot_label
        return await self._transition(
            booking_id, BookingAction.RESCHEDULE, actor, user_id,
            comments or f"Rescheduled by {Actor(actor).value}",
            changes=changes,
        )

    async def mark_en_route(self, booking_id: UUID, user_id: Optional[int] = None,
                            now: Optional[datetime] = None) -> Booking:
        now = now or timezone.now()

        def service_day_only(booking: Booking) -> Dict[str, Any]:
            service_day = booking.booking_date.astimezone(self.service_timezone).date()
            if service_day != now.astimezone(self.service_timezone).date():
                raise BookingRuleError("A provider can only be en route on the day of service")
            return {}

        return await self._transition(
            booking_id, BookingAction.MARK_EN_ROUTE, Actor.PROVIDER, user_id, "Provider en route",
            prepare=service_day_only,
        )

    async def submit_payment(self, booking_id: UUID, payment_reference: str,
                             user_id: Optional[int] = None) -> Booking:
        payment_reference = (payment_reference or "").strip()
        if not payment_reference:
            raise BookingRuleError("A payment reference is required")
        return await self._transition(
            booking_id, BookingAction.SUBMIT_PAYMENT, Actor.CUSTOMER, user_id, "Payment submitted",
            changes={"payment_status": PaymentStatus.VERIFYING, "payment_reference": payment_reference},
        )

    async def fail_payment(self, booking_id: UUID, user_id: Optional[int] = None,
                           comments: Optional[str] = None) -> Booking:
        return await self._transition(
            booking_id, BookingAction.FAIL_PAYMENT, Actor.PROVIDER, user_id, comments or "Payment not received",
            changes={"payment_status": PaymentStatus.FAILED},
        )

    async def complete(self, booking_id: UUID, user_id: Optional[int] = None,
                       comments: Optional[str] = None) -> Booking:
        return await self._transition(
            booking_id, BookingAction.COMPLETE, Actor.PROVIDER, user_id, comments or "Service completed",
            prepare=lambda booking: {"payment_status": settle_payment_for_completion(booking.payment_status)},
        )

    async def dispute(self, booking_id: UUID, actor: Actor, reason: str, user_id: Optional[int] = None) -> Booking:
        reason = require_reason(BookingAction.DISPUTE, reason)
        return await self._transition(
            booking_id, BookingAction.DISPUTE, actor, user_id, reason,
            changes={"dispute_reason": reason},
        )

    async def resolve_dispute(self, booking_id: UUID, resolution: BookingStatus,
                              admin_id: Optional[int] = None, comments: Optional[str] = None) -> Booking:
        resolution = BookingStatus(resolution)
        if resolution == BookingStatus.COMPLETED:
            return await self._transition(
                booking_id, BookingAction.RESOLVE_COMPLETED, Actor.ADMIN, admin_id,
                comments or "Dispute resolved as completed",
                prepare=lambda booking: {"payment_status": settle_payment_for_completion(booking.payment_status)},
            )
        if resolution == BookingStatus.CANCELLED:
            return await self._transition(
                booking_id, BookingAction.RESOLVE_CANCELLED, Actor.ADMIN, admin_id,
                comments or "Dispute resolved as cancelled",
            )
        raise BookingRuleError("A dispute can only be resolved as completed or cancelled")

    async def cancel(self, booking_id: UUID, user_id: Optional[int] = None,
                     comments: Optional[str] = None) -> Booking:
        return await self._transition(
            booking_id, BookingAction.CANCEL, Actor.CUSTOMER, user_id, comments or "Cancelled by customer",
        )

    # ----------- Sweeps (run by scheduled jobs) -----------

    async def process_expired_bookings(self, now: Optional[datetime] = None) -> List[Booking]:
        """
        Expires pending bookings whose booking date is older than the threshold.
        Bookings that left `pending` meanwhile are skipped, so repeated runs
        are idempotent.
        """
        now = now or timezone.now()
        cutoff = now - timedelta(days=self.expiration_days)
        expired = []
        for candidate in await store.find_expirable(cutoff):
            try:
                booking = await self._transition(
                    candidate.id, BookingAction.EXPIRE, Actor.SYSTEM, None,
                    f"Automatically expired after {self.expiration_days} days",
                )
            except ConflictError as exc:
                log.debug("Skipping expiry of booking %s: %s", candidate.id, exc)
                continue
            expired.append(booking)
        if expired:
            log.info("Expired %s pending bookings", len(expired))
        return expired

    async def process_payment_reminders(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Bookings stuck in awaiting_payment: remind the provider after the
        reminder window, dispute on their behalf after the dispute window.
        """
        now = now or timezone.now()
        reminder_cutoff = now - timedelta(days=self.reminder_days)
        dispute_cutoff = now - timedelta(days=self.dispute_days)
        counts = {"reminded": 0, "disputed": 0}

        for booking in await store.find_awaiting_payment_before(reminder_cutoff):
            if booking.updated_at < dispute_cutoff:
                try:
                    await self.dispute(booking.id, Actor.SYSTEM, OVERDUE_PAYMENT_REASON)
                except ConflictError as exc:
                    log.debug("Skipping overdue payment dispute for %s: %s", booking.id, exc)
                    continue
                counts["disputed"] += 1
            elif booking.provider_id:
                self.dispatcher.fire(
                    create_notification(
                        self.bus,
                        booking.provider_id,
                        "payment_reminder",
                        "Payment Pending",
                        f"Booking #{str(booking.id)[:8]} is awaiting your payment confirmation.",
                        related_booking_id=booking.id,
                    ),
                    label=f"payment reminder for booking {booking.id}",
                )
                counts["reminded"] += 1
        return counts

    # ----------- Internals -----------

    async def _transition(
        self,
        booking_id: UUID,
        action: BookingAction,
        actor: Actor,
        user_id: Optional[int] = None,
        comments: Optional[str] = None,
        changes: Optional[Dict[str, Any]] = None,
        prepare: Optional[Callable[[Booking], Dict[str, Any]]] = None,
    ) -> Booking:
        async with in_transaction() as conn:
            booking = await store.get_booking(booking_id, conn)
            if not booking:
                raise BookingNotFound(booking_id)

            previous = BookingStatus(booking.status)
            target = resolve_transition(action, previous, actor)

            values: Dict[str, Any] = {"status": target, "updated_at": timezone.now()}
            values.update(changes or {})
            if prepare is not None:
                values.update(prepare(booking) or {})
            check_invariants(target, values.get("payment_status", booking.payment_status))

            # Status must still be `previous`; otherwise a concurrent writer won
            updated = await store.conditional_update(booking.id, previous, values, conn)
            if not updated:
                raise StaleStateError(previous, action)

            await store.record_history(booking.id, previous, target, user_id, comments, conn)

        for field_name, value in values.items():
            setattr(booking, field_name, value)
        log.info(f"Booking {booking.id}: {previous.value} -> {target.value} ({action.value} by {Actor(actor).value})")

        self._publish(booking)
        for notice in booking_notices(booking, action, previous, Actor(actor)):
            if notice.user_id:
                self.dispatcher.fire(
                    create_notification(
                        self.bus, notice.user_id, notice.type, notice.title, notice.message,
                        related_booking_id=booking.id,
                    ),
                    label=f"inbox notice for booking {booking.id}",
                )
        return booking

    def _publish(self, booking: Booking) -> None:
        try:
            self.bus.notify_booking_change(
                BookingParticipants(booking.customer_id, booking.provider_id, booking.id)
            )
        except Exception as exc:
            log.warning("Realtime notification for booking %s failed: %s", booking.id, exc)
