from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from tortoise import timezone

from doorstep.booking.state_machine import INITIAL_STATUS
from doorstep.models.booking import Booking, BookingHistory, BookingStatus


async def create_booking(
    customer_id: int,
    service_id: int,
    booking_date: datetime,
    provider_id: Optional[int] = None,
    time_slot_label: Optional[str] = None,
    conn: Any = None,
) -> Booking:
    return await Booking.create(
        customer_id=customer_id,
        provider_id=provider_id,
        service_id=service_id,
        booking_date=booking_date,
        time_slot_label=time_slot_label,
        status=INITIAL_STATUS,
        using_db=conn,
    )


async def get_booking(booking_id: UUID, conn: Any = None) -> Optional[Booking]:
    return await Booking.get_or_none(id=booking_id).using_db(conn)


async def conditional_update(
    booking_id: UUID,
    expected_status: BookingStatus,
    values: Dict[str, Any],
    conn: Any = None,
) -> int:
    """
    Applies `values` only if the booking is still in `expected_status`.
    Returns the number of rows changed (0 means another writer got there first).

    CRITICAL: the status check and the write happen in a single UPDATE, so two
    concurrent transitions from the same state can never both succeed.
    """
    values = dict(values)
    values.setdefault("updated_at", timezone.now())
    return await (
        Booking.filter(id=booking_id, status=expected_status)
        .using_db(conn)
        .update(**values)
    )


async def record_history(
    booking_id: UUID,
    from_status: BookingStatus,
    to_status: BookingStatus,
    changed_by: Optional[int] = None,
    comments: Optional[str] = None,
    conn: Any = None,
) -> BookingHistory:
    return await BookingHistory.create(
        booking_id=booking_id,
        from_status=from_status,
        to_status=to_status,
        changed_by=changed_by,
        comments=comments,
        using_db=conn,
    )


async def get_history(booking_id: UUID) -> List[BookingHistory]:
    return await BookingHistory.filter(booking_id=booking_id).order_by("created_at")


async def list_for_customer(customer_id: int) -> List[Booking]:
    return await Booking.filter(customer_id=customer_id).order_by("-created_at")


async def list_for_provider(provider_id: int) -> List[Booking]:
    return await Booking.filter(provider_id=provider_id).order_by("-created_at")


async def list_pending_for_provider(provider_id: int) -> List[Booking]:
    """Requests waiting on the provider: new bookings and customer reschedules."""
    return await Booking.filter(
        provider_id=provider_id,
        status__in=[
            BookingStatus.PENDING,
            BookingStatus.RESCHEDULED_PENDING_PROVIDER_APPROVAL,
        ],
    ).order_by("booking_date")


async def list_by_status(status: BookingStatus) -> List[Booking]:
    return await Booking.filter(status=status).order_by("updated_at")


async def find_expirable(cutoff: datetime) -> List[Booking]:
    """Pending bookings whose booking date is older than `cutoff`."""
    return await Booking.filter(
        status=BookingStatus.PENDING, booking_date__lt=cutoff
    ).order_by("booking_date")


async def find_awaiting_payment_before(cutoff: datetime) -> List[Booking]:
    return await Booking.filter(
        status=BookingStatus.AWAITING_PAYMENT, updated_at__lt=cutoff
    ).order_by("updated_at")
