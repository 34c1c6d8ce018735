from typing import List

from doorstep.core.config import (
    BOOKING_EXPIRATION_CRON,
    BOOKING_EXPIRATION_LOCK_TTL_MS,
    LOW_STOCK_DIGEST_CRON,
    LOW_STOCK_DIGEST_LOCK_TTL_MS,
    PAYMENT_REMINDER_CRON,
    PAYMENT_REMINDER_LOCK_TTL_MS,
)
from doorstep.jobs.runner import ScheduledJob
from doorstep.realtime.bus import NotificationBus
from doorstep.services.booking_service import BookingService
from doorstep.services.notification_service import low_stock_digest


def build_jobs(service: BookingService, bus: NotificationBus) -> List[ScheduledJob]:
    """The three scheduled jobs, sharing one lock abstraction."""

    async def expire_bookings():
        return len(await service.process_expired_bookings())

    async def payment_reminders():
        return await service.process_payment_reminders()

    async def stock_digest():
        return await low_stock_digest(bus)

    return [
        ScheduledJob("booking-expiration", BOOKING_EXPIRATION_CRON, BOOKING_EXPIRATION_LOCK_TTL_MS, expire_bookings),
        ScheduledJob("payment-reminder", PAYMENT_REMINDER_CRON, PAYMENT_REMINDER_LOCK_TTL_MS, payment_reminders),
        ScheduledJob("low-stock-digest", LOW_STOCK_DIGEST_CRON, LOW_STOCK_DIGEST_LOCK_TTL_MS, stock_digest),
    ]
