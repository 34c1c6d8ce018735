from enum import Enum
from tortoise import fields, models
import uuid


class BookingStatus(str, Enum):
    PENDING = "pending"  # Initial state, waiting for the provider
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    RESCHEDULED_PENDING_PROVIDER_APPROVAL = "rescheduled_pending_provider_approval"  # Customer proposed a new slot
    RESCHEDULED_BY_PROVIDER = "rescheduled_by_provider"  # Provider proposed a new slot
    AWAITING_PAYMENT = "awaiting_payment"  # Customer submitted a payment reference
    EN_ROUTE = "en_route"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    DISPUTED = "disputed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    PAID = "paid"
    FAILED = "failed"


class Booking(models.Model):
    """
    A service booking between a customer and a provider.
    Rows are never deleted; terminal bookings are kept for audit and disputes.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    customer_id = fields.IntField()
    provider_id = fields.IntField(null=True)  # may be unknown until the service is assigned
    service_id = fields.IntField()
    status = fields.CharEnumField(BookingStatus, max_length=48, default=BookingStatus.PENDING)
    payment_status = fields.CharEnumField(PaymentStatus, max_length=16, default=PaymentStatus.PENDING)
    payment_reference = fields.CharField(max_length=128, null=True)
    booking_date = fields.DatetimeField()
    time_slot_label = fields.CharField(max_length=64, null=True)
    rejection_reason = fields.TextField(null=True)
    dispute_reason = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "bookings"
        indexes = [
            ("customer_id",),            # Customer booking lists
            ("provider_id",),            # Provider booking lists
            ("status",),                 # Status-based sweeps
            ("status", "booking_date"),  # Composite: expiration sweep
            ("status", "updated_at"),    # Composite: payment reminders
        ]


class BookingHistory(models.Model):
    """Append-only audit trail of every status change."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    booking = fields.ForeignKeyField("models.Booking", related_name="history")
    from_status = fields.CharEnumField(BookingStatus, max_length=48)
    to_status = fields.CharEnumField(BookingStatus, max_length=48)
    changed_by = fields.IntField(null=True)  # None for system transitions
    comments = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "booking_history"
        indexes = [
            ("booking_id",),
        ]
