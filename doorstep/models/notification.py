from tortoise import fields, models
import uuid


class Notification(models.Model):
    """
    In-app inbox entry. Realtime clients are told to refetch
    /api/notifications whenever a row is created for them.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    user_id = fields.IntField()
    type = fields.CharField(max_length=64)  # e.g. 'booking_confirmed', 'shop'
    title = fields.CharField(max_length=255)
    message = fields.TextField()
    is_read = fields.BooleanField(default=False)
    related_booking_id = fields.UUIDField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "notifications"
        indexes = [
            ("user_id", "is_read"),
        ]
