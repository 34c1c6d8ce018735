from tortoise import fields, models
import uuid


class Product(models.Model):
    """Shop stock level; read by the low-stock digest job."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    shop_id = fields.IntField()
    name = fields.CharField(max_length=255)
    stock = fields.IntField(default=0)
    low_stock_threshold = fields.IntField(default=5)  # For low stock alert
    is_active = fields.BooleanField(default=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "products"
        indexes = [
            ("shop_id", "is_active"),
        ]
