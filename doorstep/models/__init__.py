# doorstep/models/__init__.py
from .booking import Booking, BookingHistory, BookingStatus, PaymentStatus
from .inventory import Product
from .notification import Notification

# Export all models
__all__ = [
    "Booking",
    "BookingHistory",
    "BookingStatus",
    "Notification",
    "PaymentStatus",
    "Product",
]
