import logging
from typing import Dict, List, Optional
from uuid import UUID

from doorstep.models.inventory import Product
from doorstep.models.notification import Notification
from doorstep.realtime.bus import NotificationBus

log = logging.getLogger(__name__)


async def create_notification(
    bus: NotificationBus,
    user_id: Optional[int],
    type: str,
    title: str,
    message: str,
    related_booking_id: Optional[UUID] = None,
) -> Optional[Notification]:
    """Stores an inbox entry and tells the user's open clients to refetch it."""
    if not user_id:
        return None
    notification = await Notification.create(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        related_booking_id=related_booking_id,
    )
    bus.notify_notification_change(user_id)
    return notification


async def list_notifications(user_id: int, unread_only: bool = False) -> List[Notification]:
    query = Notification.filter(user_id=user_id)
    if unread_only:
        query = query.filter(is_read=False)
    return await query.order_by("-created_at")


async def find_low_stock_by_shop() -> Dict[int, List[Product]]:
    """Active products at or below their threshold, grouped by shop."""
    products = await Product.filter(is_active=True).order_by("shop_id", "name")
    grouped: Dict[int, List[Product]] = {}
    for product in products:
        if product.stock <= product.low_stock_threshold:
            grouped.setdefault(product.shop_id, []).append(product)
    return grouped


async def low_stock_digest(bus: NotificationBus) -> int:
    """Sends one digest notification per shop with low stock. Returns shops notified."""
    grouped = await find_low_stock_by_shop()
    for shop_id, items in grouped.items():
        count = len(items)
        item_label = "item is" if count == 1 else "items are"
        await create_notification(
            bus,
            user_id=shop_id,
            type="shop",
            title="Low stock alert",
            message=f"{count} {item_label} low on stock. Open Inventory > Quick Edit to restock.",
        )
    log.info("[LowStockDigest] Inventory digest completed for %s shops", len(grouped))
    return len(grouped)
