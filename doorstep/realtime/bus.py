"""
Change notification bus.

Domain code calls the typed notifiers after a successful mutation; the bus
resolves recipients to user ids and pushes an invalidation message listing
the client cache keys to refetch. Delivery is best-effort and at-most-once.
"""
import logging
from dataclasses import fields
from typing import Any, Iterable, List, Mapping, Optional

from doorstep.realtime.recipients import (
    BookingParticipants,
    OrderParticipants,
    as_user_ids,
)
from doorstep.realtime.registry import ConnectionRegistry, invalidation_message

log = logging.getLogger(__name__)

NOTIFICATION_KEYS = ["/api/notifications"]
CUSTOMER_BOOKING_KEYS = [
    "/api/bookings",
    "/api/bookings/customer",
    "/api/bookings/customer/requests",
    "/api/bookings/customer/history",
]
PROVIDER_BOOKING_KEYS = [
    "/api/bookings",
    "/api/bookings/provider",
    "/api/bookings/provider/pending",
    "/api/bookings/provider/history",
]
CART_KEYS = ["/api/cart"]
WISHLIST_KEYS = ["/api/wishlist"]
CUSTOMER_ORDER_KEYS = ["/api/orders", "/api/orders/customer"]
SHOP_ORDER_KEYS = [
    "orders",
    "/api/orders/shop",
    "/api/orders/shop/recent",
    "/api/returns/shop",
    "shopDashboardStats",
]


def normalize_keys(keys: Optional[Iterable[str]]) -> List[str]:
    """Drops empty keys and duplicates, keeping first-seen order."""
    seen = []
    for key in keys or ():
        if key and key not in seen:
            seen.append(key)
    return seen


def _booking_detail_keys(booking_id) -> List[str]:
    return [f"/api/bookings/{booking_id}"] if booking_id else []


def _order_detail_keys(order_id) -> List[str]:
    if not order_id:
        return []
    return [f"/api/orders/{order_id}", f"/api/orders/{order_id}/timeline"]


def _participants(shape, value):
    """Builds `shape` from an instance or a mapping; anything else resolves to None."""
    if isinstance(value, shape):
        return value
    if isinstance(value, Mapping):
        names = [f.name for f in fields(shape)]
        return shape(**{name: value.get(name) for name in names})
    return None


class NotificationBus:
    def __init__(self, registry: ConnectionRegistry, relay=None, dispatcher=None):
        self.registry = registry
        self.relay = relay
        self.dispatcher = dispatcher

    # ----------- Primitive -----------

    def broadcast_invalidation(self, recipients: Any, keys: Iterable[str]) -> None:
        """
        Tells every connection of every recipient to refetch `keys`.
        Never raises; an empty recipient set or key list is a no-op.
        """
        try:
            user_ids = sorted(as_user_ids(recipients))
            normalized = normalize_keys(keys)
        except Exception:
            log.warning("Ignoring malformed invalidation for %r", recipients, exc_info=True)
            return
        if not user_ids or not normalized:
            return

        # Publish only while this instance is subscribed to the channel
        if self.relay is not None and self.dispatcher is not None and self.relay.connected:
            self.dispatcher.fire(
                self._publish(user_ids, normalized),
                label=f"realtime publish {normalized[0]}",
            )
        else:
            self.deliver_local(user_ids, normalized)

    async def _publish(self, user_ids: List[int], keys: List[str]) -> None:
        try:
            await self.relay.publish(user_ids, keys)
        except Exception as exc:
            log.warning("Failed to publish realtime event, falling back to local broadcast: %s", exc)
            self.deliver_local(user_ids, keys)

    def deliver_local(self, recipients: Any, keys: Iterable[str]) -> int:
        """Pushes to connections held by this process. Returns connections reached."""
        normalized = normalize_keys(keys)
        if not normalized:
            return 0
        message = invalidation_message(normalized)
        delivered = 0
        for user_id in sorted(as_user_ids(recipients)):
            delivered += self.registry.deliver(user_id, message)
        return delivered

    # ----------- Typed notifiers -----------

    def notify_notification_change(self, user_id: Any) -> None:
        self.broadcast_invalidation(user_id, NOTIFICATION_KEYS)

    def notify_notification_changes(self, user_ids: Any) -> None:
        self.broadcast_invalidation(user_ids, NOTIFICATION_KEYS)

    def notify_booking_change(self, participants: Any = None, **kwargs) -> None:
        """
        Accepts BookingParticipants, a mapping with customer_id/provider_id, or
        the same as keyword arguments. Missing participants are skipped.
        """
        target = _participants(BookingParticipants, kwargs if participants is None else participants)
        if target is None:
            return
        detail = _booking_detail_keys(target.booking_id)
        if target.customer is not None:
            self.broadcast_invalidation(target.customer, CUSTOMER_BOOKING_KEYS + detail)
        if target.provider is not None:
            self.broadcast_invalidation(target.provider, PROVIDER_BOOKING_KEYS + detail)
            self.notify_notification_change(target.provider)

    def notify_order_change(self, participants: Any = None, **kwargs) -> None:
        target = _participants(OrderParticipants, kwargs if participants is None else participants)
        if target is None:
            return
        detail = _order_detail_keys(target.order_id)
        if target.customer is not None:
            self.broadcast_invalidation(target.customer, CUSTOMER_ORDER_KEYS + detail)
        if target.shop is not None:
            self.broadcast_invalidation(target.shop, SHOP_ORDER_KEYS + detail)

    def notify_cart_change(self, user_id: Any) -> None:
        self.broadcast_invalidation(user_id, CART_KEYS)

    def notify_wishlist_change(self, user_id: Any) -> None:
        self.broadcast_invalidation(user_id, WISHLIST_KEYS)
