import pytest

from doorstep.models import Notification, Product
from doorstep.services.notification_service import (
    create_notification,
    find_low_stock_by_shop,
    list_notifications,
    low_stock_digest,
)

pytestmark = pytest.mark.usefixtures("db")


async def test_create_notification_skips_missing_user(bus):
    assert await create_notification(bus, None, "booking_update", "t", "m") is None
    assert await Notification.all().count() == 0


async def test_create_notification_invalidates_inbox(bus, registry):
    connection = registry.register(7)

    await create_notification(bus, 7, "booking_update", "Booking Accepted", "Your booking was accepted.")

    assert [n.title for n in await list_notifications(7)] == ["Booking Accepted"]
    assert connection.pending() == [{"type": "invalidate", "keys": ["/api/notifications"]}]


async def test_low_stock_digest_sends_one_message_per_shop(bus):
    await Product.create(shop_id=1, name="Rice 5kg", stock=2, low_stock_threshold=5)
    await Product.create(shop_id=1, name="Dal 1kg", stock=5, low_stock_threshold=5)
    await Product.create(shop_id=1, name="Sugar", stock=40, low_stock_threshold=5)
    await Product.create(shop_id=2, name="Soap", stock=0, low_stock_threshold=3)
    await Product.create(shop_id=3, name="Retired item", stock=0, is_active=False)

    grouped = await find_low_stock_by_shop()
    assert {shop: len(items) for shop, items in grouped.items()} == {1: 2, 2: 1}

    assert await low_stock_digest(bus) == 2

    messages = {n.user_id: n.message for n in await Notification.filter(type="shop")}
    assert messages == {
        1: "2 items are low on stock. Open Inventory > Quick Edit to restock.",
        2: "1 item is low on stock. Open Inventory > Quick Edit to restock.",
    }


async def test_low_stock_digest_without_low_stock(bus):
    await Product.create(shop_id=1, name="Sugar", stock=40)
    assert await low_stock_digest(bus) == 0
    assert await Notification.all().count() == 0
