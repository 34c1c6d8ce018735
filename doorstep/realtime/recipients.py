"""
Recipient shapes accepted by the notification bus.

Every shape resolves to a flat set of user ids. Missing participants (None,
0, empty collections) simply contribute nothing.
"""
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Set


def _as_user_id(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            return None
    try:
        user_id = int(value)
    except (TypeError, ValueError):
        return None
    return user_id if user_id > 0 else None


class Recipients:
    def user_ids(self) -> Set[int]:
        raise NotImplementedError


@dataclass(frozen=True)
class NoRecipients(Recipients):
    def user_ids(self) -> Set[int]:
        return set()


@dataclass(frozen=True)
class UserRecipients(Recipients):
    ids: FrozenSet[Any] = field(default_factory=frozenset)

    def user_ids(self) -> Set[int]:
        resolved = (_as_user_id(v) for v in self.ids)
        return {v for v in resolved if v is not None}


@dataclass(frozen=True)
class BookingParticipants(Recipients):
    customer_id: Any = None
    provider_id: Any = None
    booking_id: Any = None

    @property
    def customer(self) -> Optional[int]:
        return _as_user_id(self.customer_id)

    @property
    def provider(self) -> Optional[int]:
        return _as_user_id(self.provider_id)

    def user_ids(self) -> Set[int]:
        return {v for v in (self.customer, self.provider) if v is not None}


@dataclass(frozen=True)
class OrderParticipants(Recipients):
    customer_id: Any = None
    shop_id: Any = None
    order_id: Any = None

    @property
    def customer(self) -> Optional[int]:
        return _as_user_id(self.customer_id)

    @property
    def shop(self) -> Optional[int]:
        return _as_user_id(self.shop_id)

    def user_ids(self) -> Set[int]:
        return {v for v in (self.customer, self.shop) if v is not None}


def as_recipients(value: Any) -> Recipients:
    """Coerces a raw recipient value (id, list of ids, mapping, ...) into a Recipients shape."""
    if isinstance(value, Recipients):
        return value
    if value is None:
        return NoRecipients()
    if isinstance(value, Mapping):
        if "shop_id" in value or "order_id" in value:
            return OrderParticipants(
                customer_id=value.get("customer_id"),
                shop_id=value.get("shop_id"),
                order_id=value.get("order_id"),
            )
        return BookingParticipants(
            customer_id=value.get("customer_id"),
            provider_id=value.get("provider_id"),
            booking_id=value.get("booking_id"),
        )
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        return UserRecipients(frozenset([value]))
    return UserRecipients(frozenset(v for v in value if v is not None))


def as_user_ids(value: Any) -> Set[int]:
    return as_recipients(value).user_ids()
