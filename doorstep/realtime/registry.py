"""
Per-user registry of open Server-Sent-Events connections.

The registry is constructed by the application lifespan and closed on
shutdown; there is no module-level connection state.
"""
import asyncio
import json
import logging
from collections import OrderedDict, deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

from doorstep.core.config import (
    SSE_HEARTBEAT_SECONDS,
    SSE_MAX_CONNECTIONS_PER_USER,
    SSE_MAX_TOTAL_CONNECTIONS,
    SSE_QUEUE_SIZE,
)
from doorstep.core.errors import ConnectionLimitExceeded, NotificationDeliveryFailure

log = logging.getLogger(__name__)

def format_sse(event: str, data) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def invalidation_message(keys: List[str]) -> dict:
    return {"type": "invalidate", "keys": list(keys)}


class SseConnection:
    """One open event stream. Messages are queued and written by `stream()`."""

    def __init__(self, user_id: int, queue_size: int = SSE_QUEUE_SIZE, heartbeat_seconds: float = SSE_HEARTBEAT_SECONDS):
        self.user_id = user_id
        self.created_at = datetime.now(timezone.utc)
        self.heartbeat_seconds = heartbeat_seconds
        self.closed = False
        self.queue_size = queue_size
        self._messages: Deque[dict] = deque()
        self._wakeup = asyncio.Event()
        self._on_close = None

    def send(self, message: dict) -> None:
        if self.closed:
            raise NotificationDeliveryFailure(f"connection for user {self.user_id} is closed")
        if len(self._messages) >= self.queue_size:
            raise NotificationDeliveryFailure(f"connection for user {self.user_id} is not draining its queue")
        self._messages.append(message)
        self._wakeup.set()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._wakeup.set()
        if self._on_close is not None:
            self._on_close(self)

    def pending(self) -> List[dict]:
        """Messages queued but not yet streamed (used by tests and diagnostics)."""
        return list(self._messages)

    async def stream(self):
        """Yields SSE frames until the connection is closed or the client goes away."""
        try:
            yield format_sse("connected", {"connected": True})
            while True:
                if self._messages:
                    message = self._messages.popleft()
                    yield format_sse(message.get("type", "message"), message)
                    continue
                if self.closed:
                    break
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.heartbeat_seconds)
                except asyncio.TimeoutError:
                    yield format_sse("heartbeat", {})
        finally:
            self.close()


class ConnectionRegistry:
    def __init__(
        self,
        max_per_user: int = SSE_MAX_CONNECTIONS_PER_USER,
        max_total: int = SSE_MAX_TOTAL_CONNECTIONS,
        heartbeat_seconds: float = SSE_HEARTBEAT_SECONDS,
        queue_size: int = SSE_QUEUE_SIZE,
    ):
        self.max_per_user = max_per_user
        self.max_total = max_total
        self.heartbeat_seconds = heartbeat_seconds
        self.queue_size = queue_size
        self._connections: Dict[int, Deque[SseConnection]] = OrderedDict()
        self._total = 0

    @property
    def total(self) -> int:
        return self._total

    def connections_for(self, user_id: int) -> List[SseConnection]:
        return list(self._connections.get(user_id, ()))

    def register(self, user_id: int) -> SseConnection:
        """
        Opens a new connection slot for `user_id`.

        At the per-user cap the oldest connection of that user is closed first.
        At the global cap the new connection is refused.
        """
        existing = self._connections.get(user_id)
        while existing and len(existing) >= self.max_per_user:
            oldest = existing[0]
            log.info("Evicting oldest realtime connection for user %s", user_id)
            oldest.close()
            existing = self._connections.get(user_id)

        if self._total >= self.max_total:
            log.warning("Realtime connection refused for user %s: %s open", user_id, self._total)
            raise ConnectionLimitExceeded(self.max_total)

        connection = SseConnection(user_id, queue_size=self.queue_size, heartbeat_seconds=self.heartbeat_seconds)
        connection._on_close = self.unregister
        self._connections.setdefault(user_id, deque()).append(connection)
        self._total += 1
        return connection

    def unregister(self, connection: SseConnection) -> None:
        connections = self._connections.get(connection.user_id)
        if not connections:
            return
        try:
            connections.remove(connection)
        except ValueError:
            return
        self._total -= 1
        if not connections:
            del self._connections[connection.user_id]
        if not connection.closed:
            connection.close()

    def deliver(self, user_id: int, message: dict) -> int:
        """Queues `message` on every open connection of `user_id`. Returns the number reached."""
        delivered = 0
        for connection in self.connections_for(user_id):
            try:
                connection.send(message)
                delivered += 1
            except NotificationDeliveryFailure as exc:
                log.warning("Dropping realtime client: %s", exc)
                connection.close()
        return delivered

    def close_all(self) -> None:
        for user_id in list(self._connections):
            for connection in self.connections_for(user_id):
                connection.close()
        self._connections.clear()
        self._total = 0
