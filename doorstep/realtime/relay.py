"""
Cross-instance fan-out over Redis pub/sub.

Each instance publishes invalidations to a shared channel and delivers
whatever it receives to the connections it holds locally, so a user whose
stream lives on another instance still gets the message. While the
subscription is down `connected` is False and the bus delivers locally.
"""
import asyncio
import json
import logging
from typing import Callable, List, Optional

from redis.exceptions import RedisError

from doorstep.core.config import REALTIME_CHANNEL

log = logging.getLogger(__name__)


class RedisRelay:
    def __init__(
        self,
        redis,
        deliver: Callable[[List[int], List[str]], int],
        channel: str = REALTIME_CHANNEL,
        reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 30.0,
    ):
        self.redis = redis
        self.deliver = deliver
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.connected = False
        self._task: Optional[asyncio.Task] = None
        self._pubsub = None

    async def publish(self, recipients: List[int], keys: List[str]) -> None:
        await self.redis.publish(self.channel, json.dumps({"recipients": recipients, "keys": keys}))

    def handle_message(self, raw) -> int:
        """Delivers one pub/sub payload locally. Malformed payloads are dropped."""
        try:
            payload = json.loads(raw)
            return self.deliver(payload.get("recipients") or [], payload.get("keys") or [])
        except Exception as exc:
            log.warning("Failed to parse realtime message: %s", exc)
            return 0

    async def start(self) -> None:
        await self._subscribe()
        self._task = asyncio.create_task(self._listen(), name="realtime-relay")
        log.info("Subscribed to realtime channel %s", self.channel)

    async def _subscribe(self) -> None:
        self._pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(self.channel)
        self.connected = True

    async def _listen(self) -> None:
        """Reads the channel until cancelled, re-subscribing with backoff after errors."""
        delay = self.reconnect_delay
        while True:
            try:
                if self._pubsub is None:
                    await self._subscribe()
                    log.info("Re-subscribed to realtime channel %s", self.channel)
                    delay = self.reconnect_delay
                async for message in self._pubsub.listen():
                    if message.get("type") == "message":
                        self.handle_message(message.get("data"))
                log.warning(f"Realtime subscription ended; retrying in {delay}s")
            except (RedisError, OSError) as exc:
                log.warning(f"Realtime subscription lost ({exc}); retrying in {delay}s")
            self.connected = False
            await self._close_pubsub()
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_reconnect_delay)

    async def _close_pubsub(self) -> None:
        if self._pubsub is None:
            return
        try:
            await self._pubsub.aclose()
        except (RedisError, OSError) as exc:
            log.warning("Failed to close realtime subscription: %s", exc)
        self._pubsub = None

    async def stop(self) -> None:
        self.connected = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                log.warning("Realtime relay listener ended with error: %s", exc)
            self._task = None
        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
            except (RedisError, OSError) as exc:
                log.warning("Failed to unsubscribe from %s: %s", self.channel, exc)
            await self._close_pubsub()
