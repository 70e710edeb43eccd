"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Redis-backed coalescing store.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Any

from redis.exceptions import RedisError

from ..errors import StoreUnavailableError
from .base import ChangeNotificationCapable, CoalescingStore

logger = logging.getLogger("coalesce.stores.redis")

_CLIENT_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


def _decode(raw: Any) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return str(raw)


def _ttl_ms(ttl_s: float) -> int:
    if ttl_s <= 0:
        raise ValueError("ttl_s must be > 0")
    return max(1, math.ceil(ttl_s * 1000))


class RedisCoalescingStore(CoalescingStore, ChangeNotificationCapable):
    """
    Store backed by an ``redis.asyncio.Redis`` client for multi-process use.

    Uses:
    - ``SET key value NX PX ttl`` for lock acquisition
    - ``SET key value [PX ttl]`` followed by ``PUBLISH`` for result writes
    - ``GET`` / ``DEL`` for reads and release

    Client failures surface as ``StoreUnavailableError``.

    Args:
        redis: An ``redis.asyncio.Redis`` client instance.
        channel_prefix: Pub/sub channel namespace for write notifications.
        publish_on_set: Whether ``set`` publishes a change notification.
    """

    backend_id = "redis"

    def __init__(
        self,
        redis: Any,
        *,
        channel_prefix: str = "coalesce:notify",
        publish_on_set: bool = True,
    ) -> None:
        self._redis = redis
        self._channel_prefix = channel_prefix
        self._publish_on_set = publish_on_set

    def _channel(self, key: str) -> str:
        """Pub/sub channel carrying write notifications for one key."""
        return f"{self._channel_prefix}:{key}"

    async def set_if_absent(self, key: str, value: str, *, ttl_s: float) -> bool:
        px = _ttl_ms(ttl_s)
        try:
            written = await self._redis.set(key, value, nx=True, px=px)
        except _CLIENT_ERRORS as exc:
            raise StoreUnavailableError("set_if_absent", key, exc) from exc
        return bool(written)

    async def get(self, key: str) -> str | None:
        try:
            raw = await self._redis.get(key)
        except _CLIENT_ERRORS as exc:
            raise StoreUnavailableError("get", key, exc) from exc
        return _decode(raw)

    async def set(self, key: str, value: str, *, ttl_s: float | None = None) -> None:
        px = None if ttl_s is None else _ttl_ms(ttl_s)
        try:
            await self._redis.set(key, value, px=px)
        except _CLIENT_ERRORS as exc:
            raise StoreUnavailableError("set", key, exc) from exc
        if not self._publish_on_set:
            return
        try:
            await self._redis.publish(self._channel(key), "1")
        except _CLIENT_ERRORS:
            # The value is written; waiters still find it on their next poll.
            logger.debug("Change notification publish failed for %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except _CLIENT_ERRORS as exc:
            raise StoreUnavailableError("delete", key, exc) from exc

    async def wait_for_key(self, key: str, *, timeout_s: float) -> bool:
        """
        Subscribe to the key's notification channel until a message or timeout.

        Notifications published before the subscription is active are missed;
        callers must keep polling the key itself.
        """
        if not timeout_s > 0:
            return False
        deadline = time.monotonic() + timeout_s
        channel = self._channel(key)
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=remaining,
                )
                if message is not None and message.get("type") == "message":
                    return True
        except _CLIENT_ERRORS as exc:
            raise StoreUnavailableError("subscribe", key, exc) from exc
        finally:
            try:
                await pubsub.unsubscribe(channel)
            except _CLIENT_ERRORS:
                logger.debug("Pub/sub unsubscribe failed for %s", channel, exc_info=True)
            try:
                await pubsub.aclose()
            except _CLIENT_ERRORS:
                logger.debug("Pub/sub close failed for %s", channel, exc_info=True)
