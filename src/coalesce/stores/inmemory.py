"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

In-memory coalescing store.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from threading import Lock

from .base import ChangeNotificationCapable, CoalescingStore


@dataclass(frozen=True, slots=True)
class _Row:
    value: str
    expires_at_s: float | None

    def expired(self, now: float) -> bool:
        return self.expires_at_s is not None and self.expires_at_s <= now


class InMemoryCoalescingStore(CoalescingStore, ChangeNotificationCapable):
    """
    Process-local store suitable for single-process deployments and tests.

    Expiry is lazy and uses a monotonic clock. Waiters registered through
    `wait_for_key` are woken on every `set` / successful `set_if_absent` of
    their key, on the event loop they registered from.
    """

    backend_id = "inmemory"

    def __init__(self) -> None:
        self._rows: dict[str, _Row] = {}
        self._lock = Lock()
        self._waiters: dict[str, set[tuple[asyncio.AbstractEventLoop, asyncio.Event]]] = {}

    def _clock(self) -> float:
        return time.monotonic()

    def _live_row(self, key: str, now: float) -> _Row | None:
        row = self._rows.get(key)
        if row is None:
            return None
        if row.expired(now):
            self._rows.pop(key, None)
            return None
        return row

    def _expiry(self, ttl_s: float | None, now: float) -> float | None:
        if ttl_s is None:
            return None
        if ttl_s <= 0:
            raise ValueError("ttl_s must be > 0")
        return now + ttl_s

    async def set_if_absent(self, key: str, value: str, *, ttl_s: float) -> bool:
        with self._lock:
            now = self._clock()
            if self._live_row(key, now) is not None:
                return False
            self._rows[key] = _Row(value=value, expires_at_s=self._expiry(ttl_s, now))
        self._notify(key)
        return True

    async def get(self, key: str) -> str | None:
        with self._lock:
            row = self._live_row(key, self._clock())
        return None if row is None else row.value

    async def set(self, key: str, value: str, *, ttl_s: float | None = None) -> None:
        with self._lock:
            now = self._clock()
            self._rows[key] = _Row(value=value, expires_at_s=self._expiry(ttl_s, now))
        self._notify(key)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._rows.pop(key, None)

    async def wait_for_key(self, key: str, *, timeout_s: float) -> bool:
        if timeout_s <= 0:
            return False
        loop = asyncio.get_running_loop()
        entry = (loop, asyncio.Event())
        with self._lock:
            self._waiters.setdefault(key, set()).add(entry)
        try:
            await asyncio.wait_for(entry[1].wait(), timeout=timeout_s)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            with self._lock:
                waiting = self._waiters.get(key)
                if waiting is not None:
                    waiting.discard(entry)
                    if not waiting:
                        self._waiters.pop(key, None)

    def _notify(self, key: str) -> None:
        with self._lock:
            waiting = list(self._waiters.get(key, ()))
        for loop, event in waiting:
            if loop.is_closed():
                continue
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                event.set()
            else:
                loop.call_soon_threadsafe(event.set)

    @property
    def key_count(self) -> int:
        """Number of live keys (expired rows are purged first)."""
        with self._lock:
            now = self._clock()
            for key in [k for k, row in self._rows.items() if row.expired(now)]:
                self._rows.pop(key, None)
            return len(self._rows)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()
