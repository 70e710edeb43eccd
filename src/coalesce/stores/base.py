"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Key-value store contracts consumed by the coalescer.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class CoalescingStore(Protocol):
    """
    Minimal key-value store with per-key TTL.

    Implementations raise `StoreUnavailableError` on connectivity, timeout or
    internal failure. `set_if_absent` must be atomic per key.
    """

    backend_id: str

    async def set_if_absent(self, key: str, value: str, *, ttl_s: float) -> bool:
        """Write `value` only when `key` is absent; return whether it was written."""
        ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, *, ttl_s: float | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...


@runtime_checkable
class ChangeNotificationCapable(Protocol):
    """
    Optional store capability for waking waiters when a key is written.
    """

    async def wait_for_key(self, key: str, *, timeout_s: float) -> bool:
        """Wait until `key` is written or `timeout_s` elapses; True if notified."""
        ...
