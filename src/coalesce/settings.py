"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Coalescer settings and explicit environment loading.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .keys import DEFAULT_LOCK_PREFIX, DEFAULT_RESULT_PREFIX, CoalescerKeys, check_prefixes

_TRUTHY = ("1", "true", "yes", "on")


def _env_float(name: str, default: float | None) -> float | None:
    """Blank or unset variables fall back to `default`."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True, slots=True)
class CoalescerSettings:
    """
    Tunables for lock expiry, result waiting and key namespaces.

    Attributes:
        lock_ttl_s: Store-enforced lifetime of a lock record.
        default_max_wait_s: Wait deadline used when callers pass none.
        poll_initial_interval_s: First pause between result polls.
        poll_backoff_factor: Multiplier applied to the pause after each poll.
        poll_max_interval_s: Cap on the pause between polls.
        lock_prefix: Key namespace for lock records.
        result_prefix: Key namespace for result records.
        result_ttl_s: Expiry for published results; ``None`` keeps them.
        use_change_notifications: Wake waiters early on stores that support it.
    """

    lock_ttl_s: float = 30.0
    default_max_wait_s: float = 30.0
    poll_initial_interval_s: float = 0.1
    poll_backoff_factor: float = 1.5
    poll_max_interval_s: float = 1.0
    lock_prefix: str = DEFAULT_LOCK_PREFIX
    result_prefix: str = DEFAULT_RESULT_PREFIX
    result_ttl_s: float | None = None
    use_change_notifications: bool = True

    def __post_init__(self) -> None:
        if not self.lock_ttl_s > 0:
            raise ValueError("lock_ttl_s must be > 0")
        if self.lock_ttl_ms < 1:
            raise ValueError("lock_ttl_s must be at least one millisecond")
        if not self.default_max_wait_s >= 0:
            raise ValueError("default_max_wait_s must be >= 0")
        if not self.poll_initial_interval_s > 0:
            raise ValueError("poll_initial_interval_s must be > 0")
        if not self.poll_backoff_factor >= 1.0:
            raise ValueError("poll_backoff_factor must be >= 1.0")
        if not self.poll_max_interval_s >= self.poll_initial_interval_s:
            raise ValueError("poll_max_interval_s must be >= poll_initial_interval_s")
        if self.result_ttl_s is not None and not self.result_ttl_s > 0:
            raise ValueError("result_ttl_s must be > 0 when set")
        check_prefixes(self.lock_prefix, self.result_prefix)

    @property
    def lock_ttl_ms(self) -> int:
        return int(round(self.lock_ttl_s * 1000))

    def keys(self) -> CoalescerKeys:
        return CoalescerKeys(lock_prefix=self.lock_prefix, result_prefix=self.result_prefix)

    @staticmethod
    def from_env() -> "CoalescerSettings":
        """Load settings from `COALESCE_*` environment variables."""
        return CoalescerSettings(
            lock_ttl_s=_env_float("COALESCE_LOCK_TTL_S", 30.0),
            default_max_wait_s=_env_float("COALESCE_MAX_WAIT_S", 30.0),
            poll_initial_interval_s=_env_float("COALESCE_POLL_INITIAL_S", 0.1),
            poll_backoff_factor=_env_float("COALESCE_POLL_BACKOFF_FACTOR", 1.5),
            poll_max_interval_s=_env_float("COALESCE_POLL_MAX_S", 1.0),
            lock_prefix=os.getenv("COALESCE_LOCK_PREFIX") or DEFAULT_LOCK_PREFIX,
            result_prefix=os.getenv("COALESCE_RESULT_PREFIX") or DEFAULT_RESULT_PREFIX,
            result_ttl_s=_env_float("COALESCE_RESULT_TTL_S", None),
            use_change_notifications=_env_bool("COALESCE_USE_NOTIFICATIONS", True),
        )
