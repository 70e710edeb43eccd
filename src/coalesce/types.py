"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Record and outcome types shared by the coalescer and its stores.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Literal

from .errors import CorruptedRecordError

CoalesceRole = Literal["owner", "waiter", "fallback", "timeout"]


def now_ms() -> int:
    """Wall-clock milliseconds since epoch."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, slots=True)
class InFlightRequest:
    """
    Lock record payload marking a computation in flight for one subject.

    Attributes:
        subject_id: Entity being computed for.
        correlation_id: Request currently holding the lock (diagnostics only).
        start_time: Milliseconds since epoch when the lock was acquired.
        expires_at: Milliseconds since epoch after which the lock is invalid.
    """

    subject_id: str
    correlation_id: str
    start_time: int
    expires_at: int

    def __post_init__(self) -> None:
        if self.expires_at <= self.start_time:
            raise ValueError("expires_at must be greater than start_time")

    @classmethod
    def start(
        cls,
        subject_id: str,
        correlation_id: str,
        *,
        ttl_ms: int,
        started_at: int | None = None,
    ) -> InFlightRequest:
        """Build a fresh lock record starting now (or at `started_at`)."""
        start_time = now_ms() if started_at is None else started_at
        return cls(
            subject_id=subject_id,
            correlation_id=correlation_id,
            start_time=start_time,
            expires_at=start_time + ttl_ms,
        )

    @property
    def ttl_ms(self) -> int:
        return self.expires_at - self.start_time

    def remaining_ms(self, at: int | None = None) -> int:
        """Milliseconds left before expiry, floored at zero."""
        current = now_ms() if at is None else at
        return max(0, self.expires_at - current)

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str | bytes) -> InFlightRequest:
        """
        Decode one lock record.

        Raises:
            CorruptedRecordError: Payload is not a well-formed lock record.
        """
        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise TypeError(f"expected object, got {type(data).__name__}")
            return cls(
                subject_id=_require(data, "subject_id", str),
                correlation_id=_require(data, "correlation_id", str),
                start_time=_require(data, "start_time", int),
                expires_at=_require(data, "expires_at", int),
            )
        except (UnicodeDecodeError, ValueError, TypeError, KeyError) as exc:
            raise CorruptedRecordError(f"Invalid in-flight record: {exc}") from exc


def _require(data: dict[str, Any], name: str, kind: type) -> Any:
    value = data[name]
    # bool is an int subclass; timestamps must be real integers.
    if not isinstance(value, kind) or isinstance(value, bool):
        raise TypeError(f"field '{name}' must be {kind.__name__}")
    return value


@dataclass(frozen=True, slots=True)
class CoalesceOutcome:
    """
    Result of one coalesced execution.

    `role` tells how the value was obtained: `owner` computed it under the
    lock, `waiter` received another caller's result, `fallback` computed it
    after the wait timed out, and `timeout` gave up without a value.
    """

    value: Any
    role: CoalesceRole
    elapsed_s: float = 0.0

    @property
    def computed(self) -> bool:
        return self.role in ("owner", "fallback")
