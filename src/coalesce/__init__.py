"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Request coalescing over a shared key-value store.

Collapses concurrent requests for the same subject into one computation.
The first caller takes a TTL-bounded lock record and computes; the others
poll for the published result with exponential backoff.

Quick start::

    from coalesce import InMemoryCoalescingStore, RequestCoalescer

    coalescer = RequestCoalescer(InMemoryCoalescingStore())
    outcome = await coalescer.run("t2_abc", "req-001", lambda: analyze("t2_abc"))
    outcome.value, outcome.role  # role: "owner" | "waiter" | "fallback" | "timeout"
"""

from .codec import JsonResultCodec, ResultCodec
from .coalescer import RequestCoalescer
from .errors import CoalesceError, CorruptedRecordError, StoreUnavailableError
from .factory import create_coalescer_from_env, create_store_from_env
from .keys import CoalescerKeys, scoped_subject
from .metrics import (
    COALESCER_COUNTERS,
    CoalescerMetrics,
    NoOpCoalescerMetrics,
    PrometheusCoalescerMetrics,
)
from .registry import CoalescerRegistry
from .settings import CoalescerSettings
from .stores import (
    ChangeNotificationCapable,
    CoalescingStore,
    InMemoryCoalescingStore,
    RedisCoalescingStore,
)
from .types import CoalesceOutcome, CoalesceRole, InFlightRequest

__all__ = [
    "RequestCoalescer",
    "CoalescerRegistry",
    "CoalescerSettings",
    "CoalescerKeys",
    "scoped_subject",
    "InFlightRequest",
    "CoalesceOutcome",
    "CoalesceRole",
    "ResultCodec",
    "JsonResultCodec",
    "CoalescingStore",
    "ChangeNotificationCapable",
    "InMemoryCoalescingStore",
    "RedisCoalescingStore",
    "COALESCER_COUNTERS",
    "CoalescerMetrics",
    "NoOpCoalescerMetrics",
    "PrometheusCoalescerMetrics",
    "CoalesceError",
    "StoreUnavailableError",
    "CorruptedRecordError",
    "create_store_from_env",
    "create_coalescer_from_env",
]
