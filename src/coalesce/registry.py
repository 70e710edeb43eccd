"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Per-context coalescer registry.
"""

from __future__ import annotations

from threading import Lock

from .codec import ResultCodec
from .coalescer import RequestCoalescer
from .metrics import CoalescerMetrics
from .settings import CoalescerSettings
from .stores.base import CoalescingStore


class CoalescerRegistry:
    """
    Maps a context identity (connection, installation, tenant...) to one coalescer.

    Coalescers are created on first use and share this registry's settings,
    codec and metrics. The registry is an ordinary object: create one per
    application or session scope and pass it to the code that needs it.
    """

    def __init__(
        self,
        *,
        settings: CoalescerSettings | None = None,
        codec: ResultCodec | None = None,
        metrics: CoalescerMetrics | None = None,
    ) -> None:
        self._settings = settings or CoalescerSettings()
        self._codec = codec
        self._metrics = metrics
        self._coalescers: dict[str, RequestCoalescer] = {}
        self._lock = Lock()

    @staticmethod
    def _normalize(context_id: str) -> str:
        key = str(context_id).strip()
        if not key:
            raise ValueError("context_id must be non-empty")
        return key

    def get(self, context_id: str, store: CoalescingStore) -> RequestCoalescer:
        """
        Return the coalescer for `context_id`, creating it over `store` if new.

        `store` is only used on creation; later calls return the existing
        instance unchanged.
        """
        key = self._normalize(context_id)
        with self._lock:
            coalescer = self._coalescers.get(key)
            if coalescer is None:
                coalescer = RequestCoalescer(
                    store,
                    settings=self._settings,
                    codec=self._codec,
                    metrics=self._metrics,
                )
                self._coalescers[key] = coalescer
            return coalescer

    def discard(self, context_id: str) -> None:
        """Forget the coalescer for `context_id` (no-op when unknown)."""
        key = self._normalize(context_id)
        with self._lock:
            self._coalescers.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._coalescers.clear()

    def context_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._coalescers.keys())

    def __contains__(self, context_id: object) -> bool:
        with self._lock:
            return str(context_id).strip() in self._coalescers

    def __len__(self) -> int:
        with self._lock:
            return len(self._coalescers)
