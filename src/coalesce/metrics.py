"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Coalescer counters and the sinks that record them.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

# name -> (documentation, label names)
COALESCER_COUNTERS: dict[str, tuple[str, tuple[str, ...]]] = {
    "lock_acquired": ("Lock records written by acquire.", ()),
    "lock_contended": ("Acquire calls refused because another caller holds the lock.", ()),
    "lock_fail_open": ("Acquire calls that proceeded without a lock after a store failure.", ()),
    "lock_released": ("Lock records deleted by release.", ()),
    "store_errors": ("Store failures absorbed by a coalescer operation.", ("operation",)),
    "corrupted_lock_cleared": ("Undecodable lock records deleted on inspection.", ()),
    "wait_hit": ("Waits that returned a published result.", ()),
    "wait_timeout": ("Waits that reached their deadline without a result.", ()),
    "result_published": ("Result records written.", ()),
    "run_fallback": ("Coalesced runs that computed without the lock after a timeout.", ()),
}


def counter_labels(name: str, tags: Mapping[str, str] | None) -> tuple[str, ...]:
    """
    Return label values for `name` in declaration order.

    Raises:
        ValueError: Unknown counter, or tags that do not match its labels.
    """
    declared = COALESCER_COUNTERS.get(name)
    if declared is None:
        raise ValueError(f"Unknown coalescer counter '{name}'")
    label_names = declared[1]
    given = dict(tags or {})
    if set(given) != set(label_names):
        raise ValueError(
            f"Counter '{name}' takes labels {list(label_names)}, got {sorted(given)}"
        )
    return tuple(str(given[label]) for label in label_names)


class CoalescerMetrics(Protocol):
    """Counter sink for the names in `COALESCER_COUNTERS`."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None: ...


class NoOpCoalescerMetrics:
    """Default sink; drops every increment."""

    def incr(
        self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None
    ) -> None:
        return None


class PrometheusCoalescerMetrics:
    """
    Exports coalescer counters through `prometheus_client`.

    Every counter is registered up front, so dashboards see zeroes before the
    first lock is taken. Unknown names and mismatched labels raise
    ``ValueError``.

    Args:
        namespace: Metric name prefix (``{namespace}_{counter}_total``).
        registry: Collector registry; defaults to the global one.
    """

    def __init__(self, *, namespace: str = "coalesce", registry: Any | None = None) -> None:
        try:
            from prometheus_client import REGISTRY, Counter
        except ModuleNotFoundError as exc:  # pragma: no cover
            raise RuntimeError(
                "PrometheusCoalescerMetrics requires `prometheus_client` to be installed."
            ) from exc

        self._counters = {
            name: Counter(
                name,
                documentation,
                labelnames=label_names,
                namespace=namespace,
                registry=REGISTRY if registry is None else registry,
            )
            for name, (documentation, label_names) in COALESCER_COUNTERS.items()
        }

    def incr(self, name: str, value: int = 1, *, tags: Mapping[str, str] | None = None) -> None:
        label_values = counter_labels(name, tags)
        counter = self._counters[name]
        if label_values:
            counter.labels(*label_values).inc(value)
        else:
            counter.inc(value)
