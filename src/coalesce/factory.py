"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Factory helpers for selecting coalescing stores from environment variables.
"""

from __future__ import annotations

import os
from typing import Any

from .coalescer import RequestCoalescer
from .metrics import CoalescerMetrics
from .settings import CoalescerSettings
from .stores.base import CoalescingStore
from .stores.inmemory import InMemoryCoalescingStore


def _env_first(*names: str, default: str | None = None) -> str | None:
    """
    Return the first non-empty environment variable in `names`.

    Args:
        *names: Environment variable names to check in order.
        default: Value returned if no non-empty variable is found.
    """
    for name in names:
        raw = os.getenv(name)
        if raw is None:
            continue
        value = raw.strip()
        if value:
            return value
    return default


def _redis_url_from_env() -> str:
    url = _env_first("COALESCE_REDIS_URL")
    if url:
        return url
    host = _env_first("COALESCE_REDIS_HOST", default="localhost") or "localhost"
    port = _env_first("COALESCE_REDIS_PORT", default="6379") or "6379"
    db = _env_first("COALESCE_REDIS_DB", default="0") or "0"
    password = _env_first("COALESCE_REDIS_PASSWORD", default="") or ""
    if password:
        return f"redis://:{password}@{host}:{port}/{db}"
    return f"redis://{host}:{port}/{db}"


def create_store_from_env(*, redis_client: Any | None = None) -> CoalescingStore:
    """
    Create a coalescing store from `COALESCE_*` environment variables.

    Backends:
    - `inmemory` (default)
    - `redis`

    Redis resolution:
    - Uses the provided `redis_client` when supplied.
    - Otherwise builds a client from `COALESCE_REDIS_URL`.
    - If no URL is set, falls back to host/port/db/password variables.
    """
    backend = os.getenv("COALESCE_STORE_BACKEND", "inmemory").strip().lower()

    if backend in ("mem", "memory", "inmemory", "in_memory"):
        return InMemoryCoalescingStore()

    if backend in ("redis",):
        from .stores.redis import RedisCoalescingStore

        channel_prefix = (
            _env_first("COALESCE_REDIS_CHANNEL_PREFIX", default="coalesce:notify")
            or "coalesce:notify"
        )
        client = redis_client
        if client is None:
            try:
                import redis.asyncio as redis
            except ModuleNotFoundError as exc:  # pragma: no cover
                raise RuntimeError(
                    "Redis coalescing backend requires `redis` to be installed."
                ) from exc
            client = redis.Redis.from_url(_redis_url_from_env())

        return RedisCoalescingStore(client, channel_prefix=channel_prefix)

    raise ValueError(f"Unknown COALESCE_STORE_BACKEND: {backend}")


def create_coalescer_from_env(
    *,
    redis_client: Any | None = None,
    metrics: CoalescerMetrics | None = None,
) -> RequestCoalescer:
    """Build a coalescer from `CoalescerSettings.from_env()` and the env-selected store."""
    return RequestCoalescer(
        create_store_from_env(redis_client=redis_client),
        settings=CoalescerSettings.from_env(),
        metrics=metrics,
    )
