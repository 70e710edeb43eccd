"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Store-coordinated request coalescer.

Concurrent callers asking for the same subject race on one lock record; the
winner computes and publishes a result record, everyone else polls for it.

Typical flow::

    coalescer = RequestCoalescer(InMemoryCoalescingStore())

    if await coalescer.acquire(user_id, correlation_id):
        try:
            result = await analyze(user_id)
            await coalescer.publish_result(user_id, result)
        finally:
            await coalescer.release(user_id)
    else:
        result = await coalescer.wait_for_result(user_id)

``run`` wraps the same flow in a single call.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .codec import JsonResultCodec, ResultCodec
from .errors import CorruptedRecordError
from .keys import CoalescerKeys
from .metrics import CoalescerMetrics, NoOpCoalescerMetrics
from .settings import CoalescerSettings
from .stores.base import ChangeNotificationCapable, CoalescingStore
from .types import CoalesceOutcome, InFlightRequest

logger = logging.getLogger("coalesce.coalescer")

ComputeFn = Callable[[], Awaitable[Any] | Any]


class RequestCoalescer:
    """
    Coalesces duplicate computations per subject through a shared store.

    No store failure escapes the public operations. Acquisition fails open
    (the caller computes), result fetches fail closed (the caller sees no
    result), release and inspection degrade to no-ops.
    """

    def __init__(
        self,
        store: CoalescingStore,
        *,
        settings: CoalescerSettings | None = None,
        codec: ResultCodec | None = None,
        metrics: CoalescerMetrics | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or CoalescerSettings()
        self._keys: CoalescerKeys = self._settings.keys()
        self._codec: ResultCodec = codec or JsonResultCodec()
        self._metrics: CoalescerMetrics = metrics or NoOpCoalescerMetrics()
        self._notifier = (
            store
            if self._settings.use_change_notifications
            and isinstance(store, ChangeNotificationCapable)
            else None
        )

    @property
    def store(self) -> CoalescingStore:
        return self._store

    @property
    def settings(self) -> CoalescerSettings:
        return self._settings

    @property
    def keys(self) -> CoalescerKeys:
        return self._keys

    def _count(self, name: str, *, tags: dict[str, str] | None = None) -> None:
        # Instrumentation never changes the outcome of a store operation.
        try:
            self._metrics.incr(name, tags=tags)
        except Exception:
            logger.debug("Metrics increment failed for %s", name, exc_info=True)

    def _store_error(self, operation: str) -> None:
        self._count("store_errors", tags={"operation": operation})

    async def acquire(self, subject_id: str, correlation_id: str) -> bool:
        """
        Try to become the single computation owner for `subject_id`.

        Returns:
            ``True`` when the lock was written (or the store failed), ``False``
            when another caller already holds it.
        """
        record = InFlightRequest.start(
            subject_id,
            correlation_id,
            ttl_ms=self._settings.lock_ttl_ms,
        )
        key = self._keys.lock_key(subject_id)
        try:
            acquired = await self._store.set_if_absent(
                key,
                record.to_json(),
                ttl_s=self._settings.lock_ttl_s,
            )
        except Exception:
            logger.warning(
                "Lock acquisition failed for subject %s (correlation_id=%s); proceeding without lock",
                subject_id,
                correlation_id,
                exc_info=True,
            )
            self._store_error("acquire")
            self._count("lock_fail_open")
            return True

        if acquired:
            logger.debug("Lock acquired for subject %s (correlation_id=%s)", subject_id, correlation_id)
            self._count("lock_acquired")
        else:
            logger.debug("Lock contended for subject %s (correlation_id=%s)", subject_id, correlation_id)
            self._count("lock_contended")
        return acquired

    async def release(self, subject_id: str) -> None:
        """Delete the lock record for `subject_id`; never raises on store failure."""
        key = self._keys.lock_key(subject_id)
        try:
            await self._store.delete(key)
        except Exception:
            # The record still expires after lock_ttl_s.
            logger.warning("Lock release failed for subject %s", subject_id, exc_info=True)
            self._store_error("release")
            return
        logger.debug("Lock released for subject %s", subject_id)
        self._count("lock_released")

    async def get_in_flight_request(self, subject_id: str) -> InFlightRequest | None:
        """
        Return the current lock holder's record, or ``None``.

        A corrupted record is deleted so it cannot block later acquisitions.
        """
        key = self._keys.lock_key(subject_id)
        try:
            raw = await self._store.get(key)
        except Exception:
            logger.warning("In-flight lookup failed for subject %s", subject_id, exc_info=True)
            self._store_error("inspect")
            return None
        if raw is None:
            return None

        try:
            return InFlightRequest.from_json(raw)
        except CorruptedRecordError as exc:
            logger.info("Clearing corrupted lock record for subject %s: %s", subject_id, exc)
            self._count("corrupted_lock_cleared")
            try:
                await self._store.delete(key)
            except Exception:
                logger.warning(
                    "Corrupted lock cleanup failed for subject %s", subject_id, exc_info=True
                )
                self._store_error("cleanup")
            return None

    async def publish_result(
        self,
        subject_id: str,
        value: Any,
        *,
        ttl_s: float | None = None,
    ) -> bool:
        """
        Write the result record for `subject_id`.

        Args:
            subject_id: Subject the result belongs to.
            value: Result to encode; ``None`` is reserved for "no result".
            ttl_s: Record expiry; defaults to ``settings.result_ttl_s``.

        Returns:
            ``True`` when written, ``False`` when the store failed.

        Raises:
            ValueError: `value` is ``None`` or the codec cannot encode it.
        """
        return await self._write_result(subject_id, self._encode_result(value), ttl_s=ttl_s)

    def _encode_result(self, value: Any) -> str:
        if value is None:
            raise ValueError("None cannot be published as a result")
        return self._codec.encode(value)

    async def _write_result(self, subject_id: str, payload: str, *, ttl_s: float | None) -> bool:
        expiry = self._settings.result_ttl_s if ttl_s is None else ttl_s
        try:
            await self._store.set(self._keys.result_key(subject_id), payload, ttl_s=expiry)
        except Exception:
            logger.warning("Result publish failed for subject %s", subject_id, exc_info=True)
            self._store_error("publish")
            return False
        self._count("result_published")
        return True

    async def _poll_result(self, subject_id: str) -> Any | None:
        """One poll attempt; absence covers missing, undecodable and unreachable."""
        try:
            raw = await self._store.get(self._keys.result_key(subject_id))
        except Exception:
            logger.debug("Result poll failed for subject %s", subject_id, exc_info=True)
            self._store_error("wait")
            return None
        if raw is None:
            return None
        try:
            return self._codec.decode(raw)
        except CorruptedRecordError:
            logger.debug("Undecodable result record for subject %s; still waiting", subject_id)
            return None

    async def _pause(self, subject_id: str, seconds: float) -> None:
        """Sleep between polls, returning early when the store signals a write."""
        if self._notifier is None:
            await asyncio.sleep(seconds)
            return
        started = time.monotonic()
        try:
            await self._notifier.wait_for_key(
                self._keys.result_key(subject_id),
                timeout_s=seconds,
            )
        except Exception:
            logger.debug("Change notification wait failed for subject %s", subject_id, exc_info=True)
            remaining = seconds - (time.monotonic() - started)
            if remaining > 0:
                await asyncio.sleep(remaining)

    async def wait_for_result(
        self,
        subject_id: str,
        max_wait_s: float | None = None,
    ) -> Any | None:
        """
        Wait for another caller's result for `subject_id`.

        Polls immediately, then with exponentially growing pauses capped at
        ``settings.poll_max_interval_s``, until a decodable result shows up
        or `max_wait_s` elapses.

        Args:
            subject_id: Subject to wait on.
            max_wait_s: Deadline in seconds; ``None`` uses
                ``settings.default_max_wait_s``. Values ``<= 0`` and NaN
                return immediately.

        Returns:
            The decoded result, or ``None`` on timeout.
        """
        if max_wait_s is None:
            max_wait_s = self._settings.default_max_wait_s
        if not max_wait_s > 0:
            return None

        deadline = time.monotonic() + max_wait_s
        interval = self._settings.poll_initial_interval_s
        attempts = 0
        while True:
            attempts += 1
            value = await self._poll_result(subject_id)
            if value is not None:
                logger.debug("Result for subject %s found after %d poll(s)", subject_id, attempts)
                self._count("wait_hit")
                return value

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(
                    "Timed out waiting %.3fs for subject %s (%d polls)",
                    max_wait_s,
                    subject_id,
                    attempts,
                )
                self._count("wait_timeout")
                return None

            await self._pause(subject_id, min(interval, remaining))
            interval = min(
                interval * self._settings.poll_backoff_factor,
                self._settings.poll_max_interval_s,
            )

    async def run(
        self,
        subject_id: str,
        correlation_id: str,
        compute: ComputeFn,
        *,
        max_wait_s: float | None = None,
        fallback: bool = True,
    ) -> CoalesceOutcome:
        """
        Compute once per subject, sharing the result with concurrent callers.

        The lock is always released after `compute` runs, including when it
        raises; its exceptions propagate. When waiting times out and
        `fallback` is set, this caller computes on its own without the lock.

        The computing caller gets the value back in the form waiters decode
        it, so every caller of one computation sees an equal result. A value
        the codec cannot encode raises ``ValueError`` instead of reaching
        waiters in a different shape.
        """
        started = time.monotonic()
        if await self.acquire(subject_id, correlation_id):
            try:
                value = await self._compute_and_publish(subject_id, compute)
            finally:
                await self.release(subject_id)
            return CoalesceOutcome(value=value, role="owner", elapsed_s=time.monotonic() - started)

        value = await self.wait_for_result(subject_id, max_wait_s)
        if value is not None:
            return CoalesceOutcome(value=value, role="waiter", elapsed_s=time.monotonic() - started)

        if not fallback:
            logger.warning(
                "No coalesced result for subject %s (correlation_id=%s)", subject_id, correlation_id
            )
            return CoalesceOutcome(value=None, role="timeout", elapsed_s=time.monotonic() - started)

        logger.info(
            "No coalesced result for subject %s (correlation_id=%s); computing without lock",
            subject_id,
            correlation_id,
        )
        self._count("run_fallback")
        value = await self._compute_and_publish(subject_id, compute)
        return CoalesceOutcome(value=value, role="fallback", elapsed_s=time.monotonic() - started)

    async def _compute_and_publish(self, subject_id: str, compute: ComputeFn) -> Any:
        value = await _call(compute)
        if value is None:
            return None
        payload = self._encode_result(value)
        await self._write_result(subject_id, payload, ttl_s=None)
        return self._codec.decode(payload)


async def _call(compute: ComputeFn) -> Any:
    result = compute()
    if inspect.isawaitable(result):
        return await result
    return result
