from __future__ import annotations

import threading

import pytest

from coalesce import (
    CoalescerKeys,
    CoalescerRegistry,
    CoalescerSettings,
    CorruptedRecordError,
    InFlightRequest,
    InMemoryCoalescingStore,
    COALESCER_COUNTERS,
    JsonResultCodec,
    NoOpCoalescerMetrics,
    PrometheusCoalescerMetrics,
    scoped_subject,
)


def test_keys_separate_lock_and_result_namespaces():
    keys = CoalescerKeys()
    assert keys.lock_key("t2_abc") == "coalesce:inflight:t2_abc"
    assert keys.result_key("t2_abc") == "coalesce:result:t2_abc"
    assert keys.lock_key("a") != keys.lock_key("b")
    assert keys.lock_key("a") != keys.result_key("a")


@pytest.mark.parametrize(
    ("lock_prefix", "result_prefix"),
    [("same", "same"), ("a", "a:b"), ("x:y", "x"), ("", "r"), ("l", "  ")],
)
def test_keys_reject_overlapping_prefixes(lock_prefix, result_prefix):
    with pytest.raises(ValueError):
        CoalescerKeys(lock_prefix=lock_prefix, result_prefix=result_prefix)


def test_scoped_subject_ignores_variant_order():
    first = scoped_subject("t2_abc", "questions", ["dating", "age"])
    second = scoped_subject("t2_abc", "questions", ["age", "dating"])
    other = scoped_subject("t2_abc", "questions", ["age"])

    assert first == second
    assert first != other
    prefix, _, digest = first.rpartition(":")
    assert prefix == "t2_abc:questions"
    assert len(digest) == 16


def test_scoped_subject_requires_scope():
    with pytest.raises(ValueError, match="scope"):
        scoped_subject("t2_abc", " ", ["a"])


def test_settings_defaults():
    settings = CoalescerSettings()
    assert settings.lock_ttl_ms == 30_000
    assert settings.poll_initial_interval_s == 0.1
    assert settings.poll_max_interval_s == 1.0
    assert settings.result_ttl_s is None
    assert settings.use_change_notifications is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"lock_ttl_s": 0},
        {"lock_ttl_s": -1},
        {"lock_ttl_s": 0.0001},
        {"default_max_wait_s": -1},
        {"poll_initial_interval_s": 0},
        {"poll_backoff_factor": 0.5},
        {"poll_initial_interval_s": 2.0, "poll_max_interval_s": 1.0},
        {"result_ttl_s": 0},
        {"lock_prefix": "shared", "result_prefix": "shared"},
        {"lock_ttl_s": float("nan")},
        {"default_max_wait_s": float("nan")},
        {"poll_backoff_factor": float("nan")},
    ],
)
def test_settings_reject_invalid_values(overrides):
    with pytest.raises(ValueError):
        CoalescerSettings(**overrides)


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("COALESCE_LOCK_TTL_S", "12.5")
    monkeypatch.setenv("COALESCE_MAX_WAIT_S", "4")
    monkeypatch.setenv("COALESCE_POLL_INITIAL_S", "0.05")
    monkeypatch.setenv("COALESCE_POLL_BACKOFF_FACTOR", "2")
    monkeypatch.setenv("COALESCE_POLL_MAX_S", "2")
    monkeypatch.setenv("COALESCE_LOCK_PREFIX", "app:lock")
    monkeypatch.setenv("COALESCE_RESULT_PREFIX", "app:result")
    monkeypatch.setenv("COALESCE_RESULT_TTL_S", "3600")
    monkeypatch.setenv("COALESCE_USE_NOTIFICATIONS", "off")

    settings = CoalescerSettings.from_env()

    assert settings.lock_ttl_ms == 12_500
    assert settings.default_max_wait_s == 4.0
    assert settings.poll_initial_interval_s == 0.05
    assert settings.poll_backoff_factor == 2.0
    assert settings.poll_max_interval_s == 2.0
    assert settings.keys().lock_key("u") == "app:lock:u"
    assert settings.keys().result_key("u") == "app:result:u"
    assert settings.result_ttl_s == 3600.0
    assert settings.use_change_notifications is False


def test_settings_from_env_defaults(monkeypatch):
    for name in (
        "COALESCE_LOCK_TTL_S",
        "COALESCE_MAX_WAIT_S",
        "COALESCE_POLL_INITIAL_S",
        "COALESCE_POLL_BACKOFF_FACTOR",
        "COALESCE_POLL_MAX_S",
        "COALESCE_RESULT_TTL_S",
        "COALESCE_USE_NOTIFICATIONS",
        "COALESCE_LOCK_PREFIX",
        "COALESCE_RESULT_PREFIX",
    ):
        monkeypatch.delenv(name, raising=False)
    assert CoalescerSettings.from_env() == CoalescerSettings()


def test_settings_from_env_treats_blank_values_as_unset(monkeypatch):
    for name in (
        "COALESCE_LOCK_TTL_S",
        "COALESCE_MAX_WAIT_S",
        "COALESCE_POLL_INITIAL_S",
        "COALESCE_POLL_BACKOFF_FACTOR",
        "COALESCE_POLL_MAX_S",
        "COALESCE_RESULT_TTL_S",
        "COALESCE_USE_NOTIFICATIONS",
        "COALESCE_LOCK_PREFIX",
        "COALESCE_RESULT_PREFIX",
    ):
        monkeypatch.setenv(name, "  " if name.endswith("_S") else "")
    assert CoalescerSettings.from_env() == CoalescerSettings()


def test_in_flight_request_round_trips_through_json():
    record = InFlightRequest.start("t2_abc", "req-001", ttl_ms=30_000, started_at=1_000)
    assert record.expires_at == 31_000
    assert record.ttl_ms == 30_000
    assert record.remaining_ms(at=11_000) == 20_000
    assert record.remaining_ms(at=40_000) == 0
    assert InFlightRequest.from_json(record.to_json()) == record
    assert InFlightRequest.from_json(record.to_json().encode("utf-8")) == record


def test_in_flight_request_requires_expiry_after_start():
    with pytest.raises(ValueError):
        InFlightRequest("t2_abc", "req-001", start_time=10, expires_at=10)


@pytest.mark.parametrize(
    "raw",
    [
        b"\xff\xfe",
        "null",
        '{"subject_id": 1, "correlation_id": "r", "start_time": 1, "expires_at": 2}',
        '{"subject_id": "s", "correlation_id": "r", "start_time": true, "expires_at": 2}',
    ],
)
def test_in_flight_request_decode_errors_are_corruption(raw):
    with pytest.raises(CorruptedRecordError):
        InFlightRequest.from_json(raw)


def test_json_codec_decodes_bytes_and_flags_garbage():
    codec = JsonResultCodec()
    assert codec.decode(codec.encode({"risk": "LOW"}).encode("utf-8")) == {"risk": "LOW"}
    with pytest.raises(CorruptedRecordError):
        codec.decode("invalid-json{")


def test_registry_returns_same_coalescer_per_context():
    registry = CoalescerRegistry(settings=CoalescerSettings(lock_ttl_s=5))
    store = InMemoryCoalescingStore()

    first = registry.get("install-1", store)
    again = registry.get("install-1", InMemoryCoalescingStore())
    other = registry.get("install-2", store)

    assert first is again
    assert first.store is store
    assert first is not other
    assert first.settings.lock_ttl_s == 5
    assert "install-1" in registry
    assert registry.context_ids() == ["install-1", "install-2"]
    assert len(registry) == 2

    registry.discard("install-1")
    registry.discard("install-1")
    assert "install-1" not in registry
    assert registry.get("install-1", store) is not first

    registry.clear()
    assert len(registry) == 0


def test_registry_rejects_blank_context():
    registry = CoalescerRegistry()
    with pytest.raises(ValueError, match="context_id"):
        registry.get("  ", InMemoryCoalescingStore())


def test_registry_creates_one_instance_under_thread_contention():
    registry = CoalescerRegistry()
    store = InMemoryCoalescingStore()
    seen = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        seen.append(registry.get("shared", store))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len({id(item) for item in seen}) == 1


def test_noop_metrics_accepts_any_counter():
    NoOpCoalescerMetrics().incr("lock_acquired", tags={"operation": "acquire"})


def test_prometheus_metrics_counts_with_labels():
    prometheus_client = pytest.importorskip("prometheus_client")
    registry = prometheus_client.CollectorRegistry()
    metrics = PrometheusCoalescerMetrics(namespace="tests", registry=registry)

    metrics.incr("lock_acquired")
    metrics.incr("lock_acquired", 2)
    metrics.incr("store_errors", tags={"operation": "wait"})

    assert registry.get_sample_value("tests_lock_acquired_total") == 3.0
    assert (
        registry.get_sample_value("tests_store_errors_total", {"operation": "wait"}) == 1.0
    )


def test_prometheus_metrics_registers_every_counter_up_front():
    prometheus_client = pytest.importorskip("prometheus_client")
    registry = prometheus_client.CollectorRegistry()
    PrometheusCoalescerMetrics(namespace="tests", registry=registry)

    assert registry.get_sample_value("tests_lock_contended_total") == 0.0
    assert registry.get_sample_value("tests_run_fallback_total") == 0.0
    exported = {metric.name for metric in registry.collect()}
    assert exported == {f"tests_{name}" for name in COALESCER_COUNTERS}


@pytest.mark.parametrize(
    ("name", "tags"),
    [
        ("cache_hit", None),
        ("store_errors", None),
        ("store_errors", {"op": "wait"}),
        ("lock_acquired", {"operation": "acquire"}),
    ],
)
def test_prometheus_metrics_rejects_undeclared_counters_and_labels(name, tags):
    prometheus_client = pytest.importorskip("prometheus_client")
    metrics = PrometheusCoalescerMetrics(
        namespace="tests", registry=prometheus_client.CollectorRegistry()
    )
    with pytest.raises(ValueError):
        metrics.incr(name, tags=tags)
