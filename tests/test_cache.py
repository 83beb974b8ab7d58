"""Tests for the TTL cache: expiry, failure handling and coalescing of concurrent misses."""

import threading

import pytest

from guestmon.cache import CachedCollector
from guestmon.collector.base import NO_CACHE, MetricsCollector
from guestmon.errors import InvalidContextError, SourceUnavailableError
from guestmon.metrics import GAUGE, MetricRecord, RequestContext

ZONE_A = "2f4c6f2e-6f35-4d49-9d0b-5a0f3d7c1e01"
ZONE_B = "8b1d5a9c-1c77-4e2b-a6a4-0e9f1b2c3d02"
CTX_A = RequestContext(ZONE_A, 3)
CTX_B = RequestContext(ZONE_B, 7)


class FakeClock:

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingCollector(MetricsCollector):
    family = "counting"

    def __init__(self, ttl, fail=False, gate=None):
        self._ttl = ttl
        self.fail = fail
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def get_metrics(self, ctx):
        with self._lock:
            self.calls += 1
            n = self.calls
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail:
            raise SourceUnavailableError("source down")
        return {"calls": MetricRecord("calls", "Fetch number", GAUGE, n)}

    def cache_ttl(self):
        return self._ttl


def test_no_cache_ttl_always_hits_the_source():
    inner = CountingCollector(NO_CACHE)
    cached = CachedCollector(inner, clock=FakeClock())

    cached.get_metrics(CTX_A)
    cached.get_metrics(CTX_A)

    assert inner.calls == 2


def test_positive_ttl_reuses_until_expiry():
    clock = FakeClock()
    inner = CountingCollector(10)
    cached = CachedCollector(inner, clock=clock)

    first = cached.get_metrics(CTX_A)
    clock.now += 9.9
    second = cached.get_metrics(CTX_A)

    assert second is first
    assert inner.calls == 1

    clock.now += 0.1
    third = cached.get_metrics(CTX_A)
    assert inner.calls == 2
    assert third["calls"].value == 2


def test_zero_ttl_expires_immediately():
    inner = CountingCollector(0)
    cached = CachedCollector(inner, clock=FakeClock())

    cached.get_metrics(CTX_A)
    cached.get_metrics(CTX_A)

    assert inner.calls == 2


def test_entries_are_keyed_by_context():
    inner = CountingCollector(60)
    cached = CachedCollector(inner, clock=FakeClock())

    cached.get_metrics(CTX_A)
    cached.get_metrics(CTX_B)
    cached.get_metrics(CTX_A)

    assert inner.calls == 2


def test_failures_are_not_cached():
    inner = CountingCollector(60, fail=True)
    cached = CachedCollector(inner, clock=FakeClock())

    with pytest.raises(SourceUnavailableError):
        cached.get_metrics(CTX_A)
    with pytest.raises(SourceUnavailableError):
        cached.get_metrics(CTX_A)
    assert inner.calls == 2


def test_failure_after_expiry_keeps_nothing_stale():
    clock = FakeClock()
    inner = CountingCollector(10)
    cached = CachedCollector(inner, clock=clock)

    cached.get_metrics(CTX_A)
    clock.now += 11
    inner.fail = True
    with pytest.raises(SourceUnavailableError):
        cached.get_metrics(CTX_A)

    inner.fail = False
    assert cached.get_metrics(CTX_A)["calls"].value == 3


def test_failure_does_not_evict_a_live_entry():
    clock = FakeClock()
    inner = CountingCollector(10)
    cached = CachedCollector(inner, clock=clock)
    first = cached.get_metrics(CTX_A)

    # a different key fails; the live entry for CTX_A is untouched
    inner.fail = True
    with pytest.raises(SourceUnavailableError):
        cached.get_metrics(CTX_B)
    assert cached.get_metrics(CTX_A) is first


def test_invalid_context_is_rejected():
    inner = CountingCollector(10)
    cached = CachedCollector(inner)
    with pytest.raises(InvalidContextError):
        cached.get_metrics(RequestContext(ZONE_A, True))
    assert inner.calls == 0


def test_cache_ttl_and_family_pass_through():
    inner = CountingCollector(42)
    cached = CachedCollector(inner)
    assert cached.cache_ttl() == 42
    assert cached.family == "counting"


def _run_concurrently(cached, n):
    results = [None] * n
    errors = [None] * n
    started = threading.Barrier(n)

    def worker(i):
        started.wait()
        try:
            results[i] = cached.get_metrics(CTX_A)
        except Exception as e:
            errors[i] = e

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    return threads, results, errors


def test_concurrent_misses_are_coalesced():
    gate = threading.Event()
    inner = CountingCollector(60, gate=gate)
    cached = CachedCollector(inner)

    threads, results, errors = _run_concurrently(cached, 8)
    # hold the first fetch until everyone has had time to pile up behind it
    threading.Timer(0.2, gate.set).start()
    for t in threads:
        t.join(timeout=5)

    assert inner.calls == 1
    assert errors == [None] * 8
    assert all(r is results[0] for r in results)


def test_concurrent_waiters_share_the_failure():
    gate = threading.Event()
    inner = CountingCollector(60, fail=True, gate=gate)
    cached = CachedCollector(inner)

    threads, results, errors = _run_concurrently(cached, 5)
    threading.Timer(0.2, gate.set).start()
    for t in threads:
        t.join(timeout=5)

    assert inner.calls == 1
    assert all(isinstance(e, SourceUnavailableError) for e in errors)


def test_waiter_timeout_does_not_cancel_the_fetch():
    gate = threading.Event()
    inner = CountingCollector(60, gate=gate)
    cached = CachedCollector(inner, wait_timeout=0.05)

    leader = threading.Thread(target=cached.get_metrics, args=(CTX_A,))
    leader.start()
    # wait until the leader is inside the collector
    for _ in range(100):
        if inner.calls:
            break
        threading.Event().wait(0.01)

    with pytest.raises(SourceUnavailableError):
        cached.get_metrics(CTX_A)

    gate.set()
    leader.join(timeout=5)

    # the leader's result landed in the cache
    assert cached.get_metrics(CTX_A)["calls"].value == 1
    assert inner.calls == 1


def test_clear_expired():
    clock = FakeClock()
    cached = CachedCollector(CountingCollector(10), clock=clock)
    cached.get_metrics(CTX_A)
    cached.get_metrics(CTX_B)

    assert cached.clear_expired() == 0
    clock.now += 10
    assert cached.clear_expired() == 2
