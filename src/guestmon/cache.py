"""
TTL cache in front of a collector.

Entries are keyed by the request context (guest uuid + instance). Only
successful results are stored. Concurrent misses on the same key are
coalesced: the first caller runs the collector, the rest wait on its
Future and get the same records (or the same exception).
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from guestmon.collector.base import NO_CACHE, MetricsCollector
from guestmon.errors import SourceUnavailableError
from guestmon.metrics import MetricSet, RequestContext

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    records: MetricSet
    expires_at: float


class CachedCollector(MetricsCollector):
    """Wraps any collector; exposes the same two methods."""

    def __init__(
        self,
        collector: MetricsCollector,
        wait_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._collector = collector
        self._wait_timeout = wait_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[RequestContext, CacheEntry] = {}
        self._inflight: Dict[RequestContext, Future] = {}
        self.family = collector.family

    def cache_ttl(self) -> int:
        return self._collector.cache_ttl()

    def get_metrics(self, ctx: RequestContext) -> MetricSet:
        ctx.validate()

        with self._lock:
            entry = self._entries.get(ctx)
            if entry is not None and self._clock() < entry.expires_at:
                log.debug("%s cache hit for %s", self.family, ctx.vm_uuid)
                return entry.records

            future = self._inflight.get(ctx)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[ctx] = future

        if not leader:
            log.debug("%s waiting on in-flight fetch for %s", self.family, ctx.vm_uuid)
            return self._wait(future, ctx)

        log.debug("%s cache miss for %s", self.family, ctx.vm_uuid)
        try:
            records = self._collector.get_metrics(ctx)
        except Exception as e:
            # leave any previous entry alone; failures are never cached
            with self._lock:
                del self._inflight[ctx]
            future.set_exception(e)
            raise

        ttl = self._collector.cache_ttl()
        with self._lock:
            if ttl != NO_CACHE:
                self._entries[ctx] = CacheEntry(records, self._clock() + ttl)
            del self._inflight[ctx]
        future.set_result(records)
        return records

    def _wait(self, future: Future, ctx: RequestContext) -> MetricSet:
        try:
            return future.result(timeout=self._wait_timeout)
        except FutureTimeout:
            # the shared fetch keeps running and will still fill the cache
            raise SourceUnavailableError(
                f"timed out after {self._wait_timeout}s waiting for {self.family} "
                f"metrics for {ctx.vm_uuid}"
            ) from None

    def clear_expired(self) -> int:
        """Drop expired entries (guests that stopped being scraped). Returns the count."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for k in expired:
                del self._entries[k]
        return len(expired)
