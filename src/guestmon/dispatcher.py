"""
Fans one scrape out to every registered collector and merges the results.

Families run in parallel on a thread pool, so a scrape takes as long as the
slowest family rather than the sum. One family failing never hides the
others unless the agent runs with the strict failure policy.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from guestmon.cache import CachedCollector
from guestmon.collector.base import NO_CACHE, MetricsCollector
from guestmon.collector.kstat import KstatReader
from guestmon.collector.timeofday import TimeCollector
from guestmon.collector.vm import LinkCollector, MemoryCapCollector, TcpCollector, ZonesCollector
from guestmon.collector.zfs import ZfsCollector
from guestmon.collector.zone_vfs import ZoneVfsCollector
from guestmon.config import PARTIAL, STRICT, AgentConfig
from guestmon.errors import CollectorError, ScrapeFailedError, SourceUnavailableError
from guestmon.metrics import MetricSet, RequestContext
from guestmon.proc import Executor, execute

log = logging.getLogger(__name__)


@dataclass
class ScrapeResult:
    records: MetricSet = field(default_factory=dict)
    failures: Dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


class Dispatcher:

    def __init__(
        self,
        collectors: Mapping[str, MetricsCollector],
        policy: str = PARTIAL,
        max_workers: int = 8,
        timeout: Optional[float] = None,
    ):
        if policy not in (PARTIAL, STRICT):
            raise ValueError(f"unknown failure policy {policy!r}")
        self._collectors = dict(collectors)
        self._policy = policy
        self._timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="guestmon")

    @property
    def families(self):
        return list(self._collectors)

    def scrape(self, ctx: RequestContext) -> ScrapeResult:
        """Collect every family for one guest."""
        ctx.validate()

        futures = {
            self._pool.submit(collector.get_metrics, ctx): family
            for family, collector in self._collectors.items()
        }
        done, pending = wait(futures, timeout=self._timeout)

        result = ScrapeResult()
        for future in done:
            family = futures[future]
            try:
                records = future.result()
            except CollectorError as e:
                log.warning("%s collector failed for %s: %s", family, ctx.vm_uuid, e)
                result.failures[family] = e
                continue
            except Exception as e:
                log.exception("%s collector crashed for %s", family, ctx.vm_uuid)
                result.failures[family] = e
                continue
            self._merge(result.records, records, family)

        for future in pending:
            family = futures[future]
            # only un-started work is cancelled; running fetches finish and fill the cache
            future.cancel()
            log.warning("%s collector timed out for %s", family, ctx.vm_uuid)
            result.failures[family] = SourceUnavailableError(
                f"{family} did not finish within {self._timeout}s"
            )

        if result.failures and self._policy == STRICT:
            raise ScrapeFailedError(result.failures)
        return result

    @staticmethod
    def _merge(into: MetricSet, records: MetricSet, family: str):
        for key, record in records.items():
            if key in into:
                raise ValueError(f"metric key {key!r} from {family} is already taken")
            into[key] = record

    def prune_caches(self) -> int:
        """Drop expired cache entries across all families."""
        removed = 0
        for collector in self._collectors.values():
            if isinstance(collector, CachedCollector):
                removed += collector.clear_expired()
        if removed:
            log.debug("pruned %d expired cache entries", removed)
        return removed

    def close(self):
        self._pool.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def build_collectors(
    reader: KstatReader,
    config: AgentConfig,
    executor: Executor = execute,
) -> Dict[str, MetricsCollector]:
    """The standard VM families, each behind its own cache."""
    raw = [
        ZonesCollector(reader, ttl=config.ttl_for("zones")),
        MemoryCapCollector(reader, ttl=config.ttl_for("memory_cap")),
        LinkCollector(reader, ttl=config.ttl_for("link")),
        TcpCollector(reader, ttl=config.ttl_for("tcp")),
        ZoneVfsCollector(reader, ttl=config.ttl_for("zone_vfs")),
        ZfsCollector(executor, timeout=config.zfs_timeout, ttl=config.ttl_for("zfs")),
        TimeCollector(),
    ]

    collectors: Dict[str, MetricsCollector] = {}
    for collector in raw:
        if collector.cache_ttl() != NO_CACHE:
            collector = CachedCollector(collector, wait_timeout=config.cache_wait_timeout)
        collectors[collector.family] = collector
    return collectors


def build_dispatcher(
    reader: KstatReader,
    config: Optional[AgentConfig] = None,
    executor: Executor = execute,
) -> Dispatcher:
    config = config or AgentConfig()
    return Dispatcher(
        build_collectors(reader, config, executor),
        policy=config.failure_policy,
        max_workers=config.max_workers,
        timeout=config.scrape_timeout,
    )
