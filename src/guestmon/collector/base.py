"""
Base collector interface.

A collector knows how to acquire one family of statistics for a guest and
turn it into MetricRecords. The dispatcher and cache only ever see these
two methods, which keeps them decoupled from where the data comes from
(kstats, a shell command, the local clock, a mock).
"""

from abc import ABC, abstractmethod

from guestmon.metrics import MetricSet, RequestContext

# Default TTL (seconds) for kstat-backed families
KSTAT_TTL = 10

# -1 means the result must never be cached
NO_CACHE = -1


class MetricsCollector(ABC):
    """Interface for all metric families."""

    family: str = ""

    @abstractmethod
    def get_metrics(self, ctx: RequestContext) -> MetricSet:
        """Return every metric in this family for the guest, or raise."""
        ...

    @abstractmethod
    def cache_ttl(self) -> int:
        """Seconds a result stays valid. NO_CACHE disables caching."""
        ...
