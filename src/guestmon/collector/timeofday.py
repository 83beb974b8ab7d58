"""Wall-clock time of the host. Never cached: a stale "now" is just wrong."""

import time

from guestmon.collector.base import NO_CACHE, MetricsCollector
from guestmon.metrics import COUNTER, MetricDefinition, MetricRecord, MetricSet, RequestContext

TIME_METRIC = MetricDefinition(
    "now", "time_of_day", COUNTER, "System time in seconds since epoch"
)


class TimeCollector(MetricsCollector):
    family = "time"

    def __init__(self, clock=time.time):
        self._clock = clock

    def get_metrics(self, ctx: RequestContext) -> MetricSet:
        ctx.validate()
        return {
            TIME_METRIC.key: MetricRecord(
                key=TIME_METRIC.key,
                help=TIME_METRIC.help,
                type=TIME_METRIC.type,
                value=self._clock(),
            )
        }

    def cache_ttl(self) -> int:
        return NO_CACHE
