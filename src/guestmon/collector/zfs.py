"""
Storage capacity for a VM, from `zfs list -Hp zones/<uuid>`.

This is the only family that forks a process, so it's the slowest and
the one that can hang. The executor call always carries a timeout, and
the result is cached much longer than kstat families.
"""

from __future__ import annotations

import logging

from guestmon.collector.base import MetricsCollector
from guestmon.errors import MalformedOutputError
from guestmon.metrics import GAUGE, MetricDefinition, MetricRecord, MetricSet, RequestContext
from guestmon.proc import DEFAULT_TIMEOUT, Executor, execute

log = logging.getLogger(__name__)

ZFS_BIN = "/usr/sbin/zfs"

# Capacity moves slowly and zfs(1M) is expensive to run
ZFS_TTL = 300

# Column of `zfs list -H` output each field comes from: name, used, avail, refer, mountpoint
ZFS_COLUMNS = {"used": 1, "available": 2}

ZFS_METRICS = (
    MetricDefinition("used", "zfs_used", GAUGE, "zfs space used in bytes"),
    MetricDefinition("available", "zfs_available", GAUGE, "zfs space available in bytes"),
)


def parse_zfs_list(stdout: str) -> dict:
    """Pull the used/available byte counts out of one `zfs list -Hp` line."""
    line = stdout.strip().split("\n", 1)[0]
    fields = line.split("\t")
    if len(fields) <= max(ZFS_COLUMNS.values()):
        raise MalformedOutputError(f"unexpected zfs list output: {line!r}")

    values = {}
    for name, column in ZFS_COLUMNS.items():
        try:
            values[name] = int(fields[column])
        except ValueError:
            raise MalformedOutputError(
                f"zfs {name} is not an integer: {fields[column]!r}"
            ) from None
    return values


class ZfsCollector(MetricsCollector):
    family = "zfs"

    def __init__(
        self,
        executor: Executor = execute,
        timeout: float = DEFAULT_TIMEOUT,
        ttl: int = ZFS_TTL,
    ):
        self._execute = executor
        self._timeout = timeout
        self._ttl = ttl

    def get_metrics(self, ctx: RequestContext) -> MetricSet:
        ctx.validate()
        dataset = f"zones/{ctx.vm_uuid}"
        result = self._execute([ZFS_BIN, "list", "-Hp", dataset], self._timeout)
        values = parse_zfs_list(result.stdout)
        log.debug("zfs %s: used=%d available=%d", dataset, values["used"], values["available"])

        return {
            d.key: MetricRecord(key=d.key, help=d.help, type=d.type, value=values[d.field])
            for d in ZFS_METRICS
        }

    def cache_ttl(self) -> int:
        return self._ttl
