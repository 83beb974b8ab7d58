"""Per-zone VFS I/O counters (zone_vfs kstats, selected by zone instance)."""

from guestmon.collector.kstat import KstatCollector, KstatSelector
from guestmon.metrics import COUNTER, GAUGE, MetricDefinition


ZONE_VFS_KSTATS = (
    MetricDefinition("nread", "vfs_bytes_read_count", COUNTER,
                     "VFS number of bytes read"),
    MetricDefinition("nwritten", "vfs_bytes_written_count", COUNTER,
                     "VFS number of bytes written"),
    MetricDefinition("reads", "vfs_read_operation_count", COUNTER,
                     "VFS number of read operations"),
    MetricDefinition("writes", "vfs_write_operation_count", COUNTER,
                     "VFS number of write operations"),
    MetricDefinition("wtime", "vfs_wait_time_count", COUNTER,
                     "VFS cumulative wait (pre-service) time"),
    MetricDefinition("wlentime", "vfs_wait_length_time_count", COUNTER,
                     "VFS cumulative wait length*time product"),
    MetricDefinition("rtime", "vfs_run_time_count", COUNTER,
                     "VFS cumulative run (service) time"),
    MetricDefinition("rlentime", "vfs_run_length_time_count", COUNTER,
                     "VFS cumulative run length*time product"),
    MetricDefinition("wcnt", "vfs_elements_wait_state", GAUGE,
                     "VFS number of elements in wait state"),
    MetricDefinition("rcnt", "vfs_elements_run_state", GAUGE,
                     "VFS number of elements in run state"),
)


class ZoneVfsCollector(KstatCollector):
    family = "zone_vfs"
    table = ZONE_VFS_KSTATS
    selector = KstatSelector("zone_vfs", "zone_vfs")
