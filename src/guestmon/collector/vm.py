"""
Kstat-backed families for a single VM (zone): CPU and load, memory caps,
network links and TCP.

zones and memory_cap are looked up by the zone's instance number and
always name a single kstat. link and tcp are read for the whole box and
filtered down to the guest by the "zonename" statistic.
"""

from guestmon.collector.kstat import KstatCollector, KstatSelector
from guestmon.collector.modifiers import load_average, memory_limit
from guestmon.metrics import COUNTER, GAUGE, MetricDefinition


ZONES_KSTATS = (
    MetricDefinition("nsec_user", "cpu_user_usage", COUNTER,
                     "User CPU utilization in nanoseconds"),
    MetricDefinition("nsec_sys", "cpu_sys_usage", COUNTER,
                     "System CPU usage in nanoseconds"),
    MetricDefinition("nsec_waitrq", "cpu_wait_time", COUNTER,
                     "CPU wait time in nanoseconds"),
    MetricDefinition("avenrun_1min", "load_average", GAUGE,
                     "Load average", modifier=load_average),
)

MEMORY_CAP_KSTATS = (
    MetricDefinition("rss", "mem_agg_usage", GAUGE,
                     "Aggregate memory usage in bytes"),
    MetricDefinition("physcap", "mem_limit", GAUGE,
                     "Memory limit in bytes", modifier=memory_limit),
    MetricDefinition("swap", "mem_swap", GAUGE,
                     "Swap in bytes"),
    MetricDefinition("swapcap", "mem_swap_limit", GAUGE,
                     "Swap limit in bytes", modifier=memory_limit),
)

LINK_KSTATS = (
    MetricDefinition("ipackets64", "net_agg_packets_in", COUNTER,
                     "Aggregate inbound packets"),
    MetricDefinition("opackets64", "net_agg_packets_out", COUNTER,
                     "Aggregate outbound packets"),
    MetricDefinition("rbytes64", "net_agg_bytes_in", COUNTER,
                     "Aggregate inbound bytes"),
    MetricDefinition("obytes64", "net_agg_bytes_out", COUNTER,
                     "Aggregate outbound bytes"),
)

TCP_KSTATS = (
    MetricDefinition("attemptFails", "failed_connection_attempt_count", COUNTER,
                     "Failed TCP connection attempts"),
    MetricDefinition("retransSegs", "retransmitted_segment_count", COUNTER,
                     "Retransmitted TCP segments"),
    MetricDefinition("inDupAck", "duplicate_ack_count", COUNTER,
                     "Duplicate TCP ACK count"),
    MetricDefinition("listenDrop", "listen_drop_count", COUNTER,
                     "TCP listen drops. Connection refused because backlog full"),
    MetricDefinition("listenDropQ0", "listen_drop_Q0_count", COUNTER,
                     "TCP listen drops Q0. Connection refused from half-open queue"),
    MetricDefinition("halfOpenDrop", "half_open_drop_count", COUNTER,
                     "TCP connection dropped from a full half-open queue"),
    MetricDefinition("timRetransDrop", "retransmit_timeout_drop_count", COUNTER,
                     "TCP connection dropped due to retransmit timeout"),
)


class ZonesCollector(KstatCollector):
    family = "zones"
    table = ZONES_KSTATS
    selector = KstatSelector("zone_misc", "zones")


class MemoryCapCollector(KstatCollector):
    family = "memory_cap"
    table = MEMORY_CAP_KSTATS
    selector = KstatSelector("zone_memory_cap", "memory_cap")


class LinkCollector(KstatCollector):
    family = "link"
    table = LINK_KSTATS
    selector = KstatSelector("net", "link")
    multi_tenant = True


class TcpCollector(KstatCollector):
    family = "tcp"
    table = TCP_KSTATS
    selector = KstatSelector("net", "tcp")
    multi_tenant = True
