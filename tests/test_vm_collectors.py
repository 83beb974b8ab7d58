"""Tests for the kstat-backed VM families (zones, memory_cap, link, tcp, zone_vfs)."""

import pytest

from guestmon.collector.base import KSTAT_TTL
from guestmon.collector.kstat import KstatReader
from guestmon.collector.modifiers import UINT64_MAX, load_average, memory_limit
from guestmon.collector.vm import (
    LINK_KSTATS,
    MEMORY_CAP_KSTATS,
    TCP_KSTATS,
    ZONES_KSTATS,
    LinkCollector,
    MemoryCapCollector,
    TcpCollector,
    ZonesCollector,
)
from guestmon.collector.zone_vfs import ZONE_VFS_KSTATS, ZoneVfsCollector
from guestmon.errors import GuestNotFoundError, InvalidContextError, MissingFieldError
from guestmon.metrics import GAUGE, RequestContext

ZONE_A = "2f4c6f2e-6f35-4d49-9d0b-5a0f3d7c1e01"
ZONE_B = "8b1d5a9c-1c77-4e2b-a6a4-0e9f1b2c3d02"
CTX_A = RequestContext(ZONE_A, 3)


def _data_for(table, base=100, **extra):
    data = {d.field: base + i for i, d in enumerate(table)}
    data.update(extra)
    return data


class ModuleReader(KstatReader):
    """Answers each module with canned records and counts reads."""

    def __init__(self, by_module):
        self.by_module = by_module
        self.calls = []

    def read(self, selector):
        self.calls.append(selector)
        records = self.by_module.get(selector.module, [])
        if selector.instance is None:
            return records
        return [r for r in records if r.get("instance") == selector.instance]


def _reader():
    return ModuleReader({
        "zones": [{"instance": 3, "data": _data_for(ZONES_KSTATS, avenrun_1min=512)}],
        "memory_cap": [{"instance": 3, "data": _data_for(
            MEMORY_CAP_KSTATS, physcap=2 * 1024 ** 3, swapcap=UINT64_MAX)}],
        "zone_vfs": [{"instance": 3, "data": _data_for(ZONE_VFS_KSTATS)}],
        "link": [
            {"data": _data_for(LINK_KSTATS, base=10, zonename=ZONE_A)},
            {"data": _data_for(LINK_KSTATS, base=1000000, zonename=ZONE_B)},
        ],
        "tcp": [
            {"data": _data_for(TCP_KSTATS, base=1, zonename=ZONE_B)},
            {"data": _data_for(TCP_KSTATS, base=5, zonename=ZONE_A)},
        ],
    })


@pytest.mark.parametrize("collector_cls, table", [
    (ZonesCollector, ZONES_KSTATS),
    (MemoryCapCollector, MEMORY_CAP_KSTATS),
    (LinkCollector, LINK_KSTATS),
    (TcpCollector, TCP_KSTATS),
    (ZoneVfsCollector, ZONE_VFS_KSTATS),
])
def test_key_set_matches_table(collector_cls, table):
    metrics = collector_cls(_reader()).get_metrics(CTX_A)
    assert set(metrics) == {d.key for d in table}
    for d in table:
        assert metrics[d.key].type == d.type
        assert metrics[d.key].help == d.help


def test_table_keys_are_unique():
    for table in (ZONES_KSTATS, MEMORY_CAP_KSTATS, LINK_KSTATS, TCP_KSTATS, ZONE_VFS_KSTATS):
        keys = [d.key for d in table]
        assert len(keys) == len(set(keys))


def test_zones_selects_by_instance_and_decodes_load():
    reader = _reader()
    metrics = ZonesCollector(reader).get_metrics(CTX_A)

    assert reader.calls[0].instance == 3
    assert reader.calls[0].module == "zones"
    assert reader.calls[0].kstat_class == "zone_misc"
    assert metrics["load_average"].value == 2.0
    assert metrics["cpu_user_usage"].value == 100


def test_memory_cap_sentinel_means_no_limit():
    metrics = MemoryCapCollector(_reader()).get_metrics(CTX_A)
    assert metrics["mem_limit"].value == 2 * 1024 ** 3
    assert metrics["mem_swap_limit"].value == 0
    assert metrics["mem_agg_usage"].type == GAUGE


def test_unknown_instance_fails():
    with pytest.raises(GuestNotFoundError):
        ZonesCollector(_reader()).get_metrics(RequestContext(ZONE_A, 99))


def test_link_only_reports_the_requested_zone():
    metrics = LinkCollector(_reader()).get_metrics(CTX_A)
    assert metrics["net_agg_packets_in"].value == 10
    assert metrics["net_agg_bytes_out"].value == 13

    other = LinkCollector(_reader()).get_metrics(RequestContext(ZONE_B, 7))
    assert other["net_agg_packets_in"].value == 1000000


def test_tcp_iterates_all_fetched_records():
    # the matching zone is not the first record
    metrics = TcpCollector(_reader()).get_metrics(CTX_A)
    assert metrics["failed_connection_attempt_count"].value == 5
    assert metrics["retransmit_timeout_drop_count"].value == 11


def test_zone_vfs_run_length_reads_rlentime():
    metrics = ZoneVfsCollector(_reader()).get_metrics(CTX_A)
    fields = [d.field for d in ZONE_VFS_KSTATS]
    assert metrics["vfs_run_length_time_count"].value == 100 + fields.index("rlentime")
    assert metrics["vfs_wait_length_time_count"].value == 100 + fields.index("wlentime")


def test_missing_field_yields_no_metrics():
    data = _data_for(ZONES_KSTATS)
    del data["nsec_sys"]
    reader = ModuleReader({"zones": [{"instance": 3, "data": data}]})

    with pytest.raises(MissingFieldError):
        ZonesCollector(reader).get_metrics(CTX_A)


NONCANONICAL_ZONES = [
    ZONE_A.replace("-", ""),
    "{" + ZONE_A + "}",
    "urn:uuid:" + ZONE_A,
    ZONE_A.upper(),
]


def test_bad_context_is_rejected_before_reading():
    reader = _reader()
    with pytest.raises(InvalidContextError):
        ZonesCollector(reader).get_metrics(RequestContext("not-a-uuid", 3))
    for zone in NONCANONICAL_ZONES:
        with pytest.raises(InvalidContextError):
            LinkCollector(reader).get_metrics(RequestContext(zone, 3))
    with pytest.raises(InvalidContextError):
        LinkCollector(reader).get_metrics(RequestContext(ZONE_A, -1))
    assert reader.calls == []


def test_ttl_defaults_and_override():
    assert ZonesCollector(_reader()).cache_ttl() == KSTAT_TTL
    assert TcpCollector(_reader(), ttl=30).cache_ttl() == 30


def test_modifiers():
    assert load_average(256) == 1.0
    assert load_average(0) == 0.0
    assert memory_limit(UINT64_MAX) == 0
    assert memory_limit(4096) == 4096
