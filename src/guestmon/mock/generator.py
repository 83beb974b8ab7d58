"""
Mock kstat source and zfs executor.

Produces fake but plausible kstats for a handful of zones so we can develop
and demo the agent on machines that aren't SmartOS/illumos. Counters grow
every read; gauges wander around a per-zone baseline.
"""

from __future__ import annotations

import math
import random
import threading
from typing import Dict, List, Sequence

from guestmon.collector.kstat import KstatReader, KstatSelector
from guestmon.collector.modifiers import FSCALE, UINT64_MAX
from guestmon.errors import SourceUnavailableError
from guestmon.proc import ProcessResult

GiB = 1024 ** 3

# (zone uuid, zone id) pairs the mock host pretends to run
MOCK_ZONES = [
    ("2f4c6f2e-6f35-4d49-9d0b-5a0f3d7c1e01", 3),
    ("8b1d5a9c-1c77-4e2b-a6a4-0e9f1b2c3d02", 7),
    ("c0ffee00-0000-4000-8000-00000000be03", 12),
]


class _ZoneState:

    def __init__(self, rng: random.Random, uuid: str, instance: int, links: int):
        self.uuid = uuid
        self.instance = instance
        self.links = links
        self.mem_cap = rng.choice([1, 2, 4, 8]) * GiB
        self.uncapped_swap = rng.random() > 0.5
        self.counters: Dict[str, int] = {}

    def bump(self, name: str, amount: int) -> int:
        self.counters[name] = self.counters.get(name, 0) + max(0, amount)
        return self.counters[name]


class MockKstatReader(KstatReader):

    def __init__(self, seed: int = 42, zones=None):
        self._rng = random.Random(seed)
        self._lock = threading.Lock()
        self._tick = 0
        zones = MOCK_ZONES if zones is None else zones
        self._guests = [
            _ZoneState(self._rng, uuid, instance, links=1 + i % 2)
            for i, (uuid, instance) in enumerate(zones)
        ]
        self._builders = {
            "zones": self._zone_misc,
            "memory_cap": self._memory_caps,
            "link": self._links,
            "tcp": self._tcp_stats,
            "zone_vfs": self._vfs,
        }

    def read(self, selector: KstatSelector) -> List[dict]:
        builder = self._builders.get(selector.module)
        if builder is None:
            return []

        with self._lock:
            self._tick += 1
            records = []
            for zone in self._guests:
                if selector.instance is not None and zone.instance != selector.instance:
                    continue
                records.extend(builder(zone))
            return records

    def _record(self, zone: _ZoneState, module: str, name: str, data: dict) -> dict:
        data["zonename"] = zone.uuid
        return {"module": module, "instance": zone.instance, "name": name, "data": data}

    def _zone_misc(self, zone: _ZoneState) -> List[dict]:
        # Sinusoidal load with the odd spike, same shape for every zone but phase-shifted
        load = 0.5 + 0.4 * math.sin(self._tick * 0.05 + zone.instance)
        if self._rng.random() > 0.9:
            load += self._rng.random() * 2
        return [self._record(zone, "zones", zone.uuid[:30], {
            "nsec_user": zone.bump("nsec_user", int(load * 4e8)),
            "nsec_sys": zone.bump("nsec_sys", int(load * 1e8)),
            "nsec_waitrq": zone.bump("nsec_waitrq", int(self._rng.uniform(0, 2e6))),
            "avenrun_1min": int(load * FSCALE),
        })]

    def _memory_caps(self, zone: _ZoneState) -> List[dict]:
        rss = int(zone.mem_cap * max(0.05, min(0.98, 0.6 + self._rng.gauss(0, 0.05))))
        return [self._record(zone, "memory_cap", zone.uuid[:30], {
            "rss": rss,
            "physcap": zone.mem_cap,
            "swap": int(rss * 1.1),
            "swapcap": UINT64_MAX if zone.uncapped_swap else zone.mem_cap * 2,
        })]

    def _links(self, zone: _ZoneState) -> List[dict]:
        records = []
        for n in range(zone.links):
            packets_in = int(self._rng.uniform(50, 500))
            packets_out = int(self._rng.uniform(50, 500))
            records.append(self._record(zone, "link", f"z{zone.instance}_net{n}", {
                "ipackets64": zone.bump(f"ipackets64.{n}", packets_in),
                "opackets64": zone.bump(f"opackets64.{n}", packets_out),
                "rbytes64": zone.bump(f"rbytes64.{n}", packets_in * 900),
                "obytes64": zone.bump(f"obytes64.{n}", packets_out * 700),
            }))
        return records

    def _tcp_stats(self, zone: _ZoneState) -> List[dict]:
        def rare(name, p=0.05):
            return zone.bump(name, 1 if self._rng.random() < p else 0)

        return [self._record(zone, "tcp", "tcp", {
            "attemptFails": rare("attemptFails"),
            "retransSegs": zone.bump("retransSegs", int(self._rng.uniform(0, 5))),
            "inDupAck": zone.bump("inDupAck", int(self._rng.uniform(0, 3))),
            "listenDrop": rare("listenDrop", 0.01),
            "listenDropQ0": rare("listenDropQ0", 0.01),
            "halfOpenDrop": rare("halfOpenDrop", 0.01),
            "timRetransDrop": rare("timRetransDrop", 0.02),
        })]

    def _vfs(self, zone: _ZoneState) -> List[dict]:
        reads = int(self._rng.uniform(10, 200))
        writes = int(self._rng.uniform(5, 100))
        return [self._record(zone, "zone_vfs", zone.uuid[:30], {
            "nread": zone.bump("nread", reads * 4096),
            "nwritten": zone.bump("nwritten", writes * 4096),
            "reads": zone.bump("reads", reads),
            "writes": zone.bump("writes", writes),
            "wtime": zone.bump("wtime", writes * 20000),
            "wlentime": zone.bump("wlentime", writes * 30000),
            "rtime": zone.bump("rtime", reads * 15000),
            "rlentime": zone.bump("rlentime", reads * 25000),
            "wcnt": int(self._rng.uniform(0, 3)),
            "rcnt": int(self._rng.uniform(0, 3)),
        })]


def mock_zfs_executor(zones=None):
    """An Executor that answers `zfs list -Hp zones/<uuid>` for the mock zones."""
    known = {uuid for uuid, _ in (MOCK_ZONES if zones is None else zones)}
    rng = random.Random(7)
    quota = 100 * GiB

    def _execute(argv: Sequence[str], timeout: float) -> ProcessResult:
        dataset = argv[-1]
        if not dataset.startswith("zones/") or dataset[len("zones/"):] not in known:
            raise SourceUnavailableError(
                f"zfs exited with status 1: cannot open '{dataset}': dataset does not exist"
            )
        used = int(quota * rng.uniform(0.1, 0.7))
        return ProcessResult(stdout=f"{dataset}\t{used}\t{quota - used}\t{used}\t/{dataset}\n")

    return _execute
