"""
Agent settings. Built from CLI options (see main.py); every field has a
default so tests and library users can construct it directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from guestmon.collector.base import KSTAT_TTL, NO_CACHE
from guestmon.collector.zfs import ZFS_TTL

PARTIAL = "partial"   # report failed families, return the rest
STRICT = "strict"     # any failed family fails the scrape

FAILURE_POLICIES = (PARTIAL, STRICT)

DEFAULT_TTLS = {
    "zones": KSTAT_TTL,
    "memory_cap": KSTAT_TTL,
    "link": KSTAT_TTL,
    "tcp": KSTAT_TTL,
    "zone_vfs": KSTAT_TTL,
    "zfs": ZFS_TTL,
}


@dataclass
class AgentConfig:
    ttl_overrides: Dict[str, int] = field(default_factory=dict)
    zfs_timeout: float = 5.0
    kstat_timeout: float = 5.0
    scrape_timeout: Optional[float] = 10.0
    cache_wait_timeout: Optional[float] = 10.0
    failure_policy: str = PARTIAL
    max_workers: int = 8

    def __post_init__(self):
        if self.failure_policy not in FAILURE_POLICIES:
            raise ValueError(
                f"failure_policy must be one of {FAILURE_POLICIES}, got {self.failure_policy!r}"
            )
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        for name in ("zfs_timeout", "kstat_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

        unknown = set(self.ttl_overrides) - set(DEFAULT_TTLS)
        if unknown:
            raise ValueError(f"no such collector family: {', '.join(sorted(unknown))}")
        for family, ttl in self.ttl_overrides.items():
            if ttl < NO_CACHE:
                raise ValueError(f"ttl for {family} must be -1 or more, got {ttl}")

    def ttl_for(self, family: str) -> int:
        return self.ttl_overrides.get(family, DEFAULT_TTLS[family])


def parse_ttl_overrides(items) -> Dict[str, int]:
    """Turn ("zfs=60", "tcp=-1") into {"zfs": 60, "tcp": -1}."""
    overrides = {}
    for item in items:
        family, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"expected FAMILY=SECONDS, got {item!r}")
        try:
            overrides[family.strip()] = int(value)
        except ValueError:
            raise ValueError(f"ttl for {family} is not an integer: {value!r}") from None
    return overrides
