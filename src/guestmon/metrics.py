"""
Core metric types for guestmon.

A MetricDefinition says how one raw kstat field (or command output column)
becomes a MetricRecord. Definitions are grouped into per-family tables that
are built once at import and never mutated.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from guestmon.errors import InvalidContextError

COUNTER = "counter"   # cumulative, never decreases
GAUGE = "gauge"       # instantaneous reading

METRIC_TYPES = (COUNTER, GAUGE)

Number = Union[int, float]

# Canonical form only; zone names and zfs datasets use exactly this spelling
_UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\Z")


@dataclass(frozen=True)
class MetricDefinition:
    field: str
    key: str
    type: str
    help: str
    modifier: Optional[Callable[[Any], Number]] = None

    def __post_init__(self):
        if self.type not in METRIC_TYPES:
            raise ValueError(f"unknown metric type {self.type!r} for {self.key}")


@dataclass(frozen=True)
class MetricRecord:
    """The unit of output: one typed, documented value."""

    key: str
    help: str
    type: str
    value: Number


MetricSet = Dict[str, MetricRecord]


@dataclass(frozen=True)
class RequestContext:
    """Identifies which guest a scrape is for.

    vm_instance is the zone id the kernel uses as the kstat instance number.
    """

    vm_uuid: str
    vm_instance: int

    def validate(self) -> "RequestContext":
        if not isinstance(self.vm_uuid, str):
            raise InvalidContextError("vm_uuid must be a string")
        if not _UUID.match(self.vm_uuid):
            raise InvalidContextError(f"vm_uuid {self.vm_uuid!r} is not a lowercase hyphenated uuid")

        # bool is an int subclass, but True is never a zone id
        if isinstance(self.vm_instance, bool) or not isinstance(self.vm_instance, int):
            raise InvalidContextError("vm_instance must be an integer")
        if self.vm_instance < 0:
            raise InvalidContextError(f"vm_instance {self.vm_instance} is negative")
        return self
