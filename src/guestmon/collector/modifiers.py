"""Pure value transforms applied to raw kstat values before they're emitted."""

from __future__ import annotations

# avenrun values are fixed point with FSHIFT = 8
FSCALE = 1 << 8

# memory_cap reports this when a zone has no cap
UINT64_MAX = (1 << 64) - 1


def load_average(raw) -> float:
    return raw / FSCALE


def memory_limit(raw) -> int:
    """Bytes of cap, or 0 when the zone is uncapped."""
    if raw >= UINT64_MAX:
        return 0
    return int(raw)
