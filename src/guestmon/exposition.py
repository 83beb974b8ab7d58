"""
Prometheus text format for MetricRecords, both directions.

Our records carry no labels (one scrape = one guest), so this only has to
handle `# HELP`, `# TYPE` and bare `name value` sample lines.
"""

from __future__ import annotations

from typing import Dict, Iterable

from guestmon.metrics import METRIC_TYPES, MetricRecord, MetricSet

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _format_value(value) -> str:
    if isinstance(value, int):
        return str(value)
    return repr(float(value))


def render_text(records: Iterable[MetricRecord]) -> str:
    lines = []
    for record in sorted(records, key=lambda r: r.key):
        lines.append(f"# HELP {record.key} {_escape_help(record.help)}")
        lines.append(f"# TYPE {record.key} {record.type}")
        lines.append(f"{record.key} {_format_value(record.value)}")
    return "\n".join(lines) + "\n" if lines else ""


def _parse_value(text: str):
    try:
        return int(text)
    except ValueError:
        return float(text)


def parse_text(text: str) -> MetricSet:
    """Parse render_text() output (or any unlabelled exposition) back into records."""
    helps: Dict[str, str] = {}
    types: Dict[str, str] = {}
    metrics: MetricSet = {}

    for line in text.strip().split("\n"):
        line = line.strip()
        if not line:
            continue

        if line.startswith("# HELP "):
            parts = line[7:].split(" ", 1)
            if len(parts) == 2:
                helps[parts[0]] = parts[1].replace("\\n", "\n").replace("\\\\", "\\")
            continue

        if line.startswith("# TYPE "):
            parts = line[7:].split(" ", 1)
            if len(parts) == 2:
                types[parts[0]] = parts[1]
            continue

        if line.startswith("#"):
            continue

        parts = line.split()
        if len(parts) < 2 or "{" in parts[0]:
            continue
        name = parts[0]
        try:
            value = _parse_value(parts[1])
        except ValueError:
            continue

        # untyped samples are treated as gauges
        metric_type = types.get(name, "gauge")
        if metric_type not in METRIC_TYPES:
            metric_type = "gauge"

        metrics[name] = MetricRecord(
            key=name, help=helps.get(name, ""), type=metric_type, value=value
        )

    return metrics
