"""Terminal views of a guest's metrics: Rich live dashboard, table, or JSON lines."""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from guestmon import __version__
from guestmon.dispatcher import ScrapeResult
from guestmon.errors import CollectorError
from guestmon.metrics import COUNTER, MetricSet, RequestContext

log = logging.getLogger(__name__)

# Give up after this many scrapes in a row raise
MAX_CONSECUTIVE_ERRORS = 5


def _format_value(value) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    return f"{value:,}"


def _trend_arrow(current: float, previous: float) -> str:
    """^ or v for gauges that moved more than 3%."""
    if previous == 0:
        return ""

    pct_change = (current - previous) / abs(previous)
    if abs(pct_change) < 0.03:
        return "[dim]-[/dim]"
    return "[yellow]^[/yellow]" if pct_change > 0 else "[cyan]v[/cyan]"


def build_table(records: MetricSet, previous: Optional[MetricSet] = None, interval: float = 0) -> Table:
    """One row per metric. Counters get a per-second rate once we have a previous scrape."""
    table = Table(show_header=True, header_style="bold cyan", expand=previous is not None)
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Type", width=8)
    table.add_column("Value", justify="right")
    if previous is None:
        for key in sorted(records):
            record = records[key]
            table.add_row(key, record.type, _format_value(record.value))
        return table

    table.add_column("Rate/s", justify="right")
    table.add_column("", width=2)
    for key in sorted(records):
        record = records[key]
        prev = previous.get(key)
        rate = ""
        trend = ""
        if prev is not None and record.type == COUNTER and interval > 0:
            rate = _format_value((record.value - prev.value) / interval)
        elif prev is not None:
            trend = _trend_arrow(record.value, prev.value)
        table.add_row(key, record.type, _format_value(record.value), rate, trend)

    return table


def _build_failure_panel(result: ScrapeResult) -> Panel:
    if not result.failures:
        return Panel(Text("  All collectors OK", style="bold green"), title="Collectors", border_style="green")

    table = Table(show_header=False, expand=True, padding=(0, 1))
    table.add_column("family", width=12)
    table.add_column("error")
    for family in sorted(result.failures):
        error = result.failures[family]
        table.add_row(f"[bold red]{family}[/bold red]", f"{type(error).__name__}: {error}")
    return Panel(table, title=f"Failed collectors ({len(result.failures)})", border_style="red")


def build_display(
    result: ScrapeResult,
    source_name: str,
    ctx: RequestContext,
    previous: Optional[MetricSet] = None,
    interval: float = 0,
) -> Layout:
    layout = Layout()

    header = Text(f"  guestmon v{__version__}  |  {source_name}", style="bold white on blue")
    header.append(f"\n  {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}  ", style="dim")
    header.append(f"  zone {ctx.vm_uuid} (id {ctx.vm_instance})")

    failures = _build_failure_panel(result)
    layout.split_column(
        Layout(Panel(header, border_style="blue"), size=4),
        Layout(Panel(build_table(result.records, previous, interval), title="Metrics", border_style="cyan")),
        Layout(failures, size=max(3, min(len(result.failures) + 2, 9))),
        Layout(Panel(Text("  Press Ctrl+C to stop", style="dim"), border_style="dim"), size=3),
    )
    return layout


def print_table(result: ScrapeResult, console: Optional[Console] = None):
    console = console or Console()
    console.print(build_table(result.records))
    for family in sorted(result.failures):
        console.print(f"[bold red]{family} failed:[/bold red] {result.failures[family]}")


def result_to_json(result: ScrapeResult, ctx: RequestContext, source_name: str) -> dict:
    return {
        "timestamp": datetime.now().isoformat(),
        "source": source_name,
        "vm_uuid": ctx.vm_uuid,
        "vm_instance": ctx.vm_instance,
        "metrics": {key: r.value for key, r in sorted(result.records.items())},
        "failed": {family: str(e) for family, e in sorted(result.failures.items())},
    }


def run_dashboard(source, ctx: RequestContext, source_name: str, refresh_interval: float = 2.0):
    """source is anything with scrape(ctx) -> ScrapeResult (Dispatcher, AgentClient)."""
    console = Console()
    log.info("Starting dashboard: source=%s, refresh=%.1fs", source_name, refresh_interval)

    consecutive_errors = 0
    previous: Optional[MetricSet] = None

    with Live(console=console, refresh_per_second=1, screen=True) as live:
        try:
            while True:
                try:
                    result = source.scrape(ctx)
                    consecutive_errors = 0
                except CollectorError as e:
                    consecutive_errors += 1
                    log.warning("Scrape failed (attempt %d/%d): %s",
                                consecutive_errors, MAX_CONSECUTIVE_ERRORS, e)
                    if consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                        log.error("Giving up after %d failed scrapes", MAX_CONSECUTIVE_ERRORS)
                        break
                    error_text = Text(
                        f"  Scrape error (retry {consecutive_errors}/{MAX_CONSECUTIVE_ERRORS}): {e}",
                        style="bold red",
                    )
                    live.update(Panel(error_text, border_style="red"))
                    time.sleep(refresh_interval)
                    continue

                live.update(build_display(result, source_name, ctx, previous, refresh_interval))
                previous = result.records
                time.sleep(refresh_interval)
        except KeyboardInterrupt:
            pass

    console.print("\n[dim]Dashboard stopped.[/dim]")


def run_jsonl(source, ctx: RequestContext, source_name: str, refresh_interval: float = 2.0, count: int = 0):
    """Non-interactive mode: one JSON object per scrape per line. count=0 runs until Ctrl+C."""
    log.info("Starting JSONL output: source=%s, refresh=%.1fs", source_name, refresh_interval)

    consecutive_errors = 0
    emitted = 0

    try:
        while True:
            try:
                result = source.scrape(ctx)
                consecutive_errors = 0
            except CollectorError as e:
                consecutive_errors += 1
                log.warning("Scrape failed (attempt %d/%d): %s",
                            consecutive_errors, MAX_CONSECUTIVE_ERRORS, e)
                if consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                    log.error("Giving up after %d failed scrapes", MAX_CONSECUTIVE_ERRORS)
                    break
                time.sleep(refresh_interval)
                continue

            sys.stdout.write(json.dumps(result_to_json(result, ctx, source_name)) + "\n")
            sys.stdout.flush()
            emitted += 1
            if count and emitted >= count:
                break
            time.sleep(refresh_interval)
    except KeyboardInterrupt:
        pass
