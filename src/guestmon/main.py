"""
guestmon entry point.

Usage:
    guestmon serve                              Serve /v1/<uuid>/metrics from local kstats
    guestmon --mock serve                       Same, with simulated zones
    guestmon scrape <uuid> -i 3                 One scrape, printed as a table
    guestmon --url http://cn1:9163 watch <uuid> -i 3
                                                Live dashboard of a remote agent's guest

Top-level options can also be set as GUESTMON_<OPTION> in the environment.
"""

from __future__ import annotations

import json
import logging

import click

from guestmon import __version__
from guestmon.client import AgentClient
from guestmon.collector.kstat import KstatCommandReader
from guestmon.config import FAILURE_POLICIES, PARTIAL, AgentConfig, parse_ttl_overrides
from guestmon.dashboard.terminal import print_table, result_to_json, run_dashboard, run_jsonl
from guestmon.dispatcher import build_dispatcher
from guestmon.errors import CollectorError
from guestmon.metrics import RequestContext
from guestmon.mock.generator import MOCK_ZONES, MockKstatReader, mock_zfs_executor
from guestmon.proc import execute
from guestmon.server import DEFAULT_PORT, run_server

log = logging.getLogger("guestmon")


def _open_source(ctx: click.Context):
    """Return (source, name): a remote agent client or a local dispatcher."""
    url = ctx.obj["url"]
    if url:
        client = AgentClient(url, timeout_seconds=ctx.obj["config"].scrape_timeout or 10.0)
        return client, client.name()
    return _local_dispatcher(ctx), "mock zones" if ctx.obj["mock"] else "local kstats"


def _local_dispatcher(ctx: click.Context):
    config: AgentConfig = ctx.obj["config"]
    if ctx.obj["mock"]:
        return build_dispatcher(MockKstatReader(), config, mock_zfs_executor())
    reader = KstatCommandReader(execute, timeout=config.kstat_timeout)
    return build_dispatcher(reader, config, execute)


def _request_context(vm_uuid: str, instance: int) -> RequestContext:
    try:
        return RequestContext(vm_uuid=vm_uuid, vm_instance=instance).validate()
    except CollectorError as e:
        raise click.BadParameter(str(e)) from None


@click.group()
@click.version_option(version=__version__, prog_name="guestmon")
@click.option("--mock", is_flag=True, default=False, help="Use simulated zones instead of kstat/zfs")
@click.option("--url", default=None, help="Read from a running agent (e.g. http://cn1:9163)")
@click.option("--ttl", "ttls", multiple=True, metavar="FAMILY=SECONDS",
              help="Override a family's cache TTL (-1 disables caching). Repeatable.")
@click.option("--failure-policy", type=click.Choice(FAILURE_POLICIES), default=PARTIAL,
              help="partial: report failed families; strict: fail the whole scrape")
@click.option("--zfs-timeout", default=5.0, help="Seconds before `zfs list` is killed")
@click.option("--kstat-timeout", default=5.0, help="Seconds before `kstat` is killed")
@click.option("--scrape-timeout", default=10.0, help="Seconds a scrape waits for all families")
@click.option("--workers", default=8, help="Collector thread pool size")
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging")
@click.pass_context
def cli(ctx, mock: bool, url: str, ttls, failure_policy: str, zfs_timeout: float,
        kstat_timeout: float, scrape_timeout: float, workers: int, verbose: bool):
    """guestmon - per-guest OS metrics agent."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = AgentConfig(
            ttl_overrides=parse_ttl_overrides(ttls),
            zfs_timeout=zfs_timeout,
            kstat_timeout=kstat_timeout,
            scrape_timeout=scrape_timeout,
            cache_wait_timeout=scrape_timeout,
            failure_policy=failure_policy,
            max_workers=workers,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from None

    ctx.ensure_object(dict)
    ctx.obj["mock"] = mock
    ctx.obj["url"] = url
    ctx.obj["config"] = config


@cli.command()
@click.option("--host", default="127.0.0.1", help="Address to listen on")
@click.option("--port", default=DEFAULT_PORT, help="Port to listen on")
@click.pass_context
def serve(ctx, host: str, port: int):
    """Serve metrics over HTTP."""
    if ctx.obj["url"]:
        raise click.UsageError("--url reads from another agent; it can't be served")

    if ctx.obj["mock"]:
        for vm_uuid, instance in MOCK_ZONES:
            click.echo(f"  mock zone {vm_uuid} instance={instance}")

    with _local_dispatcher(ctx) as dispatcher:
        log.info("Serving families: %s", ", ".join(dispatcher.families))
        run_server(dispatcher, host=host, port=port)


@cli.command()
@click.argument("vm_uuid")
@click.option("-i", "--instance", type=int, required=True, help="Zone id (kstat instance)")
@click.option("--output", type=click.Choice(["table", "jsonl"]), default="table")
@click.pass_context
def scrape(ctx, vm_uuid: str, instance: int, output: str):
    """Scrape one guest once and print the result."""
    request = _request_context(vm_uuid, instance)
    source, source_name = _open_source(ctx)

    try:
        result = source.scrape(request)
    except CollectorError as e:
        raise click.ClickException(str(e)) from None
    finally:
        source.close()

    if output == "jsonl":
        click.echo(json.dumps(result_to_json(result, request, source_name)))
    else:
        print_table(result)

    if not result.records:
        raise SystemExit(1)


@cli.command()
@click.argument("vm_uuid")
@click.option("-i", "--instance", type=int, required=True, help="Zone id (kstat instance)")
@click.option("--refresh", default=2.0, help="Seconds between scrapes")
@click.option("--output", type=click.Choice(["tui", "jsonl"]), default="tui",
              help="tui (Rich dashboard) or jsonl (one JSON line per scrape)")
@click.pass_context
def watch(ctx, vm_uuid: str, instance: int, refresh: float, output: str):
    """Scrape one guest repeatedly."""
    request = _request_context(vm_uuid, instance)
    source, source_name = _open_source(ctx)

    runner = run_jsonl if output == "jsonl" else run_dashboard
    try:
        runner(source, request, source_name, refresh_interval=refresh)
    finally:
        source.close()


def main():
    cli(auto_envvar_prefix="GUESTMON")


if __name__ == "__main__":
    main()
