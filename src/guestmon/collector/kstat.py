"""
Kstat access and the normalizer shared by every kstat-backed family.

A reader returns a list of raw records, each a mapping with a "data" dict
of statistic name -> value. Selectors come in two shapes:

  - instance-selected (class + module + instance): names exactly one kstat,
    so the reader must return exactly one record.
  - multi-tenant (class + module only): returns records for every zone on
    the box; we keep the ones whose "zonename" matches the guest and sum
    them (a zone can own several links).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from guestmon.collector.base import KSTAT_TTL, MetricsCollector
from guestmon.errors import (
    CommandFailedError,
    GuestNotFoundError,
    MalformedOutputError,
    MissingFieldError,
    SourceUnavailableError,
)
from guestmon.metrics import MetricDefinition, MetricRecord, MetricSet, RequestContext
from guestmon.proc import DEFAULT_TIMEOUT, Executor, execute

log = logging.getLogger(__name__)

KSTAT_BIN = "/usr/bin/kstat"


@dataclass(frozen=True)
class KstatSelector:
    kstat_class: str
    module: str
    instance: Optional[int] = None

    def for_instance(self, instance: int) -> "KstatSelector":
        return replace(self, instance=instance)

    def __str__(self):
        inst = "*" if self.instance is None else self.instance
        return f"{self.module}:{inst} ({self.kstat_class})"


class KstatReader(ABC):

    @abstractmethod
    def read(self, selector: KstatSelector) -> Sequence[Mapping[str, Any]]:
        """Return raw records for the selector. May be empty."""
        ...


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _record_data(record, selector: KstatSelector) -> Mapping[str, Any]:
    data = record.get("data") if isinstance(record, Mapping) else None
    if not isinstance(data, Mapping):
        raise MalformedOutputError(f"kstat record for {selector} has no data mapping")
    return data


def normalize(
    table: Sequence[MetricDefinition],
    data: Mapping[str, Any],
    family: Optional[str] = None,
) -> MetricSet:
    """Map one raw record onto a definition table. All-or-nothing."""
    metrics: MetricSet = {}
    for definition in table:
        if definition.field not in data:
            raise MissingFieldError(definition.field, family)

        raw = data[definition.field]
        if not _is_number(raw):
            raise MalformedOutputError(
                f"{definition.field}={raw!r} is not numeric"
                + (f" in {family} kstats" if family else "")
            )

        value = definition.modifier(raw) if definition.modifier else raw
        metrics[definition.key] = MetricRecord(
            key=definition.key,
            help=definition.help,
            type=definition.type,
            value=value,
        )
    return metrics


def single_record(records: Sequence[Mapping[str, Any]], selector: KstatSelector) -> Mapping[str, Any]:
    """Unwrap the one record an instance-selected read should return."""
    if not records:
        raise GuestNotFoundError(f"no kstat found for {selector}")
    if len(records) > 1:
        raise MalformedOutputError(f"expected one kstat for {selector}, got {len(records)}")
    return _record_data(records[0], selector)


def guest_records(
    records: Sequence[Mapping[str, Any]],
    selector: KstatSelector,
    zonename: str,
) -> List[Mapping[str, Any]]:
    """Keep only the records that belong to zonename; the rest are dropped."""
    matches = []
    for record in records:
        data = _record_data(record, selector)
        if data.get("zonename") == zonename:
            matches.append(data)
    return matches


def sum_records(
    table: Sequence[MetricDefinition],
    datas: Sequence[Mapping[str, Any]],
    family: Optional[str] = None,
) -> Dict[str, Any]:
    """Sum each declared field across several records of the same guest."""
    if len(datas) == 1:
        return dict(datas[0])

    totals: Dict[str, Any] = {}
    for definition in table:
        total = 0
        for data in datas:
            if definition.field not in data:
                raise MissingFieldError(definition.field, family)
            raw = data[definition.field]
            if not _is_number(raw):
                raise MalformedOutputError(f"{definition.field}={raw!r} is not numeric")
            total += raw
        totals[definition.field] = total
    return totals


def kstats_to_metrics(
    reader: KstatReader,
    selector: KstatSelector,
    table: Sequence[MetricDefinition],
    family: Optional[str] = None,
    zonename: Optional[str] = None,
) -> MetricSet:
    """Read one selector and normalize it.

    Pass zonename for multi-tenant selectors; leave it None when the
    selector carries an instance.
    """
    try:
        records = reader.read(selector)
    except OSError as e:
        raise SourceUnavailableError(f"kstat read for {selector} failed: {e}") from e
    log.debug("read %d kstat record(s) for %s", len(records), selector)

    if zonename is None:
        data = single_record(records, selector)
    else:
        matches = guest_records(records, selector, zonename)
        if not matches:
            raise GuestNotFoundError(f"no {selector} kstats for zone {zonename}")
        data = sum_records(table, matches, family)

    return normalize(table, data, family)


def _parse_value(text: str):
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def parse_kstat_output(text: str, kstat_class: str = "") -> List[Dict[str, Any]]:
    """Group `kstat -p` lines (module:instance:name:statistic<TAB>value) into records."""
    records: "OrderedDict[tuple, Dict[str, Any]]" = OrderedDict()

    for line in text.splitlines():
        if not line.strip():
            continue

        ident, sep, value = line.partition("\t")
        if not sep:
            raise MalformedOutputError(f"unexpected kstat line: {line!r}")

        parts = ident.split(":", 2)
        if len(parts) != 3 or ":" not in parts[2]:
            raise MalformedOutputError(f"unexpected kstat name: {ident!r}")
        module, instance, rest = parts
        name, statistic = rest.rsplit(":", 1)

        try:
            inst = int(instance)
        except ValueError:
            raise MalformedOutputError(f"bad kstat instance in {ident!r}") from None

        key = (module, inst, name)
        if key not in records:
            records[key] = {
                "class": kstat_class,
                "module": module,
                "instance": inst,
                "name": name,
                "data": {},
            }
        records[key]["data"][statistic] = _parse_value(value)

    return list(records.values())


class KstatCommandReader(KstatReader):
    """Reads kstats by shelling out to kstat(1M) in parseable mode."""

    def __init__(self, executor: Executor = execute, timeout: float = DEFAULT_TIMEOUT):
        self._execute = executor
        self._timeout = timeout

    def read(self, selector: KstatSelector) -> List[Dict[str, Any]]:
        argv = [KSTAT_BIN, "-p", "-c", selector.kstat_class, "-m", selector.module]
        if selector.instance is not None:
            argv += ["-i", str(selector.instance)]

        try:
            result = self._execute(argv, self._timeout)
        except CommandFailedError as e:
            # exit 1 means no statistics matched; 2 and 3 are real errors
            if e.returncode == 1:
                log.debug("no kstats matched %s", selector)
                return []
            raise
        return parse_kstat_output(result.stdout, selector.kstat_class)


class KstatCollector(MetricsCollector):
    """A family backed by one kstat selector and one definition table.

    Subclasses set family, table and selector. multi_tenant selectors are
    filtered by the guest's uuid; the others get the guest's zone id as the
    kstat instance.
    """

    table: Tuple[MetricDefinition, ...] = ()
    selector: KstatSelector
    multi_tenant = False

    def __init__(self, reader: KstatReader, ttl: int = KSTAT_TTL):
        self._reader = reader
        self._ttl = ttl

    def get_metrics(self, ctx: RequestContext) -> MetricSet:
        ctx.validate()
        if self.multi_tenant:
            return kstats_to_metrics(
                self._reader, self.selector, self.table, self.family, zonename=ctx.vm_uuid
            )
        return kstats_to_metrics(
            self._reader, self.selector.for_instance(ctx.vm_instance), self.table, self.family
        )

    def cache_ttl(self) -> int:
        return self._ttl
