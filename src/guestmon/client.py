"""
Client for a running guestmon agent. Scrapes /v1/<uuid>/metrics and parses
the text back into MetricRecords, so the CLI can show a remote host's
guests the same way it shows local ones.
"""

from __future__ import annotations

import logging

import httpx

from guestmon.dispatcher import ScrapeResult
from guestmon.errors import InvalidContextError, SourceUnavailableError
from guestmon.exposition import parse_text
from guestmon.metrics import RequestContext

log = logging.getLogger(__name__)


class AgentClient:

    def __init__(self, base_url: str, timeout_seconds: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=timeout_seconds)

    def scrape(self, ctx: RequestContext) -> ScrapeResult:
        ctx.validate()
        url = f"{self._base_url}/v1/{ctx.vm_uuid}/metrics"

        try:
            response = self._client.get(url, params={"instance": ctx.vm_instance})
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"could not reach agent at {self._base_url}: {e}") from e

        if response.status_code == 400:
            raise InvalidContextError(response.text.strip())
        if response.status_code != 200:
            raise SourceUnavailableError(
                f"agent returned {response.status_code}: {response.text.strip()}"
            )

        result = ScrapeResult(records=parse_text(response.text))
        failed = response.headers.get("X-Guestmon-Failed", "")
        for family in filter(None, failed.split(",")):
            result.failures[family] = SourceUnavailableError(f"{family} failed on the agent")
        return result

    def name(self) -> str:
        return f"agent ({self._base_url})"

    def close(self):
        self._client.close()
