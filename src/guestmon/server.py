"""
HTTP layer: GET /v1/<vm_uuid>/metrics?instance=<zone id>

Serves one guest per request in Prometheus text format. Families that
failed in partial mode are listed in the X-Guestmon-Failed header.
"""

from __future__ import annotations

import logging
import re
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

from guestmon.dispatcher import Dispatcher
from guestmon.errors import InvalidContextError, ScrapeFailedError
from guestmon.exposition import CONTENT_TYPE, render_text
from guestmon.metrics import RequestContext

log = logging.getLogger(__name__)

DEFAULT_PORT = 9163

_METRICS_PATH = re.compile(r"^/v1/(?P<uuid>[^/]+)/metrics$")

# How often the serve loop drops expired cache entries
PRUNE_INTERVAL = 60.0


def context_from_request(path: str) -> RequestContext:
    """Build a RequestContext from the request path. Raises LookupError for unknown paths."""
    url = urlsplit(path)
    match = _METRICS_PATH.match(url.path)
    if not match:
        raise LookupError(url.path)

    instance = parse_qs(url.query).get("instance")
    if not instance:
        raise InvalidContextError("missing instance query parameter")
    try:
        vm_instance = int(instance[0])
    except ValueError:
        raise InvalidContextError(f"instance {instance[0]!r} is not an integer") from None

    return RequestContext(vm_uuid=match.group("uuid"), vm_instance=vm_instance).validate()


class _MetricsHandler(BaseHTTPRequestHandler):
    server: "MetricsServer"

    def do_GET(self):
        try:
            ctx = context_from_request(self.path)
        except LookupError:
            self._send(404, "not found\n")
            return
        except InvalidContextError as e:
            self._send(400, f"{e}\n")
            return

        try:
            result = self.server.dispatcher.scrape(ctx)
        except ScrapeFailedError as e:
            self._send(500, f"{e}\n")
            return

        headers = {}
        if result.failures:
            headers["X-Guestmon-Failed"] = ",".join(sorted(result.failures))
        self._send(200, render_text(result.records.values()), headers)

    def _send(self, status: int, body: str, headers=None):
        payload = body.encode()
        self.send_response(status)
        self.send_header("Content-Type", CONTENT_TYPE if status == 200 else "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format, *args):
        log.debug("%s - %s", self.address_string(), format % args)


class MetricsServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, dispatcher: Dispatcher):
        super().__init__(address, _MetricsHandler)
        self.dispatcher = dispatcher
        self._last_prune = time.monotonic()

    def service_actions(self):
        now = time.monotonic()
        if now - self._last_prune >= PRUNE_INTERVAL:
            self._last_prune = now
            self.dispatcher.prune_caches()


def run_server(dispatcher: Dispatcher, host: str = "127.0.0.1", port: int = DEFAULT_PORT):
    server = MetricsServer((host, port), dispatcher)
    log.info("serving metrics on http://%s:%d/v1/<vm_uuid>/metrics", host, port)
    print(f"guestmon serving at http://{host}:{port}/v1/<vm_uuid>/metrics?instance=<id>")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    server.server_close()
    print("\nServer stopped.")
