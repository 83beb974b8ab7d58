"""
Exceptions raised by collectors, the cache and the dispatcher.

Every failure to produce a family's metrics surfaces as one of these,
never as a zero-valued metric.
"""

from __future__ import annotations

from typing import Dict, Optional


class CollectorError(Exception):
    """Base class for anything that stops a collector from returning metrics."""


class MissingFieldError(CollectorError):
    """A declared raw field was absent from the source record."""

    def __init__(self, field: str, family: Optional[str] = None):
        self.field = field
        self.family = family
        where = f" in {family} kstats" if family else ""
        super().__init__(f"missing raw field '{field}'{where}")


class SourceUnavailableError(CollectorError):
    """The kstat reader or external process could not produce data."""


class GuestNotFoundError(SourceUnavailableError):
    """The source answered, but had no record for the requested guest."""


class CommandFailedError(SourceUnavailableError):
    """An external command ran but exited non-zero."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{command} exited with status {returncode}: {stderr}")


class MalformedOutputError(CollectorError):
    """Source data was present but not in the expected shape."""


class InvalidContextError(CollectorError, ValueError):
    """Caller passed a missing or malformed guest uuid / instance."""


class ScrapeFailedError(CollectorError):
    """Raised by the dispatcher in strict mode when any family fails."""

    def __init__(self, failures: Dict[str, Exception]):
        self.failures = dict(failures)
        names = ", ".join(sorted(self.failures))
        super().__init__(f"{len(self.failures)} collector(s) failed: {names}")
