"""
Thin wrapper around subprocess for the shell tools we depend on
(zfs, kstat). Every call has a timeout; a hung tool would otherwise
stall the whole scrape.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Sequence

from guestmon.errors import CommandFailedError, SourceUnavailableError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


@dataclass
class ProcessResult:
    stdout: str
    stderr: str = ""


# Signature shared by execute() and the fakes used in tests / mock mode
Executor = Callable[[Sequence[str], float], ProcessResult]


def execute(argv: Sequence[str], timeout: float = DEFAULT_TIMEOUT) -> ProcessResult:
    """Run argv and return its output. Raises SourceUnavailableError on any failure."""
    argv = list(argv)
    log.debug("exec: %s (timeout=%.1fs)", " ".join(argv), timeout)

    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise SourceUnavailableError(f"{argv[0]} timed out after {timeout}s") from None
    except OSError as e:
        raise SourceUnavailableError(f"could not run {argv[0]}: {e}") from e

    if result.returncode != 0:
        raise CommandFailedError(argv[0], result.returncode, result.stderr.strip())

    return ProcessResult(stdout=result.stdout, stderr=result.stderr)
