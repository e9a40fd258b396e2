"""
Readiness probes.

A probe retries one check (HTTP status or command exit code) a bounded
number of times with a fixed delay between attempts. Running out of attempts
is an ordinary outcome (``ProbeResult.TIMEOUT``), not an exception: callers
decide whether it is fatal.
"""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

import httpx

logger = logging.getLogger(__name__)


class ProbeResult(str, Enum):
    READY = "ready"
    TIMEOUT = "timeout"

    def __bool__(self) -> bool:
        return self is ProbeResult.READY


@dataclass(frozen=True)
class ReadinessCheck:
    """What to poll and how often. Exactly one of ``url`` / ``command`` is set."""

    url: str | None = None
    command: tuple[str, ...] | None = None
    ready_status: frozenset[int] = field(default_factory=lambda: frozenset({200}))
    interval: float = 1.0
    max_attempts: int = 1
    timeout: float = 2.0

    def __post_init__(self):
        if (self.url is None) == (self.command is None):
            raise ValueError("ReadinessCheck needs exactly one of url or command")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.interval < 0:
            raise ValueError("interval must be >= 0")

    @property
    def target(self) -> str:
        return self.url if self.url is not None else " ".join(self.command or ())


def http_check(url: str, ready_status: Sequence[int] = (200,), interval: float = 1.0,
               max_attempts: int = 1, timeout: float = 2.0) -> ReadinessCheck:
    return ReadinessCheck(url=url, ready_status=frozenset(ready_status), interval=interval,
                          max_attempts=max_attempts, timeout=timeout)


def command_check(command: Sequence[str], interval: float = 1.0, max_attempts: int = 1,
                  timeout: float = 10.0) -> ReadinessCheck:
    return ReadinessCheck(command=tuple(command), interval=interval,
                          max_attempts=max_attempts, timeout=timeout)


def probe(check: ReadinessCheck, sleep: Callable[[float], None] = time.sleep,
          client: httpx.Client | None = None) -> ProbeResult:
    """
    Poll ``check`` until it succeeds or ``max_attempts`` is used up.
    Sleeps ``interval`` between attempts, never after the last one.

    Args:
        check: the ReadinessCheck to run.
        sleep: delay function (injected by tests).
        client: httpx client for URL checks; a short-lived one is created if omitted.
    """
    own_client = client is None and check.url is not None
    if own_client:
        client = httpx.Client(timeout=check.timeout, follow_redirects=False)
    try:
        for attempt in range(1, check.max_attempts + 1):
            if _attempt(check, client):
                logger.debug("%s ready after %d attempt(s)", check.target, attempt)
                return ProbeResult.READY
            if attempt < check.max_attempts:
                sleep(check.interval)
        logger.info("%s not ready after %d attempt(s)", check.target, check.max_attempts)
        return ProbeResult.TIMEOUT
    finally:
        if own_client and client is not None:
            client.close()


def _attempt(check: ReadinessCheck, client: httpx.Client | None) -> bool:
    if check.url is not None:
        assert client is not None
        try:
            response = client.get(check.url, timeout=check.timeout, follow_redirects=False)
        except httpx.HTTPError as exc:
            logger.debug("%s: %s", check.url, exc)
            return False
        return response.status_code in check.ready_status
    try:
        proc = subprocess.run(list(check.command or ()), capture_output=True, timeout=check.timeout)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("%s: %s", check.target, exc)
        return False
    return proc.returncode == 0
