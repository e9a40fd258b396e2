"""Exception taxonomy shared by the orchestrator, its connectors and the CLI."""

import logging
from dataclasses import dataclass

mylogger = logging.getLogger(__name__)


class TiltmuxError(Exception):
    """Base exception with a message and an optional remediation hint."""

    def __init__(self, message="A tiltmux error occurred", hint: str | None = None, log=False):
        self.message = message
        self.hint = hint
        super().__init__(self.message)
        if log:
            mylogger.error(self.describe())

    def describe(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class ConfigError(TiltmuxError):
    """Component list missing, unreadable or violating the schema."""


class PreconditionError(TiltmuxError):
    """A hard precondition failed: missing tool, unreachable cluster..."""


class MissingComponentDirectory(PreconditionError):
    """A component working directory has not been populated yet."""

    def __init__(self, component: str, path, log=False):
        self.component = component
        self.path = path
        super().__init__(
            f"{component}: directory not found: {path}",
            hint="run the clone step first",
            log=log,
        )


class SessionError(TiltmuxError):
    """Session name collision, or an operation on a session that does not exist."""


class WindowError(TiltmuxError):
    """Duplicate window, or an operation on a window that does not exist."""


class ReadinessTimeout(TiltmuxError):
    """A gating readiness check ran out of attempts."""


@dataclass(frozen=True)
class DriftWarning:
    """Observed state differs from expected state. Reported, never raised."""

    subject: str
    message: str

    def __str__(self) -> str:
        return f"{self.subject}: {self.message}"
