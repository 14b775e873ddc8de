"""Error taxonomy for kube-e2e.

Every failure a probe, action or collaborator can report falls into one of
two families:

- TransientError: the cluster has not converged yet (resource pending,
  connection blip). Polling and retrying continue within budget.
- FatalError: retrying cannot help (malformed input, authorization failure,
  bad configuration). The current wait/retry aborts immediately.

Anything else raised by a probe is treated as fatal: a probe bug should
surface on the first call, not after a twenty minute timeout.

Timeouts are not exceptions inside the engine. They are reported as
values (``WaitOutcome.TIMEOUT``) and only become ``TimeoutExceeded`` when a
caller asks for it, or when a stability attempt records one.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """How the engine reacts to an error."""

    TRANSIENT = "transient"
    FATAL = "fatal"
    ABSENT = "absent"


class E2EError(Exception):
    """Base class for all kube-e2e errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        extra = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({extra})"


class TransientError(E2EError):
    """Condition not reached yet; safe to poll or retry."""


class CommandError(TransientError):
    """An external command exited non-zero."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        output: str = "",
    ):
        details: dict[str, Any] = {}
        if returncode is not None:
            details["returncode"] = returncode
        super().__init__(message, details)
        self.command = command or []
        self.returncode = returncode
        self.output = output


class ResourceAbsentError(TransientError):
    """The target resource does not exist.

    Deletes treat this as success. Lookups polled by a Poller keep waiting,
    which is why it is a TransientError.
    """

    def __init__(self, kind: str, name: str, namespace: str | None = None):
        location = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {location} not found", {"kind": kind})
        self.kind = kind
        self.name = name
        self.namespace = namespace


class FatalError(E2EError):
    """Retrying cannot help; abort the current wait or retry loop."""


class ConfigurationError(FatalError):
    """Invalid configuration (wait/retry specs, settings, descriptors)."""


class AuthorizationError(FatalError):
    """The cluster rejected our credentials."""


class TimeoutExceeded(E2EError):
    """A bounded wait elapsed without the condition being met."""

    def __init__(self, message: str, *, elapsed: float, attempts: int):
        super().__init__(message, {"elapsed": f"{elapsed:.1f}s", "attempts": attempts})
        self.elapsed = elapsed
        self.attempts = attempts


class WaitCancelled(E2EError):
    """A wait was interrupted by a cancellation token."""


def classify(exc: BaseException) -> ErrorKind:
    """Return how the engine should react to ``exc``."""
    if isinstance(exc, ResourceAbsentError):
        return ErrorKind.ABSENT
    if isinstance(exc, TransientError):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def as_fatal(exc: BaseException) -> FatalError:
    """Wrap an unexpected exception so it can travel through result values."""
    if isinstance(exc, FatalError):
        return exc
    wrapped = FatalError(f"{type(exc).__name__}: {exc}", {"cause": type(exc).__name__})
    wrapped.__cause__ = exc
    return wrapped
