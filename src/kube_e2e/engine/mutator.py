"""Retry-bounded mutations and the handles that own provisioned resources.

Deletes against a live cluster fail for boring reasons (API server blips,
finalizers still running) and the same suite is re-run against clusters that
already hold leftovers from a previous run. RetryingMutator makes every
mutation idempotent: "already absent" is success on any attempt, transient
errors are retried with a fixed delay, fatal errors stop immediately.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from kube_e2e.defaults import (
    DEFAULT_DELETE_RETRIES,
    DEFAULT_DELETE_RETRY_DELAY,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_TIMEOUT,
)
from kube_e2e.engine.poller import CancellationToken, Observation, Poller, WaitSpec
from kube_e2e.errors import (
    ConfigurationError,
    ErrorKind,
    ResourceAbsentError,
    WaitCancelled,
    as_fatal,
    classify,
)

logger = logging.getLogger(__name__)

Action = Callable[[], Any]


@dataclass(frozen=True)
class RetrySpec:
    """Retry configuration for one mutation."""

    max_attempts: int = DEFAULT_DELETE_RETRIES
    delay: float = DEFAULT_DELETE_RETRY_DELAY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError(
                "RetrySpec max_attempts must be at least 1",
                {"max_attempts": self.max_attempts},
            )
        if self.delay < 0:
            raise ConfigurationError("RetrySpec delay must not be negative", {"delay": self.delay})


@dataclass
class MutationResult:
    """Outcome of RetryingMutator.apply."""

    ok: bool
    attempts: int
    elapsed: float
    already_absent: bool = False
    error: Optional[BaseException] = None
    value: Any = None
    description: str = ""

    def describe(self) -> str:
        label = self.description or "mutation"
        if self.ok:
            state = "already absent" if self.already_absent else "succeeded"
            return f"{label}: {state} after {self.attempts} attempt(s) in {self.elapsed:.1f}s"
        return (
            f"{label}: failed after {self.attempts} attempt(s) in {self.elapsed:.1f}s; "
            f"last error: {self.error}"
        )

    def raise_for_error(self) -> None:
        if not self.ok and self.error is not None:
            raise self.error


class RetryingMutator:
    """Applies mutating actions with bounded retries."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._clock = clock
        self._sleep = sleep

    def apply(
        self,
        action: Action,
        spec: Optional[RetrySpec] = None,
        *,
        description: str = "",
        cancel: Optional[CancellationToken] = None,
    ) -> MutationResult:
        spec = spec or RetrySpec()
        label = description or getattr(action, "__name__", "mutation")
        start = self._clock()
        last_error: Optional[BaseException] = None
        attempts = 0

        def finish(ok: bool, **kwargs: Any) -> MutationResult:
            result = MutationResult(
                ok=ok,
                attempts=attempts,
                elapsed=self._clock() - start,
                description=label,
                **kwargs,
            )
            if ok:
                logger.debug(result.describe())
            else:
                logger.warning(result.describe())
            return result

        while attempts < spec.max_attempts:
            if cancel is not None and cancel.cancelled:
                return finish(False, error=WaitCancelled(cancel.reason))
            attempts += 1
            try:
                value = action()
            except Exception as e:
                kind = classify(e)
                if kind is ErrorKind.ABSENT:
                    return finish(True, already_absent=True)
                if kind is ErrorKind.FATAL:
                    return finish(False, error=as_fatal(e))
                last_error = e
                logger.info(f"{label}: attempt {attempts}/{spec.max_attempts} failed: {e}")
            else:
                return finish(True, value=value)

            if attempts < spec.max_attempts:
                self._pause(spec.delay, cancel)

        return finish(False, error=last_error)

    def _pause(self, seconds: float, cancel: Optional[CancellationToken]) -> None:
        if seconds <= 0:
            return
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)


class MutationHandle:
    """Owns one provisioned resource and knows how to remove it.

    ``release`` may be called any number of times. Once a release succeeded
    (including "already absent") later calls return the cached result
    without touching the cluster. Persistent handles are kept on soak
    clusters: their release is skipped.
    """

    def __init__(
        self,
        kind: str,
        name: str,
        cleanup: Action,
        *,
        namespace: Optional[str] = None,
        mutator: Optional[RetryingMutator] = None,
        retry: Optional[RetrySpec] = None,
        persistent: bool = False,
        resource: Any = None,
    ):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        self.resource = resource
        self.persistent = persistent
        self._cleanup = cleanup
        self._mutator = mutator or RetryingMutator()
        self._retry = retry
        self._released: Optional[MutationResult] = None

    def __repr__(self) -> str:
        return f"MutationHandle({self.reference!r})"

    @property
    def reference(self) -> str:
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"

    @property
    def released(self) -> bool:
        return self._released is not None

    def release(
        self, *, keep_persistent: bool = False, cancel: Optional[CancellationToken] = None
    ) -> Optional[MutationResult]:
        """Delete the resource. Returns None when a persistent handle is kept."""
        if self._released is not None:
            return self._released
        if self.persistent and keep_persistent:
            logger.info(f"Keeping {self.reference} on soak cluster")
            return None
        result = self._mutator.apply(
            self._cleanup, self._retry, description=f"delete {self.reference}", cancel=cancel
        )
        if result.ok:
            self._released = result
        return result

    def __enter__(self) -> "MutationHandle":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class ProvisionPolicy(Enum):
    """What to do when the resource to provision already exists.

    REUSE adopts the existing resource (long-lived shared workloads).
    RECREATE deletes the leftover first, then creates a fresh one.
    """

    REUSE = "reuse"
    RECREATE = "recreate"


def ensure(
    get: Callable[[], Any],
    create: Callable[[], Any],
    delete: Action,
    policy: ProvisionPolicy = ProvisionPolicy.RECREATE,
    *,
    mutator: Optional[RetryingMutator] = None,
    retry: Optional[RetrySpec] = None,
    poller: Optional[Poller] = None,
    gone: Optional[WaitSpec] = None,
    cancel: Optional[CancellationToken] = None,
    description: str = "resource",
) -> tuple[Any, bool]:
    """Get-or-create with one explicit policy.

    A ``get`` raising ResourceAbsentError means absent; any other error from
    ``get`` propagates. Under RECREATE a leftover is deleted and ``get`` is
    polled with ``gone`` until the leftover has disappeared, since deletes
    return while the object is still terminating. Returns
    ``(resource, created)``.
    """
    try:
        existing = get()
    except ResourceAbsentError:
        existing = None

    if existing is not None:
        if policy is ProvisionPolicy.REUSE:
            logger.info(f"Reusing existing {description}")
            return existing, False
        logger.info(f"Deleting leftover {description} before recreating it")
        mutator = mutator or RetryingMutator()
        mutator.apply(
            delete, retry, description=f"delete leftover {description}", cancel=cancel
        ).raise_for_error()

        def absent() -> Observation:
            try:
                get()
            except ResourceAbsentError:
                return Observation(True)
            return Observation(False, f"{description} still terminating")

        poller = poller or Poller()
        poller.wait(
            absent,
            gone or WaitSpec(DEFAULT_POLL_INTERVAL, DEFAULT_TIMEOUT),
            cancel=cancel,
            description=f"leftover {description} gone",
        ).raise_for_error()

    return create(), True
