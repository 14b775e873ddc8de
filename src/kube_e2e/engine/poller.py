"""Convergence polling.

A Poller repeatedly invokes a probe until the probe has reported ready a
required number of times in a row, the timeout elapses, a fatal error is
reported, or a cancellation token fires. Every outcome is returned as a
WaitResult; the only exception raised by ``wait`` is ConfigurationError for
an invalid WaitSpec.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from kube_e2e.errors import (
    ConfigurationError,
    ErrorKind,
    FatalError,
    TimeoutExceeded,
    WaitCancelled,
    as_fatal,
    classify,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """One probe reading."""

    ready: bool
    detail: str = ""


ProbeValue = Union[bool, Observation, "tuple[bool, Optional[BaseException]]"]
Probe = Callable[[], ProbeValue]


@dataclass(frozen=True)
class WaitSpec:
    """Polling configuration for a single wait.

    Attributes:
        interval: Seconds between probe invocations.
        timeout: Seconds after which polling gives up. Must be >= interval.
        required_successes: Consecutive ready observations needed.
    """

    interval: float
    timeout: float
    required_successes: int = 1

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        if self.interval <= 0:
            raise ConfigurationError(
                "WaitSpec interval must be positive", {"interval": self.interval}
            )
        if self.timeout < self.interval:
            raise ConfigurationError(
                "WaitSpec timeout must not be shorter than its interval",
                {"interval": self.interval, "timeout": self.timeout},
            )
        if self.required_successes < 1:
            raise ConfigurationError(
                "WaitSpec required_successes must be at least 1",
                {"required_successes": self.required_successes},
            )


class WaitOutcome(Enum):
    READY = "ready"
    TIMEOUT = "timeout"
    FATAL = "fatal"
    CANCELLED = "cancelled"


@dataclass
class WaitResult:
    """What happened during a wait, for verdicts and diagnostics."""

    ready: bool
    outcome: WaitOutcome
    attempts: int
    elapsed: float
    last_observation: Optional[Observation] = None
    error: Optional[BaseException] = None
    description: str = ""

    @property
    def timed_out(self) -> bool:
        return self.outcome is WaitOutcome.TIMEOUT

    def describe(self) -> str:
        """Human readable summary including elapsed time and attempt count."""
        label = self.description or "condition"
        base = f"{label}: {self.outcome.value} after {self.attempts} attempt(s) in {self.elapsed:.1f}s"
        parts = [base]
        if self.error is not None:
            parts.append(f"last error: {self.error}")
        if self.last_observation is not None and self.last_observation.detail:
            parts.append(f"last observation: {self.last_observation.detail}")
        return "; ".join(parts)

    def raise_for_error(self) -> None:
        """Raise if the wait did not end ready."""
        if self.outcome is WaitOutcome.READY:
            return
        if self.outcome is WaitOutcome.FATAL and self.error is not None:
            raise self.error
        if self.outcome is WaitOutcome.CANCELLED:
            raise WaitCancelled(self.describe())
        raise TimeoutExceeded(
            self.describe(), elapsed=self.elapsed, attempts=self.attempts
        ) from self.error


class CancellationToken:
    """Suite-level abort signal observed at every poll tick."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        return self._event.wait(seconds)


def read_probe_value(value: Any) -> tuple[Observation, Optional[BaseException]]:
    """Normalise a probe's return value to ``(observation, reported error)``.

    Raises TypeError for a tuple that is not ``(ready, error)``.
    """
    if isinstance(value, Observation):
        return value, None
    if isinstance(value, tuple):
        if len(value) != 2:
            raise TypeError(f"probe returned a {len(value)}-tuple, expected (ready, error)")
        ready, err = value
        return Observation(bool(ready)), err
    return Observation(bool(value)), None


def _observe(probe: Probe) -> tuple[Optional[Observation], Optional[BaseException]]:
    try:
        return read_probe_value(probe())
    except Exception as e:
        return None, e


class Poller:
    """Waits for a probe to stabilize.

    Args:
        clock: Monotonic time source in seconds.
        sleep: Sleep function. When omitted, sleeps go through the
            cancellation token if one is given so an abort wakes the wait.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self._clock = clock
        self._sleep = sleep

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    def wait(
        self,
        probe: Probe,
        spec: WaitSpec,
        *,
        cancel: Optional[CancellationToken] = None,
        description: str = "",
    ) -> WaitResult:
        spec.validate()

        start = self._clock()
        attempts = 0
        streak = 0
        last_observation: Optional[Observation] = None
        last_error: Optional[BaseException] = None

        def finish(outcome: WaitOutcome, error: Optional[BaseException]) -> WaitResult:
            result = WaitResult(
                ready=outcome is WaitOutcome.READY,
                outcome=outcome,
                attempts=attempts,
                elapsed=self._clock() - start,
                last_observation=last_observation,
                error=error,
                description=description,
            )
            if outcome is WaitOutcome.READY:
                logger.debug(result.describe())
            else:
                logger.info(result.describe())
            return result

        while True:
            if cancel is not None and cancel.cancelled:
                return finish(WaitOutcome.CANCELLED, WaitCancelled(cancel.reason))

            attempts += 1
            observation, error = _observe(probe)

            if error is not None:
                if classify(error) is ErrorKind.FATAL:
                    fatal: FatalError = as_fatal(error)
                    return finish(WaitOutcome.FATAL, fatal)
                logger.debug(f"{description or 'probe'} attempt {attempts}: {error}")
                last_error = error
                streak = 0
            if observation is not None:
                last_observation = observation
                if observation.ready and error is None:
                    streak += 1
                    if streak >= spec.required_successes:
                        return finish(WaitOutcome.READY, None)
                else:
                    streak = 0

            elapsed = self._clock() - start
            if elapsed >= spec.timeout:
                return finish(WaitOutcome.TIMEOUT, last_error)

            self._pause(min(spec.interval, spec.timeout - elapsed), cancel)

    def _pause(self, seconds: float, cancel: Optional[CancellationToken]) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            cancel.wait(seconds)
        else:
            time.sleep(seconds)

    def sleep(self, seconds: float, cancel: Optional[CancellationToken] = None) -> None:
        """Pause using the poller's clock discipline."""
        if seconds > 0:
            self._pause(seconds, cancel)
