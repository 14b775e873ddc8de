"""Stability sampling.

Runs a probe a fixed number of times, one attempt after another, and counts
how many attempts succeeded. The result is a flake rate instead of a single
pass/fail bit, which is what networking and DNS checks need: a path that
works once and fails one time in five is not stable.

Each attempt is one bounded Poller wait. Inside an attempt the probe is
polled until it *settles*: returning a value settles the attempt (truthy is
a success, falsy a failure), while a TransientError means "not settled yet"
(e.g. the test pod is still Pending). A probe returning ``(ready, error)``
with an error behaves as if it had raised that error. Fatal errors and
attempts that never settle are recorded in ``errors`` and counted as
failures; the remaining iterations still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from kube_e2e.engine.poller import (
    CancellationToken,
    Observation,
    Poller,
    WaitOutcome,
    WaitSpec,
    read_probe_value,
)
from kube_e2e.errors import ConfigurationError, TimeoutExceeded

logger = logging.getLogger(__name__)

StabilityProbe = Callable[[], Any]


@dataclass
class StabilityResult:
    """Counts from one stability run.

    ``attempts`` is the number of iterations actually executed; it only
    differs from ``iterations`` when the run was cancelled.
    """

    iterations: int
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    errors: list[BaseException] = field(default_factory=list)
    elapsed: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.successes / self.attempts

    @property
    def flake_rate(self) -> float:
        if self.attempts == 0:
            return 0.0
        return self.failures / self.attempts

    @property
    def all_succeeded(self) -> bool:
        return self.attempts == self.iterations and self.successes == self.iterations

    def describe(self) -> str:
        summary = (
            f"{self.successes}/{self.attempts} attempts succeeded "
            f"({self.iterations} requested, flake rate {self.flake_rate:.0%}) in {self.elapsed:.1f}s"
        )
        if self.errors:
            summary += f"; last error: {self.errors[-1]}"
        return summary


class StabilityRunner:
    """Samples a probe sequentially to measure its success rate."""

    def __init__(self, poller: Optional[Poller] = None):
        self._poller = poller or Poller()

    def run(
        self,
        probe: StabilityProbe,
        iterations: int,
        per_attempt_timeout: float,
        *,
        interval: float = 1.0,
        cancel: Optional[CancellationToken] = None,
        description: str = "",
    ) -> StabilityResult:
        if iterations < 1:
            raise ConfigurationError(
                "stability iterations must be at least 1", {"iterations": iterations}
            )
        # Fails fast on a bad timeout/interval pair before any attempt runs.
        spec = WaitSpec(interval=interval, timeout=per_attempt_timeout)
        label = description or "stability probe"
        # Stateful probes (one pod per attempt) drop leftovers between attempts.
        reset = getattr(probe, "reset", None)

        result = StabilityResult(iterations=iterations)
        clock = self._poller.clock
        start = clock()

        for index in range(iterations):
            if cancel is not None and cancel.cancelled:
                logger.warning(f"{label}: cancelled after {result.attempts} attempt(s)")
                break
            if index:
                self._poller.sleep(interval, cancel)
            if reset is not None:
                reset()

            settled: list[bool] = []

            def settle() -> Observation:
                observation, err = read_probe_value(probe())
                if err is not None:
                    raise err
                settled.append(observation.ready)
                return Observation(True)

            wait = self._poller.wait(
                settle, spec, cancel=cancel, description=f"{label} #{index + 1}"
            )
            if wait.outcome is WaitOutcome.CANCELLED:
                logger.warning(f"{label}: cancelled during attempt {index + 1}")
                break

            result.attempts += 1
            if wait.ready and settled[-1]:
                result.successes += 1
                continue

            result.failures += 1
            if wait.outcome is WaitOutcome.TIMEOUT:
                timeout = TimeoutExceeded(
                    wait.describe(), elapsed=wait.elapsed, attempts=wait.attempts
                )
                timeout.__cause__ = wait.error
                result.errors.append(timeout)
            elif wait.outcome is WaitOutcome.FATAL and wait.error is not None:
                result.errors.append(wait.error)
            logger.info(f"{label}: attempt {index + 1}/{iterations} failed")

        if reset is not None:
            reset()
        result.elapsed = clock() - start
        logger.info(f"{label}: {result.describe()}")
        return result
