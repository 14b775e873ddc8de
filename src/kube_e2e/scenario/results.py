"""Phase outcomes and scenario verdicts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from kube_e2e.engine.mutator import MutationResult
from kube_e2e.engine.poller import WaitResult
from kube_e2e.engine.stability import StabilityResult

logger = logging.getLogger(__name__)

CLEANUP = "cleanup"


class VerdictStatus(Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


@dataclass(frozen=True)
class PhaseOutcome:
    """Result of one named phase (provision, await-ready, ...)."""

    ok: bool
    detail: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    blocked: bool = False

    @classmethod
    def passed(cls, detail: str = "", **metadata: Any) -> "PhaseOutcome":
        return cls(True, detail, metadata)

    @classmethod
    def failed(cls, detail: str, **metadata: Any) -> "PhaseOutcome":
        return cls(False, detail, metadata)

    @classmethod
    def from_wait(cls, result: WaitResult) -> "PhaseOutcome":
        return cls(
            result.ready,
            result.describe(),
            {"attempts": result.attempts, "elapsed": result.elapsed, "outcome": result.outcome.value},
        )

    @classmethod
    def from_stability(
        cls, result: StabilityResult, min_success_rate: float = 1.0
    ) -> "PhaseOutcome":
        ok = result.attempts == result.iterations and result.success_rate >= min_success_rate
        return cls(
            ok,
            result.describe(),
            {
                "attempts": result.attempts,
                "successes": result.successes,
                "failures": result.failures,
                "elapsed": result.elapsed,
            },
        )

    @classmethod
    def from_mutation(cls, result: MutationResult) -> "PhaseOutcome":
        return cls(
            result.ok,
            result.describe(),
            {
                "attempts": result.attempts,
                "elapsed": result.elapsed,
                "already_absent": result.already_absent,
            },
        )


@dataclass
class PhaseRecord:
    phase: str
    outcome: PhaseOutcome


@dataclass
class Verdict:
    """Tri-state scenario verdict consumed by the reporting layer."""

    status: VerdictStatus
    reason: str = ""
    phases: list[PhaseRecord] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status is VerdictStatus.PASS

    @property
    def failed(self) -> bool:
        return self.status is VerdictStatus.FAIL

    @property
    def skipped(self) -> bool:
        return self.status is VerdictStatus.SKIP

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status.value.upper()}: {self.reason}"
        return self.status.value.upper()


def is_cleanup(phase: str) -> bool:
    return phase == CLEANUP or phase.startswith(CLEANUP + ":")


class ResultAggregator:
    """Collects phase outcomes for one scenario.

    The first failing phase fails the scenario and blocks every later
    non-cleanup phase. Cleanup phases always run; a cleanup failure fails an
    otherwise passing scenario and is otherwise kept as a diagnostic. Once
    the scenario is skipped, later non-cleanup failures are diagnostics only.
    """

    def __init__(self, scenario: str = ""):
        self.scenario = scenario
        self._records: list[PhaseRecord] = []
        self._failure: Optional[PhaseRecord] = None
        self._cleanup_failures: list[PhaseRecord] = []
        self._skip_reason: Optional[str] = None
        self._verdict: Optional[Verdict] = None

    @property
    def records(self) -> list[PhaseRecord]:
        return list(self._records)

    @property
    def failed(self) -> bool:
        return self._failure is not None

    def can_run(self, phase: str) -> bool:
        """Whether ``phase`` may still execute."""
        if is_cleanup(phase):
            return True
        return self._failure is None and self._skip_reason is None

    def record(self, phase: str, outcome: PhaseOutcome) -> None:
        if self._verdict is not None:
            raise RuntimeError(f"Scenario {self.scenario!r} already finalized")
        record = PhaseRecord(phase, outcome)
        self._records.append(record)
        if outcome.ok or outcome.blocked:
            return
        if is_cleanup(phase):
            logger.warning(f"[{self.scenario}] {phase} failed: {outcome.detail}")
            self._cleanup_failures.append(record)
        elif self._failure is None and self._skip_reason is None:
            logger.info(f"[{self.scenario}] {phase} failed: {outcome.detail}")
            self._failure = record

    def block(self, phase: str) -> None:
        """Record that ``phase`` did not run because an earlier phase failed."""
        cause = self._failure.phase if self._failure else "skip"
        self.record(phase, PhaseOutcome(False, f"not run: blocked by {cause}", blocked=True))

    def skip(self, reason: str) -> None:
        if self._skip_reason is None:
            self._skip_reason = reason

    def finalize(self) -> Verdict:
        if self._verdict is not None:
            return self._verdict

        diagnostics = [
            f"{r.phase}: {r.outcome.detail}" for r in self._records if not r.outcome.ok and r.outcome.detail
        ]
        if self._failure is not None:
            status, reason = VerdictStatus.FAIL, f"{self._failure.phase}: {self._failure.outcome.detail}"
        elif self._cleanup_failures:
            first = self._cleanup_failures[0]
            status, reason = VerdictStatus.FAIL, f"{first.phase}: {first.outcome.detail}"
        elif self._skip_reason is not None:
            status, reason = VerdictStatus.SKIP, self._skip_reason
        else:
            status, reason = VerdictStatus.PASS, ""

        self._verdict = Verdict(status, reason, list(self._records), diagnostics)
        return self._verdict
