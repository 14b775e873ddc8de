"""Scenario execution.

A Scenario is a body function plus the capabilities it needs. run_scenario
drives one scenario through gate -> provision -> await-ready -> stability ->
teardown, recording every phase in a ResultAggregator. The body talks to the
cluster only through its ScenarioContext, which enforces phase ordering:
once a phase fails the body is stopped and only cleanup runs.

Everything a scenario needs (settings, cluster descriptor, kubectl, engine
instances, the suite cancellation token) lives in an explicit Environment
value instead of module globals, so scenarios can be unit-tested with fakes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from kube_e2e.config.cluster import ClusterDescriptor, load_descriptor
from kube_e2e.config.settings import E2ESettings
from kube_e2e.defaults import DEFAULT_STABILITY_INTERVAL
from kube_e2e.engine.mutator import (
    Action,
    MutationHandle,
    MutationResult,
    ProvisionPolicy,
    RetryingMutator,
    RetrySpec,
    ensure,
)
from kube_e2e.engine.poller import CancellationToken, Poller, Probe, WaitResult, WaitSpec
from kube_e2e.engine.stability import StabilityProbe, StabilityResult, StabilityRunner
from kube_e2e.errors import ConfigurationError
from kube_e2e.kubectl import Kubectl
from kube_e2e.scenario.gate import Capability, ScenarioGate
from kube_e2e.scenario.results import (
    CLEANUP,
    PhaseOutcome,
    ResultAggregator,
    Verdict,
    VerdictStatus,
)

log = structlog.get_logger(__name__)

ScenarioBody = Callable[["ScenarioContext"], None]


class PhaseFailed(Exception):
    """Stops a scenario body after a failed phase."""

    def __init__(self, phase: str, detail: str):
        super().__init__(f"{phase}: {detail}")
        self.phase = phase
        self.detail = detail


class ScenarioSkipped(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass
class Scenario:
    name: str
    body: ScenarioBody
    capabilities: list[Capability] = field(default_factory=list)
    description: str = ""


def scenario(name: str, *capabilities: Capability, description: str = "") -> Callable[[ScenarioBody], Scenario]:
    """Decorator turning a body function into a Scenario."""

    def wrap(body: ScenarioBody) -> Scenario:
        return Scenario(name, body, list(capabilities), description or (body.__doc__ or "").strip())

    return wrap


@dataclass
class Environment:
    """Shared, explicit state threaded into every scenario."""

    settings: E2ESettings
    cluster: ClusterDescriptor
    kubectl: Optional[Kubectl] = None
    poller: Poller = field(default_factory=Poller)
    mutator: RetryingMutator = field(default_factory=RetryingMutator)
    gate: ScenarioGate = field(default_factory=ScenarioGate)
    cancel: CancellationToken = field(default_factory=CancellationToken)
    stability: StabilityRunner = field(init=False)

    def __post_init__(self) -> None:
        self.stability = StabilityRunner(self.poller)
        if self.settings.is_soak and not self.cluster.soak:
            self.cluster = self.cluster.model_copy(update={"soak": True})

    @classmethod
    def from_settings(
        cls, settings: E2ESettings, cluster: Optional[ClusterDescriptor] = None
    ) -> "Environment":
        if cluster is None:
            if not settings.descriptor_path:
                raise ConfigurationError(
                    "No cluster descriptor given. Set CLUSTER_DESCRIPTOR or pass --descriptor."
                )
            cluster = load_descriptor(settings.descriptor_path)
        kubectl = Kubectl(settings.kubectl, settings.kubeconfig)
        return cls(settings=settings, cluster=cluster, kubectl=kubectl)


class ScenarioContext:
    """The only way a scenario body touches the cluster."""

    def __init__(self, scenario: Scenario, env: Environment, results: ResultAggregator):
        self.scenario = scenario
        self.env = env
        self.results = results
        self.log = log.bind(scenario=scenario.name)
        self._handles: list[MutationHandle] = []

    @property
    def settings(self) -> E2ESettings:
        return self.env.settings

    @property
    def cluster(self) -> ClusterDescriptor:
        return self.env.cluster

    @property
    def kubectl(self) -> Kubectl:
        if self.env.kubectl is None:
            raise ConfigurationError("This environment has no kubectl client")
        return self.env.kubectl

    def unique_name(self, prefix: str) -> str:
        """Collision-resistant resource name for parallel runs on one cluster."""
        return f"{prefix}-{self.settings.name}-{uuid.uuid4().hex[:6]}"

    # Phase plumbing

    def _begin(self, phase: str) -> None:
        if not self.results.can_run(phase):
            self.results.block(phase)
            raise PhaseFailed(phase, "blocked by an earlier failure")
        self.log.info("phase started", phase=phase)

    def _finish(self, phase: str, outcome: PhaseOutcome) -> None:
        self.results.record(phase, outcome)
        if not outcome.ok:
            raise PhaseFailed(phase, outcome.detail)

    # Phases

    def provision(
        self,
        kind: str,
        name: str,
        create: Callable[[], Any],
        *,
        namespace: Optional[str] = None,
        get: Optional[Callable[[], Any]] = None,
        delete: Optional[Action] = None,
        policy: ProvisionPolicy = ProvisionPolicy.RECREATE,
        persistent: bool = False,
        keep: bool = False,
    ) -> MutationHandle:
        """Create (or adopt) a resource and register it for teardown.

        Args:
            get: Lookup used by the get-or-create policy; omit for resources
                with fresh unique names.
            delete: Delete action; defaults to ``kubectl delete``.
            policy: REUSE adopts an existing resource, RECREATE replaces it.
            persistent: Keep the resource at teardown on soak clusters.
            keep: Never delete at teardown (shared long-running workloads
                cleaned up by a dedicated scenario).
        """
        phase = f"provision:{kind}/{name}"
        self._begin(phase)
        if delete is None:
            delete = self.kubectl.deleter(kind, name, namespace)

        handle = MutationHandle(
            kind,
            name,
            delete,
            namespace=namespace,
            mutator=self.env.mutator,
            retry=self.settings.delete_retry_spec(),
            persistent=persistent,
        )
        # A half-finished create is still ours to clean up; an adopted
        # resource only becomes ours once the lookup succeeded.
        owned = not keep and policy is ProvisionPolicy.RECREATE
        if owned:
            self._handles.append(handle)

        try:
            resource, created = ensure(
                get or (lambda: None),
                create,
                delete,
                policy,
                mutator=self.env.mutator,
                retry=self.settings.delete_retry_spec(),
                poller=self.env.poller,
                gone=self.settings.wait_spec(),
                cancel=self.env.cancel,
                description=f"{kind} {name}",
            )
        except Exception as e:
            self._finish(phase, PhaseOutcome.failed(f"{type(e).__name__}: {e}"))
            raise

        handle.resource = resource
        if not keep and not owned:
            self._handles.append(handle)
        self._finish(phase, PhaseOutcome.passed("created" if created else "reused existing"))
        return handle

    def await_ready(
        self,
        description: str,
        probe: Probe,
        spec: Optional[WaitSpec] = None,
        *,
        on_timeout: str = "fail",
    ) -> WaitResult:
        """Wait for ``probe``; a timeout fails the scenario or, with
        ``on_timeout="skip"``, skips it."""
        phase = f"await-ready:{description}"
        self._begin(phase)
        result = self.env.poller.wait(
            probe, spec or self.settings.wait_spec(), cancel=self.env.cancel, description=description
        )
        if result.timed_out and on_timeout == "skip":
            self.results.skip(result.describe())
            self.results.record(phase, PhaseOutcome.from_wait(result))
            raise ScenarioSkipped(result.describe())
        self._finish(phase, PhaseOutcome.from_wait(result))
        return result

    def check_stability(
        self,
        description: str,
        probe: StabilityProbe,
        *,
        iterations: Optional[int] = None,
        per_attempt_timeout: Optional[float] = None,
        interval: float = DEFAULT_STABILITY_INTERVAL,
        min_success_rate: float = 1.0,
    ) -> StabilityResult:
        phase = f"stability-check:{description}"
        self._begin(phase)
        result = self.env.stability.run(
            probe,
            iterations or self.settings.stability_iterations,
            per_attempt_timeout or self.settings.stability_timeout,
            interval=interval,
            cancel=self.env.cancel,
            description=description,
        )
        self._finish(phase, PhaseOutcome.from_stability(result, min_success_rate))
        return result

    def check(self, description: str, assertion: Callable[[], Any]) -> Any:
        """Run a one-shot check; falsy results and exceptions fail it."""
        phase = f"check:{description}"
        self._begin(phase)
        value: Any = None
        try:
            value = assertion()
        except Exception as e:
            outcome = PhaseOutcome.failed(f"{type(e).__name__}: {e}")
        else:
            if value is False:
                outcome = PhaseOutcome.failed("check returned False")
            else:
                outcome = PhaseOutcome.passed("" if value in (None, True) else str(value))
        self._finish(phase, outcome)
        return value

    def mutate(self, description: str, action: Action, spec: Optional[RetrySpec] = None) -> MutationResult:
        """Apply a retried mutation as its own phase (scale, expose, ...)."""
        phase = f"mutate:{description}"
        self._begin(phase)
        result = self.env.mutator.apply(
            action, spec or self.settings.delete_retry_spec(), description=description, cancel=self.env.cancel
        )
        self._finish(phase, PhaseOutcome.from_mutation(result))
        return result

    def delete(self, kind: str, name: str, namespace: Optional[str] = None) -> MutationResult:
        """Idempotently delete a resource this scenario does not own."""
        handle = MutationHandle(
            kind,
            name,
            self.kubectl.deleter(kind, name, namespace),
            namespace=namespace,
            mutator=self.env.mutator,
            retry=self.settings.delete_retry_spec(),
        )
        return self._release(handle)

    def skip(self, reason: str) -> None:
        raise ScenarioSkipped(reason)

    # Teardown

    def _release(self, handle: MutationHandle) -> MutationResult:
        phase = f"{CLEANUP}:{handle.reference}"
        result = handle.release(keep_persistent=self.cluster.soak)
        if result is None:
            self.results.record(phase, PhaseOutcome.passed("kept on soak cluster"))
            return MutationResult(ok=True, attempts=0, elapsed=0.0, description=phase)
        self.results.record(phase, PhaseOutcome.from_mutation(result))
        return result

    def teardown(self) -> None:
        """Release every owned resource, newest first."""
        while self._handles:
            self._release(self._handles.pop())


def run_scenario(scn: Scenario, env: Environment) -> Verdict:
    """Run one scenario in isolation and return its verdict."""
    results = ResultAggregator(scn.name)
    slog = log.bind(scenario=scn.name)

    if env.cancel.cancelled:
        results.skip(f"suite aborted: {env.cancel.reason}")
        return results.finalize()

    try:
        decision = env.gate.evaluate(scn.capabilities, env.cluster)
    except ConfigurationError as e:
        results.record("gate", PhaseOutcome.failed(str(e)))
        return results.finalize()

    if not decision.applicable:
        results.skip(decision.reason)
        verdict = results.finalize()
        slog.info("scenario skipped", reason=decision.reason)
        return verdict

    ctx = ScenarioContext(scn, env, results)
    slog.info("scenario started")
    try:
        scn.body(ctx)
    except PhaseFailed:
        pass
    except ScenarioSkipped as e:
        results.skip(e.reason)
    except Exception as e:
        slog.exception("scenario body raised")
        results.record("body", PhaseOutcome.failed(f"{type(e).__name__}: {e}"))
    finally:
        ctx.teardown()

    verdict = results.finalize()
    slog.info("scenario finished", status=verdict.status.value, reason=verdict.reason)
    return verdict


@dataclass
class SuiteReport:
    verdicts: dict[str, Verdict] = field(default_factory=dict)

    def count(self, status: VerdictStatus) -> int:
        return sum(1 for v in self.verdicts.values() if v.status is status)

    @property
    def passed(self) -> bool:
        return self.count(VerdictStatus.FAIL) == 0

    def summary(self) -> str:
        return (
            f"{self.count(VerdictStatus.PASS)} passed, "
            f"{self.count(VerdictStatus.FAIL)} failed, "
            f"{self.count(VerdictStatus.SKIP)} skipped"
        )


class SuiteRunner:
    """Runs scenarios one after another; a failure never affects the next."""

    def __init__(self, env: Environment):
        self.env = env

    def abort(self, reason: str = "aborted") -> None:
        self.env.cancel.cancel(reason)

    def run(self, scenarios: list[Scenario], only: Optional[list[str]] = None) -> SuiteReport:
        report = SuiteReport()
        for scn in scenarios:
            if only and scn.name not in only:
                continue
            try:
                verdict = run_scenario(scn, self.env)
            except KeyboardInterrupt:
                self.abort("interrupted")
                verdict = Verdict(VerdictStatus.FAIL, "interrupted")
            report.verdicts[scn.name] = verdict
        log.info("suite finished", summary=report.summary())
        return report
