"""Scenario gating, execution and verdicts."""

from .gate import (
    Capability,
    GateDecision,
    ScenarioGate,
    any_network_policy,
    feature_enabled,
    has_addon,
    has_availability_zones,
    has_linux_agents,
    has_network_policy,
    has_windows_agents,
    lacks_network_policy,
    not_soak_cluster,
    version_at_least,
    version_below,
)
from .results import PhaseOutcome, ResultAggregator, Verdict, VerdictStatus
from .runner import (
    Environment,
    PhaseFailed,
    Scenario,
    ScenarioContext,
    ScenarioSkipped,
    SuiteReport,
    SuiteRunner,
    run_scenario,
    scenario,
)

__all__ = [
    "Capability",
    "Environment",
    "GateDecision",
    "PhaseFailed",
    "PhaseOutcome",
    "ResultAggregator",
    "Scenario",
    "ScenarioContext",
    "ScenarioGate",
    "ScenarioSkipped",
    "SuiteReport",
    "SuiteRunner",
    "Verdict",
    "VerdictStatus",
    "any_network_policy",
    "feature_enabled",
    "has_addon",
    "has_availability_zones",
    "has_linux_agents",
    "has_network_policy",
    "has_windows_agents",
    "lacks_network_policy",
    "not_soak_cluster",
    "run_scenario",
    "scenario",
    "version_at_least",
    "version_below",
]
