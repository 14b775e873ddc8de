"""Capability gating.

Scenarios declare what they need from the cluster as a list of
Capability predicates. The gate evaluates all of them against the read-only
ClusterDescriptor before anything is provisioned; an inapplicable scenario
is skipped with a reason and never touches the cluster.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from kube_e2e.config.cluster import ClusterDescriptor, parse_version
from kube_e2e.errors import ConfigurationError

logger = logging.getLogger(__name__)

Predicate = Callable[[ClusterDescriptor], bool]


@dataclass(frozen=True)
class Capability:
    """A named predicate over the cluster descriptor.

    ``reason`` is shown when the predicate is false, e.g.
    "No windows agent was provisioned for this cluster".
    """

    name: str
    predicate: Predicate
    reason: str = ""

    def __call__(self, cluster: ClusterDescriptor) -> bool:
        return bool(self.predicate(cluster))

    @property
    def unmet_reason(self) -> str:
        return self.reason or f"requires {self.name}"


@dataclass(frozen=True)
class GateDecision:
    applicable: bool
    reason: str = ""
    unmet: tuple[str, ...] = field(default_factory=tuple)


class ScenarioGate:
    """Evaluates capability predicates once per scenario."""

    def evaluate(
        self, capabilities: Iterable[Capability], cluster: ClusterDescriptor
    ) -> GateDecision:
        unmet: list[Capability] = []
        for capability in capabilities:
            try:
                satisfied = capability(cluster)
            except Exception as e:
                raise ConfigurationError(
                    f"Capability {capability.name} could not be evaluated: {e}",
                    {"capability": capability.name},
                ) from e
            if not satisfied:
                unmet.append(capability)

        if not unmet:
            return GateDecision(applicable=True)

        reason = "; ".join(c.unmet_reason for c in unmet)
        logger.debug(f"Gate closed: {reason}")
        return GateDecision(
            applicable=False, reason=reason, unmet=tuple(c.name for c in unmet)
        )


# Capability library


def has_linux_agents() -> Capability:
    return Capability(
        "linux-agents",
        lambda c: c.has_linux_agents,
        "No linux agent was provisioned for this cluster",
    )


def has_windows_agents() -> Capability:
    return Capability(
        "windows-agents",
        lambda c: c.has_windows_agents,
        "No windows agent was provisioned for this cluster",
    )


def has_addon(name: str) -> Capability:
    return Capability(
        f"addon:{name}",
        lambda c: c.has_addon(name),
        f"{name} disabled for this cluster",
    )


def has_network_policy(name: str) -> Capability:
    return Capability(
        f"network-policy:{name}",
        lambda c: c.has_network_policy(name),
        f"{name} network policy was not provisioned for this cluster",
    )


def lacks_network_policy(name: str) -> Capability:
    return Capability(
        f"no-network-policy:{name}",
        lambda c: not c.has_network_policy(name),
        f"not supported on {name} network policy clusters",
    )


def any_network_policy(*names: str) -> Capability:
    listed = ", ".join(names)
    return Capability(
        f"network-policy:any({listed})",
        lambda c: any(c.has_network_policy(n) for n in names),
        f"none of {listed} network policy was provisioned for this cluster",
    )


def version_at_least(version: str) -> Capability:
    minimum = parse_version(version)
    return Capability(
        f"version>={version}",
        lambda c: c.version >= minimum,
        f"requires orchestrator version {version} or newer",
    )


def version_below(version: str) -> Capability:
    ceiling = parse_version(version)
    return Capability(
        f"version<{version}",
        lambda c: c.version < ceiling,
        f"requires orchestrator version older than {version}",
    )


def feature_enabled(flag: str) -> Capability:
    return Capability(
        f"feature:{flag}",
        lambda c: c.feature(flag),
        f"{flag} is not enabled on this cluster",
    )


def has_availability_zones() -> Capability:
    return Capability(
        "availability-zones",
        lambda c: c.has_availability_zones,
        "Availability zones were not configured for this cluster",
    )


def not_soak_cluster() -> Capability:
    return Capability(
        "not-soak",
        lambda c: not c.soak,
        "Keep long-running workloads on soak clusters",
    )
