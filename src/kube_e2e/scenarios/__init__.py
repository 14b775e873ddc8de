"""Built-in scenario catalog.

Order matters: the long-running listener must exist before pod-to-pod
networking runs, and the "late" scenarios run once everything else has had
time to exercise the cluster.
"""

from kube_e2e.scenario import Scenario

from . import cluster, networking, workloads


def catalog() -> list[Scenario]:
    """Every built-in scenario in execution order."""
    return [
        *cluster.SCENARIOS,
        *workloads.SCENARIOS,
        *networking.SCENARIOS,
        *networking.LATE_SCENARIOS,
        *workloads.LATE_SCENARIOS,
    ]


__all__ = ["catalog"]
