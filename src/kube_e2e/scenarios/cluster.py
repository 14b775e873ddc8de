"""Cluster health scenarios: nodes, DNS, kube-system components and addons."""

from kube_e2e.defaults import DEFAULT_READINESS_CHECKS, SYSTEM_NAMESPACE
from kube_e2e.scenario import (
    ScenarioContext,
    feature_enabled,
    has_availability_zones,
    has_network_policy,
    scenario,
    version_at_least,
    version_below,
)

CORE_COMPONENTS = [
    "kube-proxy",
    "kube-addon-manager",
    "kube-apiserver",
    "kube-controller-manager",
    "kube-scheduler",
]

# Addon name -> pod name prefixes in kube-system.
ADDON_PODS = {
    "tiller": ["tiller"],
    "aci-connector": ["aci-connector"],
    "cluster-autoscaler": ["cluster-autoscaler"],
    "blobfuse-flexvolume": ["blobfuse-flexvol-installer"],
    "smb-flexvolume": ["smb-flexvol-installer"],
    "keyvault-flexvolume": ["keyvault-flexvolume"],
    "kubernetes-dashboard": ["kubernetes-dashboard"],
    "rescheduler": ["rescheduler"],
    "metrics-server": ["metrics-server"],
    "nvidia-device-plugin": ["nvidia-device-plugin"],
    "container-monitoring": ["omsagent"],
    "azure-cni-networkmonitor": ["azure-cni-networkmonitor"],
    "ip-masq-agent": ["ip-masq-agent"],
}

ZONE_LABELS = ("topology.kubernetes.io/zone", "failure-domain.beta.kubernetes.io/zone")
ROLE_LABEL = "kubernetes.io/role"


def _system_pods_ready(ctx: ScenarioContext, component: str) -> None:
    ctx.await_ready(
        f"{component} running",
        ctx.kubectl.pods_ready(component, SYSTEM_NAMESPACE),
        ctx.settings.wait_spec(interval=1, required_successes=DEFAULT_READINESS_CHECKS),
    )


@scenario("nodes-ready")
def nodes_ready(ctx: ScenarioContext) -> None:
    """All nodes report Ready."""
    count = ctx.cluster.node_count
    ctx.await_ready(
        f"{count} nodes Ready",
        ctx.kubectl.nodes_ready(count),
        ctx.settings.wait_spec(interval=10),
    )


@scenario("coredns-running", version_at_least("1.12.0"))
def coredns_running(ctx: ScenarioContext) -> None:
    """coredns pods are running."""
    _system_pods_ready(ctx, "coredns")


@scenario("kube-dns-running", version_below("1.12.0"))
def kube_dns_running(ctx: ScenarioContext) -> None:
    """kube-dns pods are running on clusters older than 1.12."""
    _system_pods_ready(ctx, "kube-dns")


@scenario("kube-system-running")
def kube_system_running(ctx: ScenarioContext) -> None:
    """Core kube-system componentry is running."""
    for component in CORE_COMPONENTS:
        _system_pods_ready(ctx, component)


@scenario("heapster-running", version_below("1.13.0"))
def heapster_running(ctx: ScenarioContext) -> None:
    """heapster is running on clusters older than 1.13."""
    _system_pods_ready(ctx, "heapster")


@scenario("addons-running")
def addons_running(ctx: ScenarioContext) -> None:
    """Every enabled addon has its pods running."""
    enabled = [name for name in ADDON_PODS if ctx.cluster.has_addon(name)]
    if not enabled:
        ctx.skip("No known addons are enabled for this cluster")
    for addon in enabled:
        for prefix in ADDON_PODS[addon]:
            _system_pods_ready(ctx, prefix)


@scenario("azure-npm-running", has_network_policy("azure"))
def azure_npm_running(ctx: ScenarioContext) -> None:
    """The azure network policy manager runs on every node."""
    _system_pods_ready(ctx, "azure-npm")


@scenario("node-metrics", feature_enabled("rbac"))
def node_metrics(ctx: ScenarioContext) -> None:
    """Node metrics are served (kubectl top nodes)."""
    ctx.await_ready(
        "kubectl top nodes",
        ctx.kubectl.command_succeeds("top", "nodes"),
        ctx.settings.wait_spec(interval=10, timeout=5 * 60),
    )


def _zoned_roles(ctx: ScenarioContext) -> set[str]:
    roles = set()
    if ctx.cluster.master_availability_zones:
        roles.add("master")
    if ctx.cluster.agent_pools and all(p.availability_zones for p in ctx.cluster.agent_pools):
        roles.add("agent")
    return roles


@scenario("zone-labels", has_availability_zones())
def zone_labels(ctx: ScenarioContext) -> None:
    """Nodes in zoned profiles carry a region-zone label."""
    roles = _zoned_roles(ctx)

    def labelled() -> str:
        checked = 0
        for node in ctx.kubectl.nodes():
            labels = node["metadata"].get("labels", {})
            if labels.get(ROLE_LABEL) not in roles:
                continue
            zone = next((labels[key] for key in ZONE_LABELS if key in labels), "")
            if "-" not in zone:
                raise AssertionError(f"node {node['metadata']['name']} has no zone label (got {zone!r})")
            checked += 1
        return f"{checked} zoned node(s)"

    ctx.check("nodes labelled with zones", labelled)


SCENARIOS = [
    nodes_ready,
    coredns_running,
    kube_dns_running,
    kube_system_running,
    heapster_running,
    addons_running,
    azure_npm_running,
    node_metrics,
    zone_labels,
]
