"""Container networking and DNS scenarios."""

from kube_e2e.defaults import DEFAULT_NAMESPACE, SYSTEM_NAMESPACE
from kube_e2e.engine import ProvisionPolicy
from kube_e2e.scenario import (
    ScenarioContext,
    any_network_policy,
    has_addon,
    has_linux_agents,
    lacks_network_policy,
    scenario,
)
from kube_e2e.scenarios.workloads import LONG_RUNNING_APACHE, NGINX_IMAGE

DNS_LIVENESS = "dns-liveness"
VALIDATE_DNS = "validate-dns"
DASHBOARD = "kubernetes-dashboard"

DNS_LIVENESS_POD = {
    "apiVersion": "v1",
    "kind": "Pod",
    "metadata": {"name": DNS_LIVENESS, "labels": {"app": DNS_LIVENESS}},
    "spec": {
        "nodeSelector": {"kubernetes.io/os": "linux"},
        "containers": [
            {
                "name": DNS_LIVENESS,
                "image": "busybox",
                "args": ["/bin/sh", "-c", "sleep 3600000"],
                "livenessProbe": {
                    "exec": {"command": ["nslookup", "kubernetes.default.svc.cluster.local"]},
                    "initialDelaySeconds": 5,
                    "periodSeconds": 5,
                },
            }
        ],
    },
}

VALIDATE_DNS_JOB = {
    "apiVersion": "batch/v1",
    "kind": "Job",
    "metadata": {"name": VALIDATE_DNS},
    "spec": {
        "backoffLimit": 6,
        "template": {
            "spec": {
                "nodeSelector": {"kubernetes.io/os": "linux"},
                "restartPolicy": "Never",
                "containers": [
                    {
                        "name": VALIDATE_DNS,
                        "image": "busybox",
                        "command": ["nslookup", "kubernetes.default.svc.cluster.local"],
                    }
                ],
            }
        },
    },
}

EXTERNAL_DNS_COMMAND = "nc -vz bbc.co.uk 80 || nc -vz google.com 443 || nc -vz microsoft.com 80"
EXTERNAL_NETWORK_COMMAND = "nc -vz 8.8.8.8 53 || nc -vz 8.8.4.4 53"
INTERNAL_NETWORK_COMMAND = (
    "nc -vz kubernetes 443 && nc -vz kubernetes.default.svc 443 "
    "&& nc -vz kubernetes.default.svc.cluster.local 443"
)
LEGACY_INTERNAL_NETWORK_COMMAND = "nc -vz kubernetes 443"


def _stable_command(ctx: ScenarioContext, description: str, image: str, command: str) -> None:
    check = ctx.kubectl.pod_command(ctx.unique_name(image), image, command)
    ctx.check_stability(description, check)


@scenario("dns-liveness-pod", lacks_network_policy("calico"))
def dns_liveness_pod(ctx: ScenarioContext) -> None:
    """A long-running DNS liveness pod can be launched."""
    kubectl = ctx.kubectl
    ctx.provision(
        "pod",
        DNS_LIVENESS,
        lambda: kubectl.apply(DNS_LIVENESS_POD),
        namespace=DEFAULT_NAMESPACE,
        get=lambda: kubectl.get("pod", DNS_LIVENESS),
        policy=ProvisionPolicy.REUSE if ctx.cluster.soak else ProvisionPolicy.RECREATE,
        keep=True,
    )
    ctx.await_ready(
        "dns-liveness pod running",
        kubectl.pods_ready(DNS_LIVENESS),
        ctx.settings.wait_spec(interval=5, timeout=2 * 60),
    )


@scenario("container-dns")
def container_dns(ctx: ScenarioContext) -> None:
    """DNS resolution works from a container, repeatedly."""
    kubectl = ctx.kubectl
    # Leftover jobs from an earlier run on a long-lived cluster are replaced.
    ctx.provision(
        "job",
        VALIDATE_DNS,
        lambda: kubectl.apply(VALIDATE_DNS_JOB),
        namespace=DEFAULT_NAMESPACE,
        get=lambda: kubectl.get("job", VALIDATE_DNS),
    )
    ctx.await_ready(
        "validate-dns job succeeded",
        kubectl.job_succeeded(VALIDATE_DNS),
        ctx.settings.wait_spec(interval=5),
    )
    _stable_command(ctx, "external DNS resolution", "alpine", EXTERNAL_DNS_COMMAND)


@scenario("external-networking")
def external_networking(ctx: ScenarioContext) -> None:
    """External container networking stays up as pods are recycled."""
    _stable_command(ctx, "external networking", "alpine", EXTERNAL_NETWORK_COMMAND)


@scenario("internal-networking")
def internal_networking(ctx: ScenarioContext) -> None:
    """Internal container networking stays up as pods are recycled."""
    if ctx.cluster.version >= (1, 12, 0):
        command = INTERNAL_NETWORK_COMMAND
    else:
        command = LEGACY_INTERNAL_NETWORK_COMMAND
    _stable_command(ctx, "internal networking", "alpine", command)


@scenario("pod-to-pod-networking", has_linux_agents())
def pod_to_pod_networking(ctx: ScenarioContext) -> None:
    """Pods reach the long-running HTTP listener through its service."""
    command = f"nc -vz {LONG_RUNNING_APACHE}.{DEFAULT_NAMESPACE}.svc.cluster.local 80"
    _stable_command(ctx, "pod-to-pod networking", "busybox", command)


@scenario("dashboard-reachable", has_addon("kubernetes-dashboard"), has_linux_agents())
def dashboard_reachable(ctx: ScenarioContext) -> None:
    """The kubernetes-dashboard service answers from inside the cluster."""
    kubectl = ctx.kubectl
    port = ctx.check(
        "kubernetes-dashboard service exists",
        lambda: kubectl.get("service", DASHBOARD, SYSTEM_NAMESPACE)["spec"]["ports"][0]["port"],
    )
    command = f"nc -vz {DASHBOARD}.{SYSTEM_NAMESPACE}.svc.cluster.local {port}"
    _stable_command(ctx, "dashboard reachable", "busybox", command)


def deny_ingress(name: str, app: str) -> dict:
    """NetworkPolicy denying all ingress to pods labelled ``app``."""
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": {"name": name},
        "spec": {"podSelector": {"matchLabels": {"app": app}}, "policyTypes": ["Ingress"]},
    }


@scenario(
    "network-policy-enforcement",
    any_network_policy("calico", "azure", "cilium"),
    has_linux_agents(),
)
def network_policy_enforcement(ctx: ScenarioContext) -> None:
    """A deny-ingress policy cuts clients off from a reachable nginx server."""
    kubectl = ctx.kubectl
    server = ctx.unique_name("np-server")
    ctx.provision(
        "deployment",
        server,
        lambda: kubectl.create_deployment(server, NGINX_IMAGE, port=80),
        namespace=DEFAULT_NAMESPACE,
    )
    ctx.await_ready(
        "nginx server running",
        kubectl.pods_ready(server),
        ctx.settings.wait_spec(interval=1, required_successes=3),
    )
    service = ctx.provision(
        "service", server, lambda: kubectl.expose(server, 80, 80), namespace=DEFAULT_NAMESPACE
    )
    command = f"nc -vz -w 5 {service.resource['spec']['clusterIP']} 80"
    _stable_command(ctx, "server reachable without a policy", "busybox", command)

    policy = f"{server}-deny"
    ctx.provision(
        "networkpolicy",
        policy,
        lambda: kubectl.apply(deny_ingress(policy, server)),
        namespace=DEFAULT_NAMESPACE,
    )
    client = kubectl.pod_command(ctx.unique_name("np-client"), "busybox", command)
    try:
        ctx.await_ready(
            "server blocked by the policy",
            lambda: client() is False,
            ctx.settings.wait_spec(interval=5, timeout=3 * 60),
        )
    finally:
        client.reset()


@scenario("dns-liveness-restarts", lacks_network_policy("calico"))
def dns_liveness_restarts(ctx: ScenarioContext) -> None:
    """After the cluster has been up for a while the DNS liveness pod never restarted."""
    kubectl = ctx.kubectl
    ctx.await_ready(
        "dns-liveness pod running",
        kubectl.pods_ready(DNS_LIVENESS),
        ctx.settings.wait_spec(interval=1, timeout=3 * 60),
    )
    restarts = ctx.check("read restart count", lambda: kubectl.restart_count(DNS_LIVENESS))
    if ctx.cluster.soak:
        ctx.log.info("dns liveness restarts since cluster creation", restarts=restarts)
        return
    ctx.delete("pod", DNS_LIVENESS, DEFAULT_NAMESPACE)
    ctx.check(f"no restarts (saw {restarts})", lambda: restarts == 0)


SCENARIOS = [
    dns_liveness_pod,
    container_dns,
    external_networking,
    internal_networking,
    pod_to_pod_networking,
    dashboard_reachable,
    network_policy_enforcement,
]
LATE_SCENARIOS = [dns_liveness_restarts]
