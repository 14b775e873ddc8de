"""HTTP workload scenarios."""

from kube_e2e.defaults import DEFAULT_NAMESPACE
from kube_e2e.engine import Observation, ProvisionPolicy
from kube_e2e.kubectl import Kubectl
from kube_e2e.scenario import (
    ScenarioContext,
    has_linux_agents,
    has_windows_agents,
    not_soak_cluster,
    scenario,
)

LONG_RUNNING_APACHE = "php-apache-long-running"
APACHE_IMAGE = "k8s.gcr.io/hpa-example"
NGINX_IMAGE = "library/nginx:latest"
IIS_IMAGE = "mcr.microsoft.com/windows/servercore/iis"
IIS_REPLICAS = 5


def iis_deployment(name: str, replicas: int = 1) -> dict:
    """Deployment manifest pinning IIS to Windows agents."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "labels": {"app": name}},
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {
                    "nodeSelector": {"kubernetes.io/os": "windows"},
                    "containers": [{"name": "iis", "image": IIS_IMAGE, "ports": [{"containerPort": 80}]}],
                },
            },
        },
    }


def load_balancer_ready(kubectl: Kubectl, name: str, namespace: str = DEFAULT_NAMESPACE):
    """Probe: the service has been given an external address."""

    def probe() -> Observation:
        service = kubectl.get("service", name, namespace)
        ingress = service.get("status", {}).get("loadBalancer", {}).get("ingress") or []
        return Observation(bool(ingress), f"ingress: {ingress}" if ingress else "no external address yet")

    return probe


@scenario("long-running-http-listener")
def long_running_http_listener(ctx: ScenarioContext) -> None:
    """A long-running HTTP listener and its service endpoint are up.

    The deployment outlives this scenario: later networking scenarios
    connect to it and a dedicated scenario removes it.
    """
    kubectl = ctx.kubectl
    ctx.provision(
        "deployment",
        LONG_RUNNING_APACHE,
        lambda: kubectl.create_deployment(LONG_RUNNING_APACHE, APACHE_IMAGE, port=80),
        namespace=DEFAULT_NAMESPACE,
        get=lambda: kubectl.get("deployment", LONG_RUNNING_APACHE),
        policy=ProvisionPolicy.REUSE,
        keep=True,
    )
    ctx.await_ready(
        "php-apache pods running",
        kubectl.pods_ready(LONG_RUNNING_APACHE),
        ctx.settings.wait_spec(interval=1, required_successes=3),
    )
    ctx.provision(
        "service",
        LONG_RUNNING_APACHE,
        lambda: kubectl.expose(LONG_RUNNING_APACHE, 80, 80),
        namespace=DEFAULT_NAMESPACE,
        get=lambda: kubectl.get("service", LONG_RUNNING_APACHE),
        policy=ProvisionPolicy.REUSE,
        keep=True,
    )


@scenario("nginx-service", has_linux_agents())
def nginx_service(ctx: ScenarioContext) -> None:
    """An nginx deployment can be exposed and reached through its service."""
    kubectl = ctx.kubectl
    name = ctx.unique_name("nginx")
    ctx.provision(
        "deployment",
        name,
        lambda: kubectl.create_deployment(name, NGINX_IMAGE, port=80),
        namespace=DEFAULT_NAMESPACE,
    )
    ctx.await_ready(
        "nginx pods running",
        kubectl.pods_ready(name),
        ctx.settings.wait_spec(interval=1, required_successes=3),
    )
    service = ctx.provision(
        "service", name, lambda: kubectl.expose(name, 80, 80), namespace=DEFAULT_NAMESPACE
    )
    cluster_ip = service.resource["spec"]["clusterIP"]
    check = kubectl.pod_command(
        ctx.unique_name("curl"), "alpine", f"wget -q -O - http://{cluster_ip}:80"
    )
    ctx.check_stability("nginx reachable through its service", check)


@scenario("windows-iis-webserver", has_windows_agents())
def windows_iis_webserver(ctx: ScenarioContext) -> None:
    """An IIS deployment on Windows agents can be exposed and scaled."""
    kubectl = ctx.kubectl
    name = ctx.unique_name("iis")
    ctx.provision(
        "deployment", name, lambda: kubectl.apply(iis_deployment(name)), namespace=DEFAULT_NAMESPACE
    )
    ctx.await_ready(
        "iis pod running",
        kubectl.pods_ready(name),
        ctx.settings.wait_spec(interval=1, required_successes=3),
    )
    ctx.provision(
        "service",
        name,
        lambda: kubectl.expose(name, 80, 80, service_type="LoadBalancer"),
        namespace=DEFAULT_NAMESPACE,
    )
    ctx.await_ready(
        "iis load balancer address", load_balancer_ready(kubectl, name), ctx.settings.wait_spec(interval=10)
    )
    ctx.mutate(
        f"scale {name} to {IIS_REPLICAS}", lambda: kubectl.scale("deployment", name, IIS_REPLICAS)
    )
    ctx.await_ready(
        f"{IIS_REPLICAS} iis pods running",
        kubectl.pods_ready(name, min_pods=IIS_REPLICAS),
        ctx.settings.wait_spec(interval=2, required_successes=3),
    )


@scenario("long-running-cleanup", not_soak_cluster())
def long_running_cleanup(ctx: ScenarioContext) -> None:
    """Remove the long-running HTTP listener (kept on soak clusters)."""
    ctx.delete("service", LONG_RUNNING_APACHE, DEFAULT_NAMESPACE)
    ctx.delete("deployment", LONG_RUNNING_APACHE, DEFAULT_NAMESPACE)


SCENARIOS = [long_running_http_listener, nginx_service, windows_iis_webserver]
LATE_SCENARIOS = [long_running_cleanup]
