"""kubectl collaborator.

Thin wrapper around the kubectl binary. Failures are translated into the
kube-e2e error taxonomy so the engine knows what to do with them:

- NotFound -> ResourceAbsentError (idempotent deletes succeed, lookups keep polling)
- Forbidden / Unauthorized -> AuthorizationError (fatal)
- any other non-zero exit, or a hung command -> CommandError (transient)

The probe factories at the bottom close over a Kubectl instance; the engine
never builds probes itself.
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Union

import yaml

from kube_e2e.defaults import DEFAULT_NAMESPACE
from kube_e2e.engine.poller import Observation
from kube_e2e.errors import (
    AuthorizationError,
    CommandError,
    ConfigurationError,
    ResourceAbsentError,
    TransientError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND = re.compile(r"\(NotFound\)|not found", re.IGNORECASE)
_UNAUTHORIZED = re.compile(r"\(Forbidden\)|\(Unauthorized\)|forbidden:", re.IGNORECASE)

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


class Kubectl:
    """Runs kubectl commands against one cluster."""

    def __init__(
        self,
        binary: str = "kubectl",
        kubeconfig: Optional[str] = None,
        timeout: float = 120,
        runner: Runner = subprocess.run,
    ):
        self.binary = binary
        self.kubeconfig = kubeconfig
        self.timeout = timeout
        self._runner = runner

    def run(
        self,
        *args: str,
        check: bool = True,
        input: Optional[str] = None,
        resource: Optional[tuple[str, str, Optional[str]]] = None,
    ) -> CommandResult:
        """Run ``kubectl <args>``.

        Args:
            args: kubectl arguments.
            check: Raise on non-zero exit.
            input: Text fed to stdin.
            resource: (kind, name, namespace) used to build ResourceAbsentError.
        """
        command = [self.binary]
        if self.kubeconfig:
            command += ["--kubeconfig", self.kubeconfig]
        command += list(args)
        logger.info(f"$ {shlex.join(command)}")

        try:
            completed = self._runner(
                command, capture_output=True, text=True, timeout=self.timeout, input=input
            )
        except FileNotFoundError as e:
            raise ConfigurationError(
                f"{self.binary} is not installed. Install kubectl to run e2e scenarios."
            ) from e
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"kubectl timed out after {self.timeout}s", command=command, output=str(e)
            ) from e

        result = CommandResult(command, completed.returncode, completed.stdout or "", completed.stderr or "")
        if check and not result.ok:
            raise self._error(result, resource)
        return result

    def _error(
        self, result: CommandResult, resource: Optional[tuple[str, str, Optional[str]]]
    ) -> Exception:
        stderr = result.stderr.strip()
        if _UNAUTHORIZED.search(stderr):
            return AuthorizationError(f"kubectl was denied: {stderr}")
        if resource is not None and _NOT_FOUND.search(stderr):
            return ResourceAbsentError(*resource)
        return CommandError(
            f"kubectl exited {result.returncode}: {stderr or result.stdout.strip()}",
            command=result.command,
            returncode=result.returncode,
            output=result.output,
        )

    # Reads

    def get(self, kind: str, name: str, namespace: Optional[str] = DEFAULT_NAMESPACE) -> dict[str, Any]:
        """Return one resource as a dict; raises ResourceAbsentError if missing."""
        args = ["get", kind, name, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        result = self.run(*args, resource=(kind, name, namespace))
        return json.loads(result.stdout)

    def list_items(
        self,
        kind: str,
        namespace: Optional[str] = DEFAULT_NAMESPACE,
        selector: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        args = ["get", kind, "-o", "json"]
        if namespace:
            args += ["-n", namespace]
        if selector:
            args += ["-l", selector]
        result = self.run(*args)
        return json.loads(result.stdout).get("items", [])

    def get_pods(self, prefix: str, namespace: str = DEFAULT_NAMESPACE) -> list[dict[str, Any]]:
        """Pods whose name starts with ``prefix``."""
        return [p for p in self.list_items("pods", namespace) if p["metadata"]["name"].startswith(prefix)]

    def nodes(self) -> list[dict[str, Any]]:
        return self.list_items("nodes", namespace=None)

    def logs(self, pod: str, namespace: str = DEFAULT_NAMESPACE) -> str:
        return self.run("logs", pod, "-n", namespace, check=False).output

    # Mutations

    def delete(self, kind: str, name: str, namespace: Optional[str] = DEFAULT_NAMESPACE) -> None:
        args = ["delete", kind, name, "--wait=false"]
        if namespace:
            args += ["-n", namespace]
        self.run(*args, resource=(kind, name, namespace))

    def deleter(
        self, kind: str, name: str, namespace: Optional[str] = DEFAULT_NAMESPACE
    ) -> Callable[[], None]:
        """A zero-argument delete action for RetryingMutator / MutationHandle."""

        def delete() -> None:
            self.delete(kind, name, namespace)

        delete.__name__ = f"delete_{kind}_{name}"
        return delete

    def apply(self, manifest: Union[dict[str, Any], str, Path], namespace: str = DEFAULT_NAMESPACE) -> None:
        """Apply a manifest given as a dict or a file path."""
        if isinstance(manifest, dict):
            self.run("apply", "-n", namespace, "-f", "-", input=yaml.safe_dump(manifest))
        else:
            self.run("apply", "-n", namespace, "-f", str(manifest))

    def run_pod(
        self,
        name: str,
        image: str,
        command: str,
        namespace: str = DEFAULT_NAMESPACE,
        os_type: str = "linux",
    ) -> None:
        """Start a one-shot pod running ``sh -c <command>``."""
        overrides = json.dumps({"spec": {"nodeSelector": {"kubernetes.io/os": os_type}}})
        self.run(
            "run", name, f"--image={image}", "--restart=Never", "-n", namespace,
            f"--overrides={overrides}", "--", "sh", "-c", command,
        )

    def create_deployment(
        self,
        name: str,
        image: str,
        namespace: str = DEFAULT_NAMESPACE,
        replicas: int = 1,
        port: Optional[int] = None,
    ) -> dict[str, Any]:
        args = ["create", "deployment", name, f"--image={image}", f"--replicas={replicas}", "-n", namespace]
        if port is not None:
            args.append(f"--port={port}")
        self.run(*args)
        return self.get("deployment", name, namespace)

    def scale(self, kind: str, name: str, replicas: int, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.run("scale", kind, name, f"--replicas={replicas}", "-n", namespace, resource=(kind, name, namespace))

    def expose(
        self,
        name: str,
        port: int,
        target_port: int,
        namespace: str = DEFAULT_NAMESPACE,
        service_type: str = "ClusterIP",
    ) -> dict[str, Any]:
        self.run(
            "expose", "deployment", name, f"--port={port}", f"--target-port={target_port}",
            f"--type={service_type}", "-n", namespace,
        )
        return self.get("service", name, namespace)

    # Probes

    def nodes_ready(self, count: int) -> Callable[[], Observation]:
        """Probe: at least ``count`` nodes report Ready."""

        def probe() -> Observation:
            ready = sum(1 for node in self.nodes() if _condition(node, "Ready"))
            return Observation(ready >= count, f"{ready}/{count} nodes Ready")

        return probe

    def pods_ready(
        self, prefix: str, namespace: str = DEFAULT_NAMESPACE, min_pods: int = 1
    ) -> Callable[[], Observation]:
        """Probe: at least ``min_pods`` pods named ``prefix*`` exist and all are ready."""

        def probe() -> Observation:
            pods = self.get_pods(prefix, namespace)
            ready = [p for p in pods if _pod_ready(p)]
            detail = f"{len(ready)}/{len(pods)} {prefix} pods ready in {namespace}"
            return Observation(len(pods) >= min_pods and len(ready) == len(pods), detail)

        return probe

    def job_succeeded(self, name: str, namespace: str = DEFAULT_NAMESPACE) -> Callable[[], Observation]:
        """Probe: the job has at least one successful completion."""

        def probe() -> Observation:
            status = self.get("job", name, namespace).get("status", {})
            succeeded = status.get("succeeded", 0) or 0
            return Observation(succeeded > 0, f"job {name}: {status}")

        return probe

    def command_succeeds(self, *args: str) -> Callable[[], Observation]:
        """Probe: ``kubectl <args>`` exits 0 (e.g. ``top nodes``)."""

        def probe() -> Observation:
            return Observation(True, self.run(*args).output)

        return probe

    def pod_command(
        self,
        name: str,
        image: str,
        command: str,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> "PodCommandCheck":
        return PodCommandCheck(self, name, image, command, namespace)

    def restart_count(self, pod: str, namespace: str = DEFAULT_NAMESPACE) -> int:
        statuses = self.get("pod", pod, namespace).get("status", {}).get("containerStatuses", [])
        return sum(s.get("restartCount", 0) for s in statuses)


class PodCommandCheck:
    """Stability probe that runs a command in a fresh pod per attempt.

    Each settled attempt deletes its pod; ``reset`` drops a pod left over
    from an attempt that never settled. Pending/Running pods raise
    TransientError so the attempt keeps polling.
    """

    def __init__(self, kubectl: Kubectl, name: str, image: str, command: str, namespace: str):
        self.kubectl = kubectl
        self.name = name
        self.image = image
        self.command = command
        self.namespace = namespace
        self._counter = 0
        self._pod: Optional[str] = None

    def __call__(self) -> bool:
        if self._pod is None:
            self._counter += 1
            pod = f"{self.name}-{self._counter}"
            self.kubectl.run_pod(pod, self.image, self.command, self.namespace)
            self._pod = pod

        phase = self.kubectl.get("pod", self._pod, self.namespace).get("status", {}).get("phase")
        if phase == "Succeeded":
            self.reset()
            return True
        if phase == "Failed":
            logger.info(f"Pod {self._pod} failed:\n{self.kubectl.logs(self._pod, self.namespace)}")
            self.reset()
            return False
        raise TransientError(f"pod {self._pod} is {phase or 'Unknown'}")

    def reset(self) -> None:
        if self._pod is None:
            return
        pod, self._pod = self._pod, None
        try:
            self.kubectl.delete("pod", pod, self.namespace)
        except ResourceAbsentError:
            pass
        except TransientError as e:
            logger.warning(f"Could not delete pod {pod}: {e}")


def _condition(obj: dict[str, Any], kind: str) -> bool:
    for condition in obj.get("status", {}).get("conditions", []):
        if condition.get("type") == kind:
            return condition.get("status") == "True"
    return False


def _pod_ready(pod: dict[str, Any]) -> bool:
    if pod.get("status", {}).get("phase") != "Running":
        return False
    return _condition(pod, "Ready")
