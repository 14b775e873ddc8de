"""
Shared fixtures for kube-e2e tests.

Engine tests run against a fake clock: sleeping advances time instantly, so
a twenty minute timeout costs nothing.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from kube_e2e.config import ClusterDescriptor, E2ESettings
from kube_e2e.engine import Poller, RetryingMutator
from kube_e2e.scenario import Environment


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast tests with no cluster")
    config.addinivalue_line("markers", "property: hypothesis property tests")
    config.addinivalue_line("markers", "chaos: disruptive tests against a live cluster")


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Monotonic clock whose sleep just moves time forward."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedProbe:
    """Probe that replays a list of results, repeating the last one.

    Exceptions in the script are raised instead of returned.
    """

    def __init__(self, *script: Any, clock: FakeClock | None = None):
        self.script = list(script)
        self.calls = 0
        self.call_times: list[float] = []
        self._clock = clock

    def __call__(self) -> Any:
        if self._clock is not None:
            self.call_times.append(self._clock())
        value = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(value, BaseException):
            raise value
        return value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def poller(clock: FakeClock) -> Poller:
    return Poller(clock=clock, sleep=clock.sleep)


@pytest.fixture
def mutator(clock: FakeClock) -> RetryingMutator:
    return RetryingMutator(clock=clock, sleep=clock.sleep)


@pytest.fixture
def scripted(clock: FakeClock) -> Callable[..., ScriptedProbe]:
    def factory(*script: Any) -> ScriptedProbe:
        return ScriptedProbe(*script, clock=clock)

    return factory


# =============================================================================
# Settings and descriptors
# =============================================================================


@pytest.fixture
def settings() -> E2ESettings:
    return E2ESettings(
        timeout=30,
        poll_interval=1,
        stability_iterations=3,
        stability_timeout=10,
        delete_retries=3,
        delete_retry_delay=1,
    )


@pytest.fixture
def cluster() -> ClusterDescriptor:
    return ClusterDescriptor.model_validate(
        {
            "name": "e2e-test",
            "orchestrator_version": "1.15.7",
            "master_count": 1,
            "agent_pools": [
                {"name": "linuxpool", "os_type": "Linux", "count": 2},
            ],
            "addons": {"kubernetes-dashboard": True, "tiller": False},
            "network_policy": "azure",
            "features": {"rbac": True},
        }
    )


@pytest.fixture
def environment(settings, cluster, poller, mutator) -> Environment:
    return Environment(settings=settings, cluster=cluster, poller=poller, mutator=mutator)
