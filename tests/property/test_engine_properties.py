"""Property tests for the polling, sampling and retry engine.

Generated probe scripts run against a fake clock, so every property holds
for arbitrary interval/timeout combinations without real sleeps.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from kube_e2e.engine import (
    Poller,
    RetryingMutator,
    RetrySpec,
    StabilityRunner,
    WaitOutcome,
    WaitSpec,
)
from kube_e2e.errors import CommandError, ConfigurationError, ResourceAbsentError

pytestmark = pytest.mark.property


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds


def script_probe(script):
    calls = []

    def probe():
        value = script[min(len(calls), len(script) - 1)]
        calls.append(value)
        return value

    return probe, calls


intervals = st.floats(min_value=0.1, max_value=30, allow_nan=False, allow_infinity=False)


@st.composite
def wait_specs(draw):
    interval = draw(intervals)
    timeout = interval * draw(st.floats(min_value=1, max_value=50))
    required = draw(st.integers(min_value=1, max_value=5))
    return WaitSpec(interval=interval, timeout=timeout, required_successes=required)


class TestPollerProperties:
    @given(interval=intervals, ratio=st.floats(min_value=0.01, max_value=0.99))
    def test_pp_001_invalid_spec_never_probes(self, interval, ratio):
        """timeout < interval is rejected with zero probe calls."""
        calls = []
        clock = Clock()

        with pytest.raises(ConfigurationError):
            Poller(clock, clock.sleep).wait(
                lambda: calls.append(1), WaitSpec(interval=interval, timeout=interval * ratio)
            )

        assert calls == []

    @given(spec=wait_specs())
    def test_pp_002_never_ready_bounded(self, spec):
        """A never-ready probe times out within [timeout, timeout + interval)."""
        clock = Clock()
        probe, calls = script_probe([False])

        result = Poller(clock, clock.sleep).wait(probe, spec)

        assert result.outcome is WaitOutcome.TIMEOUT
        assert spec.timeout <= result.elapsed < spec.timeout + spec.interval
        assert result.attempts == len(calls)

    @given(spec=wait_specs())
    def test_pp_003_always_ready(self, spec):
        """An always-ready probe is called exactly required_successes times."""
        clock = Clock()
        probe, calls = script_probe([True])

        result = Poller(clock, clock.sleep).wait(probe, spec)

        assert result.ready == (len(calls) == spec.required_successes)
        if (spec.required_successes - 1) * spec.interval < spec.timeout:
            assert result.ready

    @given(script=st.lists(st.booleans(), min_size=1, max_size=40))
    def test_pp_004_ready_means_streak(self, script):
        """Ready is only declared after the required consecutive successes."""
        clock = Clock()
        probe, calls = script_probe(script)
        spec = WaitSpec(interval=1, timeout=100, required_successes=3)

        result = Poller(clock, clock.sleep).wait(probe, spec)

        if result.ready:
            assert calls[-3:] == [True, True, True]


class TestStabilityProperties:
    @given(script=st.lists(st.booleans(), min_size=1, max_size=30))
    @settings(max_examples=50)
    def test_pp_010_counts_match_script(self, script):
        """successes is the number of True calls; counts always add up."""
        clock = Clock()
        probe, _ = script_probe(script)

        result = StabilityRunner(Poller(clock, clock.sleep)).run(
            probe, iterations=len(script), per_attempt_timeout=5
        )

        assert result.attempts == len(script)
        assert result.successes == sum(script)
        assert result.successes + result.failures == result.attempts

    @given(script=st.lists(st.booleans(), min_size=1, max_size=30))
    @settings(max_examples=50)
    def test_pp_011_tuple_probes_count_like_booleans(self, script):
        """(ready, None) tuples are counted by their ready flag."""
        clock = Clock()
        probe, _ = script_probe([(ready, None) for ready in script])

        result = StabilityRunner(Poller(clock, clock.sleep)).run(
            probe, iterations=len(script), per_attempt_timeout=5
        )

        assert result.successes == sum(script)
        assert result.failures == len(script) - sum(script)
        assert result.errors == []


class TestMutatorProperties:
    @given(
        failures=st.integers(min_value=0, max_value=15),
        max_attempts=st.integers(min_value=1, max_value=10),
        absent=st.booleans(),
    )
    def test_pp_020_attempts_bounded(self, failures, max_attempts, absent):
        """Transient failures are retried at most max_attempts times in total."""
        clock = Clock()
        final = ResourceAbsentError("pod", "x") if absent else None
        script = [CommandError("busy")] * failures + [final]
        calls = []

        def action():
            value = script[min(len(calls), len(script) - 1)]
            calls.append(value)
            if value is not None:
                raise value

        result = RetryingMutator(clock, clock.sleep).apply(action, RetrySpec(max_attempts, 1))

        assert result.attempts == len(calls) <= max_attempts
        assert result.ok == (failures < max_attempts)
        if result.ok:
            assert result.already_absent == absent
        assert clock.now == result.attempts - 1
