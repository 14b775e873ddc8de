"""Unit tests for convergence polling.

Tests cover:
- WaitSpec validation (no probe call on an invalid spec)
- Immediate readiness, eventual readiness and timeout bounds
- Consecutive-success counting with flapping probes
- Transient vs fatal probe errors
- Cancellation
"""

import pytest

from kube_e2e.engine import CancellationToken, Observation, WaitOutcome, WaitSpec
from kube_e2e.errors import (
    AuthorizationError,
    CommandError,
    ConfigurationError,
    FatalError,
    ResourceAbsentError,
    TimeoutExceeded,
    WaitCancelled,
)

pytestmark = pytest.mark.unit


class TestWaitSpec:
    """Tests for WaitSpec validation."""

    def test_pl_001_valid_spec(self):
        """A positive interval no longer than the timeout is accepted."""
        spec = WaitSpec(interval=1, timeout=5, required_successes=3)
        assert spec.required_successes == 3

    @pytest.mark.parametrize(
        "interval,timeout,required",
        [(0, 5, 1), (-1, 5, 1), (10, 5, 1), (1, 5, 0)],
    )
    def test_pl_002_invalid_spec_rejected(self, interval, timeout, required):
        """Non-positive interval, timeout < interval or zero required successes."""
        with pytest.raises(ConfigurationError):
            WaitSpec(interval=interval, timeout=timeout, required_successes=required)

    def test_pl_003_invalid_spec_never_calls_probe(self, poller):
        """A spec that fails validation aborts before the first probe call."""
        calls = []

        with pytest.raises(ConfigurationError):
            poller.wait(lambda: calls.append(1), WaitSpec(interval=10, timeout=5))

        assert calls == []

    def test_pl_004_timeout_equal_to_interval_allowed(self):
        """timeout == interval is the smallest legal spec."""
        WaitSpec(interval=5, timeout=5)


class TestPollerReadiness:
    """Tests for successful waits."""

    def test_pl_010_ready_on_first_call(self, poller, scripted):
        """An always-ready probe is invoked exactly once."""
        probe = scripted(True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=5))

        assert result.ready
        assert result.outcome is WaitOutcome.READY
        assert probe.calls == 1
        assert result.attempts == 1
        assert result.elapsed == 0

    def test_pl_011_ready_on_fifth_call(self, poller, scripted, clock):
        """False four times then true: ready after 5 calls, ~4s elapsed."""
        probe = scripted(False, False, False, False, True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=5))

        assert result.ready
        assert probe.calls == 5
        assert result.elapsed == pytest.approx(4)
        assert probe.call_times == [0, 1, 2, 3, 4]

    def test_pl_012_observation_detail_kept(self, poller, scripted):
        """The last observation is carried on the result."""
        probe = scripted(Observation(False, "0/3 ready"), Observation(True, "3/3 ready"))

        result = poller.wait(probe, WaitSpec(interval=1, timeout=5))

        assert result.ready
        assert result.last_observation == Observation(True, "3/3 ready")

    def test_pl_013_tuple_probe(self, poller, scripted):
        """(ready, error) tuples are accepted; a transient error resets readiness."""
        probe = scripted((True, CommandError("blip")), (True, None))

        result = poller.wait(probe, WaitSpec(interval=1, timeout=5))

        assert result.ready
        assert probe.calls == 2


class TestPollerTimeout:
    """Tests for waits that never converge."""

    def test_pl_020_never_ready_elapsed_bounds(self, poller, scripted):
        """Elapsed at timeout is within [timeout, timeout + interval)."""
        probe = scripted(False)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=5))

        assert not result.ready
        assert result.outcome is WaitOutcome.TIMEOUT
        assert result.timed_out
        assert 5 <= result.elapsed < 6
        assert probe.calls == result.attempts

    def test_pl_021_last_sleep_clamped_to_deadline(self, poller, scripted, clock):
        """The final pause never overshoots the timeout."""
        probe = scripted(False)

        result = poller.wait(probe, WaitSpec(interval=2, timeout=5))

        assert clock.sleeps == [2, 2, 1]
        assert result.elapsed == pytest.approx(5)

    def test_pl_022_timeout_reports_last_transient_error(self, poller, scripted):
        """A timeout carries the last transient error for diagnostics."""
        probe = scripted(CommandError("connection refused"))

        result = poller.wait(probe, WaitSpec(interval=1, timeout=3), description="api server")

        assert result.timed_out
        assert isinstance(result.error, CommandError)
        assert "api server: timeout" in result.describe()
        assert "connection refused" in result.describe()

    def test_pl_023_raise_for_error_on_timeout(self, poller, scripted):
        """raise_for_error turns a timeout into TimeoutExceeded."""
        result = poller.wait(scripted(False), WaitSpec(interval=1, timeout=2))

        with pytest.raises(TimeoutExceeded) as exc_info:
            result.raise_for_error()

        assert exc_info.value.attempts == result.attempts

    def test_pl_024_absent_resource_keeps_polling(self, poller, scripted):
        """ResourceAbsentError from a lookup means not there yet."""
        probe = scripted(ResourceAbsentError("pod", "web", "default"), True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=5))

        assert result.ready
        assert probe.calls == 2


class TestRequiredSuccesses:
    """Tests for consecutive-success counting."""

    def test_pl_030_needs_consecutive_successes(self, poller, scripted):
        """Three successes in a row are needed."""
        probe = scripted(True, True, True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=10, required_successes=3))

        assert result.ready
        assert probe.calls == 3

    def test_pl_031_flap_resets_streak(self, poller, scripted):
        """A false observation resets the streak."""
        probe = scripted(True, True, False, True, True, True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=10, required_successes=3))

        assert result.ready
        assert probe.calls == 6

    def test_pl_032_transient_error_resets_streak(self, poller, scripted):
        """A transient error in the middle of a streak resets it."""
        probe = scripted(True, CommandError("blip"), True, True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=10, required_successes=2))

        assert result.ready
        assert probe.calls == 4

    def test_pl_033_alternating_probe_times_out(self, poller, scripted):
        """A probe that never holds for two ticks never satisfies the wait."""
        probe = scripted(*([True, False] * 10))

        result = poller.wait(probe, WaitSpec(interval=1, timeout=6, required_successes=2))

        assert result.timed_out


class TestFatalErrors:
    """Tests for fatal probe errors."""

    def test_pl_040_fatal_aborts_immediately(self, poller, scripted):
        """A fatal error stops polling after one call."""
        probe = scripted(AuthorizationError("forbidden"), True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=60))

        assert result.outcome is WaitOutcome.FATAL
        assert not result.ready
        assert probe.calls == 1
        assert isinstance(result.error, AuthorizationError)

    def test_pl_041_unknown_exception_is_fatal(self, poller, scripted):
        """Probe bugs surface immediately instead of after the timeout."""
        probe = scripted(KeyError("status"))

        result = poller.wait(probe, WaitSpec(interval=1, timeout=60))

        assert result.outcome is WaitOutcome.FATAL
        assert isinstance(result.error, FatalError)
        assert isinstance(result.error.__cause__, KeyError)
        with pytest.raises(FatalError):
            result.raise_for_error()

    def test_pl_042_fatal_error_returned_in_tuple(self, poller, scripted):
        """A fatal error reported through a tuple also aborts."""
        probe = scripted((False, ConfigurationError("bad selector")))

        result = poller.wait(probe, WaitSpec(interval=1, timeout=60))

        assert result.outcome is WaitOutcome.FATAL
        assert probe.calls == 1

    def test_pl_043_malformed_tuple_is_fatal(self, poller, scripted):
        """A tuple that is not (ready, error) is a probe bug, not an escape."""
        probe = scripted((True, None, "extra"))

        result = poller.wait(probe, WaitSpec(interval=1, timeout=60))

        assert result.outcome is WaitOutcome.FATAL
        assert isinstance(result.error, FatalError)
        assert isinstance(result.error.__cause__, TypeError)
        assert probe.calls == 1


class TestCancellation:
    """Tests for the cancellation token."""

    def test_pl_050_cancelled_before_start(self, poller, scripted):
        """A cancelled token prevents any probe call."""
        token = CancellationToken()
        token.cancel("suite aborted")
        probe = scripted(True)

        result = poller.wait(probe, WaitSpec(interval=1, timeout=5), cancel=token)

        assert result.outcome is WaitOutcome.CANCELLED
        assert probe.calls == 0
        with pytest.raises(WaitCancelled):
            result.raise_for_error()

    def test_pl_051_cancelled_mid_wait(self, poller):
        """Cancellation is observed at the next tick."""
        token = CancellationToken()
        calls = []

        def probe():
            calls.append(1)
            if len(calls) == 3:
                token.cancel("interrupted")
            return False

        result = poller.wait(probe, WaitSpec(interval=1, timeout=60), cancel=token)

        assert result.outcome is WaitOutcome.CANCELLED
        assert len(calls) == 3
        assert "interrupted" in str(result.error)

    def test_pl_052_token_wait_wakes_on_cancel(self):
        """CancellationToken.wait returns True once cancelled."""
        token = CancellationToken()
        assert token.wait(0) is False
        token.cancel()
        assert token.wait(10) is True
        assert token.cancelled
