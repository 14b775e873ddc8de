"""Polling, sampling and retry engine shared by every scenario."""

from .mutator import (
    MutationHandle,
    MutationResult,
    ProvisionPolicy,
    RetryingMutator,
    RetrySpec,
    ensure,
)
from .poller import (
    CancellationToken,
    Observation,
    Poller,
    Probe,
    WaitOutcome,
    WaitResult,
    WaitSpec,
)
from .stability import StabilityResult, StabilityRunner

__all__ = [
    "CancellationToken",
    "MutationHandle",
    "MutationResult",
    "Observation",
    "Poller",
    "Probe",
    "ProvisionPolicy",
    "RetryingMutator",
    "RetrySpec",
    "StabilityResult",
    "StabilityRunner",
    "WaitOutcome",
    "WaitResult",
    "WaitSpec",
    "ensure",
]
