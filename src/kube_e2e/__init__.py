"""kube-e2e: convergence polling, stability sampling and idempotent
mutation for end-to-end validation of live Kubernetes clusters."""

from kube_e2e.engine import (
    CancellationToken,
    MutationHandle,
    Observation,
    Poller,
    RetryingMutator,
    RetrySpec,
    StabilityResult,
    StabilityRunner,
    WaitResult,
    WaitSpec,
)
from kube_e2e.errors import (
    ConfigurationError,
    FatalError,
    ResourceAbsentError,
    TimeoutExceeded,
    TransientError,
)

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "ConfigurationError",
    "FatalError",
    "MutationHandle",
    "Observation",
    "Poller",
    "ResourceAbsentError",
    "RetrySpec",
    "RetryingMutator",
    "StabilityResult",
    "StabilityRunner",
    "TimeoutExceeded",
    "TransientError",
    "WaitResult",
    "WaitSpec",
    "__version__",
]
