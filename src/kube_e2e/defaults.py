"""Suite-wide defaults for kube-e2e.

These values apply when neither the settings file nor the environment
overrides them.
"""

# Destructive cleanup
DEFAULT_DELETE_RETRIES = 10
DEFAULT_DELETE_RETRY_DELAY = 5.0

# Waits (seconds)
DEFAULT_TIMEOUT = 20 * 60
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_READINESS_CHECKS = 6

# Stability sampling
DEFAULT_STABILITY_ITERATIONS = 3
DEFAULT_STABILITY_TIMEOUT = 5 * 60
DEFAULT_STABILITY_INTERVAL = 1.0

DEFAULT_NAMESPACE = "default"
SYSTEM_NAMESPACE = "kube-system"
