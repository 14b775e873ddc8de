"""Suite settings.

Settings come from an optional YAML file whose string values may reference
environment variables (``${VAR}`` / ``${VAR:-default}``), overlaid by the
environment itself. The result is an immutable E2ESettings value that is
threaded through every scenario; nothing reads the environment after
loading.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kube_e2e.defaults import (
    DEFAULT_DELETE_RETRIES,
    DEFAULT_DELETE_RETRY_DELAY,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STABILITY_ITERATIONS,
    DEFAULT_STABILITY_TIMEOUT,
    DEFAULT_TIMEOUT,
)
from kube_e2e.engine.mutator import RetrySpec
from kube_e2e.engine.poller import WaitSpec
from kube_e2e.errors import ConfigurationError

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# Environment variable -> settings field
ENV_FIELDS = {
    "NAME": "name",
    "TIMEOUT": "timeout",
    "POLL_INTERVAL": "poll_interval",
    "STABILITY_ITERATIONS": "stability_iterations",
    "STABILITY_TIMEOUT": "stability_timeout",
    "SOAK_CLUSTER_NAME": "soak_cluster_name",
    "DELETE_RETRIES": "delete_retries",
    "DELETE_RETRY_DELAY": "delete_retry_delay",
    "KUBECTL": "kubectl",
    "KUBECONFIG": "kubeconfig",
    "LOG_LEVEL": "log_level",
    "CLUSTER_DESCRIPTOR": "descriptor_path",
}
ENV_PREFIX = "KUBE_E2E_"


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and unit strings such as ``"90s"``,
    ``"5m"``, ``"1h30m"`` or ``"5m0s"``.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration: {value!r}")
    return sum(float(number) * _UNIT_SECONDS[unit] for number, unit in parts)


def resolve_env_vars(value: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Resolve ``${VAR}`` and ``${VAR:-default}`` references in a string.

    Unset variables without a default resolve to an empty string.
    """
    env = os.environ if environ is None else environ
    pattern = r"\$\{([^}:]+)(?::(-?)([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        env_value = env.get(match.group(1))
        if env_value is not None:
            return env_value
        if match.group(2) == "-":
            return match.group(3) or ""
        return ""

    return re.sub(pattern, replacer, value)


def resolve_config_env_vars(config: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Recursively resolve env var references in a loaded config tree."""
    if isinstance(config, dict):
        return {k: resolve_config_env_vars(v, environ) for k, v in config.items()}
    elif isinstance(config, list):
        return [resolve_config_env_vars(item, environ) for item in config]
    elif isinstance(config, str):
        return resolve_env_vars(config, environ)
    else:
        return config


class E2ESettings(BaseModel):
    """Suite configuration.

    Uses extra="ignore" so settings files shared with other tooling don't
    break loading.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = "e2e"
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    stability_iterations: int = Field(default=DEFAULT_STABILITY_ITERATIONS, ge=1)
    stability_timeout: float = DEFAULT_STABILITY_TIMEOUT
    soak_cluster_name: str = ""
    delete_retries: int = Field(default=DEFAULT_DELETE_RETRIES, ge=1)
    delete_retry_delay: float = Field(default=DEFAULT_DELETE_RETRY_DELAY, ge=0)
    kubectl: str = "kubectl"
    kubeconfig: Optional[str] = None
    log_level: str = "INFO"
    descriptor_path: Optional[str] = None

    @field_validator(
        "timeout", "poll_interval", "stability_timeout", "delete_retry_delay", mode="before"
    )
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return parse_duration(value)

    @field_validator("timeout", "poll_interval", "stability_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("kubeconfig", "descriptor_path", mode="before")
    @classmethod
    def _empty_is_none(cls, value: Any) -> Any:
        return value or None

    @property
    def is_soak(self) -> bool:
        """True when running against a long-lived soak cluster."""
        return bool(self.soak_cluster_name)

    def wait_spec(
        self,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        required_successes: int = 1,
    ) -> WaitSpec:
        """WaitSpec built from the global timeout, with optional overrides."""
        return WaitSpec(
            interval=interval if interval is not None else self.poll_interval,
            timeout=timeout if timeout is not None else self.timeout,
            required_successes=required_successes,
        )

    def delete_retry_spec(self) -> RetrySpec:
        """RetrySpec for destructive cleanup."""
        return RetrySpec(max_attempts=self.delete_retries, delay=self.delete_retry_delay)


def _env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for var, field_name in ENV_FIELDS.items():
        for key in (var, ENV_PREFIX + var):
            value = environ.get(key)
            if value is not None and value != "":
                overrides[field_name] = value
    return overrides


def load_settings(
    path: Union[str, Path, None] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> E2ESettings:
    """Load settings from an optional YAML file and the environment.

    Prefixed variables (``KUBE_E2E_TIMEOUT``) win over bare ones
    (``TIMEOUT``), which win over the file.

    Raises:
        ConfigurationError: The file is unreadable or a value is invalid.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    if path is not None:
        try:
            with open(path) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Settings file {path} must contain a mapping")
        data.update(resolve_config_env_vars(loaded, env))
        logger.info(f"Loaded settings from {path}")

    data.update(_env_overrides(env))

    try:
        settings = E2ESettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e

    logger.debug(
        f"Settings: name={settings.name} timeout={settings.timeout}s "
        f"stability_iterations={settings.stability_iterations} soak={settings.is_soak}"
    )
    return settings
