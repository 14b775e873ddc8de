"""Read-only description of the cluster under test.

The descriptor is an input document written by whatever provisioned the
cluster. Scenarios never inspect the cluster to decide whether they apply;
capability predicates read this model instead.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from kube_e2e.errors import ConfigurationError

_VERSION = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?")


def parse_version(value: str) -> tuple[int, int, int]:
    """Parse ``"1.12.0"`` / ``"v1.12"`` / ``"1.15.7-beta.1"`` into a tuple."""
    match = _VERSION.match(value.strip())
    if not match:
        raise ValueError(f"invalid version: {value!r}")
    major, minor, patch = (int(part) if part else 0 for part in match.groups())
    return major, minor, patch


class OSType(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"


class AgentPool(BaseModel):
    """One pool of worker nodes."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    os_type: OSType = OSType.LINUX
    count: int = Field(default=1, ge=0)
    availability_zones: list[str] = Field(default_factory=list)

    @field_validator("os_type", mode="before")
    @classmethod
    def _lower(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class ClusterDescriptor(BaseModel):
    """What the cluster under test looks like."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str = ""
    orchestrator_version: str
    master_count: int = Field(default=1, ge=0)
    master_availability_zones: list[str] = Field(default_factory=list)
    agent_pools: list[AgentPool] = Field(default_factory=list)
    addons: dict[str, bool] = Field(default_factory=dict)
    network_plugin: Optional[str] = None
    network_policy: Optional[str] = None
    features: dict[str, bool] = Field(default_factory=dict)
    # Long-lived cluster reused across runs
    soak: bool = False

    @field_validator("orchestrator_version")
    @classmethod
    def _valid_version(cls, value: str) -> str:
        parse_version(value)
        return value

    @property
    def version(self) -> tuple[int, int, int]:
        return parse_version(self.orchestrator_version)

    @property
    def node_count(self) -> int:
        """Masters plus every agent node."""
        return self.master_count + sum(pool.count for pool in self.agent_pools)

    @property
    def has_linux_agents(self) -> bool:
        return any(p.os_type is OSType.LINUX and p.count > 0 for p in self.agent_pools)

    @property
    def has_windows_agents(self) -> bool:
        return any(p.os_type is OSType.WINDOWS and p.count > 0 for p in self.agent_pools)

    @property
    def has_availability_zones(self) -> bool:
        return bool(self.master_availability_zones) or any(
            p.availability_zones for p in self.agent_pools
        )

    def has_addon(self, name: str) -> bool:
        return self.addons.get(name, False)

    def has_network_policy(self, name: str) -> bool:
        return (self.network_policy or "").lower() == name.lower()

    def feature(self, flag: str) -> bool:
        return self.features.get(flag, False)


def load_descriptor(path: Union[str, Path]) -> ClusterDescriptor:
    """Load a descriptor from a YAML or JSON file.

    Raises:
        ConfigurationError: The file is unreadable or does not validate.
    """
    path = Path(path)
    try:
        text = path.read_text()
        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read cluster descriptor {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Cluster descriptor {path} must contain a mapping")
    try:
        return ClusterDescriptor.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid cluster descriptor {path}: {e}") from e
