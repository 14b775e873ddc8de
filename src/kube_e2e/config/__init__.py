"""Settings and cluster descriptor loading."""

from .cluster import AgentPool, ClusterDescriptor, OSType, load_descriptor, parse_version
from .settings import (
    E2ESettings,
    load_settings,
    parse_duration,
    resolve_config_env_vars,
    resolve_env_vars,
)

__all__ = [
    "AgentPool",
    "ClusterDescriptor",
    "E2ESettings",
    "OSType",
    "load_descriptor",
    "load_settings",
    "parse_duration",
    "parse_version",
    "resolve_config_env_vars",
    "resolve_env_vars",
]
