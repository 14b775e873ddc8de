"""Unit tests for settings and cluster descriptor loading."""

import json

import pytest

from kube_e2e.config import (
    ClusterDescriptor,
    E2ESettings,
    OSType,
    load_descriptor,
    load_settings,
    parse_duration,
    parse_version,
    resolve_env_vars,
)
from kube_e2e.errors import ConfigurationError

pytestmark = pytest.mark.unit


# =============================================================================
# Durations and env references
# =============================================================================


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (30, 30.0),
            (2.5, 2.5),
            ("45", 45.0),
            ("90s", 90.0),
            ("5m", 300.0),
            ("20m0s", 1200.0),
            ("1h30m", 5400.0),
            ("500ms", 0.5),
        ],
    )
    def test_cf_001_valid(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "soon", "5x", "m5", "5m garbage", True])
    def test_cf_002_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)


class TestResolveEnvVars:
    def test_cf_010_set_variable(self):
        assert resolve_env_vars("${HOME_DIR}/kube", {"HOME_DIR": "/root"}) == "/root/kube"

    def test_cf_011_default(self):
        assert resolve_env_vars("${MISSING:-fallback}", {}) == "fallback"

    def test_cf_012_unset_is_empty(self):
        assert resolve_env_vars("x${MISSING}y", {}) == "xy"


# =============================================================================
# E2ESettings
# =============================================================================


class TestSettings:
    def test_cf_020_defaults(self):
        settings = load_settings(environ={})

        assert settings.timeout == 1200
        assert settings.stability_iterations == 3
        assert settings.delete_retries == 10
        assert not settings.is_soak
        assert settings.descriptor_path is None

    def test_cf_021_file_and_env_refs(self, tmp_path):
        path = tmp_path / "e2e.yaml"
        path.write_text(
            "name: nightly\n"
            "timeout: 10m\n"
            "stability_iterations: 5\n"
            "kubeconfig: ${KCFG}\n"
            "unrelated: ignored\n"
        )

        settings = load_settings(path, environ={"KCFG": "/tmp/kubeconfig"})

        assert settings.name == "nightly"
        assert settings.timeout == 600
        assert settings.stability_iterations == 5
        assert settings.kubeconfig == "/tmp/kubeconfig"

    def test_cf_022_env_overrides_file(self, tmp_path):
        """Prefixed env wins over bare env, which wins over the file."""
        path = tmp_path / "e2e.yaml"
        path.write_text("timeout: 10m\nname: from-file\n")

        settings = load_settings(
            path,
            environ={"TIMEOUT": "5m", "KUBE_E2E_TIMEOUT": "90s", "NAME": "from-env"},
        )

        assert settings.timeout == 90
        assert settings.name == "from-env"

    def test_cf_023_soak(self):
        settings = load_settings(environ={"SOAK_CLUSTER_NAME": "soak-westus2"})
        assert settings.is_soak

    def test_cf_024_empty_env_ignored(self):
        assert load_settings(environ={"TIMEOUT": ""}).timeout == 1200

    @pytest.mark.parametrize(
        "environ",
        [
            {"TIMEOUT": "forever"},
            {"STABILITY_ITERATIONS": "0"},
            {"POLL_INTERVAL": "0"},
            {"DELETE_RETRIES": "0"},
        ],
    )
    def test_cf_025_invalid_values(self, environ):
        with pytest.raises(ConfigurationError):
            load_settings(environ=environ)

    def test_cf_026_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read settings file"):
            load_settings(tmp_path / "nope.yaml", environ={})

    def test_cf_027_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path, environ={})

    def test_cf_028_derived_specs(self):
        settings = E2ESettings(timeout=60, poll_interval=2, delete_retries=4, delete_retry_delay=0)

        wait = settings.wait_spec(required_successes=3)
        retry = settings.delete_retry_spec()

        assert (wait.interval, wait.timeout, wait.required_successes) == (2, 60, 3)
        assert (retry.max_attempts, retry.delay) == (4, 0)
        assert settings.wait_spec(interval=1, timeout=5).timeout == 5

    def test_cf_029_wait_spec_validates(self):
        settings = E2ESettings(timeout=5, poll_interval=5)

        with pytest.raises(ConfigurationError):
            settings.wait_spec(interval=10)


# =============================================================================
# Cluster descriptor
# =============================================================================


DESCRIPTOR = {
    "name": "k8s-mixed",
    "orchestrator_version": "1.11.9",
    "master_count": 3,
    "master_availability_zones": ["1", "2"],
    "agent_pools": [
        {"name": "linux", "os_type": "Linux", "count": 2},
        {"name": "win", "os_type": "Windows", "count": 1},
        {"name": "empty", "os_type": "windows", "count": 0},
    ],
    "addons": {"tiller": True},
    "network_policy": "Calico",
}


class TestClusterDescriptor:
    def test_cf_030_properties(self):
        cluster = ClusterDescriptor.model_validate(DESCRIPTOR)

        assert cluster.version == (1, 11, 9)
        assert cluster.node_count == 6
        assert cluster.has_linux_agents
        assert cluster.has_windows_agents
        assert cluster.has_availability_zones
        assert cluster.agent_pools[1].os_type is OSType.WINDOWS
        assert cluster.has_network_policy("calico")
        assert cluster.has_addon("tiller")
        assert not cluster.feature("rbac")
        assert not cluster.soak

    @pytest.mark.parametrize(
        "value,expected",
        [("1.12", (1, 12, 0)), ("v1.15.7", (1, 15, 7)), ("1.16.0-beta.2", (1, 16, 0)), ("2", (2, 0, 0))],
    )
    def test_cf_031_parse_version(self, value, expected):
        assert parse_version(value) == expected

    def test_cf_032_invalid_version(self):
        with pytest.raises(ValueError):
            ClusterDescriptor(orchestrator_version="latest")

    def test_cf_033_load_json(self, tmp_path):
        path = tmp_path / "cluster.json"
        path.write_text(json.dumps(DESCRIPTOR))

        assert load_descriptor(path).name == "k8s-mixed"

    def test_cf_034_load_yaml(self, tmp_path):
        path = tmp_path / "cluster.yaml"
        path.write_text("orchestrator_version: '1.15'\nagent_pools:\n  - name: p1\n    count: 3\n")

        cluster = load_descriptor(path)

        assert cluster.version == (1, 15, 0)
        assert cluster.node_count == 4

    @pytest.mark.parametrize(
        "content", ["{not json", "[]", '{"name": "no-version"}']
    )
    def test_cf_035_bad_json(self, tmp_path, content):
        path = tmp_path / "cluster.json"
        path.write_text(content)

        with pytest.raises(ConfigurationError):
            load_descriptor(path)
