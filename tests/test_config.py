import json
import os
from pathlib import Path

import pytest
import yaml

from mcruntime.config import (
    DEFAULT_BACKEND_ID,
    BackendDescriptor,
    BackendRegistry,
    RuntimeConfig,
    fallback_workspace_template,
    get_mcruntime_home,
    load_config,
)
from mcruntime.errors import ConfigError

REGISTRY = {
    "defaults": {
        "availablePlatforms": ["linux"],
        "tempWorkspace": "/data/runs/$TEMP$",
        "properties": {"licence": "basic", "runner": "command"},
    },
    "processors": [
        {
            "id": "python-script",
            "supportedContainer": ["PYTHON_SCRIPT"],
            "properties": {"command": "{python} {package}/{entrypoint}"},
        },
        {
            "id": "arctoolbox",
            "supportedContainer": "ARCGIS_TOOLBOX",
            "availablePlatforms": ["windows"],
            "tempWorkspace": "C:/arcgis/$TEMP$",
            "properties": [{"licence": "advanced"}, {"python": "C:/Python27/python.exe"}],
        },
    ],
}


# =============================================================================
# BACKEND REGISTRY
# =============================================================================


class TestBackendRegistry:
    """Tests for BackendRegistry parsing and lookup."""

    def test_backend_ids_in_declaration_order(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        assert registry.backend_ids() == ["python-script", "arctoolbox"]
        assert len(registry) == 2

    def test_defaults_excluded_from_ids(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        assert DEFAULT_BACKEND_ID not in registry
        assert "python-script" in registry

    def test_platforms_fall_back_to_defaults(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        assert registry.supported_platforms("python-script") == frozenset({"linux"})
        assert registry.supported_platforms("arctoolbox") == frozenset({"windows"})
        assert registry.default_platforms() == frozenset({"linux"})

    def test_workspace_falls_back_to_defaults(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        assert registry.workspace_template("python-script") == "/data/runs/$TEMP$"
        assert registry.workspace_template("arctoolbox") == "C:/arcgis/$TEMP$"

    def test_default_workspace_without_defaults(self):
        registry = BackendRegistry.from_dict({"processors": [{"id": "a"}]})
        assert registry.default_workspace_template() == fallback_workspace_template()
        assert registry.workspace_template("a") == fallback_workspace_template()

    def test_properties_overlay_defaults(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        assert registry.properties("python-script") == {
            "licence": "basic",
            "runner": "command",
            "command": "{python} {package}/{entrypoint}",
        }
        props = registry.properties("arctoolbox")
        assert props["licence"] == "advanced"
        assert props["python"] == "C:/Python27/python.exe"

    def test_single_container_string(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        assert registry.lookup("arctoolbox").containers == frozenset({"arcgis_toolbox"})

    def test_lookup_is_effective_descriptor(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        backend = registry.lookup("python-script")
        assert isinstance(backend, BackendDescriptor)
        assert backend.platforms == frozenset({"linux"})
        assert backend.workspace_template == "/data/runs/$TEMP$"
        assert backend.properties["licence"] == "basic"

    def test_lookup_unknown_raises(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        with pytest.raises(KeyError, match="Unknown backend"):
            registry.lookup("r-script")

    def test_keys_are_case_insensitive(self):
        registry = BackendRegistry.from_dict({
            "Processors": [{"ID": "a", "SupportedContainer": ["X"], "TEMPWORKSPACE": "/w/$TEMP$"}],
        })
        backend = registry.lookup("a")
        assert backend.containers == frozenset({"x"})
        assert backend.workspace_template == "/w/$TEMP$"

    def test_entry_without_id_skipped(self):
        registry = BackendRegistry.from_dict({"processors": [{"supportedContainer": ["X"]}, {"id": "b"}]})
        assert registry.backend_ids() == ["b"]

    def test_duplicate_id_rejected(self):
        with pytest.raises(ConfigError, match="Duplicate"):
            BackendRegistry.from_dict({"processors": [{"id": "a"}, {"id": "a"}]})

    def test_reserved_default_id_rejected(self):
        with pytest.raises(ConfigError, match="reserved"):
            BackendRegistry.from_dict({"processors": [{"id": "DEFAULT"}]})

    def test_processors_must_be_list(self):
        with pytest.raises(ConfigError):
            BackendRegistry.from_dict({"processors": {"id": "a"}})

    def test_container_tags_fall_back_to_id(self):
        backend = BackendDescriptor(backend_id="PYTHON_SCRIPT")
        assert backend.container_tags == frozenset({"python_script"})

    def test_runner_kind_defaults_to_command(self):
        assert BackendDescriptor(backend_id="a").runner_kind == "command"
        assert BackendDescriptor(backend_id="a", properties={"runner": "noop"}).runner_kind == "noop"

    def test_to_dict(self):
        registry = BackendRegistry.from_dict(REGISTRY)
        data = registry.lookup("python-script").to_dict()
        assert data["id"] == "python-script"
        assert data["containers"] == ["python_script"]
        assert data["platforms"] == ["linux"]
        assert data["workspace"] == "/data/runs/$TEMP$"
        assert data["properties"]["licence"] == "basic"

    def test_properties_read_only(self):
        backend = BackendDescriptor(backend_id="a", properties={"k": "v"})
        with pytest.raises(TypeError):
            backend.properties["k"] = "changed"


class TestRegistryFiles:
    """Tests for BackendRegistry.from_file()."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "backends.yaml"
        path.write_text(yaml.dump(REGISTRY))
        assert BackendRegistry.from_file(path).backend_ids() == ["python-script", "arctoolbox"]

    def test_json(self, tmp_path):
        path = tmp_path / "backends.json"
        path.write_text(json.dumps(REGISTRY))
        assert BackendRegistry.from_file(path).backend_ids() == ["python-script", "arctoolbox"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            BackendRegistry.from_file(tmp_path / "nope.yaml")

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "backends.toml"
        path.write_text("x = 1")
        with pytest.raises(ConfigError, match="Unsupported"):
            BackendRegistry.from_file(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "backends.yaml"
        path.write_text("processors: [unclosed")
        with pytest.raises(ConfigError, match="Invalid"):
            BackendRegistry.from_file(path)

    def test_empty_file(self, tmp_path):
        path = tmp_path / "backends.yaml"
        path.write_text("")
        with pytest.raises(ConfigError, match="empty"):
            BackendRegistry.from_file(path)


# =============================================================================
# RUNTIME CONFIG
# =============================================================================


def test_get_mcruntime_home_default(monkeypatch):
    monkeypatch.delenv("MCRUNTIME_HOME", raising=False)
    assert get_mcruntime_home() == Path("~/.config/mcruntime").expanduser()


def test_get_mcruntime_home_env_var(monkeypatch, tmp_path):
    custom_home = tmp_path / "custom_home"
    monkeypatch.setenv("MCRUNTIME_HOME", str(custom_home))
    assert get_mcruntime_home() == custom_home


def test_load_config_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("MCRUNTIME_HOME", str(tmp_path))
    with pytest.raises(FileNotFoundError, match="mcruntime config.yaml not found"):
        load_config()


def test_load_config_valid(monkeypatch, tmp_path):
    monkeypatch.setenv("MCRUNTIME_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({
        "backends_file": "backends.yaml",
        "pool_size": 3,
        "retain_workspace": True,
        "log_level": "DEBUG",
        "log_format": "structured",
        "log_file": str(tmp_path / "logs" / "run-{date}.log"),
    }))

    cfg = load_config()
    assert isinstance(cfg, RuntimeConfig)
    assert cfg.backends_file == tmp_path / "backends.yaml"
    assert cfg.pool_size == 3
    assert cfg.retain_workspace is True
    assert cfg.log_format == "structured"
    assert "{date}" not in str(cfg.get_log_file_path())


def test_load_config_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("MCRUNTIME_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({"backends_file": "/etc/mcruntime/backends.yaml"}))

    cfg = load_config()
    assert cfg.backends_file == Path("/etc/mcruntime/backends.yaml")
    assert cfg.pool_size == (os.cpu_count() or 1)
    assert cfg.retain_workspace is False
    assert cfg.log_format == "pretty"
    assert cfg.get_log_file_path() is None


def test_load_config_explicit_path(tmp_path):
    config_path = tmp_path / "other" / "runtime.yaml"
    config_path.parent.mkdir()
    config_path.write_text(yaml.dump({"backends_file": "b.yaml"}))

    cfg = load_config(config_path)
    assert cfg.backends_file == config_path.parent / "b.yaml"


def test_load_config_missing_backends_file(monkeypatch, tmp_path):
    monkeypatch.setenv("MCRUNTIME_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({"pool_size": 2}))
    with pytest.raises(ConfigError, match="backends_file"):
        load_config()


def test_load_config_invalid_yaml(monkeypatch, tmp_path):
    monkeypatch.setenv("MCRUNTIME_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("backends_file: [unclosed")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config()


def test_load_config_empty(monkeypatch, tmp_path):
    monkeypatch.setenv("MCRUNTIME_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text("")
    with pytest.raises(ConfigError, match="empty"):
        load_config()


@pytest.mark.parametrize("overrides", [
    {"pool_size": 0},
    {"pool_size": "four"},
    {"log_format": "xml"},
    {"log_level": "LOUD"},
    {"retain_workspace": "false"},
])
def test_load_config_invalid_values(monkeypatch, tmp_path, overrides):
    monkeypatch.setenv("MCRUNTIME_HOME", str(tmp_path))
    (tmp_path / "config.yaml").write_text(yaml.dump({"backends_file": "b.yaml", **overrides}))
    with pytest.raises(ConfigError):
        load_config()


def test_runtime_config_load_registry(tmp_path):
    path = tmp_path / "backends.yaml"
    path.write_text(yaml.dump(REGISTRY))
    cfg = RuntimeConfig(backends_file=path)
    assert cfg.load_registry().backend_ids() == ["python-script", "arctoolbox"]
