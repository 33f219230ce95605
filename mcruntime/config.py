"""
Configuration management for mcruntime.

Two documents are loaded here:
- The backend registry (YAML or JSON): which backends exist, which container
  kinds and platforms they support, where their run workspaces live and
  which free-form properties they carry.
- The runtime config (config.yaml in MCRUNTIME_HOME): where the backend
  registry lives, pool size, workspace retention and logging.

Both are loaded once and never mutated afterwards, so a single instance can
be shared by reference across concurrently running processors.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from mcruntime.errors import ConfigError
from mcruntime.platforms import normalize_tags

logger = logging.getLogger(__name__)

# Replaced with a fresh unique directory name for every run
RANDOM_DIR_TOKEN = "$TEMP$"

DEFAULT_BACKEND_ID = "DEFAULT"

KEY_PROCESSORS = "processors"
KEY_DEFAULTS = "defaults"
KEY_ID = "id"
KEY_SUPPORTED_CONTAINER = "supportedcontainer"
KEY_AVAILABLE_PLATFORMS = "availableplatforms"
KEY_TEMP_WORKSPACE = "tempworkspace"
KEY_PROPERTIES = "properties"


def fallback_workspace_template() -> str:
    """Workspace template used when neither a backend nor the defaults declare one."""
    return str(Path(tempfile.gettempdir()) / "mcruntime" / RANDOM_DIR_TOKEN)


def _as_list(value: Any) -> list[str]:
    """Accept a single string or a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    raise ConfigError(f"Expected a string or list of strings, got {type(value).__name__}")


def _as_properties(value: Any) -> dict[str, str]:
    """Accept a mapping or a list of single-pair mappings."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, list):
        props: dict[str, str] = {}
        for item in value:
            if not isinstance(item, dict):
                raise ConfigError(f"Invalid property entry: {item!r}")
            props.update({str(k): str(v) for k, v in item.items()})
        return props
    raise ConfigError(f"Invalid properties block: {value!r}")


@dataclass(frozen=True)
class BackendDescriptor:
    """
    Read-only description of one registered backend.

    Attributes:
        backend_id: Backend identifier
        containers: Supported container kind tags
        platforms: Supported platform tags (empty = any platform)
        workspace_template: Workspace path template, may embed $TEMP$
        properties: Free-form key/value properties
    """
    backend_id: str
    containers: frozenset[str] = field(default_factory=frozenset)
    platforms: frozenset[str] = field(default_factory=frozenset)
    workspace_template: Optional[str] = None
    properties: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "containers", normalize_tags(self.containers))
        object.__setattr__(self, "platforms", normalize_tags(self.platforms))
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @property
    def container_tags(self) -> frozenset[str]:
        """Containers used for matching; a backend declaring none matches by its own id."""
        return self.containers or normalize_tags([self.backend_id])

    @property
    def runner_kind(self) -> str:
        return self.properties.get("runner", "command")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.backend_id,
            "containers": sorted(self.containers),
            "platforms": sorted(self.platforms),
            "workspace": self.workspace_template,
            "properties": dict(self.properties),
        }


def _parse_backend(data: dict[str, Any]) -> tuple[Optional[str], dict[str, Any]]:
    """Parse one backend block; keys compare case-insensitively."""
    if not isinstance(data, dict):
        raise ConfigError(f"Backend entry must be a mapping, got {type(data).__name__}")
    normalized = {str(k).casefold(): v for k, v in data.items()}
    backend_id = normalized.get(KEY_ID)
    parsed = {
        "containers": _as_list(normalized.get(KEY_SUPPORTED_CONTAINER)),
        "platforms": _as_list(normalized.get(KEY_AVAILABLE_PLATFORMS)),
        "workspace_template": normalized.get(KEY_TEMP_WORKSPACE) or None,
        "properties": _as_properties(normalized.get(KEY_PROPERTIES)),
    }
    return (str(backend_id) if backend_id else None), parsed


class BackendRegistry:
    """
    Read-only lookup over the declared backends.

    Backends keep their declaration order, which is the tie-break order used
    by ProcessorFactory when several backends are compatible.

    Usage:
        registry = BackendRegistry.from_file(Path("backends.yaml"))
        backend = registry.lookup("python-script")
        template = registry.default_workspace_template()
    """

    def __init__(
        self,
        backends: list[BackendDescriptor],
        defaults: Optional[BackendDescriptor] = None,
    ) -> None:
        self._backends: dict[str, BackendDescriptor] = {}
        for backend in backends:
            if backend.backend_id == DEFAULT_BACKEND_ID:
                raise ConfigError(f"Backend id '{DEFAULT_BACKEND_ID}' is reserved for defaults")
            if backend.backend_id in self._backends:
                raise ConfigError(f"Duplicate backend id: {backend.backend_id}")
            self._backends[backend.backend_id] = backend
        self._defaults = defaults or BackendDescriptor(backend_id=DEFAULT_BACKEND_ID)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackendRegistry":
        """
        Build a registry from a parsed registry document.

        Raises:
            ConfigError: If the document is malformed
        """
        if not isinstance(data, dict):
            raise ConfigError("Backend registry document must be a mapping")
        normalized = {str(k).casefold(): v for k, v in data.items()}

        defaults = None
        if normalized.get(KEY_DEFAULTS) is not None:
            _, parsed = _parse_backend(normalized[KEY_DEFAULTS])
            defaults = BackendDescriptor(backend_id=DEFAULT_BACKEND_ID, **parsed)

        entries = normalized.get(KEY_PROCESSORS) or []
        if not isinstance(entries, list):
            raise ConfigError(f"'{KEY_PROCESSORS}' must be a list")

        backends = []
        for entry in entries:
            backend_id, parsed = _parse_backend(entry)
            if backend_id is None:
                # Entries without an id cannot be looked up
                logger.warning(
                    "Skipping backend entry without id",
                    extra={"event": "backend_skipped", "metadata": {"entry": entry}},
                )
                continue
            backends.append(BackendDescriptor(backend_id=backend_id, **parsed))

        return cls(backends, defaults)

    @classmethod
    def from_file(cls, path: Path | str) -> "BackendRegistry":
        """
        Load a registry from a YAML (.yaml/.yml) or JSON (.json) file.

        Raises:
            ConfigError: If the file is missing, unsupported or invalid
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Backend registry file not found: {path}")

        suffix = path.suffix.lower()
        try:
            with open(path) as f:
                if suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                elif suffix == ".json":
                    data = json.load(f)
                else:
                    raise ConfigError(f"Unsupported backend registry format: {suffix}")
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Invalid backend registry {path}: {e}")

        if not data:
            raise ConfigError(f"Backend registry file is empty: {path}")
        return cls.from_dict(data)

    def lookup(self, backend_id: str) -> BackendDescriptor:
        """
        Get the effective descriptor for a backend.

        Platforms, workspace template and properties fall back to the
        registry defaults where the backend declares none.

        Raises:
            KeyError: If backend_id is not registered
        """
        if backend_id not in self._backends:
            raise KeyError(
                f"Unknown backend: {backend_id}. Registered: {self.backend_ids()}"
            )
        backend = self._backends[backend_id]
        return BackendDescriptor(
            backend_id=backend.backend_id,
            containers=backend.containers,
            platforms=self.supported_platforms(backend_id),
            workspace_template=self.workspace_template(backend_id),
            properties=self.properties(backend_id),
        )

    def backend_ids(self) -> list[str]:
        """Registered backend ids in declaration order (defaults excluded)."""
        return list(self._backends.keys())

    def backends(self) -> list[BackendDescriptor]:
        """Effective descriptors for all backends in declaration order."""
        return [self.lookup(backend_id) for backend_id in self._backends]

    def default_workspace_template(self) -> str:
        return self._defaults.workspace_template or fallback_workspace_template()

    def workspace_template(self, backend_id: str) -> str:
        return self._backends[backend_id].workspace_template or self.default_workspace_template()

    def default_platforms(self) -> frozenset[str]:
        return self._defaults.platforms

    def supported_platforms(self, backend_id: str) -> frozenset[str]:
        return self._backends[backend_id].platforms or self.default_platforms()

    def properties(self, backend_id: str) -> dict[str, str]:
        """Default properties overlaid with the backend's own."""
        merged = dict(self._defaults.properties)
        merged.update(self._backends[backend_id].properties)
        return merged

    def __contains__(self, backend_id: object) -> bool:
        return backend_id in self._backends

    def __len__(self) -> int:
        return len(self._backends)

    def __repr__(self) -> str:
        return f"BackendRegistry(backends={self.backend_ids()})"


def get_mcruntime_home() -> Path:
    """Configuration home: $MCRUNTIME_HOME or ~/.config/mcruntime."""
    home = os.environ.get("MCRUNTIME_HOME")
    if home:
        return Path(home).expanduser()
    return Path("~/.config/mcruntime").expanduser()


@dataclass
class RuntimeConfig:
    """
    Process-level runtime configuration.

    Attributes:
        backends_file: Path of the backend registry document
        pool_size: Maximum number of concurrently running processors
        retain_workspace: Keep run workspaces after execution (debugging)
        log_level: Logging level name
        log_format: "structured" (JSON) or "pretty" (rich console)
        log_file: Optional log file path, {date} is interpolated
    """
    backends_file: Path
    pool_size: int = field(default_factory=lambda: os.cpu_count() or 1)
    retain_workspace: bool = False
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None

    def validate(self) -> None:
        if not isinstance(self.pool_size, int) or isinstance(self.pool_size, bool) or self.pool_size < 1:
            raise ConfigError(f"pool_size must be a positive integer, got {self.pool_size!r}")
        if not isinstance(self.retain_workspace, bool):
            raise ConfigError(f"retain_workspace must be true or false, got {self.retain_workspace!r}")
        if self.log_format not in ("structured", "pretty"):
            raise ConfigError(f"log_format must be 'structured' or 'pretty', got {self.log_format!r}")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log_level: {self.log_level!r}")

    def get_log_file_path(self) -> Optional[Path]:
        """Log file path with date interpolation."""
        if not self.log_file:
            return None
        return Path(self.log_file.replace("{date}", datetime.now().strftime("%Y-%m-%d"))).expanduser()

    def load_registry(self) -> BackendRegistry:
        return BackendRegistry.from_file(self.backends_file)


def load_config(config_path: Optional[Path] = None) -> RuntimeConfig:
    """
    Load runtime configuration from YAML.

    Args:
        config_path: Path to config file. Defaults to $MCRUNTIME_HOME/config.yaml

    Returns:
        RuntimeConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    home = get_mcruntime_home()
    if config_path is None:
        config_path = home / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"mcruntime config.yaml not found at {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}")

    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    backends_file = data.get("backends_file")
    if not backends_file:
        raise ConfigError("Missing required key: backends_file")
    backends_path = Path(backends_file).expanduser()
    if not backends_path.is_absolute():
        backends_path = config_path.parent / backends_path

    kwargs: dict[str, Any] = {"backends_file": backends_path}
    for key in ("pool_size", "retain_workspace", "log_level", "log_format", "log_file"):
        if key in data:
            kwargs[key] = data[key]

    config = RuntimeConfig(**kwargs)
    config.validate()
    return config
