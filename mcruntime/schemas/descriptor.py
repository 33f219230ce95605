"""
Package descriptor schemas - the read-only view of a code package.

A PackageDescriptor is produced by whatever opened and validated the package
archive. The engine never mutates it; it only reads the declared parameters
and the container/platform capability tags.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

_SLUG_PATTERN = re.compile(r"[^A-Za-z0-9_.-]+")


class Direction(str, Enum):
    """Direction of a declared parameter."""
    INPUT = "input"
    OUTPUT = "output"


@dataclass(frozen=True)
class ParameterID:
    """
    Identity of a parameter within one package.

    Wraps either a positional index (int) or a symbolic name (str).
    Equality and hashing are by value, so ParameterID(1) == ParameterID(1)
    but ParameterID(1) != ParameterID("1").
    """
    value: Union[int, str]

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, (int, str)):
            raise TypeError(f"ParameterID must wrap an int or str, got {type(self.value).__name__}")
        if isinstance(self.value, str) and not self.value:
            raise ValueError("ParameterID name must not be empty")

    @classmethod
    def of(cls, value: Union["ParameterID", int, str]) -> "ParameterID":
        """Coerce a raw int/str into a ParameterID (ParameterIDs pass through)."""
        if isinstance(value, ParameterID):
            return value
        return cls(value)

    @property
    def slug(self) -> str:
        """Filesystem-safe stem used for workspace file names."""
        if isinstance(self.value, int):
            return f"param_{self.value}"
        return _SLUG_PATTERN.sub("_", self.value)

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True)
class ParameterDescriptor:
    """
    A declared parameter of a package.

    Attributes:
        identifier: Parameter identity, unique within the package
        direction: input or output
        mime_types: Permitted MIME types (wildcards like image/* allowed)
        required: Whether the parameter must be bound before execution
        title: Optional human-readable name
    """
    identifier: ParameterID
    direction: Direction
    mime_types: tuple[str, ...]
    required: bool = True
    title: Optional[str] = None

    def __post_init__(self):
        if not self.mime_types:
            raise ValueError(f"Parameter '{self.identifier}' must permit at least one MIME type")

    @property
    def is_input(self) -> bool:
        return self.direction == Direction.INPUT

    @property
    def is_output(self) -> bool:
        return self.direction == Direction.OUTPUT

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.identifier.value,
            "direction": self.direction.value,
            "mime_types": list(self.mime_types),
            "required": self.required,
        }
        if self.title is not None:
            result["title"] = self.title
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParameterDescriptor":
        mime_types = data.get("mime_types", data.get("mime_type"))
        if isinstance(mime_types, str):
            mime_types = [mime_types]
        return cls(
            identifier=ParameterID.of(data["id"]),
            direction=Direction(data["direction"]),
            mime_types=tuple(mime_types or ()),
            required=data.get("required", True),
            title=data.get("title"),
        )


@dataclass(frozen=True)
class PackageDescriptor:
    """
    Immutable description of a code package.

    Attributes:
        package_id: Package name
        version: Package version
        parameters: Declared parameters, in declaration order
        containers: Container kind tags the package can run in
        platforms: Platform tags the package supports (empty = any)
        package_root: Directory holding the extracted bundle, if any
        entrypoint: Executable path relative to package_root, if any
    """
    package_id: str
    version: str = "0.0.0"
    parameters: tuple[ParameterDescriptor, ...] = field(default_factory=tuple)
    containers: frozenset[str] = field(default_factory=frozenset)
    platforms: frozenset[str] = field(default_factory=frozenset)
    package_root: Optional[Path] = None
    entrypoint: Optional[str] = None

    def __post_init__(self):
        seen = set()
        for param in self.parameters:
            if param.identifier in seen:
                raise ValueError(
                    f"Package '{self.package_id}': duplicate parameter identity '{param.identifier}'"
                )
            seen.add(param.identifier)
        # Capability tags compare case-insensitively
        object.__setattr__(self, "containers", frozenset(c.casefold() for c in self.containers))
        object.__setattr__(self, "platforms", frozenset(p.casefold() for p in self.platforms))

    def get_parameter(self, identifier: Union[ParameterID, int, str]) -> Optional[ParameterDescriptor]:
        """Get the declared parameter for an identity, or None if undeclared."""
        pid = ParameterID.of(identifier)
        for param in self.parameters:
            if param.identifier == pid:
                return param
        return None

    @property
    def inputs(self) -> tuple[ParameterDescriptor, ...]:
        return tuple(p for p in self.parameters if p.is_input)

    @property
    def outputs(self) -> tuple[ParameterDescriptor, ...]:
        return tuple(p for p in self.parameters if p.is_output)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/YAML output."""
        result: dict[str, Any] = {
            "package_id": self.package_id,
            "version": self.version,
            "parameters": [p.to_dict() for p in self.parameters],
            "containers": sorted(self.containers),
            "platforms": sorted(self.platforms),
        }
        if self.package_root is not None:
            result["package_root"] = str(self.package_root)
        if self.entrypoint is not None:
            result["entrypoint"] = self.entrypoint
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PackageDescriptor":
        """Deserialize from dictionary."""
        containers = data.get("containers", [])
        platforms = data.get("platforms", [])
        if isinstance(containers, str):
            containers = [containers]
        if isinstance(platforms, str):
            platforms = [platforms]
        package_root = data.get("package_root")
        return cls(
            package_id=data["package_id"],
            version=str(data.get("version", "0.0.0")),
            parameters=tuple(ParameterDescriptor.from_dict(p) for p in data.get("parameters", [])),
            containers=frozenset(containers),
            platforms=frozenset(platforms),
            package_root=Path(package_root) if package_root else None,
            entrypoint=data.get("entrypoint"),
        )
