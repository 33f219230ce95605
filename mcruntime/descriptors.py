"""
Descriptor documents - load a PackageDescriptor from YAML or JSON.

Opening and validating package archives is not this project's job. This
loader reads an already-extracted descriptor document, for the CLI and for
tests. A relative package_root is resolved against the document's directory.

Example document:
    package_id: ndvi
    version: "1.0"
    containers: [PYTHON_SCRIPT]
    platforms: []
    package_root: .
    entrypoint: ndvi.py
    parameters:
      - {id: NIR, direction: input, mime_types: ["image/*"]}
      - {id: RED, direction: input, mime_types: ["image/*"]}
      - {id: NDVI, direction: output, mime_types: ["image/*"]}
"""

import json
from pathlib import Path

import yaml

from mcruntime.schemas import PackageDescriptor


class DescriptorError(ValueError):
    """Raised when a descriptor document cannot be loaded."""
    pass


def load_descriptor(path: Path | str) -> PackageDescriptor:
    """
    Load a package descriptor document.

    Args:
        path: Path to a .yaml/.yml or .json document

    Returns:
        The parsed PackageDescriptor

    Raises:
        DescriptorError: If the file is missing, unsupported or invalid
    """
    path = Path(path)
    if not path.exists():
        raise DescriptorError(f"Descriptor not found: {path}")

    suffix = path.suffix.lower()
    try:
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise DescriptorError(f"Unsupported descriptor format: {suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise DescriptorError(f"Failed to parse {path}: {e}")

    if not isinstance(data, dict):
        raise DescriptorError(f"Descriptor {path} must contain a mapping")

    root = data.get("package_root")
    if root is not None and not Path(root).is_absolute():
        data = {**data, "package_root": str((path.parent / root).resolve())}

    try:
        return PackageDescriptor.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise DescriptorError(f"Invalid descriptor in {path}: {e}")
