import time
from pathlib import Path

import pytest

from mcruntime.config import BackendRegistry
from mcruntime.factory import ProcessorFactory
from mcruntime.runners import CallableRunner, RunnerRegistry
from mcruntime.schemas import (
    Direction,
    MediaPayload,
    PackageDescriptor,
    ParameterDescriptor,
    ParameterID,
)

TEST_PLATFORM = ("linux", "x86_64", "linux-x86_64")


def _find(directory: Path, stem: str) -> Path:
    matches = sorted(directory.glob(f"{stem}*"))
    assert matches, f"no staged file for {stem} in {directory}"
    return matches[0]


def compute_ndvi(workspace, properties, stop_event):
    """Simulated backend: NDVI output is NIR bytes followed by RED bytes."""
    nir = _find(workspace.inputs_dir, "NIR").read_bytes()
    red = _find(workspace.inputs_dir, "RED").read_bytes()
    (workspace.outputs_dir / "NDVI.tif").write_bytes(nir + red)
    return 0


def wait_for_stop(workspace, properties, stop_event):
    """Simulated backend that only finishes when asked to stop."""
    while not stop_event.is_set():
        time.sleep(0.01)
    return 1


@pytest.fixture
def ndvi_descriptor() -> PackageDescriptor:
    """NIR and RED image inputs, NDVI image output, all required."""
    return PackageDescriptor(
        package_id="ndvi",
        version="1.0",
        parameters=(
            ParameterDescriptor(ParameterID("NIR"), Direction.INPUT, ("image/*",)),
            ParameterDescriptor(ParameterID("RED"), Direction.INPUT, ("image/*",)),
            ParameterDescriptor(ParameterID("NDVI"), Direction.OUTPUT, ("image/*",)),
        ),
        containers=frozenset({"PYTHON_SCRIPT"}),
    )


@pytest.fixture
def workspace_root(tmp_path) -> Path:
    return tmp_path / "workspaces"


def allocated_workspaces(root: Path) -> list[Path]:
    """Workspace directories still present under a template root."""
    if not root.exists():
        return []
    return sorted(p for p in root.iterdir() if p.is_dir())


@pytest.fixture
def registry(workspace_root) -> BackendRegistry:
    return BackendRegistry.from_dict({
        "defaults": {"tempWorkspace": str(workspace_root / "$TEMP$")},
        "processors": [
            {
                "id": "python-sim",
                "supportedContainer": ["PYTHON_SCRIPT"],
                "properties": {"runner": "ndvi", "band_order": "nir,red"},
            },
            {
                "id": "stubborn",
                "supportedContainer": ["STUBBORN"],
                "properties": {"runner": "stubborn"},
            },
        ],
    })


@pytest.fixture
def runners() -> RunnerRegistry:
    runners = RunnerRegistry.create_default()
    runners.register("ndvi", lambda backend: CallableRunner(compute_ndvi))
    runners.register("stubborn", lambda backend: CallableRunner(wait_for_stop))
    return runners


@pytest.fixture
def factory(registry, runners) -> ProcessorFactory:
    return ProcessorFactory(registry, runners, platform_tags=TEST_PLATFORM)


@pytest.fixture
def bound_ndvi(factory, ndvi_descriptor):
    """A feasible NDVI processor."""
    processor = factory.new_processor(ndvi_descriptor)
    assert processor.add_data("NIR", MediaPayload.from_bytes(b"nir-band", "image/tiff"))
    assert processor.add_data("RED", MediaPayload.from_bytes(b"red-band", "image/tiff"))
    assert processor.add_data("NDVI", MediaPayload.declaration("image/tiff"))
    return processor


@pytest.fixture
def leftover_workspaces(workspace_root):
    """Callable listing workspace directories still present on disk."""
    return lambda: allocated_workspaces(workspace_root)
