"""Tests for ProcessorFactory backend selection."""

import pytest

from mcruntime.config import BackendRegistry
from mcruntime.errors import NoCompatibleBackendError
from mcruntime.factory import ProcessorFactory
from mcruntime.runners import NoOpRunner, RunnerRegistry
from mcruntime.schemas import (
    Direction,
    PackageDescriptor,
    ParameterDescriptor,
    ParameterID,
    RunState,
)

from conftest import TEST_PLATFORM


def _package(containers, platforms=()):
    return PackageDescriptor(
        package_id="pkg",
        parameters=(
            ParameterDescriptor(ParameterID(1), Direction.INPUT, ("text/plain",)),
            ParameterDescriptor(ParameterID(2), Direction.OUTPUT, ("text/csv", "text/plain")),
        ),
        containers=frozenset(containers),
        platforms=frozenset(platforms),
    )


def _factory(processors, defaults=None, platform_tags=TEST_PLATFORM):
    data = {"processors": processors}
    if defaults is not None:
        data["defaults"] = defaults
    registry = BackendRegistry.from_dict(data)
    runners = RunnerRegistry.create_default()
    return ProcessorFactory(registry, runners, platform_tags=platform_tags)


class TestSelection:

    def test_selects_by_container(self):
        factory = _factory([
            {"id": "r", "supportedContainer": ["R_SCRIPT"]},
            {"id": "py", "supportedContainer": ["PYTHON_SCRIPT"]},
        ])
        assert factory.select_backend(_package({"PYTHON_SCRIPT"})).backend_id == "py"

    def test_container_match_is_case_insensitive(self):
        factory = _factory([{"id": "py", "supportedContainer": ["python_script"]}])
        assert factory.select_backend(_package({"PYTHON_SCRIPT"})).backend_id == "py"

    def test_first_declared_wins(self):
        factory = _factory([
            {"id": "first", "supportedContainer": ["PYTHON_SCRIPT"]},
            {"id": "second", "supportedContainer": ["PYTHON_SCRIPT", "R_SCRIPT"]},
        ])
        package = _package({"PYTHON_SCRIPT"})
        assert [b.backend_id for b in factory.compatible_backends(package)] == ["first", "second"]
        assert factory.select_backend(package).backend_id == "first"

    def test_backend_without_containers_matches_by_id(self):
        factory = _factory([{"id": "ARCGIS_TOOLBOX"}])
        assert factory.select_backend(_package({"ARCGIS_TOOLBOX"})).backend_id == "ARCGIS_TOOLBOX"

    def test_backend_platform_filter(self):
        factory = _factory([
            {"id": "win", "supportedContainer": ["X"], "availablePlatforms": ["windows"]},
            {"id": "lin", "supportedContainer": ["X"], "availablePlatforms": ["linux"]},
        ])
        assert factory.select_backend(_package({"X"})).backend_id == "lin"

    def test_default_platforms_apply(self):
        factory = _factory(
            [{"id": "a", "supportedContainer": ["X"]}],
            defaults={"availablePlatforms": ["windows"]},
        )
        with pytest.raises(NoCompatibleBackendError):
            factory.select_backend(_package({"X"}))

    def test_package_platform_restriction(self):
        factory = _factory([{"id": "a", "supportedContainer": ["X"]}])
        assert factory.compatible_backends(_package({"X"}, platforms={"darwin"})) == []
        assert factory.compatible_backends(_package({"X"}, platforms={"Linux"}))

    def test_unregistered_runner_kind_skipped(self):
        factory = _factory([
            {"id": "matlab", "supportedContainer": ["X"], "properties": {"runner": "matlab"}},
            {"id": "noop", "supportedContainer": ["X"], "properties": {"runner": "noop"}},
        ])
        assert factory.select_backend(_package({"X"})).backend_id == "noop"

    def test_no_compatible_backend(self):
        factory = _factory([{"id": "py", "supportedContainer": ["PYTHON_SCRIPT"]}])
        with pytest.raises(NoCompatibleBackendError) as exc_info:
            factory.new_processor(_package({"R_SCRIPT"}))
        assert exc_info.value.package_id == "pkg"
        assert exc_info.value.containers == ["r_script"]

    def test_empty_registry(self):
        with pytest.raises(NoCompatibleBackendError):
            _factory([]).select_backend(_package({"X"}))

    def test_detects_platform_by_default(self):
        registry = BackendRegistry.from_dict({"processors": [{"id": "a", "supportedContainer": ["X"]}]})
        factory = ProcessorFactory(registry)
        assert factory.platform_tags
        assert factory.select_backend(_package({"X"})).backend_id == "a"


class TestNewProcessor:

    def test_fresh_processor(self):
        factory = _factory([{"id": "noop", "supportedContainer": ["X"], "properties": {"runner": "noop"}}])
        processor = factory.new_processor(_package({"X"}))

        assert processor.backend.backend_id == "noop"
        assert isinstance(processor.runner, NoOpRunner)
        assert processor.state == RunState.CREATED
        assert processor.workspace is None

    def test_outputs_seeded_with_first_permitted_type(self):
        factory = _factory([{"id": "a", "supportedContainer": ["X"]}])
        processor = factory.new_processor(_package({"X"}))

        output = processor.get_data(2)
        assert output.is_declaration
        assert output.mime_type == "text/csv"
        assert processor.get_data(1) is None

    def test_processors_are_independent(self):
        factory = _factory([{"id": "a", "supportedContainer": ["X"]}])
        first = factory.new_processor(_package({"X"}))
        second = factory.new_processor(_package({"X"}))

        assert first.table is not second.table
        assert first.run_id != second.run_id

    def test_retain_workspace_passed_through(self):
        registry = BackendRegistry.from_dict({"processors": [{"id": "a", "supportedContainer": ["X"]}]})
        factory = ProcessorFactory(registry, platform_tags=TEST_PLATFORM, retain_workspace=True)
        assert factory.new_processor(_package({"X"})).retain_workspace is True
