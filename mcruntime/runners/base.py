"""
Base runner protocol and common implementations.

A Runner hides how one kind of backend is invoked. The Processor only
drives the uniform lifecycle:

    runner.prepare(workspace, descriptor, slots)       stage inputs
    handle = runner.start(workspace, descriptor, props) launch
    handle.wait(timeout) / handle.stop()               wait or cancel
    runner.collect_outputs(workspace, descriptor, ...) read outputs back

The default prepare/collect_outputs implementations stage one file per
input under workspace/inputs and expect one file per output under
workspace/outputs, named after the parameter slug.
"""

import logging
import mimetypes
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional

from mcruntime.errors import BackendExecutionError, WorkspaceError
from mcruntime.schemas import MediaPayload, PackageDescriptor, ParameterID, mime_permitted
from mcruntime.workspace import Workspace

logger = logging.getLogger(__name__)


class RunHandle(ABC):
    """
    Handle on a started backend run.

    Attributes:
        returncode: Exit status once finished (0 = success), None while running
        error_output: Diagnostic output from the run, if any
    """

    returncode: Optional[int] = None
    error_output: Optional[str] = None

    @abstractmethod
    def wait(self, timeout: Optional[float]) -> bool:
        """
        Wait for the run to finish.

        Args:
            timeout: Seconds to wait, None to block until finished

        Returns:
            True if the run has finished
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Ask the run to stop and release its resources."""
        pass


class Runner(ABC):
    """
    Abstract base class for backend runners.

    One Runner instance is created per Processor, so implementations may
    keep per-run state.
    """

    def prepare(
        self,
        workspace: Workspace,
        descriptor: PackageDescriptor,
        slots: Mapping[ParameterID, MediaPayload],
    ) -> dict[ParameterID, Path]:
        """
        Stage bound inputs and reserve output locations.

        Input content is copied into the workspace; the input streams are
        left open for the caller to release.

        Args:
            workspace: Allocated run workspace
            descriptor: Package being executed
            slots: Current parameter slots

        Returns:
            Workspace path per parameter, in declaration order

        Raises:
            WorkspaceError: If staging fails
        """
        paths: dict[ParameterID, Path] = {}
        for param in descriptor.parameters:
            payload = slots.get(param.identifier)
            if payload is None:
                continue
            if param.is_input:
                if payload.is_declaration:
                    continue
                path = workspace.input_path(param, payload.mime_type)
                try:
                    with open(path, "wb") as f:
                        shutil.copyfileobj(payload.content, f)
                except OSError as e:
                    raise WorkspaceError(f"Cannot stage input '{param.identifier}': {e}", path=str(path))
                paths[param.identifier] = path
            else:
                paths[param.identifier] = workspace.output_path(param, payload.mime_type)
        return paths

    @abstractmethod
    def start(
        self,
        workspace: Workspace,
        descriptor: PackageDescriptor,
        properties: Mapping[str, str],
        paths: Mapping[ParameterID, Path],
    ) -> RunHandle:
        """
        Launch the backend run.

        Args:
            workspace: Allocated run workspace
            descriptor: Package being executed
            properties: Backend property mapping from the registry
            paths: Parameter paths returned by prepare()

        Returns:
            RunHandle for the started run
        """
        pass

    def collect_outputs(
        self,
        workspace: Workspace,
        descriptor: PackageDescriptor,
        declarations: Mapping[ParameterID, MediaPayload],
    ) -> dict[ParameterID, MediaPayload]:
        """
        Read produced outputs back into memory.

        Content is buffered so payloads stay valid after the workspace is
        removed. Required outputs and outputs with a caller declaration must
        be produced; other optional outputs are collected when present.

        Args:
            workspace: Workspace the backend ran in
            descriptor: Package being executed
            declarations: Output declarations bound by the caller

        Raises:
            BackendExecutionError: If a required or declared output was not produced
        """
        outputs: dict[ParameterID, MediaPayload] = {}
        for param in descriptor.outputs:
            declaration = declarations.get(param.identifier)
            mime_type = declaration.mime_type if declaration is not None else param.mime_types[0]
            path = workspace.find_output(param, mime_type)
            if path is None:
                if param.required or declaration is not None:
                    raise BackendExecutionError(f"Backend did not produce output '{param.identifier}'")
                continue
            if "*" in mime_type:
                guessed, _ = mimetypes.guess_type(path.name)
                if guessed and mime_permitted([mime_type], guessed):
                    mime_type = guessed
            outputs[param.identifier] = MediaPayload.from_bytes(path.read_bytes(), mime_type)
        return outputs


class _FinishedHandle(RunHandle):

    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode

    def wait(self, timeout: Optional[float]) -> bool:
        return True

    def stop(self) -> None:
        pass


class NoOpRunner(Runner):
    """
    No-op runner for dry runs and tests.

    Finishes immediately without producing anything.
    """

    def start(self, workspace, descriptor, properties, paths) -> RunHandle:
        logger.debug(f"No-op run for {descriptor.package_id}")
        return _FinishedHandle(0)
