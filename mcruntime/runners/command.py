"""
Command runner - execute a package as an external process.

The backend's "command" property is a template such as

    {python} {package}/{entrypoint}

formatted per token with:
    python      the current interpreter
    package     the package root directory
    entrypoint  the package's entrypoint
    workspace   the run workspace root
    inputs      workspace/inputs
    outputs     workspace/outputs

Each declared parameter's workspace path is appended as a positional
argument in declaration order, unless the backend sets
pass_arguments: "false". stdout/stderr are written to stdout.log and
stderr.log in the workspace root.
"""

import logging
import os
import shlex
import signal
import subprocess
import sys
from pathlib import Path
from typing import IO, Mapping, Optional

from mcruntime.errors import BackendExecutionError
from mcruntime.runners.base import RunHandle, Runner
from mcruntime.schemas import PackageDescriptor, ParameterID
from mcruntime.workspace import Workspace

logger = logging.getLogger(__name__)

# Seconds between SIGTERM and SIGKILL when stopping
STOP_GRACE_SECONDS = 5.0

_ERROR_TAIL_CHARS = 2000


def _is_false(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("false", "no", "0", "off")


class ProcessHandle(RunHandle):
    """RunHandle over a subprocess.Popen."""

    def __init__(self, proc: subprocess.Popen, stdout: IO, stderr: IO, stderr_path: Path) -> None:
        self._proc = proc
        self._stdout = stdout
        self._stderr = stderr
        self._stderr_path = stderr_path

    def wait(self, timeout: Optional[float]) -> bool:
        try:
            self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        self._finish()
        return True

    def stop(self) -> None:
        if self._proc.poll() is None:
            self._signal(signal.SIGTERM)
            try:
                self._proc.wait(timeout=STOP_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                logger.warning(f"Process {self._proc.pid} ignored SIGTERM, killing")
                self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
                self._proc.wait()
        self._finish()

    def _signal(self, sig: int) -> None:
        try:
            if os.name == "posix":
                # Process was started in its own session, signal the whole group
                os.killpg(self._proc.pid, sig)
            elif sig == signal.SIGTERM:
                self._proc.terminate()
            else:
                self._proc.kill()
        except ProcessLookupError:
            pass

    def _finish(self) -> None:
        self.returncode = self._proc.returncode
        for stream in (self._stdout, self._stderr):
            if not stream.closed:
                stream.close()
        if self.error_output is None and self._stderr_path.exists():
            text = self._stderr_path.read_text(errors="replace")
            self.error_output = text[-_ERROR_TAIL_CHARS:] or None


class CommandRunner(Runner):
    """
    Runner for backends that execute the package as a command line.

    Required backend property:
        command: command template (see module docstring)

    Optional backend properties:
        pass_arguments: "false" to not append parameter paths
    """

    def build_command(
        self,
        workspace: Workspace,
        descriptor: PackageDescriptor,
        properties: Mapping[str, str],
        paths: Mapping[ParameterID, Path],
    ) -> list[str]:
        """
        Build the argument vector for a run.

        Raises:
            BackendExecutionError: If the command property is missing or invalid
        """
        template = properties.get("command")
        if not template:
            raise BackendExecutionError("Backend property 'command' is not set")

        values = {
            "python": sys.executable,
            "package": str(descriptor.package_root or ""),
            "entrypoint": descriptor.entrypoint or "",
            "workspace": str(workspace.root),
            "inputs": str(workspace.inputs_dir),
            "outputs": str(workspace.outputs_dir),
        }
        try:
            command = [token.format(**values) for token in shlex.split(template)]
        except (KeyError, IndexError, ValueError) as e:
            raise BackendExecutionError(f"Invalid command template {template!r}: {e}")

        if not _is_false(properties.get("pass_arguments")):
            for param in descriptor.parameters:
                if param.identifier in paths:
                    command.append(str(paths[param.identifier]))
        return command

    def start(
        self,
        workspace: Workspace,
        descriptor: PackageDescriptor,
        properties: Mapping[str, str],
        paths: Mapping[ParameterID, Path],
    ) -> RunHandle:
        command = self.build_command(workspace, descriptor, properties, paths)
        logger.debug(f"Executing: {' '.join(command)}")

        stdout_path = workspace.root / "stdout.log"
        stderr_path = workspace.root / "stderr.log"
        stdout = open(stdout_path, "wb")
        stderr = open(stderr_path, "wb")
        try:
            proc = subprocess.Popen(
                command,
                cwd=workspace.root,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            stdout.close()
            stderr.close()
            raise BackendExecutionError(f"Cannot start command {command[0]!r}: {e}")

        return ProcessHandle(proc, stdout, stderr, stderr_path)
