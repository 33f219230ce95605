"""
Error classes for mcruntime package execution.

The hierarchy lets callers tell three outcomes apart:
- ProcessorStateError: the run was never attempted (not feasible, already used)
- RunFailedError / WorkspaceError: the run was attempted and failed
- no exception: the run completed and outputs are bound

Binding rejections are not exceptions. Processor.add_data() returns False
and records a BindingRejection reason instead, since rejected bindings are
routine caller-input errors.

No error is retried internally. Retry policy belongs to the caller.
"""

from enum import Enum
from typing import Optional


class McRuntimeError(Exception):
    """Base exception for mcruntime."""
    pass


class ConfigError(McRuntimeError):
    """Configuration document is missing required data or malformed."""
    pass


class NoCompatibleBackendError(McRuntimeError):
    """
    No registered backend supports the package's container kind on the
    current platform.
    """

    def __init__(self, package_id: str, containers, platform_tags):
        self.package_id = package_id
        self.containers = sorted(containers)
        self.platform_tags = sorted(platform_tags)
        super().__init__(
            f"No compatible backend for package '{package_id}' "
            f"(containers={self.containers}, platform={self.platform_tags})"
        )


class ProcessorStateError(McRuntimeError):
    """The processor is not in a state that allows the requested operation."""
    pass


class NotFeasibleError(ProcessorStateError):
    """Execution attempted before all required parameters were bound."""
    pass


class AlreadyExecutedError(ProcessorStateError):
    """Execution attempted on a processor that has already been used."""
    pass


class WorkspaceError(McRuntimeError):
    """
    The isolated run directory could not be allocated, staged or removed.

    Fatal for the run it belongs to.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message)


class RunFailedError(McRuntimeError):
    """Base class for failures of an attempted backend run."""
    pass


class TimeoutExceededError(RunFailedError):
    """The backend did not finish within the requested timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Backend run exceeded timeout of {timeout}s")


class BackendExecutionError(RunFailedError):
    """
    The backend terminated abnormally or did not produce its outputs.

    Attributes:
        returncode: Exit status reported by the runner, if any
        error_output: Tail of the runner's error output, if any
    """

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        error_output: Optional[str] = None,
    ):
        self.returncode = returncode
        self.error_output = error_output
        super().__init__(message)


class ExecutionCancelledError(BackendExecutionError):
    """The caller cancelled the run before the backend finished."""

    def __init__(self, message: str = "Backend run was cancelled"):
        super().__init__(message)


class BindingRejection(str, Enum):
    """Reason a Processor.add_data() call was rejected."""
    UNKNOWN_PARAMETER = "unknown_parameter"
    MIME_TYPE_MISMATCH = "mime_type_mismatch"
    RUN_STARTED = "run_started"
    OUTPUT_CONTENT = "output_content"
