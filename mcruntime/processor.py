"""
Processor - one-shot execution of one package on one backend.

A Processor owns the ParameterBindingTable for a single package instance
and drives the run state machine:

    created -> bound (feasible) -> running -> completed
                                           -> failed

"bound" is never stored; it is recomputed from is_feasible() whenever the
state is read. A Processor runs at most once. Binding, feasibility checks
and execute() must be serialized by the caller; cancel() is the only
method meant to be called from another thread.
"""

import logging
import threading
import time
import uuid
import weakref
from datetime import datetime, timezone
from typing import Optional, Union

from mcruntime.binding import ParameterBindingTable
from mcruntime.config import BackendDescriptor, fallback_workspace_template
from mcruntime.errors import (
    AlreadyExecutedError,
    BackendExecutionError,
    BindingRejection,
    ExecutionCancelledError,
    McRuntimeError,
    NotFeasibleError,
    TimeoutExceededError,
    WorkspaceError,
)
from mcruntime.runners import RunHandle, Runner
from mcruntime.schemas import (
    MediaPayload,
    PackageDescriptor,
    ParameterID,
    RunRecord,
    RunState,
    mime_permitted,
)
from mcruntime.workspace import Workspace

logger = logging.getLogger(__name__)

# Granularity at which a waiting run notices cancel() and timeouts
POLL_INTERVAL_SECONDS = 0.05


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class _RunResources:
    """
    Streams and workspace owned by one Processor.

    Kept apart from the Processor so the finalizer can release them without
    holding a reference to it.
    """

    def __init__(self, table: ParameterBindingTable, retain_workspace: bool) -> None:
        self.table = table
        self.retain_workspace = retain_workspace
        self.workspace: Optional[Workspace] = None

    def release(self) -> None:
        self.table.close()
        workspace = self.workspace
        if workspace is None or workspace.removed or self.retain_workspace:
            return
        try:
            workspace.cleanup()
        except WorkspaceError as e:
            logger.error(
                f"Workspace cleanup failed on release: {e}",
                extra={"event": "workspace_cleanup_failed", "metadata": {"workspace": str(workspace.root)}},
            )


class Processor:
    """
    Binds data to a package's parameters and executes it on a backend.

    Created by ProcessorFactory.new_processor(); not reusable.

    Usage:
        processor = factory.new_processor(descriptor)
        processor.add_data("NIR", MediaPayload.from_path(nir, "image/tiff"))
        processor.add_data("RED", MediaPayload.from_path(red, "image/tiff"))
        processor.add_data("NDVI", MediaPayload.declaration("image/tiff"))
        if processor.is_feasible():
            processor.execute(timeout=60)
            ndvi = processor.get_data("NDVI").read()
    """

    def __init__(
        self,
        descriptor: PackageDescriptor,
        backend: BackendDescriptor,
        runner: Runner,
        table: Optional[ParameterBindingTable] = None,
        retain_workspace: bool = False,
    ) -> None:
        self.descriptor = descriptor
        self.backend = backend
        self.runner = runner
        self.table = table if table is not None else ParameterBindingTable(descriptor)
        self.run_id = uuid.uuid4().hex
        self.last_rejection: Optional[BindingRejection] = None

        self._state = RunState.CREATED
        self._resources = _RunResources(self.table, retain_workspace)
        # Runs release() when the processor is garbage collected or at interpreter exit
        self._finalizer = weakref.finalize(self, self._resources.release)
        self._handle: Optional[RunHandle] = None
        self._cancel_event = threading.Event()
        self._started_at: Optional[datetime] = None
        self._completed_at: Optional[datetime] = None
        self._error: Optional[McRuntimeError] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        """Current run state; "bound" is derived from is_feasible()."""
        if self._state == RunState.CREATED and self.is_feasible():
            return RunState.BOUND
        return self._state

    @property
    def workspace(self) -> Optional[Workspace]:
        """Workspace of the current or last run, if one was allocated."""
        return self._resources.workspace

    @property
    def retain_workspace(self) -> bool:
        """Whether the run workspace is kept after execution."""
        return self._resources.retain_workspace

    @property
    def error(self) -> Optional[McRuntimeError]:
        """Error that failed the run, if any."""
        return self._error

    @property
    def run_record(self) -> RunRecord:
        """Snapshot of the run lifecycle."""
        error = None
        if self._error is not None:
            error = {"type": type(self._error).__name__, "message": str(self._error)}
        workspace = self._resources.workspace
        return RunRecord(
            run_id=self.run_id,
            package_id=self.descriptor.package_id,
            backend_id=self.backend.backend_id,
            state=self.state,
            started_at=self._started_at,
            completed_at=self._completed_at,
            workspace=str(workspace.root) if workspace is not None else None,
            error=error,
        )

    def _log_extra(self, event: str, **metadata) -> dict:
        return {
            "run_id": self.run_id,
            "event": event,
            "metadata": {
                "package": self.descriptor.package_id,
                "backend": self.backend.backend_id,
                **metadata,
            },
        }

    # -------------------------------------------------------------------------
    # Binding
    # -------------------------------------------------------------------------

    def _reject(self, pid: ParameterID, reason: BindingRejection) -> bool:
        self.last_rejection = reason
        logger.debug(
            f"Rejected binding for parameter '{pid}': {reason.value}",
            extra=self._log_extra("binding_rejected", parameter=str(pid), reason=reason.value),
        )
        return False

    def add_data(self, identifier: Union[ParameterID, int, str], payload: MediaPayload) -> bool:
        """
        Bind a payload to a declared parameter.

        Outputs accept content-absent declarations only. A rebinding replaces
        the previous payload and releases its stream.

        Args:
            identifier: Parameter identity (ParameterID, position or name)
            payload: Payload to bind

        Returns:
            True if bound; False if rejected (see last_rejection)
        """
        pid = ParameterID.of(identifier)
        param = self.descriptor.get_parameter(pid)
        if param is None:
            return self._reject(pid, BindingRejection.UNKNOWN_PARAMETER)
        if self._state != RunState.CREATED:
            return self._reject(pid, BindingRejection.RUN_STARTED)
        if not mime_permitted(param.mime_types, payload.mime_type):
            return self._reject(pid, BindingRejection.MIME_TYPE_MISMATCH)
        if param.is_output and not payload.is_declaration:
            return self._reject(pid, BindingRejection.OUTPUT_CONTENT)

        previous = self.table.bind(pid, payload)
        if previous is not None and previous.content is not payload.content:
            previous.close()
        self.last_rejection = None
        return True

    def get_data(self, identifier: Union[ParameterID, int, str]) -> Optional[MediaPayload]:
        """
        Read a parameter slot.

        Outputs hold their content-absent declaration until the run completes.

        Raises:
            KeyError: If the identity is not declared
        """
        pid = ParameterID.of(identifier)
        if not self.table.is_declared(pid):
            raise KeyError(f"Parameter '{pid}' is not declared by package '{self.descriptor.package_id}'")
        return self.table.get(pid)

    def outputs(self) -> dict[ParameterID, MediaPayload]:
        """Current output slots keyed by identity."""
        return {
            p.identifier: self.table[p.identifier]
            for p in self.descriptor.outputs
            if p.identifier in self.table
        }

    # -------------------------------------------------------------------------
    # Feasibility
    # -------------------------------------------------------------------------

    def missing_parameters(self) -> list[ParameterID]:
        """Required parameters not yet validly bound, in declaration order."""
        missing = []
        for param in self.descriptor.parameters:
            if not param.required:
                continue
            payload = self.table.get(param.identifier)
            if (
                payload is None
                or not self.table.is_bound(param.identifier)
                or not mime_permitted(param.mime_types, payload.mime_type)
                or (param.is_input and payload.is_declaration)
            ):
                missing.append(param.identifier)
        return missing

    def is_feasible(self) -> bool:
        """
        Check whether every required parameter is validly bound.

        Inputs need content; outputs need an explicit declaration. Output
        placeholders seeded by the factory do not count.
        """
        return not self.missing_parameters()

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """
        Request cancellation of the run.

        Safe to call from any thread. A run observes the request before the
        backend starts or while waiting for it, and then fails with
        ExecutionCancelledError.
        """
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def execute(self, timeout: Optional[float] = None) -> RunRecord:
        """
        Execute the package on the selected backend.

        Args:
            timeout: Seconds to wait for the backend; None or 0 waits forever

        Returns:
            RunRecord of the completed run

        Raises:
            AlreadyExecutedError: If this processor has already run
            NotFeasibleError: If required parameters are not bound
            WorkspaceError: If the workspace cannot be allocated or removed
            TimeoutExceededError: If the backend exceeded the timeout
            ExecutionCancelledError: If cancel() was requested
            BackendExecutionError: If the backend failed
        """
        if timeout is not None and timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {timeout}")
        if self._state != RunState.CREATED:
            raise AlreadyExecutedError(
                f"Processor for '{self.descriptor.package_id}' has already been executed "
                f"(state={self._state.value})"
            )
        missing = self.missing_parameters()
        if missing:
            raise NotFeasibleError(
                f"Package '{self.descriptor.package_id}' is not feasible, "
                f"missing: {[str(m) for m in missing]}"
            )

        template = self.backend.workspace_template or fallback_workspace_template()
        workspace = Workspace.allocate(template)

        self._resources.workspace = workspace
        self._state = RunState.RUNNING
        self._started_at = _utcnow()
        logger.info(
            f"Starting run of {self.descriptor.package_id} on {self.backend.backend_id}",
            extra=self._log_extra("run_started", workspace=str(workspace.root), timeout=timeout),
        )

        try:
            outputs = self._run(workspace, timeout or None)
        except McRuntimeError as e:
            self._fail(e)
            raise
        except Exception as e:
            self._stop_backend()
            error = BackendExecutionError(f"Unexpected error during run: {e}")
            self._fail(error)
            raise error from e
        except BaseException:
            self._stop_backend()
            self._fail(ExecutionCancelledError("Run was interrupted"))
            raise
        else:
            for pid, payload in outputs.items():
                self.table.seed(pid, payload)
            self._state = RunState.COMPLETED
            self._completed_at = _utcnow()
            logger.info(
                f"Run of {self.descriptor.package_id} completed",
                extra=self._log_extra(
                    "run_completed",
                    outputs=[str(pid) for pid in outputs],
                    duration_ms=self.run_record.duration_ms,
                ),
            )
        finally:
            self._release_workspace(raise_errors=self._state == RunState.COMPLETED)

        return self.run_record

    def _run(self, workspace: Workspace, timeout: Optional[float]) -> dict[ParameterID, MediaPayload]:
        paths = self.runner.prepare(workspace, self.descriptor, dict(self.table.items()))
        # Staged input streams are consumed; the processor releases them
        for param in self.descriptor.inputs:
            payload = self.table.get(param.identifier)
            if payload is not None:
                payload.close()

        if self._cancel_event.is_set():
            raise ExecutionCancelledError()

        handle = self.runner.start(workspace, self.descriptor, self.backend.properties, paths)
        self._handle = handle
        self._wait(handle, timeout)

        if handle.returncode != 0:
            raise BackendExecutionError(
                f"Backend '{self.backend.backend_id}' failed with status {handle.returncode}",
                returncode=handle.returncode,
                error_output=handle.error_output,
            )

        # Unbound optional outputs may be absent
        declarations = {
            p.identifier: self.table[p.identifier]
            for p in self.descriptor.outputs
            if self.table.is_bound(p.identifier)
        }
        return self.runner.collect_outputs(workspace, self.descriptor, declarations)

    def _stop_backend(self) -> None:
        """Stop a backend left running by an interrupted wait."""
        handle = self._handle
        if handle is None or handle.returncode is not None:
            return
        try:
            handle.stop()
        except Exception as e:
            logger.error(
                f"Could not stop backend of {self.descriptor.package_id}: {e}",
                extra=self._log_extra("backend_stop_failed"),
            )

    def _wait(self, handle: RunHandle, timeout: Optional[float]) -> None:
        deadline = time.monotonic() + timeout if timeout else None
        while True:
            if self._cancel_event.is_set():
                logger.warning(
                    f"Cancelling run of {self.descriptor.package_id}",
                    extra=self._log_extra("run_cancelled"),
                )
                handle.stop()
                raise ExecutionCancelledError()

            wait_for = POLL_INTERVAL_SECONDS
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(
                        f"Run of {self.descriptor.package_id} exceeded {timeout}s, stopping backend",
                        extra=self._log_extra("run_timeout", timeout=timeout),
                    )
                    handle.stop()
                    raise TimeoutExceededError(timeout)
                wait_for = min(wait_for, remaining)

            if handle.wait(wait_for):
                return

    def _fail(self, error: McRuntimeError) -> None:
        self._error = error
        self._state = RunState.FAILED
        self._completed_at = _utcnow()
        # Outputs never expose partial content after a failure
        for param in self.descriptor.outputs:
            payload = self.table.get(param.identifier)
            if payload is not None and not payload.is_declaration:
                payload.close()
                self.table.seed(param.identifier, MediaPayload.declaration(payload.mime_type))
        logger.error(
            f"Run of {self.descriptor.package_id} failed: {error}",
            extra=self._log_extra("run_failed", error_type=type(error).__name__, error=str(error)),
        )

    def _release_workspace(self, raise_errors: bool) -> None:
        workspace = self._resources.workspace
        if workspace is None or workspace.removed:
            return
        if self.retain_workspace:
            logger.info(
                f"Retaining workspace {workspace.root}",
                extra=self._log_extra("workspace_retained", workspace=str(workspace.root)),
            )
            return
        try:
            workspace.cleanup()
        except WorkspaceError as e:
            if raise_errors:
                raise
            logger.error(
                f"Workspace cleanup failed after failed run: {e}",
                extra=self._log_extra("workspace_cleanup_failed", workspace=str(workspace.root)),
            )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        Release every stream held by the table and any workspace left behind.

        The same release runs when a discarded processor is garbage
        collected. Retained workspaces are left for the caller.
        """
        if self._state == RunState.RUNNING:
            self.table.close()
            return
        self._finalizer()

    def __enter__(self) -> "Processor":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"Processor(package={self.descriptor.package_id}, "
            f"backend={self.backend.backend_id}, state={self.state.value})"
        )
