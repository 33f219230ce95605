"""
Callable runner - execute a package as an in-process Python callable.

Used for pure-Python backends and for simulating backends in tests. The
callable runs on a worker thread:

    func(workspace, properties, stop_event) -> Optional[int]

Returning None or 0 means success. Raising an exception is reported as
returncode 1 with the exception message as error output. Stopping is
cooperative: stop() sets stop_event and waits briefly for the callable to
notice.
"""

import logging
import threading
from typing import Callable, Mapping, Optional

from mcruntime.runners.base import RunHandle, Runner
from mcruntime.workspace import Workspace

logger = logging.getLogger(__name__)

RunCallable = Callable[[Workspace, Mapping[str, str], threading.Event], Optional[int]]

STOP_GRACE_SECONDS = 5.0


class ThreadHandle(RunHandle):
    """RunHandle over a worker thread."""

    def __init__(self, func: RunCallable, workspace: Workspace, properties: Mapping[str, str]) -> None:
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._target,
            args=(func, workspace, dict(properties)),
            name=f"mcruntime-run-{workspace.root.name}",
            daemon=True,
        )

    def _target(self, func: RunCallable, workspace: Workspace, properties: dict[str, str]) -> None:
        try:
            result = func(workspace, properties, self._stop_event)
            self.returncode = int(result or 0)
        except Exception as e:
            logger.debug(f"Run callable raised: {e}", exc_info=True)
            self.error_output = f"{type(e).__name__}: {e}"
            self.returncode = 1

    def start(self) -> "ThreadHandle":
        self._thread.start()
        return self

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def wait(self, timeout: Optional[float]) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def stop(self) -> None:
        self._stop_event.set()
        self._thread.join(STOP_GRACE_SECONDS)
        if self._thread.is_alive():
            logger.warning(f"Run callable did not stop within {STOP_GRACE_SECONDS}s")


class CallableRunner(Runner):
    """
    Runner that invokes a Python callable.

    Args:
        func: Callable executed per run (see module docstring)
    """

    def __init__(self, func: RunCallable) -> None:
        self.func = func

    def start(self, workspace, descriptor, properties, paths) -> RunHandle:
        return ThreadHandle(self.func, workspace, properties).start()
