"""Processor pool - run many independent processors concurrently."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Iterable, Optional

from mcruntime.errors import McRuntimeError
from mcruntime.processor import Processor
from mcruntime.schemas import RunRecord

logger = logging.getLogger(__name__)


class ProcessorPool:
    """
    Execute processors on a bounded set of worker threads.

    Caps the number of concurrently running processors, which bounds CPU
    and workspace disk usage. Each processor still owns its own table and
    workspace.

    Usage:
        with ProcessorPool(max_workers=config.pool_size) as pool:
            records = pool.run_all(processors, timeout=600)
    """

    def __init__(self, max_workers: int = 1) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mcruntime")
        self._lock = threading.Lock()
        self._in_flight: set[Processor] = set()

    def submit(self, processor: Processor, timeout: Optional[float] = None) -> "Future[RunRecord]":
        """
        Schedule processor.execute(timeout).

        The future resolves to the RunRecord or raises the run's error.
        """
        with self._lock:
            self._in_flight.add(processor)
        future = self._executor.submit(processor.execute, timeout)
        future.add_done_callback(lambda _: self._finished(processor))
        return future

    def _finished(self, processor: Processor) -> None:
        with self._lock:
            self._in_flight.discard(processor)

    @property
    def in_flight(self) -> int:
        """Number of submitted processors that have not finished yet."""
        with self._lock:
            return len(self._in_flight)

    def run_all(self, processors: Iterable[Processor], timeout: Optional[float] = None) -> list[RunRecord]:
        """
        Execute processors and wait for all of them.

        A failing run does not abort the batch; its failed RunRecord is
        returned in its place.

        Args:
            processors: Processors to execute
            timeout: Per-run timeout in seconds

        Returns:
            RunRecords in the order the processors were given
        """
        processors = list(processors)
        futures = [self.submit(p, timeout) for p in processors]

        records = []
        for processor, future in zip(processors, futures):
            try:
                records.append(future.result())
            except McRuntimeError as e:
                logger.warning(
                    f"Run of {processor.descriptor.package_id} did not complete: {e}",
                    extra={"run_id": processor.run_id, "event": "pool_run_failed"},
                )
                records.append(processor.run_record)
        return records

    def cancel_all(self) -> None:
        """Request cancellation of every processor that has not finished."""
        with self._lock:
            processors = list(self._in_flight)
        for processor in processors:
            processor.cancel()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ProcessorPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.cancel_all()
        self.shutdown(wait=True)
