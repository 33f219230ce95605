"""
mcruntime runners package.

Runners implement the uniform run/cancel/collect-outputs contract for each
kind of backend:
- CommandRunner: runs the package as an external process
- CallableRunner: runs an in-process Python callable on a worker thread
- NoOpRunner: finishes immediately, for dry runs

RunnerRegistry maps the backend "runner" property to a Runner factory.
"""

from mcruntime.runners.base import NoOpRunner, RunHandle, Runner
from mcruntime.runners.callable_runner import CallableRunner
from mcruntime.runners.command import CommandRunner
from mcruntime.runners.registry import RunnerRegistry

__all__ = [
    "CallableRunner",
    "CommandRunner",
    "NoOpRunner",
    "RunHandle",
    "Runner",
    "RunnerRegistry",
]
