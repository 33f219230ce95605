"""
Runner Registry for mapping backend runner kinds to Runner factories.

Every backend in the BackendRegistry names its runner kind through the
"runner" property (default "command"). The ProcessorFactory asks this
registry for a fresh Runner per Processor.
"""

from typing import Callable

from mcruntime.config import BackendDescriptor
from mcruntime.runners.base import NoOpRunner, Runner
from mcruntime.runners.command import CommandRunner

RunnerFactory = Callable[[BackendDescriptor], Runner]


class RunnerRegistry:
    """
    Registry for runner dispatch by kind.

    Usage:
        runners = RunnerRegistry.create_default()
        runners.register("python", lambda backend: CallableRunner(run_ndvi))

        runner = runners.create(backend)
    """

    def __init__(self) -> None:
        """Initialize an empty runner registry."""
        self._factories: dict[str, RunnerFactory] = {}

    def register(self, kind: str, factory: RunnerFactory) -> None:
        """
        Register a factory for a runner kind.

        Args:
            kind: Runner kind name (value of the backend "runner" property)
            factory: Callable creating a Runner for a backend
        """
        self._factories[kind] = factory

    def get(self, kind: str) -> RunnerFactory:
        """
        Get the factory for a runner kind.

        Raises:
            KeyError: If no factory is registered for this kind
        """
        if kind not in self._factories:
            registered = list(self._factories.keys())
            raise KeyError(f"No runner registered for kind: {kind}. Registered: {registered}")
        return self._factories[kind]

    def has(self, kind: str) -> bool:
        return kind in self._factories

    def kinds(self) -> list[str]:
        return list(self._factories.keys())

    def create(self, backend: BackendDescriptor) -> Runner:
        """
        Create a fresh Runner for a backend.

        Raises:
            KeyError: If the backend's runner kind is not registered
        """
        return self.get(backend.runner_kind)(backend)

    @classmethod
    def create_default(cls) -> "RunnerRegistry":
        """
        Create a registry with the built-in runner kinds.

        Returns:
            RunnerRegistry with "command" and "noop" registered
        """
        registry = cls()
        registry.register("command", lambda backend: CommandRunner())
        registry.register("noop", lambda backend: NoOpRunner())
        return registry
