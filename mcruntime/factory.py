"""
ProcessorFactory - backend selection and Processor construction.

Selection is capability-tag matching by set intersection:
1. the backend's container tags must intersect the package's containers
2. the backend's platform tags (registry defaults when it declares none)
   must intersect the current platform tags; empty means any platform
3. the package's own platform restriction must hold on this platform
4. the backend's runner kind must be registered

When several backends remain, the first in registry declaration order wins.
This is a tie-break rule, not a quality ranking.
"""

import logging
from typing import Iterable, Optional

from mcruntime.binding import ParameterBindingTable
from mcruntime.config import BackendDescriptor, BackendRegistry
from mcruntime.errors import NoCompatibleBackendError
from mcruntime.platforms import current_platform_tags, normalize_tags, platforms_match
from mcruntime.processor import Processor
from mcruntime.runners import RunnerRegistry
from mcruntime.schemas import MediaPayload, PackageDescriptor

logger = logging.getLogger(__name__)


class ProcessorFactory:
    """
    Creates Processors bound to a compatible backend.

    The registry is shared by reference; the factory never mutates it.

    Usage:
        factory = ProcessorFactory(BackendRegistry.from_file(path))
        processor = factory.new_processor(descriptor)
    """

    def __init__(
        self,
        registry: BackendRegistry,
        runners: Optional[RunnerRegistry] = None,
        platform_tags: Optional[Iterable[str]] = None,
        retain_workspace: bool = False,
    ) -> None:
        """
        Initialize the factory.

        Args:
            registry: Backend registry to select from
            runners: Runner kinds available (defaults to RunnerRegistry.create_default())
            platform_tags: Tags of the current platform (defaults to detection)
            retain_workspace: Keep run workspaces after execution
        """
        self.registry = registry
        self.runners = runners if runners is not None else RunnerRegistry.create_default()
        self.platform_tags = (
            normalize_tags(platform_tags) if platform_tags is not None else current_platform_tags()
        )
        self.retain_workspace = retain_workspace

    def compatible_backends(self, descriptor: PackageDescriptor) -> list[BackendDescriptor]:
        """
        List backends able to run a package, in registry declaration order.

        Args:
            descriptor: Package to match

        Returns:
            Compatible backends; the first one is what new_processor() selects
        """
        if not platforms_match(descriptor.platforms, self.platform_tags):
            return []

        compatible = []
        for backend in self.registry.backends():
            if not backend.container_tags & descriptor.containers:
                continue
            if not platforms_match(backend.platforms, self.platform_tags):
                continue
            if not self.runners.has(backend.runner_kind):
                logger.warning(
                    f"Backend {backend.backend_id} uses unregistered runner '{backend.runner_kind}', skipping",
                    extra={"event": "backend_skipped", "metadata": {"backend": backend.backend_id}},
                )
                continue
            compatible.append(backend)
        return compatible

    def select_backend(self, descriptor: PackageDescriptor) -> BackendDescriptor:
        """
        Select the backend new_processor() would use.

        Raises:
            NoCompatibleBackendError: If no backend matches
        """
        compatible = self.compatible_backends(descriptor)
        if not compatible:
            raise NoCompatibleBackendError(
                descriptor.package_id, descriptor.containers, self.platform_tags
            )
        return compatible[0]

    def new_processor(self, descriptor: PackageDescriptor) -> Processor:
        """
        Create a Processor for a package on the first compatible backend.

        Output slots are seeded with content-absent declarations so they are
        addressable before the run; inputs stay unbound. No workspace is
        allocated here.

        Args:
            descriptor: Package to execute

        Returns:
            A fresh Processor

        Raises:
            NoCompatibleBackendError: If no backend matches
        """
        backend = self.select_backend(descriptor)

        table = ParameterBindingTable(descriptor)
        for param in descriptor.outputs:
            table.seed(param.identifier, MediaPayload.declaration(param.mime_types[0]))

        processor = Processor(
            descriptor,
            backend,
            self.runners.create(backend),
            table=table,
            retain_workspace=self.retain_workspace,
        )
        logger.info(
            f"Selected backend {backend.backend_id} for {descriptor.package_id}",
            extra={
                "run_id": processor.run_id,
                "event": "backend_selected",
                "metadata": {"package": descriptor.package_id, "backend": backend.backend_id},
            },
        )
        return processor
