"""
mcruntime - Package execution engine

Selects a compatible backend for a code package, binds data to its declared
parameters and runs it in an isolated, run-scoped workspace.
"""

__version__ = "0.1.0"


__all__ = [
    "BackendRegistry",
    "MediaPayload",
    "PackageDescriptor",
    "ParameterID",
    "Processor",
    "ProcessorFactory",
    "ProcessorPool",
    "RunState",
    "load_config",
]

from .config import BackendRegistry, load_config
from .factory import ProcessorFactory
from .pool import ProcessorPool
from .processor import Processor
from .schemas import MediaPayload, PackageDescriptor, ParameterID, RunState
