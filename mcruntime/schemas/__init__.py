"""
mcruntime.schemas - Data structures shared by the execution engine.

PackageDescriptor -> ParameterBindingTable (of MediaPayload) -> RunRecord

- PackageDescriptor: read-only view of a package and its declared parameters
- MediaPayload: content stream plus MIME type carried in a parameter slot
- RunRecord: snapshot of a processor's run lifecycle
"""

from .descriptor import (
    Direction,
    PackageDescriptor,
    ParameterDescriptor,
    ParameterID,
)
from .media import (
    MediaPayload,
    mime_matches,
    mime_permitted,
    normalize_mime_type,
)
from .run_record import (
    RunRecord,
    RunState,
)

__all__ = [
    # Descriptor
    "Direction",
    "PackageDescriptor",
    "ParameterDescriptor",
    "ParameterID",
    # Media
    "MediaPayload",
    "mime_matches",
    "mime_permitted",
    "normalize_mime_type",
    # Run record
    "RunRecord",
    "RunState",
]
