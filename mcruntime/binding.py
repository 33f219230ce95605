"""
ParameterBindingTable - parameter identity to data slot mapping.

The table is created from a PackageDescriptor and only ever holds keys the
descriptor declares. It tracks which slots the caller bound explicitly, so
placeholder output slots seeded by the factory are addressable without
counting towards feasibility.
"""

from typing import Iterator, Optional, Union

from mcruntime.schemas import MediaPayload, PackageDescriptor, ParameterID

IdentityLike = Union[ParameterID, int, str]


class ParameterBindingTable:
    """
    Mapping from ParameterID to MediaPayload for one package instance.

    Usage:
        table = ParameterBindingTable(descriptor)
        table.seed(ParameterID("NDVI"), MediaPayload.declaration("image/tiff"))
        table.bind(ParameterID("NIR"), MediaPayload.from_path(nir, "image/tiff"))
        table.get(ParameterID("NDVI"))
    """

    def __init__(self, descriptor: PackageDescriptor) -> None:
        self._declared = frozenset(p.identifier for p in descriptor.parameters)
        self._slots: dict[ParameterID, MediaPayload] = {}
        self._bound: set[ParameterID] = set()

    def _check_declared(self, identifier: IdentityLike) -> ParameterID:
        pid = ParameterID.of(identifier)
        if pid not in self._declared:
            raise KeyError(f"Parameter '{pid}' is not declared by the package")
        return pid

    def is_declared(self, identifier: IdentityLike) -> bool:
        return ParameterID.of(identifier) in self._declared

    def seed(self, identifier: IdentityLike, payload: MediaPayload) -> None:
        """
        Place a payload without marking the slot as bound by the caller.

        Used for output placeholders and for produced outputs.

        Raises:
            KeyError: If the identity is not declared
        """
        pid = self._check_declared(identifier)
        self._slots[pid] = payload

    def bind(self, identifier: IdentityLike, payload: MediaPayload) -> Optional[MediaPayload]:
        """
        Set or overwrite a slot on behalf of the caller.

        Args:
            identifier: Declared parameter identity
            payload: New slot value

        Returns:
            The payload previously held in the slot, if any

        Raises:
            KeyError: If the identity is not declared
        """
        pid = self._check_declared(identifier)
        previous = self._slots.get(pid)
        self._slots[pid] = payload
        self._bound.add(pid)
        return previous

    def is_bound(self, identifier: IdentityLike) -> bool:
        """Check whether the caller explicitly bound a slot."""
        return ParameterID.of(identifier) in self._bound

    def get(self, identifier: IdentityLike) -> Optional[MediaPayload]:
        return self._slots.get(ParameterID.of(identifier))

    def __getitem__(self, identifier: IdentityLike) -> MediaPayload:
        return self._slots[ParameterID.of(identifier)]

    def __contains__(self, identifier: object) -> bool:
        if not isinstance(identifier, (ParameterID, int, str)):
            return False
        return ParameterID.of(identifier) in self._slots

    def __iter__(self) -> Iterator[ParameterID]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def items(self):
        return self._slots.items()

    def close(self) -> None:
        """Release every stream held by the table."""
        for payload in self._slots.values():
            payload.close()

    def __repr__(self) -> str:
        return f"ParameterBindingTable(slots={len(self._slots)}, bound={len(self._bound)})"
