"""
Media payloads - the values carried in parameter slots.

A payload is a byte stream plus a MIME type tag. A payload without content
is a declaration: the type of an expected output is reserved but nothing
has been produced yet.
"""

import io
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Optional


def normalize_mime_type(mime_type: str) -> str:
    """Lowercase a MIME type and drop any ;parameters."""
    return mime_type.split(";", 1)[0].strip().casefold()


def mime_matches(permitted: str, actual: str) -> bool:
    """
    Check whether a payload MIME type satisfies a permitted type.

    */* permits anything, major/* permits any subtype of major, anything
    else must match exactly. A wildcard payload type only matches a
    permitted type that is at least as general.

    Args:
        permitted: Type declared by the package (may be a wildcard)
        actual: Type carried by the payload

    Returns:
        True if actual is acceptable for permitted
    """
    permitted = normalize_mime_type(permitted)
    actual = normalize_mime_type(actual)

    if permitted == "*/*":
        return True
    if "/" not in permitted or "/" not in actual:
        return permitted == actual

    p_major, p_minor = permitted.split("/", 1)
    a_major, a_minor = actual.split("/", 1)
    if a_major == "*":
        return False
    if p_minor == "*":
        return p_major == a_major
    if a_minor == "*":
        return False
    return permitted == actual


def mime_permitted(permitted_types: Iterable[str], actual: str) -> bool:
    """Check a payload type against a list of permitted types."""
    return any(mime_matches(p, actual) for p in permitted_types)


@dataclass
class MediaPayload:
    """
    Content stream plus MIME type.

    Attributes:
        content: Binary stream, or None for an output declaration
        mime_type: MIME type tag
    """
    content: Optional[BinaryIO]
    mime_type: str

    def __post_init__(self):
        if not self.mime_type or not self.mime_type.strip():
            raise ValueError("MediaPayload requires a MIME type")

    @classmethod
    def declaration(cls, mime_type: str) -> "MediaPayload":
        """Create a content-absent payload declaring an expected output."""
        return cls(content=None, mime_type=mime_type)

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "MediaPayload":
        return cls(content=io.BytesIO(data), mime_type=mime_type)

    @classmethod
    def from_path(cls, path: Path | str, mime_type: str) -> "MediaPayload":
        """Open a file as payload content. The caller hands the stream over."""
        return cls(content=open(path, "rb"), mime_type=mime_type)

    @property
    def is_declaration(self) -> bool:
        return self.content is None

    def read(self) -> bytes:
        """
        Read the remaining content.

        Raises:
            ValueError: If the payload is a declaration
        """
        if self.content is None:
            raise ValueError("Cannot read a content-absent payload")
        return self.content.read()

    def close(self) -> None:
        """Release the underlying stream, if any."""
        if self.content is not None and not self.content.closed:
            self.content.close()
