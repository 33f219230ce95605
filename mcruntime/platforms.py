"""Platform capability tags for backend matching."""

import platform
from typing import Iterable, Optional

_MACHINE_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "aarch64": "arm64",
    "i386": "x86",
    "i686": "x86",
}


def normalize_tags(tags: Iterable[str]) -> frozenset[str]:
    """Lowercase and strip a set of capability tags."""
    return frozenset(t.strip().casefold() for t in tags if t and t.strip())


def current_platform_tags(system: Optional[str] = None, machine: Optional[str] = None) -> frozenset[str]:
    """
    Tags describing the platform this process runs on.

    Yields the OS name, the machine architecture and their "os-machine"
    combination, e.g. {"linux", "x86_64", "linux-x86_64"}.

    Args:
        system: Override for platform.system() (tests)
        machine: Override for platform.machine() (tests)
    """
    system = (system if system is not None else platform.system()).casefold()
    machine = (machine if machine is not None else platform.machine()).casefold()
    machine = _MACHINE_ALIASES.get(machine, machine)

    tags = {system}
    if machine:
        tags.add(machine)
        tags.add(f"{system}-{machine}")
    return normalize_tags(tags)


def platforms_match(supported: frozenset[str], current: frozenset[str]) -> bool:
    """An empty supported set means no restriction."""
    if not supported:
        return True
    return bool(supported & current)
