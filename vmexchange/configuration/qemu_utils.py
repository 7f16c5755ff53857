# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/qemu_utils.py
"""Helpers for the QEMU codec: bus mapping, device names, machine types."""
from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple, TypeVar

from ..libvirt.domain import BusType, Domain
from ..version import Version
from .base import DriveBusType

T = TypeVar("T")

# e.g. "pc-q35-4.1" -> ("pc-q35", 4, 1)
_OS_MACHINE_RE = re.compile(r"^([a-z0-9\-]+)-([0-9]+).([0-9]+)$")

_ARCH_SIZES = {
    "alpha": 64,
    "armv6l": 32,
    "armv7l": 32,
    "aarch64": 64,
    "cris": 32,
    "i686": 32,
    "m68k": 32,
    "microblaze": 32,
    "microblazeel": 32,
    "mips": 32,
    "mipsel": 32,
    "mips64": 64,
    "mips64el": 64,
    "ppc": 32,
    "ppc64": 64,
    "ppc64le": 64,
    "riscv32": 32,
    "riscv64": 64,
    "s390x": 64,
    "sh4": 32,
    "sh4eb": 64,
    "sparc": 32,
    "sparc64": 64,
    "x86_64": 64,
    "xtensa": 32,
    "xtensaeb": 32,
}

_TO_DRIVE_BUS = {
    BusType.IDE: DriveBusType.IDE,
    BusType.SATA: DriveBusType.SATA,
    BusType.SCSI: DriveBusType.SCSI,
}

_DEVICE_PREFIXES = {
    BusType.FDC: "fd",
    BusType.IDE: "hd",
    BusType.SATA: "sd",
    BusType.VIRTIO: "vd",
}


def to_drive_bus(bus: Optional[BusType]) -> Optional[DriveBusType]:
    return _TO_DRIVE_BUS.get(bus) if bus is not None else None


def get_array_index(items: Sequence[T], index: int) -> Optional[T]:
    """``items[index]`` or None; negative indexes count as missing."""
    if 0 <= index < len(items):
        return items[index]
    return None


def create_alphabetical_device_name(prefix: str, number: int) -> str:
    """
    Build a disk target name such as ``vda``.

    Example:
        >>> create_alphabetical_device_name("vd", 0)
        'vda'

    Raises:
        ValueError: ``number`` is outside 0..24
    """
    if number < 0 or number >= ord("z") - ord("a"):
        raise ValueError("Device number is out of range to be able to create a valid device name.")
    return prefix + chr(ord("a") + number)


def create_device_name(domain: Domain, bus: BusType) -> Optional[str]:
    """
    First target name for ``bus`` no disk of ``domain`` uses yet, None for
    buses without a naming scheme.

    Raises:
        ValueError: every name of the bus is taken
    """
    prefix = _DEVICE_PREFIXES.get(bus)
    if prefix is None:
        return None
    used = set(disk_names(domain))
    for number in range(ord("z") - ord("a")):
        name = create_alphabetical_device_name(prefix, number)
        if name not in used:
            return name
    raise ValueError(f"No free device name left for bus {bus.value}.")


def _parse_os_machine(os_machine: Optional[str]) -> Tuple[Optional[str], Optional[Version]]:
    if not os_machine:
        return None, None
    m = _OS_MACHINE_RE.search(os_machine)
    if not m:
        return None, None
    return m.group(1), Version(int(m.group(2)), int(m.group(3)))


def get_os_machine_name(os_machine: Optional[str]) -> Optional[str]:
    return _parse_os_machine(os_machine)[0]


def get_os_machine_version(os_machine: Optional[str]) -> Optional[Version]:
    return _parse_os_machine(os_machine)[1]


def format_os_machine_version(version: Version) -> str:
    return "%d.%d" % (version.major, version.minor)


def get_os_machine(name: str, version: str) -> str:
    return f"{name}-{version}"


def get_os_arch_size(os_arch: Optional[str]) -> int:
    """Word size in bits of a libvirt architecture name, 0 if unknown."""
    if not os_arch:
        return 0
    return _ARCH_SIZES.get(os_arch, 0)


def disk_names(domain: Domain) -> List[str]:
    return [d.target_device for d in domain.disk_devices() if d.target_device]


__all__ = [
    "to_drive_bus",
    "get_array_index",
    "create_alphabetical_device_name",
    "create_device_name",
    "disk_names",
    "get_os_machine_name",
    "get_os_machine_version",
    "format_os_machine_version",
    "get_os_machine",
    "get_os_arch_size",
]
