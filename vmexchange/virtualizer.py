# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/virtualizer.py
"""Known virtualization systems, their disk formats and versions."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .disk.image import ImageFormat
from .version import Version

VIRT_VMWARE = "vmware"
VIRT_VIRTUALBOX = "virtualbox"
VIRT_QEMU = "qemukvm"
VIRT_DOCKER = "docker"


@dataclass(frozen=True)
class Virtualizer:
    """
    A hypervisor or container runtime.

    ``supported_versions`` is empty for virtualizers whose version is not
    configurable (VirtualBox, Docker).
    """
    id: str
    name: str
    supported_image_formats: Tuple[ImageFormat, ...]
    supported_versions: Tuple[Version, ...] = field(default_factory=tuple)

    def supports_image_format(self, fmt: ImageFormat) -> bool:
        return fmt.is_supported_by(self.supported_image_formats)

    def __str__(self) -> str:
        return self.name


VMWARE = Virtualizer(
    id=VIRT_VMWARE,
    name="VMware",
    supported_image_formats=(ImageFormat.VMDK,),
    supported_versions=(
        Version(3, name="Workstation 4/5, Player 1"),
        Version(4, name="Workstation 4/5, Player 1/2, Fusion 1"),
        Version(6, name="Workstation 6"),
        Version(7, name="Workstation 6.5/7, Player 3, Fusion 2/3"),
        Version(8, name="Workstation 8, Player/Fusion 4"),
        Version(9, name="Workstation 9, Player/Fusion 5"),
        Version(10, name="Workstation 10, Player/Fusion 6"),
        Version(11, name="Workstation 11, Player/Fusion 7"),
        Version(12, name="Workstation/Player 12, Fusion 8"),
        Version(14, name="Workstation/Player 14, Fusion 10"),
        Version(15, name="Workstation/Player 15, Fusion 11"),
        Version(16, name="Workstation/Player 15.1, Fusion 11.1"),
        Version(17, name="Workstation/Player 16, Fusion 12"),
        Version(18, name="Workstation/Player 16.1, Fusion 12.1"),
    ),
)

VIRTUALBOX = Virtualizer(
    id=VIRT_VIRTUALBOX,
    name="VirtualBox",
    supported_image_formats=(ImageFormat.VDI,),
)

QEMU = Virtualizer(
    id=VIRT_QEMU,
    name="QEMU",
    supported_image_formats=(ImageFormat.QCOW2, ImageFormat.VMDK, ImageFormat.VDI),
    supported_versions=tuple(
        Version(major, minor, name=f"QEMU {major}.{minor}")
        for major, minor in (
            (2, 1), (2, 4), (2, 5), (2, 6), (2, 7), (2, 8), (2, 9),
            (3, 0), (3, 1), (4, 0), (4, 1), (4, 2),
        )
    ),
)

DOCKER = Virtualizer(
    id=VIRT_DOCKER,
    name="Docker",
    supported_image_formats=(ImageFormat.DOCKER,),
)

VIRTUALIZERS: Dict[str, Virtualizer] = {v.id: v for v in (VMWARE, VIRTUALBOX, QEMU, DOCKER)}


def get_virtualizer(virt_id: str) -> Optional[Virtualizer]:
    return VIRTUALIZERS.get(virt_id)


__all__ = [
    "Virtualizer",
    "VMWARE",
    "VIRTUALBOX",
    "QEMU",
    "DOCKER",
    "VIRTUALIZERS",
    "VIRT_VMWARE",
    "VIRT_VIRTUALBOX",
    "VIRT_QEMU",
    "VIRT_DOCKER",
    "get_virtualizer",
]
