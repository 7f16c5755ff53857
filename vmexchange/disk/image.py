# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/disk/image.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class ImageFormat(Enum):
    """Disk image formats; the value is the file name extension."""

    # containers carry no disk image of their own; NONE is an alias
    DOCKER = "none"
    NONE = "none"
    QCOW2 = "qcow2"
    VDI = "vdi"
    VMDK = "vmdk"

    @property
    def extension(self) -> str:
        return self.value

    def is_supported_by(self, supported: Iterable["ImageFormat"]) -> bool:
        return any(f.value.lower() == self.value.lower() for f in supported)

    @staticmethod
    def default_for_virtualizer(virt_id: Optional[str]) -> Optional["ImageFormat"]:
        """Preferred disk format of a virtualizer id (``vmware``, ``qemukvm`` ...)."""
        return _DEFAULT_FORMATS.get(virt_id or "")

    def __str__(self) -> str:
        return self.value


_DEFAULT_FORMATS = {
    "docker": ImageFormat.DOCKER,
    "qemukvm": ImageFormat.QCOW2,
    "virtualbox": ImageFormat.VDI,
    "vmware": ImageFormat.VMDK,
}


@dataclass(frozen=True)
class DiskImage:
    """
    Result of probing a disk image file.

    ``hw_version`` is the VMDK descriptor hardware version, the QCOW2 header
    version, or 0 for VDI. ``sub_format`` is only set for VMDK and
    ``description`` only for VDI.
    """
    format: ImageFormat
    is_standalone: bool
    is_compressed: bool
    is_snapshot: bool
    hw_version: int = 0
    sub_format: Optional[str] = None
    description: Optional[str] = None


__all__ = ["ImageFormat", "DiskImage"]
