# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/base.py
"""
Normalized machine model shared by every configuration codec.

A codec parses one hypervisor's descriptor, fills in the normalized fields
(display name, OS, hard disks, snapshot flag), registers its configurable
hardware options and then offers mutation, validation and transformation on
the underlying native document. The native document always stays the source
of truth; nothing here caches codec state.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from ..catalog import OperatingSystem, os_of_virtualizer
from ..hardware import ConfigurationGroup
from ..version import Version
from ..virtualizer import Virtualizer

logger = logging.getLogger(__name__)

DiskImagePath = Union[str, Path]


class DriveBusType(Enum):
    SCSI = "SCSI"
    IDE = "IDE"
    SATA = "SATA"
    NVME = "NVME"

    @classmethod
    def from_name(cls, name: Optional[str]) -> Optional["DriveBusType"]:
        """Exact enum name lookup (``"IDE"``), None when unknown."""
        if not name:
            return None
        return cls.__members__.get(name)


class EtherType(Enum):
    NAT = "NAT"
    BRIDGED = "BRIDGED"
    HOST_ONLY = "HOST_ONLY"


@dataclass(frozen=True)
class HardDisk:
    chipset_driver: Optional[str]
    bus: Optional[DriveBusType]
    disk_image: Optional[str]


class OptionValue(ABC):
    """One selectable value of a hardware option group; equality is by id."""

    def __init__(self, id: str, display_name: str):
        self.id = id
        self.display_name = display_name

    @abstractmethod
    def apply(self) -> None:
        ...

    @abstractmethod
    def is_active(self) -> bool:
        ...

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if isinstance(other, OptionValue):
            return other.id == self.id
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, display_name={self.display_name!r})"


class ConfigurableOptionGroup:
    """A hardware axis (sound, NIC model, ...) and the values a codec offers for it."""

    def __init__(self, group: ConfigurationGroup, options: Sequence[OptionValue]):
        self.group = group
        self.options: List[OptionValue] = list(options)

    @property
    def selected(self) -> Optional[OptionValue]:
        for option in self.options:
            if option.is_active():
                return option
        return None

    def find(self, option_id: str) -> Optional[OptionValue]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def select(self, option_id: str) -> bool:
        option = self.find(option_id)
        if option is None:
            return False
        option.apply()
        return True

    def __repr__(self) -> str:
        return f"ConfigurableOptionGroup({self.group.value!r}, {[o.id for o in self.options]!r})"


class VirtualizationConfiguration(ABC):
    """
    Abstract machine descriptor.

    Subclasses set up their native document before calling ``super().__init__``
    since option registration may look at it.
    """

    FILE_NAME_EXTENSION: Optional[str] = None

    def __init__(self, virtualizer: Virtualizer, os_list: Optional[Iterable[OperatingSystem]] = None):
        self.virtualizer = virtualizer
        self.os_list: List[OperatingSystem] = list(os_list) if os_list is not None else []
        self.os: Optional[OperatingSystem] = None
        self.display_name: Optional[str] = None
        self.is_machine_snapshot = False
        self.hdds: List[HardDisk] = []
        self.configurable_options: List[ConfigurableOptionGroup] = []
        self.register_virtual_hw()

    # ------------------------------------------------------------------
    # Normalized model helpers
    # ------------------------------------------------------------------

    @property
    def file_name_extension(self) -> Optional[str]:
        return self.FILE_NAME_EXTENSION

    @property
    def supported_hw_versions(self) -> List[Version]:
        return sorted(self.virtualizer.supported_versions)

    def _resolve_os(self, vendor_os_id: Optional[str]) -> Optional[OperatingSystem]:
        self.os = os_of_virtualizer(self.os_list, self.virtualizer.id, vendor_os_id)
        if self.os is None and vendor_os_id:
            logger.debug("No catalog OS for %s id %r", self.virtualizer.id, vendor_os_id)
        return self.os

    def get_option_group(self, group: ConfigurationGroup) -> Optional[ConfigurableOptionGroup]:
        for g in self.configurable_options:
            if g.group is group:
                return g
        return None

    def select_option(self, group: ConfigurationGroup, option_id: str) -> bool:
        g = self.get_option_group(group)
        if g is None:
            return False
        return g.select(option_id)

    def get_max_usb_speed(self) -> Optional[str]:
        """Display name (``hardware.Usb``) of the active USB speed option."""
        g = self.get_option_group(ConfigurationGroup.USB_SPEED)
        selected = g.selected if g is not None else None
        return selected.display_name if selected is not None else None

    def set_max_usb_speed(self, speed: str) -> bool:
        g = self.get_option_group(ConfigurationGroup.USB_SPEED)
        if g is None:
            return False
        for option in g.options:
            if option.display_name == speed:
                option.apply()
                return True
        return False

    def get_configuration_string(self) -> str:
        return self.get_configuration_bytes().decode("utf-8")

    def __str__(self) -> str:
        return self.get_configuration_string()

    # ------------------------------------------------------------------
    # Codec contract
    # ------------------------------------------------------------------

    @abstractmethod
    def register_virtual_hw(self) -> None:
        """Populate ``configurable_options``."""

    @abstractmethod
    def add_empty_hdd_template(self) -> bool:
        ...

    @abstractmethod
    def add_hdd_template(
        self, disk_image: DiskImagePath, hdd_mode: Optional[str] = None, redo_dir: Optional[str] = None
    ) -> bool:
        """
        Attach a disk image. A ``Path`` refers to a real file, a ``str`` is
        written verbatim (it may be a placeholder token).
        """

    @abstractmethod
    def add_default_nat(self) -> bool:
        ...

    @abstractmethod
    def set_os(self, vendor_os_id: str) -> None:
        ...

    @abstractmethod
    def add_display_name(self, name: str) -> bool:
        ...

    @abstractmethod
    def add_ram(self, mem_mb: int) -> bool:
        ...

    @abstractmethod
    def add_floppy(self, index: int, image: Optional[str], read_only: bool) -> None:
        ...

    @abstractmethod
    def add_cdrom(self, image: Optional[str]) -> bool:
        """``None`` attaches the host drive, ``""`` an empty drive."""

    @abstractmethod
    def add_cpu_core_count(self, cores: int) -> bool:
        ...

    @abstractmethod
    def add_ethernet(self, ether_type: EtherType) -> bool:
        ...

    @abstractmethod
    def set_virtualizer_version(self, version: Version) -> None:
        ...

    @abstractmethod
    def get_virtualizer_version(self) -> Optional[Version]:
        ...

    @abstractmethod
    def get_configuration_bytes(self) -> bytes:
        ...

    @abstractmethod
    def validate(self) -> None:
        """Raise a ConfigurationError subclass when the document is invalid."""

    @abstractmethod
    def transform_privacy(self) -> None:
        ...

    @abstractmethod
    def transform_editable(self) -> None:
        ...

    @abstractmethod
    def transform_non_persistent(self) -> None:
        ...


__all__ = [
    "DriveBusType",
    "EtherType",
    "HardDisk",
    "OptionValue",
    "ConfigurableOptionGroup",
    "VirtualizationConfiguration",
    "DiskImagePath",
]
