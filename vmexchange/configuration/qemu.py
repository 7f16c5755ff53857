# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/qemu.py
"""QEMU/KVM codec over libvirt domain XML."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, Union

from ..catalog import OperatingSystem
from ..core.exceptions import wrap_io
from ..core.levenshtein import LevenshteinDistance
from ..hardware import ConfigurationGroup, Ethernet, SoundCard, Usb
from ..libvirt.domain import BusType, Disk, Domain, InterfaceType, StorageType, Video, decode_memory
from ..libvirt.libosinfo import lookup_os
from ..version import Version
from ..virtualizer import QEMU
from . import qemu_utils
from .base import (
    ConfigurableOptionGroup,
    DiskImagePath,
    EtherType,
    HardDisk,
    OptionValue,
    VirtualizationConfiguration,
)

logger = logging.getLogger(__name__)

NETWORK_BRIDGE_LAN_DEFAULT = "br0"
NETWORK_BRIDGE_NAT_DEFAULT = "nat1"
NETWORK_BRIDGE_HOST_ONLY_DEFAULT = "vsw2"
CDROM_DEFAULT_PHYSICAL_DRIVE = "/dev/sr0"

DEFAULT_NIC_MODEL = "virtio-net-pci"

BRIDGES = {
    EtherType.BRIDGED: NETWORK_BRIDGE_LAN_DEFAULT,
    EtherType.HOST_ONLY: NETWORK_BRIDGE_HOST_ONLY_DEFAULT,
    EtherType.NAT: NETWORK_BRIDGE_NAT_DEFAULT,
}

_OS_NAME_DISTANCE = LevenshteinDistance(insertion_cost=2, deletion_cost=1, substitution_cost=1)


class QemuConfiguration(VirtualizationConfiguration):
    FILE_NAME_EXTENSION = "xml"

    def __init__(self, data: Union[bytes, str], os_list: Optional[Iterable[OperatingSystem]] = None):
        self.domain = Domain(data)
        super().__init__(QEMU, os_list)
        self._parse()

    @classmethod
    def from_file(cls, path: Union[str, Path], os_list: Optional[Iterable[OperatingSystem]] = None) -> "QemuConfiguration":
        p = Path(path)
        try:
            data = p.read_bytes()
        except OSError as e:
            raise wrap_io(f"Cannot read configuration '{p}': {e.strerror or e}", e, path=str(p)) from e
        return cls(data, os_list)

    def _parse(self) -> None:
        self.display_name = self.domain.name
        # paused state lives in the qcow2 image, not in the domain XML
        self.is_machine_snapshot = False
        for disk in self.domain.disk_storage_devices():
            self._add_hdd_meta_data(disk)
        self.set_os(self.domain.libosinfo_os_id)

    def _add_hdd_meta_data(self, disk: Disk) -> None:
        self.hdds.append(HardDisk(None, qemu_utils.to_drive_bus(disk.bus), disk.storage_source))

    def detect_operating_system(self, os_id: Optional[str]) -> Optional[OperatingSystem]:
        """Closest catalog OS by name to the libosinfo entry of ``os_id``."""
        info = lookup_os(os_id)
        if info is None or info.name is None:
            return None
        name = info.name
        arch_size = qemu_utils.get_os_arch_size(self.domain.os_arch)
        if arch_size > 0:
            name += f" ({arch_size} Bit)"

        best: Optional[OperatingSystem] = None
        smallest = sys.maxsize
        for candidate in self.os_list:
            d = _OS_NAME_DISTANCE.distance(name, candidate.os_name)
            if d < smallest:
                smallest = d
                best = candidate
        return best

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_os(self, vendor_os_id: Optional[str]) -> None:
        self.os = self.detect_operating_system(vendor_os_id)

    def add_empty_hdd_template(self) -> bool:
        return self.add_hdd_template("")

    def add_hdd_template(
        self, disk_image: DiskImagePath, hdd_mode: Optional[str] = None, redo_dir: Optional[str] = None
    ) -> bool:
        path = str(disk_image.absolute()) if isinstance(disk_image, Path) else disk_image
        index = max(len(self.domain.disk_storage_devices()) - 1, 0)
        return self.add_hdd_template_at(index, path)

    def add_hdd_template_at(self, index: int, path: Optional[str]) -> bool:
        disk = qemu_utils.get_array_index(self.domain.disk_storage_devices(), index)
        if disk is None:
            target = qemu_utils.create_device_name(self.domain, BusType.VIRTIO)
            disk = self.domain.add_disk_storage_device()
            disk.read_only = False
            disk.bus = BusType.VIRTIO
            disk.target_device = target
            _set_file_storage(disk, path)
            self._add_hdd_meta_data(disk)
        else:
            _set_file_storage(disk, path)
        return True

    def add_default_nat(self) -> bool:
        # interfaces survive the upload unfiltered, nothing to add
        return True

    def add_display_name(self, name: str) -> bool:
        self.domain.name = name
        self.display_name = name
        return self.domain.name == name

    def add_ram(self, mem_mb: int) -> bool:
        memory = decode_memory(str(mem_mb), "MiB")
        self.domain.memory = memory
        self.domain.current_memory = memory
        return self.domain.memory == memory and self.domain.current_memory == memory

    def add_floppy(self, index: int, image: Optional[str], read_only: bool) -> None:
        floppy = qemu_utils.get_array_index(self.domain.disk_floppy_devices(), index)
        if floppy is None:
            target = qemu_utils.create_device_name(self.domain, BusType.FDC)
            floppy = self.domain.add_disk_floppy_device()
            floppy.bus = BusType.FDC
            floppy.target_device = target
        floppy.read_only = read_only
        _set_file_storage(floppy, image)

    def add_cdrom(self, image: Optional[str]) -> bool:
        index = max(len(self.domain.disk_cdrom_devices()) - 1, 0)
        return self.add_cdrom_at(index, image)

    def add_cdrom_at(self, index: int, image: Optional[str]) -> bool:
        cdrom = qemu_utils.get_array_index(self.domain.disk_cdrom_devices(), index)
        if cdrom is None:
            # SATA names are shared with SATA hard disks
            target = qemu_utils.create_device_name(self.domain, BusType.SATA)
            cdrom = self.domain.add_disk_cdrom_device()
            cdrom.bus = BusType.SATA
            cdrom.target_device = target
        cdrom.read_only = True
        if image is None:
            cdrom.set_storage(StorageType.BLOCK, CDROM_DEFAULT_PHYSICAL_DRIVE)
        else:
            _set_file_storage(cdrom, image)
        return True

    def add_cpu_core_count(self, cores: int) -> bool:
        self.domain.vcpu = cores
        return self.domain.vcpu == cores

    def add_ethernet(self, ether_type: EtherType) -> bool:
        index = max(len(self.domain.interface_devices()) - 1, 0)
        return self.add_ethernet_at(index, ether_type)

    def add_ethernet_at(self, index: int, ether_type: EtherType) -> bool:
        iface = qemu_utils.get_array_index(self.domain.interface_devices(), index)
        if iface is None:
            iface = self.domain.add_interface_bridge_device()
            iface.model = DEFAULT_NIC_MODEL
        else:
            iface.type = InterfaceType.BRIDGE
        iface.source = BRIDGES[ether_type]
        return True

    def set_virtualizer_version(self, version: Optional[Version]) -> None:
        if version is None:
            return
        name = qemu_utils.get_os_machine_name(self.domain.os_machine)
        if name:
            self.domain.os_machine = qemu_utils.get_os_machine(name, qemu_utils.format_os_machine_version(version))

    def get_virtualizer_version(self) -> Optional[Version]:
        unchecked = qemu_utils.get_os_machine_version(self.domain.os_machine)
        if unchecked is None:
            return None
        return Version.get_instance_by_major_minor(
            unchecked.major, unchecked.minor, self.virtualizer.supported_versions
        )

    # ------------------------------------------------------------------
    # Output, validation and transformations
    # ------------------------------------------------------------------

    def get_configuration_bytes(self) -> bytes:
        data = self.domain.to_bytes()
        return data if data.endswith(b"\n") else data + b"\n"

    def validate(self) -> None:
        self.domain.validate()

    def transform_privacy(self) -> None:
        self.domain.remove_disk_devices_storage()

    def transform_editable(self) -> None:
        self.domain.remove_boot_order()

    def transform_non_persistent(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Hardware options
    # ------------------------------------------------------------------

    def register_virtual_hw(self) -> None:
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.SOUND_CARD_MODEL,
                [
                    _SoundCardModel(self, "ich9", SoundCard.DEFAULT),
                    _SoundCardModel(self, "sb16", SoundCard.SOUND_BLASTER),
                    _SoundCardModel(self, "es1370", SoundCard.ES),
                    _SoundCardModel(self, "ac97", SoundCard.AC),
                    _SoundCardModel(self, "ich9", SoundCard.HD_AUDIO),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.GFX_TYPE,
                [_GfxType(self, "false", "2D"), _GfxType(self, "true", "3D OpenGL")],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.NIC_MODEL,
                [
                    _NicModel(self, 0, "virtio", Ethernet.AUTO),
                    _NicModel(self, 0, "pcnet", Ethernet.PCNETPCI2),
                    _NicModel(self, 0, "e1000", Ethernet.E1000),
                    _NicModel(self, 0, "e1000e", Ethernet.E1000E),
                    _NicModel(self, 0, "vmxnet3", Ethernet.VMXNET3),
                    _NicModel(self, 0, "virtio-net-pci", Ethernet.PARAVIRT),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.USB_SPEED,
                [
                    _UsbSpeed(self, "none", Usb.NONE),
                    _UsbSpeed(self, "ich9-uhci1", Usb.USB1_1),
                    _UsbSpeed(self, "ich9-ehci1", Usb.USB2_0),
                    _UsbSpeed(self, "qemu-xhci", Usb.USB3_0),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.HW_VERSION,
                [_MachineVersion(self, v) for v in self.supported_hw_versions],
            )
        )


def _set_file_storage(disk: Disk, path: Optional[str]) -> None:
    if not path:
        disk.remove_storage()
    else:
        disk.set_storage(StorageType.FILE, path)


class _QemuOption(OptionValue):
    def __init__(self, cfg: QemuConfiguration, id: str, display_name: str):
        super().__init__(id, display_name)
        self.cfg = cfg

    @property
    def domain(self) -> Domain:
        return self.cfg.domain


class _SoundCardModel(_QemuOption):
    def apply(self) -> None:
        devices = self.domain.sound_devices()
        if not devices:
            self.domain.add_sound_device().model = self.id
            return
        for dev in devices:
            dev.model = self.id

    def is_active(self) -> bool:
        devices = self.domain.sound_devices()
        if not devices:
            return not self.id
        return devices[0].model == self.id


class _GfxType(_QemuOption):
    def apply(self) -> None:
        enabled = self.id == "true"
        graphics = self.domain.graphics_devices()
        accelerated = False
        if not graphics:
            self.domain.add_graphics_spice_device().opengl = enabled
            accelerated = True
        else:
            # only SPICE output supports OpenGL
            for spice in self.domain.graphics_spice_devices():
                spice.opengl = enabled
                accelerated = True

        if not accelerated:
            return
        videos = self.domain.video_devices()
        if not videos:
            video = self.domain.add_video_device()
            video.model = Video.MODEL_VIRTIO
            video.accel2d = enabled
            video.accel3d = enabled
            return
        for video in videos:
            if video.model == Video.MODEL_VIRTIO:
                video.accel2d = enabled
                video.accel3d = enabled

    def is_active(self) -> bool:
        has_spice = bool(self.domain.graphics_spice_devices())
        has_virtio = any(v.model == Video.MODEL_VIRTIO for v in self.domain.video_devices())
        if has_spice and has_virtio:
            return self.id == "true"
        return self.id == "false"


class _NicModel(_QemuOption):
    def __init__(self, cfg: QemuConfiguration, card_index: int, id: str, display_name: str):
        super().__init__(cfg, id, display_name)
        self.card_index = card_index

    def apply(self) -> None:
        iface = qemu_utils.get_array_index(self.domain.interface_devices(), self.card_index)
        if iface is not None:
            iface.model = self.id

    def is_active(self) -> bool:
        iface = qemu_utils.get_array_index(self.domain.interface_devices(), self.card_index)
        if iface is None or iface.model is None:
            return not self.id
        return iface.model == self.id


class _UsbSpeed(_QemuOption):
    def apply(self) -> None:
        controllers = self.domain.usb_controller_devices()
        if not controllers:
            self.domain.add_usb_controller_device().model = self.id
            return
        for ctrl in controllers:
            ctrl.model = self.id

    def is_active(self) -> bool:
        return any(ctrl.model == self.id for ctrl in self.domain.usb_controller_devices())


class _MachineVersion(_QemuOption):
    def __init__(self, cfg: QemuConfiguration, version: Version):
        super().__init__(cfg, str(version), version.name or str(version))
        self.version = version

    def apply(self) -> None:
        self.cfg.set_virtualizer_version(self.version)

    def is_active(self) -> bool:
        return self.cfg.get_virtualizer_version() == self.version


__all__ = [
    "QemuConfiguration",
    "NETWORK_BRIDGE_LAN_DEFAULT",
    "NETWORK_BRIDGE_NAT_DEFAULT",
    "NETWORK_BRIDGE_HOST_ONLY_DEFAULT",
    "CDROM_DEFAULT_PHYSICAL_DRIVE",
]
