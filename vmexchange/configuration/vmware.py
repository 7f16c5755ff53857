# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/vmware.py
"""VMware .vmx codec."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

from ..catalog import OperatingSystem
from ..hardware import ConfigurationGroup, Ethernet, SoundCard, Usb
from ..version import Version
from ..virtualizer import VMWARE
from .base import (
    ConfigurableOptionGroup,
    DiskImagePath,
    DriveBusType,
    EtherType,
    HardDisk,
    OptionValue,
    VirtualizationConfiguration,
)
from .vmware_format import STATELESS_ALLOW_LIST, VmxFileFormat, read_head

logger = logging.getLogger(__name__)

HDD_PATTERN = re.compile(r"^(ide\d|scsi\d|sata\d|nvme\d):?(\d?)\.(.*)", re.IGNORECASE)

PRIVACY_DENY_LIST = re.compile(
    r"^displayname$|^extendedconfigfile$|^gui\.|^nvram$|^memsize$",
    re.IGNORECASE,
)

VMNET = {
    EtherType.NAT: "vmnet1",
    EtherType.BRIDGED: "vmnet0",
    EtherType.HOST_ONLY: "vmnet2",
}

CDROM_PORTS = ("ide0:0", "ide0:1", "ide1:0", "ide1:1", "scsi0:1")

# index is the USB speed class; every class up to the selected one is enabled
USB_SPEED_KEYS = (None, "usb", "ehci", "usb_xhci")


def vm_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _parse_bool(value: Optional[str]) -> bool:
    return value is not None and value.lower() == "true"


@dataclass
class _Device:
    present: bool = False
    device_type: Optional[str] = None
    filename: Optional[str] = None


@dataclass
class _Controller:
    # IDE controllers are often present without saying so
    present: bool = True
    virtual_dev: Optional[str] = None
    devices: Dict[str, _Device] = field(default_factory=dict)


class VmwareConfiguration(VirtualizationConfiguration):
    FILE_NAME_EXTENSION = "vmx"

    def __init__(self, data: bytes, os_list: Optional[Iterable[OperatingSystem]] = None):
        self.config = VmxFileFormat.parse(data)
        super().__init__(VMWARE, os_list)
        self._init()

    @classmethod
    def from_file(cls, path: Union[str, Path], os_list: Optional[Iterable[OperatingSystem]] = None) -> "VmwareConfiguration":
        return cls(read_head(path), os_list)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _init(self) -> None:
        disks: Dict[str, _Controller] = {}
        for key, entry in self.config.items():
            self._handle_load_entry(key, entry.value, disks)

        # an old export bug filtered usb.present while keeping EHCI
        if self.is_set_and_true("ehci.present") and not self.is_set_and_true("usb.present"):
            self.add_filtered("usb.present", "TRUE")

        # a stored template: disks have been folded into these markers already
        bus_marker = self.config.get("#SLX_HDD_BUS")
        if bus_marker is not None:
            bus = DriveBusType.from_name(bus_marker)
            if bus is None:
                logger.debug("Unknown bus %r in #SLX_HDD_BUS, disk metadata will be incomplete", bus_marker)
            else:
                self.hdds.append(HardDisk(self.config.get("#SLX_HDD_CHIP"), bus, "empty"))
            return

        for controller_type, controller in disks.items():
            if not controller.present:
                continue
            for device_id, device in controller.devices.items():
                if not device.present:
                    continue
                if device.device_type is not None and not device.device_type.lower().endswith("disk"):
                    continue
                self.hdds.append(HardDisk(controller.virtual_dev, _bus_of(controller_type), device.filename))
                self.config.remove_prefix(f"{controller_type}:{device_id}.")

        self.is_machine_snapshot = False

        if self.hdds:
            hdd = self.hdds[0]
            if hdd.bus is not None:
                self.add_filtered("#SLX_HDD_BUS", hdd.bus.value)
            if hdd.chipset_driver is not None:
                self.add_filtered("#SLX_HDD_CHIP", hdd.chipset_driver)

    def _handle_load_entry(self, key: str, value: str, disks: Dict[str, _Controller]) -> None:
        lower = key.lower()
        if lower == "guestos":
            self._resolve_os(value)
            return
        if lower == "displayname":
            self.display_name = value
            return
        m = HDD_PATTERN.match(key)
        if m:
            self._handle_hdd_entry(disks, m.group(1).lower(), m.group(2), m.group(3), value)

    @staticmethod
    def _handle_hdd_entry(disks: Dict[str, _Controller], controller_id: str, device_id: str, prop: str, value: str) -> None:
        controller = disks.setdefault(controller_id, _Controller())
        prop = prop.lower()
        if not device_id:
            if prop == "present":
                controller.present = _parse_bool(value)
            elif prop == "virtualdev":
                controller.virtual_dev = value
            return
        device = controller.devices.setdefault(device_id, _Device())
        if prop == "devicetype":
            device.device_type = value
        elif prop == "filename":
            device.filename = value
        elif prop == "present":
            device.present = _parse_bool(value)

    # ------------------------------------------------------------------
    # Entry helpers
    # ------------------------------------------------------------------

    def add_filtered(self, key: str, value: str) -> None:
        self.config.set(key, value, filtered=True)

    def is_set_and_true(self, key: str) -> bool:
        return _parse_bool(self.config.get(key))

    def get_value(self, key: str) -> Optional[str]:
        return self.config.get(key)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_empty_hdd_template(self) -> bool:
        return self.add_hdd_template("%VM_DISK_PATH%", "%VM_DISK_MODE%", "%VM_DISK_REDOLOGDIR%")

    def add_hdd_template(
        self, disk_image: DiskImagePath, hdd_mode: Optional[str] = None, redo_dir: Optional[str] = None
    ) -> bool:
        path = disk_image.name if isinstance(disk_image, Path) else disk_image
        if not path:
            logger.error("Empty disk image path given!")
            return False
        if not self.hdds:
            logger.warning("No HDDs found in configuration")
            return False

        hdd = self.hdds[0]
        chipset = hdd.chipset_driver
        if hdd.bus is DriveBusType.SATA:
            # SATA is mapped onto a SAS controller
            prefix = "scsi0"
            chipset = "lsisas1068"
        elif hdd.bus in (DriveBusType.IDE, DriveBusType.SCSI, DriveBusType.NVME):
            prefix = hdd.bus.value.lower() + "0"
        else:
            logger.warning("Unknown HDD bus type: %s", hdd.bus)
            return False

        self.add_filtered(f"{prefix}.present", "TRUE")
        if chipset is not None:
            self.add_filtered(f"{prefix}.virtualDev", chipset)
        self.add_filtered(f"{prefix}:0.present", "TRUE")
        self.add_filtered(f"{prefix}:0.deviceType", "disk")
        self.add_filtered(f"{prefix}:0.fileName", path)
        if hdd_mode is not None:
            self.add_filtered(f"{prefix}:0.mode", hdd_mode)
            self.add_filtered(f"{prefix}:0.redo", "")
            self.add_filtered(f"{prefix}:0.redoLogDir", redo_dir or "")
        self.config.remove("#SLX_HDD_BUS")
        self.config.remove("#SLX_HDD_CHIP")
        return True

    def add_default_nat(self) -> bool:
        self.add_filtered("ethernet0.present", "TRUE")
        self.add_filtered("ethernet0.connectionType", "nat")
        return True

    def add_ethernet(self, ether_type: EtherType) -> bool:
        index = 0
        while self.config.get(f"ethernet{index}.present") is not None:
            index += 1
        return self.add_ethernet_at(index, ether_type)

    def add_ethernet_at(self, index: int, ether_type: EtherType) -> bool:
        ether = f"ethernet{index}"
        self.add_filtered(f"{ether}.present", "TRUE")
        self.add_filtered(f"{ether}.connectionType", "custom")
        self.add_filtered(f"{ether}.vnet", VMNET[ether_type])
        if self.config.get(f"{ether}.virtualDev") is None:
            dev = self.config.get("ethernet0.virtualDev")
            if dev is not None:
                self.add_filtered(f"{ether}.virtualDev", dev)
        return True

    def set_os(self, vendor_os_id: str) -> None:
        self.add_filtered("guestOS", vendor_os_id)
        self._resolve_os(vendor_os_id)

    def add_display_name(self, name: str) -> bool:
        self.add_filtered("displayName", name)
        self.display_name = name
        return True

    def add_ram(self, mem_mb: int) -> bool:
        self.add_filtered("memsize", str(mem_mb))
        return True

    def add_floppy(self, index: int, image: Optional[str], read_only: bool) -> None:
        pre = f"floppy{index}"
        self.add_filtered(f"{pre}.present", "TRUE")
        if image is None:
            self.add_filtered(f"{pre}.startConnected", "FALSE")
            self.add_filtered(f"{pre}.fileType", "device")
            self.config.remove(f"{pre}.fileName")
            self.config.remove(f"{pre}.readonly")
            self.add_filtered(f"{pre}.autodetect", "TRUE")
        else:
            self.add_filtered(f"{pre}.startConnected", "TRUE")
            self.add_filtered(f"{pre}.fileType", "file")
            self.add_filtered(f"{pre}.fileName", image)
            self.add_filtered(f"{pre}.readonly", vm_bool(read_only))
            self.config.remove(f"{pre}.autodetect")

    def add_cdrom(self, image: Optional[str]) -> bool:
        for port in CDROM_PORTS:
            if self.is_set_and_true(f"{port}.present"):
                continue
            self.add_filtered(f"{port}.present", "TRUE")
            if image is None:
                self.add_filtered(f"{port}.autodetect", "TRUE")
                self.add_filtered(f"{port}.deviceType", "cdrom-raw")
                self.config.remove(f"{port}.fileName")
            else:
                self.config.remove(f"{port}.autodetect")
                self.add_filtered(f"{port}.deviceType", "cdrom-image")
                self.add_filtered(f"{port}.fileName", image)
            return True
        return False

    def add_cpu_core_count(self, cores: int) -> bool:
        self.add_filtered("numvcpus", str(cores))
        return True

    def set_virtualizer_version(self, version: Version) -> None:
        self.add_filtered("virtualHW.version", str(version.major))

    def get_virtualizer_version(self) -> Optional[Version]:
        try:
            major = int(self.config.get("virtualHW.version") or "")
        except ValueError:
            major = -1
        return Version.get_instance_by_major(major, self.virtualizer.supported_versions)

    # ------------------------------------------------------------------
    # Output, validation and transformations
    # ------------------------------------------------------------------

    def get_configuration_bytes(self) -> bytes:
        return self.config.to_bytes()

    def get_filtered_bytes(self) -> bytes:
        return self.config.to_bytes(filtered_only=True)

    def validate(self) -> None:
        # a parsed .vmx has no further schema
        return None

    def transform_privacy(self) -> None:
        def keep(key: str, entry) -> bool:
            value = entry.value
            if (
                key.lower().endswith(".filename")
                and not value.startswith("-")
                and any(ch in value for ch in "./\\")
            ):
                return False
            return not PRIVACY_DENY_LIST.search(key)

        self.config.retain(keep)

    def transform_editable(self) -> None:
        self.add_filtered("gui.applyHostDisplayScalingToGuest", "FALSE")
        # make sure there is at least USB 2.0, older tooling dropped all controllers
        group = self.get_option_group(ConfigurationGroup.USB_SPEED)
        if group is None:
            return
        current = 0
        two_point_oh = None
        for option in group.options:
            try:
                speed = int(option.id)
            except ValueError:
                speed = 0
            if option.is_active() and speed > current:
                current = speed
            if speed == 2:
                two_point_oh = option
        if current < 3 and two_point_oh is not None:
            two_point_oh.apply()

    def transform_non_persistent(self) -> None:
        self.config.retain(lambda key, _entry: bool(STATELESS_ALLOW_LIST.search(key)))
        self.add_filtered("suspend.disabled", "TRUE")

    # ------------------------------------------------------------------
    # Hardware options
    # ------------------------------------------------------------------

    def register_virtual_hw(self) -> None:
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.SOUND_CARD_MODEL,
                [
                    _SoundCardNone(self, SoundCard.NONE),
                    _SoundCardModel(self, "", SoundCard.DEFAULT),
                    _SoundCardModel(self, "sb16", SoundCard.SOUND_BLASTER),
                    _SoundCardModel(self, "es1371", SoundCard.ES),
                    _SoundCardModel(self, "hdaudio", SoundCard.HD_AUDIO),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.GFX_TYPE,
                [_Accel3D(self, "FALSE", "2D"), _Accel3D(self, "TRUE", "3D")],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.NIC_MODEL,
                [
                    _NicModel(self, 0, "", Ethernet.AUTO),
                    _NicModel(self, 0, "vlance", Ethernet.PCNET32),
                    _NicModel(self, 0, "e1000", Ethernet.E1000),
                    _NicModel(self, 0, "e1000e", Ethernet.E1000E),
                    _NicModel(self, 0, "vmxnet", Ethernet.VMXNET),
                    _NicModel(self, 0, "vmxnet3", Ethernet.VMXNET3),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.USB_SPEED,
                [
                    _UsbSpeed(self, 0, Usb.NONE),
                    _UsbSpeed(self, 1, Usb.USB1_1),
                    _UsbSpeed(self, 2, Usb.USB2_0),
                    _UsbSpeed(self, 3, Usb.USB3_0),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.HW_VERSION,
                [_HwVersion(self, v) for v in self.supported_hw_versions],
            )
        )


def _bus_of(controller_type: str) -> Optional[DriveBusType]:
    for prefix, bus in (
        ("ide", DriveBusType.IDE),
        ("scsi", DriveBusType.SCSI),
        ("sata", DriveBusType.SATA),
        ("nvme", DriveBusType.NVME),
    ):
        if controller_type.startswith(prefix):
            return bus
    return None


class _VmxOption(OptionValue):
    def __init__(self, cfg: VmwareConfiguration, id: str, display_name: str):
        super().__init__(id, display_name)
        self.cfg = cfg


class _SoundCardNone(_VmxOption):
    def __init__(self, cfg: VmwareConfiguration, display_name: str):
        super().__init__(cfg, "none", display_name)

    def apply(self) -> None:
        self.cfg.add_filtered("sound.present", vm_bool(False))
        self.cfg.add_filtered("sound.autodetect", vm_bool(False))
        self.cfg.config.remove("sound.virtualDev")

    def is_active(self) -> bool:
        return not self.cfg.is_set_and_true("sound.present")


class _SoundCardModel(_VmxOption):
    def apply(self) -> None:
        self.cfg.add_filtered("sound.present", vm_bool(True))
        self.cfg.add_filtered("sound.autodetect", vm_bool(True))
        self.cfg.add_filtered("sound.virtualDev", self.id)

    def is_active(self) -> bool:
        return (
            self.cfg.is_set_and_true("sound.present")
            and self.cfg.is_set_and_true("sound.autodetect")
            and self.cfg.config.get("sound.virtualDev") == self.id
        )


class _Accel3D(_VmxOption):
    def apply(self) -> None:
        self.cfg.add_filtered("mks.enable3d", self.id)

    def is_active(self) -> bool:
        return _parse_bool(self.id) == self.cfg.is_set_and_true("mks.enable3d")


class _NicModel(_VmxOption):
    def __init__(self, cfg: VmwareConfiguration, card_index: int, id: str, display_name: str):
        super().__init__(cfg, id, display_name)
        self.key = f"ethernet{card_index}.virtualDev"

    def apply(self) -> None:
        if not self.id:
            self.cfg.config.remove(self.key)
        else:
            self.cfg.add_filtered(self.key, self.id)

    def is_active(self) -> bool:
        current = self.cfg.config.get(self.key)
        if current is None:
            return not self.id
        return current == self.id


class _UsbSpeed(_VmxOption):
    def __init__(self, cfg: VmwareConfiguration, speed: int, display_name: str):
        super().__init__(cfg, str(speed), display_name)
        self.speed = speed

    def apply(self) -> None:
        for i in range(1, len(USB_SPEED_KEYS)):
            key = f"{USB_SPEED_KEYS[i]}.present"
            if i <= self.speed:
                self.cfg.add_filtered(key, "TRUE")
            else:
                self.cfg.config.remove(key)
        # VMware 14+ needs this for USB 3 devices on ports of a slower controller
        if 0 < self.speed < 3:
            self.cfg.add_filtered("usb.mangleUsb3Speed", "TRUE")

    def is_active(self) -> bool:
        highest = 0
        for i in range(1, len(USB_SPEED_KEYS)):
            if self.cfg.is_set_and_true(f"{USB_SPEED_KEYS[i]}.present"):
                highest = i
        return highest == self.speed


class _HwVersion(_VmxOption):
    def __init__(self, cfg: VmwareConfiguration, version: Version):
        super().__init__(cfg, str(version.major), version.name or str(version.major))
        self.version = version

    def apply(self) -> None:
        self.cfg.set_virtualizer_version(self.version)

    def is_active(self) -> bool:
        return self.cfg.get_virtualizer_version() == self.version


__all__ = ["VmwareConfiguration", "PRIVACY_DENY_LIST", "VMNET", "CDROM_PORTS", "vm_bool"]
