# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/virtualbox.py
"""VirtualBox .vbox codec."""
from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Iterable, Optional, Union

from lxml import etree

from ..catalog import OperatingSystem
from ..core.exceptions import wrap_io
from ..hardware import ConfigurationGroup, Ethernet, SoundCard, Usb
from ..version import Version
from ..virtualizer import VIRTUALBOX
from .base import (
    ConfigurableOptionGroup,
    DiskImagePath,
    EtherType,
    OptionValue,
    VirtualizationConfiguration,
)
from .virtualbox_format import PlaceHolder, VboxFileFormat

logger = logging.getLogger(__name__)

VBOXNET = {
    EtherType.NAT: "vboxnet1",
    EtherType.BRIDGED: "vboxnet0",
    EtherType.HOST_ONLY: "vboxnet2",
}

DEFAULT_NAT_MAC = "080027B86D12"

# byte offset of the image UUID in a VDI header
VDI_UUID_OFFSET = 392

NON_PERSISTENT_EXTRA_DATA = (
    ("GUI/LastCloseAction", "PowerOff"),
    ("GUI/RestrictedRuntimeHelpMenuActions", "All"),
    ("GUI/RestrictedRuntimeMachineMenuActions", "TakeSnapshot,Pause,SaveState"),
    ("GUI/RestrictedRuntimeMenus", "Help"),
    ("GUI/PreventSnapshotOperations", "true"),
    ("GUI/PreventApplicationUpdate", "true"),
    ("GUI/RestrictedCloseActions", "SaveState,PowerOffRestoringSnapshot,Detach"),
)

ADAPTERS_BEYOND_FIRST = "/VirtualBox/Machine/Hardware/Network/Adapter[not(@slot='0')]"

USB_SPEED_RANK = {"OHCI": 1, "EHCI": 2, "XHCI": 3}


def vbox_uuid(value: uuid.UUID) -> str:
    return "{%s}" % value


def patch_vdi_uuid(path: Path, value: uuid.UUID) -> bool:
    """
    Write ``value`` as the image UUID of the VDI at ``path``.

    VDI stores the first three UUID fields little endian, which is the byte
    order of ``UUID.bytes_le``. Failures are logged and leave the file as is.
    """
    try:
        with open(path, "r+b") as fh:
            fh.seek(VDI_UUID_OFFSET)
            fh.write(value.bytes_le)
    except OSError as e:
        logger.warning("could not patch new uuid in the vdi %s: %s", path, e)
        return False
    return True


class VirtualBoxConfiguration(VirtualizationConfiguration):
    FILE_NAME_EXTENSION = "vbox"

    def __init__(self, data: Union[bytes, str], os_list: Optional[Iterable[OperatingSystem]] = None):
        self.config = VboxFileFormat(data)
        super().__init__(VIRTUALBOX, os_list)
        self._init()

    @classmethod
    def from_file(
        cls, path: Union[str, Path], os_list: Optional[Iterable[OperatingSystem]] = None
    ) -> "VirtualBoxConfiguration":
        p = Path(path)
        try:
            data = p.read_bytes()
        except OSError as e:
            raise wrap_io(f"Cannot read VirtualBox configuration '{p}': {e.strerror or e}", e, path=str(p)) from e
        return cls(data, os_list)

    def _init(self) -> None:
        self.display_name = self.config.display_name
        self.set_os(self.config.os_name)
        self.is_machine_snapshot = self.config.is_machine_snapshot()
        self.hdds.extend(self.config.hdds)

    @property
    def configuration_version(self) -> Version:
        return self.config.version

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_os(self, vendor_os_id: str) -> None:
        self.config.change_attribute("/VirtualBox/Machine", "OSType", vendor_os_id)
        self._resolve_os(vendor_os_id)

    def add_empty_hdd_template(self) -> bool:
        return self.add_hdd_template("%VM_DISK_PATH%", "%VM_DISK_MODE%", "%VM_DISK_REDOLOGDIR%")

    def add_hdd_template(
        self, disk_image: DiskImagePath, hdd_mode: Optional[str] = None, redo_dir: Optional[str] = None
    ) -> bool:
        if isinstance(disk_image, Path):
            return self._attach_disk_file(disk_image)
        self.config.change_attribute(
            f"/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk[@location='{PlaceHolder.HDD_LOCATION.value}']",
            "location",
            disk_image,
        )
        if redo_dir is not None:
            self.config.change_attribute("/VirtualBox/Machine", "snapshotFolder", redo_dir)
        return True

    def _attach_disk_file(self, disk_image: Path) -> bool:
        """Point the template at a real VDI under fresh disk and machine UUIDs."""
        self.config.change_attribute("/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk", "location", disk_image.name)

        hdd_uuid = uuid.uuid4()
        self.config.change_attribute("/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk", "uuid", vbox_uuid(hdd_uuid))
        self.config.change_attribute(
            self.config.storage_controllers_xpath + "/StorageController/AttachedDevice/Image", "uuid", vbox_uuid(hdd_uuid)
        )
        patch_vdi_uuid(disk_image, hdd_uuid)

        machine_uuid = uuid.uuid4()
        while machine_uuid == hdd_uuid:
            logger.warning("The new Machine UUID is the same as the new HDD UUID; trying again")
            machine_uuid = uuid.uuid4()
        return self.config.change_attribute("/VirtualBox/Machine", "uuid", vbox_uuid(machine_uuid))

    def add_default_nat(self) -> bool:
        slot0 = self.config.find_nodes("/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']")
        if not slot0:
            return False
        adapter = slot0[0]
        for child in list(adapter):
            adapter.remove(child)
        etree.SubElement(adapter, "NAT")
        return self.config.change_attribute(
            "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']", "MACAddress", DEFAULT_NAT_MAC
        )

    def add_display_name(self, name: str) -> bool:
        if self.config.change_attribute("/VirtualBox/Machine", "name", name):
            self.display_name = name
            return True
        return False

    def add_ram(self, mem_mb: int) -> bool:
        return self.config.change_attribute("/VirtualBox/Machine/Hardware/Memory", "RAMSize", str(mem_mb))

    def add_floppy(self, index: int, image: Optional[str], read_only: bool) -> None:
        controllers_xpath = self.config.storage_controllers_xpath
        matches = self.config.find_nodes(controllers_xpath + "/StorageController[@name='Floppy']")
        # VirtualBox allows one controller per type
        if len(matches) > 1:
            logger.error("Multiple floppy controllers detected, this should never happen!")
            return
        if matches:
            controller = matches[0]
        else:
            controller = self.config.create_node_recursive(controllers_xpath)
            controller = etree.SubElement(
                controller,
                "StorageController",
                name="Floppy",
                type="I82078",
                PortCount="1",
                useHostIOCache="true",
                Bootable="false",
            )

        device = etree.SubElement(
            controller, "AttachedDevice", type="Floppy", hotpluggable="false", port="0", device=str(index)
        )
        if image is None:
            return
        etree.SubElement(device, "Image", uuid=PlaceHolder.FLOPPY_UUID.value)
        registry = self.config.create_node_recursive("/VirtualBox/Machine/MediaRegistry/FloppyImages")
        etree.SubElement(
            registry, "Image", uuid=PlaceHolder.FLOPPY_UUID.value, location=PlaceHolder.FLOPPY_LOCATION.value
        )

    def add_cdrom(self, image: Optional[str]) -> bool:
        # optical drives are attached by the runtime launcher
        return False

    def add_cpu_core_count(self, cores: int) -> bool:
        return self.config.change_attribute("/VirtualBox/Machine/Hardware/CPU", "count", str(cores))

    def add_ethernet(self, ether_type: EtherType) -> bool:
        node = self.config.add_new_node("/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']", "HostOnlyInterface")
        if node is None:
            logger.error("Failed to create node for HostOnlyInterface.")
            return False
        node.set("name", VBOXNET[ether_type])
        return True

    def set_virtualizer_version(self, version: Optional[Version]) -> None:
        # VirtualBox has one fixed hardware version
        return None

    def get_virtualizer_version(self) -> Optional[Version]:
        return None

    # ------------------------------------------------------------------
    # Output, validation and transformations
    # ------------------------------------------------------------------

    def get_configuration_bytes(self) -> bytes:
        return self.config.to_bytes(pretty=True)

    def validate(self) -> None:
        self.config.validate()

    def transform_privacy(self) -> None:
        # machine specific data was already pruned while parsing
        return None

    def transform_editable(self) -> None:
        for adapter in self.config.find_nodes(ADAPTERS_BEYOND_FIRST):
            adapter.set("enabled", "false")

    def transform_non_persistent(self) -> None:
        # suspend cannot be disabled in VirtualBox, restrict the GUI instead
        for key, value in NON_PERSISTENT_EXTRA_DATA:
            self.config.set_extra_data(key, value)
        for adapter in self.config.find_nodes(ADAPTERS_BEYOND_FIRST):
            self.config.remove_node(adapter)

    # ------------------------------------------------------------------
    # Hardware options
    # ------------------------------------------------------------------

    def register_virtual_hw(self) -> None:
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.SOUND_CARD_MODEL,
                [
                    _SoundCardModel(self, "", SoundCard.NONE),
                    _SoundCardModel(self, "SB16", SoundCard.SOUND_BLASTER),
                    _SoundCardModel(self, "HDA", SoundCard.HD_AUDIO),
                    _SoundCardModel(self, "AC97", SoundCard.AC),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.GFX_TYPE,
                [_Accel3D(self, "true", "3D"), _Accel3D(self, "false", "2D")],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.NIC_MODEL,
                [
                    _NicModel(self, 0, "", Ethernet.NONE),
                    _NicModel(self, 0, "Am79C970A", Ethernet.PCNETPCI2),
                    _NicModel(self, 0, "Am79C973", Ethernet.PCNETFAST3),
                    _NicModel(self, 0, "82540EM", Ethernet.PRO1000MTD),
                    _NicModel(self, 0, "82543GC", Ethernet.PRO1000TS),
                    _NicModel(self, 0, "82545EM", Ethernet.PRO1000MTS),
                    _NicModel(self, 0, "virtio", Ethernet.PARAVIRT),
                ],
            )
        )
        self.configurable_options.append(
            ConfigurableOptionGroup(
                ConfigurationGroup.USB_SPEED,
                [
                    _UsbSpeed(self, "", Usb.NONE),
                    _UsbSpeed(self, "OHCI", Usb.USB1_1),
                    _UsbSpeed(self, "EHCI", Usb.USB2_0),
                    _UsbSpeed(self, "XHCI", Usb.USB3_0),
                ],
            )
        )


class _VboxOption(OptionValue):
    def __init__(self, cfg: VirtualBoxConfiguration, id: str, display_name: str):
        super().__init__(id, display_name)
        self.cfg = cfg

    @property
    def config(self) -> VboxFileFormat:
        return self.cfg.config

    def _node(self, xpath: str) -> Optional[etree._Element]:
        nodes = self.config.find_nodes(xpath)
        return nodes[0] if nodes else None


class _SoundCardModel(_VboxOption):
    XPATH = "/VirtualBox/Machine/Hardware/AudioAdapter"

    def apply(self) -> None:
        if not self.id:
            self.config.change_attribute(self.XPATH, "enabled", "false")
            return
        self.config.change_attribute(self.XPATH, "enabled", "true")
        self.config.change_attribute(self.XPATH, "controller", self.id)

    def is_active(self) -> bool:
        adapter = self._node(self.XPATH)
        if adapter is None or adapter.get("enabled", "false") == "false":
            return not self.id
        return adapter.get("controller", "AC97") == self.id


class _Accel3D(_VboxOption):
    XPATH = "/VirtualBox/Machine/Hardware/Display"

    def apply(self) -> None:
        self.config.change_attribute(self.XPATH, "accelerate3D", self.id)

    def is_active(self) -> bool:
        display = self._node(self.XPATH)
        value = display.get("accelerate3D", "false") if display is not None else "false"
        return value.lower() == self.id.lower()


class _NicModel(_VboxOption):
    def __init__(self, cfg: VirtualBoxConfiguration, card_index: int, id: str, display_name: str):
        super().__init__(cfg, id, display_name)
        self.card_index = card_index

    @property
    def xpath(self) -> str:
        return f"/VirtualBox/Machine/Hardware/Network/Adapter[@slot='{self.card_index}']"

    def apply(self) -> None:
        device = self.id
        present = True
        if not self.id:
            # a disabled adapter still needs a valid type or the VM will not start
            device = "Am79C970A"
            present = False
        self.config.change_attribute(self.xpath, "enabled", "true" if present else "false")
        self.config.change_attribute(self.xpath, "type", device)

    def is_active(self) -> bool:
        adapter = self._node(self.xpath)
        if adapter is None or adapter.get("enabled", "false").lower() == "false":
            return not self.id
        return adapter.get("type", "Am79C973") == self.id


class _UsbSpeed(_VboxOption):
    def apply(self) -> None:
        self.config.remove_nodes("/VirtualBox/Machine/Hardware", "USB")
        if not self.id:
            # marker telling a later parse that USB is off on purpose
            self.config.create_node_recursive("/VirtualBox/OpenSLX/USB").set("disabled", "true")
            return
        self.config.remove_nodes("/VirtualBox/OpenSLX", "USB")
        controllers = self.config.create_node_recursive("/VirtualBox/Machine/Hardware/USB/Controllers")
        # VirtualBox pairs an EHCI controller with an OHCI one
        names = ("OHCI", "EHCI") if self.id == "EHCI" else (self.id,)
        for name in names:
            etree.SubElement(controllers, "Controller", name=name, type=name)

    def is_active(self) -> bool:
        types = [c.get("type") for c in self.config.find_nodes("/VirtualBox/Machine/Hardware/USB/Controllers/Controller")]
        if not self.id:
            return not types
        if not types:
            return False
        # the fastest controller decides
        fastest = max(types, key=lambda t: USB_SPEED_RANK.get(t, 0))
        return fastest == self.id


__all__ = ["VirtualBoxConfiguration", "patch_vdi_uuid", "VBOXNET", "DEFAULT_NAT_MAC", "VDI_UUID_OFFSET"]
