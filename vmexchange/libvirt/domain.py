# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# vmexchange/libvirt/domain.py
"""Typed accessors over a libvirt domain XML document

The document is kept as an lxml tree; the classes below only read and write
the elements and attributes the configuration codecs need. Device wrappers
are created on demand from the ``<devices>`` children and hold a reference to
their element, so changes land directly in the tree.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, List, Optional, Type, TypeVar, Union

from lxml import etree

from ..core.exceptions import SchemaValidationFailed, UnrecognizedFormat
from ..core.resources import LIBVIRT_RNG_DIR
from ..core.xml_utils import load_relaxng, parse_xml, remove_formatting_nodes, schema_errors, to_bytes

logger = logging.getLogger(__name__)

DOMAIN_RNG = LIBVIRT_RNG_DIR / "domain.rng"

LIBOSINFO_OS_XPATH = "metadata/*[local-name()='libosinfo']/*[local-name()='os']"

MEMORY_UNITS = {
    "b": 1,
    "bytes": 1,
    "KB": 1000,
    "k": 1024,
    "KiB": 1024,
    "MB": 1000 ** 2,
    "M": 1024 ** 2,
    "MiB": 1024 ** 2,
    "GB": 1000 ** 3,
    "G": 1024 ** 3,
    "GiB": 1024 ** 3,
    "TB": 1000 ** 4,
    "T": 1024 ** 4,
    "TiB": 1024 ** 4,
}


def decode_memory(value: Optional[str], unit: Optional[str]) -> Optional[int]:
    """Memory amount in bytes; libvirt defaults to KiB when no unit is given."""
    if value is None:
        return None
    factor = MEMORY_UNITS.get(unit or "KiB")
    if factor is None:
        return None
    try:
        return int(value.strip()) * factor
    except ValueError:
        return None


def encode_memory(value: int, unit: str) -> Optional[str]:
    factor = MEMORY_UNITS.get(unit)
    if factor is None:
        return None
    return str(value // factor)


class DiskDevice(Enum):
    STORAGE = "disk"
    CDROM = "cdrom"
    FLOPPY = "floppy"


class StorageType(Enum):
    FILE = "file"
    BLOCK = "block"


class BusType(Enum):
    IDE = "ide"
    FDC = "fdc"
    SATA = "sata"
    SCSI = "scsi"
    SD = "sd"
    USB = "usb"
    VIRTIO = "virtio"
    XEN = "xen"


class InterfaceType(Enum):
    BRIDGE = "bridge"
    NETWORK = "network"


def _enum_of(enum_cls, value: Optional[str]):
    if value is None:
        return None
    lv = value.lower()
    for member in enum_cls:
        if member.value == lv:
            return member
    return None


# ---------------------------------------------------------------------------
# Element helpers
# ---------------------------------------------------------------------------

class XmlNode:
    """An element plus relative path helpers (paths are plain ``a/b`` steps)."""

    def __init__(self, element: etree._Element):
        self.element = element

    def _find(self, path: Optional[str]) -> Optional[etree._Element]:
        if not path:
            return self.element
        return self.element.find(path)

    def _ensure(self, path: Optional[str]) -> etree._Element:
        node = self.element
        if not path:
            return node
        for step in path.split("/"):
            child = node.find(step)
            if child is None:
                child = etree.SubElement(node, step)
            node = child
        return node

    def get_attr(self, path: Optional[str], attr: str) -> Optional[str]:
        node = self._find(path)
        return None if node is None else node.get(attr)

    def set_attr(self, path: Optional[str], attr: str, value: str) -> None:
        self._ensure(path).set(attr, value)

    def clear_attrs(self, path: str) -> None:
        node = self._find(path)
        if node is not None:
            node.attrib.clear()

    def get_text(self, path: str) -> Optional[str]:
        node = self._find(path)
        return None if node is None else node.text

    def set_text(self, path: str, value: str) -> None:
        self._ensure(path).text = value

    def has(self, path: str) -> bool:
        return self._find(path) is not None

    def remove(self, path: str) -> None:
        for node in self.element.findall(path):
            node.getparent().remove(node)


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _is_yes(value: Optional[str]) -> bool:
    return value is not None and value.lower() in ("yes", "on", "true")


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------

class Device(XmlNode):
    TAG: Optional[str] = None

    def detach(self) -> None:
        parent = self.element.getparent()
        if parent is not None:
            parent.remove(self.element)

    def remove_boot_order(self) -> None:
        self.remove("boot")


class Disk(Device):
    TAG = "disk"

    @property
    def device(self) -> Optional[DiskDevice]:
        return _enum_of(DiskDevice, self.element.get("device", DiskDevice.STORAGE.value))

    @property
    def storage_type(self) -> Optional[StorageType]:
        return _enum_of(StorageType, self.element.get("type"))

    @property
    def storage_source(self) -> Optional[str]:
        st = self.storage_type
        if st is StorageType.FILE:
            return self.get_attr("source", "file")
        if st is StorageType.BLOCK:
            return self.get_attr("source", "dev")
        return None

    def set_storage(self, storage_type: StorageType, source: str) -> None:
        self.element.set("type", storage_type.value)
        self.clear_attrs("source")
        self.set_attr("source", "file" if storage_type is StorageType.FILE else "dev", source)

    def remove_storage(self) -> None:
        self.remove("source")

    @property
    def read_only(self) -> bool:
        return self.has("readonly")

    @read_only.setter
    def read_only(self, value: bool) -> None:
        if value:
            self._ensure("readonly")
        else:
            self.remove("readonly")

    @property
    def bus(self) -> Optional[BusType]:
        return _enum_of(BusType, self.get_attr("target", "bus"))

    @bus.setter
    def bus(self, value: BusType) -> None:
        self.set_attr("target", "bus", value.value)

    @property
    def target_device(self) -> Optional[str]:
        return self.get_attr("target", "dev")

    @target_device.setter
    def target_device(self, value: str) -> None:
        self.set_attr("target", "dev", value)


class DiskStorage(Disk):
    pass


class DiskCdrom(Disk):
    pass


class DiskFloppy(Disk):
    pass


_DISK_CLASSES = {
    DiskDevice.STORAGE: DiskStorage,
    DiskDevice.CDROM: DiskCdrom,
    DiskDevice.FLOPPY: DiskFloppy,
}


class Interface(Device):
    TAG = "interface"

    @property
    def type(self) -> Optional[InterfaceType]:
        return _enum_of(InterfaceType, self.element.get("type"))

    @type.setter
    def type(self, value: InterfaceType) -> None:
        source = self.source
        self.element.set("type", value.value)
        if source is not None:
            self.source = source

    @property
    def source(self) -> Optional[str]:
        t = self.type
        if t is None:
            return None
        return self.get_attr("source", t.value)

    @source.setter
    def source(self, value: str) -> None:
        t = self.type
        self.clear_attrs("source")
        if t is not None:
            self.set_attr("source", t.value, value)

    @property
    def model(self) -> Optional[str]:
        return self.get_attr("model", "type")

    @model.setter
    def model(self, value: str) -> None:
        self.set_attr("model", "type", value)

    @property
    def mac_address(self) -> Optional[str]:
        return self.get_attr("mac", "address")

    @mac_address.setter
    def mac_address(self, value: str) -> None:
        self.set_attr("mac", "address", value)

    def remove_source(self) -> None:
        self.remove("source")

    def remove_mac_address(self) -> None:
        self.remove("mac")


class Graphics(Device):
    TAG = "graphics"

    @property
    def type(self) -> Optional[str]:
        return self.element.get("type")


class GraphicsSpice(Graphics):
    @property
    def opengl(self) -> bool:
        return _is_yes(self.get_attr("gl", "enable"))

    @opengl.setter
    def opengl(self, enabled: bool) -> None:
        self.set_attr("gl", "enable", _yes_no(enabled))


class GraphicsVnc(Graphics):
    pass


class Sound(Device):
    TAG = "sound"

    @property
    def model(self) -> Optional[str]:
        return self.element.get("model")

    @model.setter
    def model(self, value: str) -> None:
        self.element.set("model", value)


class Video(Device):
    TAG = "video"
    MODEL_VIRTIO = "virtio"

    @property
    def model(self) -> Optional[str]:
        return self.get_attr("model", "type")

    @model.setter
    def model(self, value: str) -> None:
        self.set_attr("model", "type", value)

    @property
    def accel2d(self) -> bool:
        return _is_yes(self.get_attr("model/acceleration", "accel2d"))

    @accel2d.setter
    def accel2d(self, value: bool) -> None:
        self._set_accel("accel2d", value)

    @property
    def accel3d(self) -> bool:
        return _is_yes(self.get_attr("model/acceleration", "accel3d"))

    @accel3d.setter
    def accel3d(self, value: bool) -> None:
        self._set_accel("accel3d", value)

    def _set_accel(self, attr: str, value: bool) -> None:
        if value and self.model != self.MODEL_VIRTIO:
            logger.warning("Video model %r does not support %s", self.model, attr)
            return
        self.set_attr("model/acceleration", attr, _yes_no(value))


class Controller(Device):
    TAG = "controller"

    @property
    def type(self) -> Optional[str]:
        return self.element.get("type")

    @property
    def model(self) -> Optional[str]:
        return self.element.get("model")

    @model.setter
    def model(self, value: str) -> None:
        self.element.set("model", value)


class ControllerUsb(Controller):
    pass


class Hostdev(Device):
    TAG = "hostdev"


def _wrap_device(el: etree._Element) -> Optional[Device]:
    if not isinstance(el.tag, str):
        return None
    tag = el.tag
    if tag == "disk":
        cls = _DISK_CLASSES.get(_enum_of(DiskDevice, el.get("device", DiskDevice.STORAGE.value)))
        return cls(el) if cls else None
    if tag == "interface":
        return Interface(el) if _enum_of(InterfaceType, el.get("type")) else None
    if tag == "graphics":
        kind = (el.get("type") or "").lower()
        if kind == "spice":
            return GraphicsSpice(el)
        if kind == "vnc":
            return GraphicsVnc(el)
        return Graphics(el)
    if tag == "controller":
        return ControllerUsb(el) if el.get("type") == "usb" else Controller(el)
    if tag == "sound":
        return Sound(el)
    if tag == "video":
        return Video(el)
    if tag == "hostdev":
        return Hostdev(el)
    return Device(el)


D = TypeVar("D", bound=Device)


# ---------------------------------------------------------------------------
# Domain
# ---------------------------------------------------------------------------

class Domain(XmlNode):
    """
    A libvirt ``<domain>`` document.

    Construction checks the root element and validates against the bundled
    RELAX NG schema unless ``validate=False``.

    Raises:
        MalformedStructure: the input is not well-formed XML
        UnrecognizedFormat: the root is not ``<domain type=...>``
        SchemaValidationFailed: the document does not match the schema
    """

    def __init__(self, data: Union[bytes, str], *, validate: bool = True):
        root = remove_formatting_nodes(parse_xml(data))
        if not isinstance(root.tag, str) or etree.QName(root).localname != "domain" or root.get("type") is None:
            raise UnrecognizedFormat(msg="Root element isn't <domain type=...>")
        super().__init__(root)
        if validate:
            self.validate()

    def validate(self) -> None:
        err = schema_errors(load_relaxng(DOMAIN_RNG), self.element)
        if err is not None:
            raise SchemaValidationFailed(msg=f"Libvirt domain XML is not valid: {err}")

    # -- general ----------------------------------------------------------

    @property
    def type(self) -> str:
        return self.element.get("type", "")

    @property
    def name(self) -> Optional[str]:
        return self.get_text("name")

    @name.setter
    def name(self, value: str) -> None:
        self.set_text("name", value)

    @property
    def title(self) -> Optional[str]:
        return self.get_text("title")

    @title.setter
    def title(self, value: str) -> None:
        self.set_text("title", value)

    @property
    def description(self) -> Optional[str]:
        return self.get_text("description")

    @description.setter
    def description(self, value: str) -> None:
        self.set_text("description", value)

    @property
    def uuid(self) -> Optional[str]:
        return self.get_text("uuid")

    @property
    def libosinfo_os_id(self) -> Optional[str]:
        found = self.element.xpath(LIBOSINFO_OS_XPATH)
        return found[0].get("id") if found else None

    @property
    def memory(self) -> Optional[int]:
        return decode_memory(self.get_text("memory"), self.get_attr("memory", "unit"))

    @memory.setter
    def memory(self, value: int) -> None:
        self._set_memory("memory", value)

    @property
    def current_memory(self) -> Optional[int]:
        return decode_memory(self.get_text("currentMemory"), self.get_attr("currentMemory", "unit"))

    @current_memory.setter
    def current_memory(self, value: int) -> None:
        self._set_memory("currentMemory", value)

    def _set_memory(self, path: str, value: int) -> None:
        self.set_attr(path, "unit", "KiB")
        self.set_text(path, encode_memory(value, "KiB") or "0")

    @property
    def vcpu(self) -> Optional[int]:
        text = self.get_text("vcpu")
        try:
            return int(text) if text is not None else None
        except ValueError:
            return None

    @vcpu.setter
    def vcpu(self, value: int) -> None:
        self.set_text("vcpu", str(value))

    @property
    def os_type(self) -> Optional[str]:
        return self.get_text("os/type")

    @property
    def os_arch(self) -> Optional[str]:
        return self.get_attr("os/type", "arch")

    @os_arch.setter
    def os_arch(self, value: str) -> None:
        self.set_attr("os/type", "arch", value)

    @property
    def os_machine(self) -> Optional[str]:
        return self.get_attr("os/type", "machine")

    @os_machine.setter
    def os_machine(self, value: str) -> None:
        self.set_attr("os/type", "machine", value)

    # -- devices ----------------------------------------------------------

    def devices(self) -> List[Device]:
        parent = self._find("devices")
        if parent is None:
            return []
        out = []
        for child in parent:
            dev = _wrap_device(child)
            if dev is not None:
                out.append(dev)
        return out

    def _devices_of(self, cls: Type[D], pred: Optional[Callable[[D], bool]] = None) -> List[D]:
        return [d for d in self.devices() if isinstance(d, cls) and (pred is None or pred(d))]

    def disk_devices(self) -> List[Disk]:
        return self._devices_of(Disk)

    def disk_storage_devices(self) -> List[DiskStorage]:
        return self._devices_of(DiskStorage)

    def disk_cdrom_devices(self) -> List[DiskCdrom]:
        return self._devices_of(DiskCdrom)

    def disk_floppy_devices(self) -> List[DiskFloppy]:
        return self._devices_of(DiskFloppy)

    def interface_devices(self) -> List[Interface]:
        return self._devices_of(Interface)

    def graphics_devices(self) -> List[Graphics]:
        return self._devices_of(Graphics)

    def graphics_spice_devices(self) -> List[GraphicsSpice]:
        return self._devices_of(GraphicsSpice)

    def sound_devices(self) -> List[Sound]:
        return self._devices_of(Sound)

    def video_devices(self) -> List[Video]:
        return self._devices_of(Video)

    def usb_controller_devices(self) -> List[ControllerUsb]:
        return self._devices_of(ControllerUsb)

    def hostdev_devices(self) -> List[Hostdev]:
        return self._devices_of(Hostdev)

    def _add_device(self, cls: Type[D], **attrs: str) -> D:
        el = etree.SubElement(self._ensure("devices"), cls.TAG or "device")
        for k, v in attrs.items():
            el.set(k, v)
        return cls(el)

    def add_disk_storage_device(self) -> DiskStorage:
        return self._add_device(DiskStorage, device=DiskDevice.STORAGE.value)

    def add_disk_cdrom_device(self) -> DiskCdrom:
        return self._add_device(DiskCdrom, device=DiskDevice.CDROM.value)

    def add_disk_floppy_device(self) -> DiskFloppy:
        return self._add_device(DiskFloppy, device=DiskDevice.FLOPPY.value)

    def add_interface_bridge_device(self) -> Interface:
        return self._add_device(Interface, type=InterfaceType.BRIDGE.value)

    def add_interface_network_device(self) -> Interface:
        return self._add_device(Interface, type=InterfaceType.NETWORK.value)

    def add_graphics_spice_device(self) -> GraphicsSpice:
        return self._add_device(GraphicsSpice, type="spice")

    def add_sound_device(self) -> Sound:
        return self._add_device(Sound)

    def add_video_device(self) -> Video:
        return self._add_device(Video)

    def add_usb_controller_device(self) -> ControllerUsb:
        return self._add_device(ControllerUsb, type="usb")

    # -- bulk edits -------------------------------------------------------

    def remove_boot_order(self) -> None:
        for dev in self.disk_devices():
            dev.remove_boot_order()
        for dev in self.interface_devices():
            dev.remove_boot_order()
        for dev in self.hostdev_devices():
            dev.remove_boot_order()
        self.remove("os/boot")

    def remove_disk_devices_storage(self) -> None:
        for dev in self.disk_devices():
            dev.remove_storage()

    def remove_interface_devices_source(self) -> None:
        # an empty source keeps the attribute the schema requires
        for dev in self.interface_devices():
            dev.source = ""

    def to_bytes(self, *, pretty: bool = True) -> bytes:
        return to_bytes(self.element, pretty=pretty)


__all__ = [
    "Domain",
    "Device",
    "Disk",
    "DiskStorage",
    "DiskCdrom",
    "DiskFloppy",
    "Interface",
    "Graphics",
    "GraphicsSpice",
    "GraphicsVnc",
    "Sound",
    "Video",
    "Controller",
    "ControllerUsb",
    "Hostdev",
    "DiskDevice",
    "StorageType",
    "BusType",
    "InterfaceType",
    "decode_memory",
    "encode_memory",
    "MEMORY_UNITS",
]
