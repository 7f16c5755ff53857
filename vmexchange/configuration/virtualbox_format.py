# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/virtualbox_format.py
"""
DOM access to VirtualBox ``.vbox`` machine descriptions.

The document is parsed with lxml, stripped of indentation and of its
``http://www.virtualbox.org/`` namespace so that plain absolute XPaths such as
``/VirtualBox/Machine/Hardware`` work. The namespace is put back for schema
validation and serialization.

Parsing a descriptor that was never templated resolves the attached hard
disks, prunes machine specific sections and replaces identifiers with
placeholder tokens (see :class:`PlaceHolder`). A descriptor that already
carries placeholders is taken as is.
"""
from __future__ import annotations

import logging
import re
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from lxml import etree

from ..core.exceptions import (
    ConfigurationError,
    MalformedStructure,
    SchemaValidationFailed,
    UnrecognizedFormat,
    UnsupportedSchemaVersion,
    wrap_io,
)
from ..core.logger import Log
from ..core.resources import VIRTUALBOX_XSD_DIR
from ..core.xml_utils import (
    default_namespace,
    load_xml_schema,
    parse_xml,
    qualify,
    remove_formatting_nodes,
    schema_errors,
    strip_namespaces,
    to_bytes,
)
from ..version import Version
from .base import DriveBusType, HardDisk

logger = logging.getLogger(__name__)

VBOX_NAMESPACE = "http://www.virtualbox.org/"

_VERSION_RE = re.compile(r"^(\d+\.\d+).*$")

SCHEMA_FILES: Dict[Version, str] = {
    Version(1, 15): "VirtualBox-settings_v1-15.xsd",
    Version(1, 16): "VirtualBox-settings_v1-16.xsd",
    Version(1, 17): "VirtualBox-settings_v1-17.xsd",
    Version(1, 18): "VirtualBox-settings_v1-18.xsd",
}

# storage controllers moved below <Hardware> with settings version 1.17
STORAGE_LAYOUT_CHANGE = Version(1, 17)

BLACKLIST = (
    "/VirtualBox/Machine/Hardware/GuestProperties",
    "/VirtualBox/Machine/Hardware/VideoCapture",
    "/VirtualBox/Machine/Hardware/HID",
    "/VirtualBox/Machine/Hardware/LPT",
    "/VirtualBox/Machine/Hardware/SharedFolders",
    "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']/*",
    "/VirtualBox/Machine/ExtraData",
    "/VirtualBox/Machine/StorageControllers/StorageController/AttachedDevice[not(@type='HardDisk')]",
    "/VirtualBox/Machine/Hardware/StorageControllers/StorageController/AttachedDevice[not(@type='HardDisk')]",
    "/VirtualBox/Machine/MediaRegistry/FloppyImages",
    "/VirtualBox/Machine/MediaRegistry/DVDImages",
)


class PlaceHolder(str, Enum):
    FLOPPY_UUID = "%VM_FLOPPY_UUID%"
    FLOPPY_LOCATION = "%VM_FLOPPY_LOCATION%"
    CPU = "%VM_CPU_CORES%"
    MEMORY = "%VM_RAM%"
    MACHINE_UUID = "%VM_MACHINE_UUID%"
    NETWORK_MAC = "%VM_NIC_MAC%"
    HDD_LOCATION = "%VM_HDD_LOCATION%"
    # completed with the disk index and a closing "%"
    HDD_UUID = "%VM_HDD_UUID_"

    def __str__(self) -> str:
        return self.value


def hdd_uuid_placeholder(index: int) -> str:
    return f"{PlaceHolder.HDD_UUID.value}{index}%"


def fill_placeholders(text: str, values: Mapping[str, str]) -> str:
    """
    Replace placeholder tokens in a templated descriptor.

    ``values`` maps a token (``"%VM_RAM%"`` or a :class:`PlaceHolder`) to its
    replacement; tokens without a value stay in place.

    Example:
        >>> fill_placeholders('RAMSize="%VM_RAM%"', {PlaceHolder.MEMORY: "2048"})
        'RAMSize="2048"'
    """
    for token, value in values.items():
        text = text.replace(str(token), value)
    return text


class VboxFileFormat:
    """Parsed ``.vbox`` document plus the XPath helpers the codec mutates it with."""

    def __init__(self, data: Union[bytes, str]):
        root = parse_xml(data)
        self.namespace = default_namespace(root)
        self.root = strip_namespaces(remove_formatting_nodes(root))
        if self.root.tag != "VirtualBox":
            raise UnrecognizedFormat(msg=f"Not a VirtualBox machine configuration (root element <{self.root.tag}>)")

        self.version = self._parse_configuration_version()
        self.os_name = ""
        self.hdds: List[HardDisk] = []
        self._init()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "VboxFileFormat":
        p = Path(path)
        try:
            data = p.read_bytes()
        except OSError as e:
            raise wrap_io(f"Cannot read VirtualBox configuration '{p}': {e.strerror or e}", e, path=str(p)) from e
        return cls(data)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _parse_configuration_version(self) -> Version:
        text = self.root.get("version")
        if not text:
            raise MalformedStructure(msg="Configuration file does not contain any version number!")
        m = _VERSION_RE.match(text)
        version = Version.value_of(m.group(1)) if m else None
        if version is None:
            raise MalformedStructure(msg="Configuration file version number is not valid!")
        return version

    def _init(self) -> None:
        has_placeholders = self.check_for_placeholders()
        try:
            self.validate()
        except ConfigurationError as e:
            # placeholder values violate the UUID pattern of the schema
            if not has_placeholders:
                logger.debug("XML configuration is not a valid VirtualBox v%s configuration: %s", self.version, e)

        if not self.display_name:
            raise MalformedStructure(msg="Machine doesn't have a name")

        self._ensure_hardware_uuid()
        self._read_os_type()
        self._fix_usb()
        if has_placeholders:
            return
        self._read_hdds()
        self._remove_blacklisted_elements()
        self.add_placeholders()

    def _ensure_hardware_uuid(self) -> None:
        """Keep the machine UUID as hardware UUID so guests do not see a hardware change."""
        machine_uuid = self._machine_attr("uuid")
        if not machine_uuid:
            logger.error("Machine UUID empty, should never happen!")
            raise MalformedStructure(msg="XML doesn't contain a machine uuid")

        hw_nodes = self.find_nodes("/VirtualBox/Machine/Hardware")
        if len(hw_nodes) != 1:
            raise MalformedStructure(
                msg="Zero or more '/VirtualBox/Machine/Hardware' node were found, should never happen!"
            )
        hw = hw_nodes[0]
        if hw.get("uuid"):
            logger.info("Found hardware uuid: %s", hw.get("uuid"))
            return
        hw.set("uuid", machine_uuid)
        logger.info("Saved machine UUID as hardware UUID.")

    def _read_os_type(self) -> None:
        os_type = self._machine_attr("OSType")
        if os_type:
            self.os_name = os_type

    def _fix_usb(self) -> None:
        if self.find_nodes("/VirtualBox/Machine/Hardware/USB/Controllers/Controller"):
            logger.info("USB present, not fixing anything")
            return
        # no USB section: either an old config defaulting to USB 2.0, or USB was disabled on purpose
        if self.find_nodes("/VirtualBox/OpenSLX/USB[@disabled]"):
            logger.info("USB explicitly disabled")
            return
        logger.info("Fixing USB: Adding USB 2.0")
        controllers = self.create_node_recursive("/VirtualBox/Machine/Hardware/USB/Controllers")
        for name in ("OHCI", "EHCI"):
            etree.SubElement(controllers, "Controller", name=name, type=name)

    def _read_hdds(self) -> None:
        """Collect hard disks attached to a controller and registered exactly once."""
        images = self.find_nodes(self.storage_controllers_xpath + "/StorageController/AttachedDevice[@type='HardDisk']/Image")
        for image in images:
            uuid = image.get("uuid")
            if not uuid:
                continue
            registered = self.root.xpath("/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk[@uuid=$u]", u=uuid)
            if len(registered) != 1:
                logger.error(
                    "Found hard disk with uuid '%s' which does not appear (unique) in the Media Registry. Skipping.", uuid
                )
                continue
            hdd = registered[0]
            file_name = hdd.get("location", "")
            hdd_type = hdd.get("type", "")
            if hdd_type not in ("Normal", "Writethrough"):
                logger.warning("Type of the disk file is neither 'Normal' nor 'Writethrough' but: %s", hdd_type)
                logger.warning(
                    "This makes the image not directly modificable, which might lead to problems when editing it locally."
                )

            controller = image.getparent().getparent()
            controller_mode = controller.get("type")
            controller_name = controller.get("name", "")
            if controller_name == "NVMe":
                bus: Optional[DriveBusType] = DriveBusType.NVME
            else:
                bus = DriveBusType.from_name(controller_name)
            if bus is None:
                logger.warning("Skipping unknown HDD controller type '%s'", controller_name)
                continue
            logger.info("Adding hard disk with controller: %s (%s) from file '%s'.", bus.value, controller_mode, file_name)
            self.hdds.append(HardDisk(controller_mode, bus, file_name))

    def _remove_blacklisted_elements(self) -> None:
        for xpath in BLACKLIST:
            for node in self.find_nodes(xpath):
                self.remove_node(node)

    def add_placeholders(self) -> None:
        self.change_attribute("/VirtualBox/Machine", "uuid", PlaceHolder.MACHINE_UUID.value)
        self.change_attribute("/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk", "location", PlaceHolder.HDD_LOCATION.value)
        self.change_attribute("/VirtualBox/Machine/Hardware/Memory", "RAMSize", PlaceHolder.MEMORY.value)
        self.change_attribute("/VirtualBox/Machine/Hardware/CPU", "count", PlaceHolder.CPU.value)
        self.change_attribute(
            "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']", "MACAddress", PlaceHolder.NETWORK_MAC.value
        )

        images = self.find_nodes(self.storage_controllers_xpath + "/StorageController/AttachedDevice/Image")
        for i, hdd in enumerate(self.find_nodes("/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk")):
            old_uuid = hdd.get("uuid", "")
            token = hdd_uuid_placeholder(i)
            hdd.set("uuid", token)
            for image in images:
                if image.get("uuid") == old_uuid:
                    image.set("uuid", token)
                    break

    def check_for_placeholders(self) -> bool:
        for hdd in self.find_nodes("/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk"):
            if hdd.get("location") == PlaceHolder.HDD_LOCATION.value:
                return True
        return False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _machine_attr(self, name: str) -> str:
        machines = self.find_nodes("/VirtualBox/Machine")
        return (machines[0].get(name) or "") if machines else ""

    @property
    def display_name(self) -> str:
        return self._machine_attr("name")

    @property
    def storage_controllers_xpath(self) -> str:
        if self.version.is_smaller_than(STORAGE_LAYOUT_CHANGE):
            return "/VirtualBox/Machine/StorageControllers"
        return "/VirtualBox/Machine/Hardware/StorageControllers"

    def is_machine_snapshot(self) -> bool:
        return bool(self.find_nodes("/VirtualBox/Machine/Snapshot"))

    def find_nodes(self, xpath: str) -> List[etree._Element]:
        """Elements matched by ``xpath``; an invalid expression is logged and matches nothing."""
        try:
            result = self.root.xpath(xpath)
        except etree.XPathError as e:
            logger.error("Could not build path %s: %s", xpath, e)
            return []
        if not isinstance(result, list):
            return []
        return [n for n in result if isinstance(n, etree._Element)]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def change_attribute(self, element_xpath: str, attribute: str, value: str) -> bool:
        """Set an attribute on the single element ``element_xpath`` selects."""
        nodes = self.find_nodes(element_xpath)
        if len(nodes) != 1:
            logger.error("No unique node could be found for: %s", element_xpath)
            return False
        nodes[0].set(attribute, value)
        return True

    def add_new_node(self, parent: Union[str, etree._Element], child_name: str) -> Optional[etree._Element]:
        if isinstance(parent, str):
            parents = self.find_nodes(parent)
            if len(parents) != 1:
                logger.error("Could not find unique parent node to add new node to: %s", parent)
                return None
            parent = parents[0]
        return etree.SubElement(parent, child_name)

    def create_node_recursive(self, xpath: str) -> etree._Element:
        """Walk ``/A/B/C`` from the root, creating each missing step as the last child."""
        names = [n for n in xpath.split("/") if n]
        if not names or names[0] != self.root.tag:
            raise ValueError(f"Path {xpath!r} does not start at <{self.root.tag}>")
        node = self.root
        for name in names[1:]:
            child = node.find(name)
            if child is None:
                child = etree.SubElement(node, name)
            node = child
        return node

    def set_extra_data(self, key: str, value: str) -> None:
        item = None
        for candidate in self.find_nodes("/VirtualBox/Machine/ExtraData/ExtraDataItem"):
            if candidate.get("name") == key:
                item = candidate
                break
        if item is None:
            item = etree.SubElement(self.create_node_recursive("/VirtualBox/Machine/ExtraData"), "ExtraDataItem", name=key)
        item.set("value", value)

    @staticmethod
    def remove_node(node: etree._Element) -> None:
        parent = node.getparent()
        if parent is not None:
            parent.remove(node)

    def remove_nodes(self, parent_xpath: str, child_name: str) -> None:
        for parent in self.find_nodes(parent_xpath):
            for child in parent.findall(child_name):
                parent.remove(child)

    # ------------------------------------------------------------------
    # Validation and output
    # ------------------------------------------------------------------

    def _qualified(self) -> etree._Element:
        return qualify(self.root, self.namespace) if self.namespace else self.root

    def validate(self) -> None:
        self.validate_file_format_version(self.version)

    def validate_file_format_version(self, version: Version) -> None:
        file_name = SCHEMA_FILES.get(version)
        if file_name is None:
            raise UnsupportedSchemaVersion(msg=f"File format version {version} is not supported!")
        schema_path = VIRTUALBOX_XSD_DIR / file_name
        if not schema_path.is_file():
            Log.warn_once(logger, ("vbox-xsd", file_name), f"Schema {schema_path} is not bundled, skipping validation")
            return
        try:
            schema = load_xml_schema(schema_path)
        except (etree.XMLSchemaParseError, etree.XMLSyntaxError) as e:
            raise SchemaValidationFailed(msg=f"Cannot load schema {file_name}: {e}", cause=e) from e
        errors = schema_errors(schema, self._qualified())
        if errors is not None:
            raise SchemaValidationFailed(
                msg=f"XML configuration is not a valid VirtualBox v{version} configuration: {errors}"
            )

    def to_bytes(self, *, pretty: bool = True) -> bytes:
        return to_bytes(self._qualified(), pretty=pretty)

    def to_string(self, *, pretty: bool = True) -> str:
        return self.to_bytes(pretty=pretty).decode("utf-8")


__all__ = [
    "VboxFileFormat",
    "PlaceHolder",
    "BLACKLIST",
    "SCHEMA_FILES",
    "VBOX_NAMESPACE",
    "fill_placeholders",
    "hdd_uuid_placeholder",
]
