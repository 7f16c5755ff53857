# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the VirtualBox .vbox codec."""
from __future__ import annotations

import uuid
from pathlib import Path

import pytest
from lxml import etree
from vmexchange.configuration.base import DriveBusType, EtherType, HardDisk
from vmexchange.configuration.virtualbox import (
    DEFAULT_NAT_MAC,
    VDI_UUID_OFFSET,
    VirtualBoxConfiguration,
    patch_vdi_uuid,
)
from vmexchange.configuration.virtualbox_format import (
    PlaceHolder,
    fill_placeholders,
    hdd_uuid_placeholder,
)
from vmexchange.core.exceptions import (
    IOFailure,
    MalformedStructure,
    SchemaValidationFailed,
    UnrecognizedFormat,
    UnsupportedSchemaVersion,
)
from vmexchange.hardware import ConfigurationGroup, Usb
from vmexchange.version import Version

VBOX_NS = "http://www.virtualbox.org/"


@pytest.fixture
def vbox(fixtures_dir, os_list) -> VirtualBoxConfiguration:
    return VirtualBoxConfiguration.from_file(fixtures_dir / "configs" / "ubuntu.vbox", os_list)


@pytest.fixture
def filled(vbox, tmp_path) -> VirtualBoxConfiguration:
    """The ubuntu template with every placeholder replaced by a real value."""
    vdi = tmp_path / "disk.vdi"
    vdi.write_bytes(bytes(512))
    vbox.add_hdd_template(vdi)
    vbox.add_ram(2048)
    vbox.add_cpu_core_count(2)
    vbox.add_default_nat()
    return vbox


def _node(cfg, xpath):
    nodes = cfg.config.find_nodes(xpath)
    assert len(nodes) == 1, xpath
    return nodes[0]


def _selected(cfg, group):
    return cfg.get_option_group(group).selected.id


def _minimal(version="1.16-linux", machine='uuid="{a3c2c7f4-2d8e-4b2f-9b1c-5e6f7a8b9c0d}" name="Tiny"', hardware="<Hardware/>"):
    return (
        f'<VirtualBox xmlns="{VBOX_NS}" version="{version}">'
        f"<Machine {machine}>{hardware}</Machine></VirtualBox>"
    ).encode()


@pytest.mark.unit
class TestVirtualBoxParsing:
    def test_normalized_view(self, vbox):
        assert vbox.display_name == "Ubuntu Test"
        assert vbox.os.os_name == "Ubuntu (64 Bit)"
        assert vbox.configuration_version == Version(1, 16)
        assert vbox.file_name_extension == "vbox"
        assert not vbox.is_machine_snapshot
        assert vbox.hdds == [HardDisk("AHCI", DriveBusType.SATA, "ubuntu.vdi")]
        assert vbox.get_virtualizer_version() is None

    def test_machine_specific_sections_are_pruned(self, vbox):
        for xpath in (
            "/VirtualBox/Machine/ExtraData",
            "/VirtualBox/Machine/Hardware/SharedFolders",
            "/VirtualBox/Machine/Hardware/GuestProperties",
            "/VirtualBox/Machine/MediaRegistry/DVDImages",
            "/VirtualBox/Machine/StorageControllers/StorageController/AttachedDevice[@type='DVD']",
            "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']/NAT",
        ):
            assert vbox.config.find_nodes(xpath) == [], xpath
        # the second adapter keeps its attachment
        assert vbox.config.find_nodes("/VirtualBox/Machine/Hardware/Network/Adapter[@slot='1']/HostOnlyInterface")

    def test_placeholders(self, vbox):
        assert _node(vbox, "/VirtualBox/Machine").get("uuid") == PlaceHolder.MACHINE_UUID.value
        assert _node(vbox, "/VirtualBox/Machine/Hardware/Memory").get("RAMSize") == "%VM_RAM%"
        assert _node(vbox, "/VirtualBox/Machine/Hardware/CPU").get("count") == "%VM_CPU_CORES%"
        assert _node(vbox, "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']").get("MACAddress") == "%VM_NIC_MAC%"
        hdd = _node(vbox, "/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk")
        assert hdd.get("location") == "%VM_HDD_LOCATION%"
        assert hdd.get("uuid") == hdd_uuid_placeholder(0) == "%VM_HDD_UUID_0%"
        image = _node(vbox, "/VirtualBox/Machine/StorageControllers/StorageController/AttachedDevice/Image")
        assert image.get("uuid") == "%VM_HDD_UUID_0%"

    def test_machine_uuid_kept_as_hardware_uuid(self, vbox):
        hardware = _node(vbox, "/VirtualBox/Machine/Hardware")
        assert hardware.get("uuid") == "{a3c2c7f4-2d8e-4b2f-9b1c-5e6f7a8b9c0d}"

    def test_output_is_namespaced(self, vbox):
        text = vbox.get_configuration_string()

        assert f'xmlns="{VBOX_NS}"' in text
        assert 'RAMSize="%VM_RAM%"' in text

    def test_templated_output_is_taken_as_is(self, vbox):
        again = VirtualBoxConfiguration(vbox.get_configuration_bytes())

        # disks are not resolved from a template
        assert again.hdds == []
        assert again.display_name == "Ubuntu Test"
        assert again.add_hdd_template("/srv/disk.vdi", redo_dir="/tmp/redo")
        text = again.get_configuration_string()
        assert 'location="/srv/disk.vdi"' in text
        assert 'snapshotFolder="/tmp/redo"' in text

    def test_fill_placeholders(self, vbox):
        text = fill_placeholders(
            vbox.get_configuration_string(),
            {
                PlaceHolder.MEMORY: "1024",
                PlaceHolder.CPU: "1",
                hdd_uuid_placeholder(0): "{44444444-2222-4333-8444-555555555555}",
            },
        )

        assert 'RAMSize="1024"' in text
        assert 'count="1"' in text
        assert text.count("{44444444-2222-4333-8444-555555555555}") == 2
        # tokens without a value stay
        assert "%VM_NIC_MAC%" in text

    def test_nvme_snapshot_without_usb(self, fixtures_dir):
        cfg = VirtualBoxConfiguration.from_file(fixtures_dir / "configs" / "windows10_nousb.vbox")

        assert cfg.is_machine_snapshot
        assert cfg.hdds == [HardDisk("NVMe", DriveBusType.NVME, "C:\\VMs\\win10.vdi")]
        assert cfg.os is None
        # an old configuration without USB gets USB 2.0
        assert cfg.get_max_usb_speed() == Usb.USB2_0
        assert _node(cfg, "/VirtualBox/Machine/Hardware").get("uuid") == "{ffffffff-3333-4444-8555-666666666666}"

    def test_unregistered_disk_is_skipped(self):
        hardware = (
            "<Hardware/><StorageControllers>"
            '<StorageController name="SATA" type="AHCI"><AttachedDevice type="HardDisk" port="0" device="0">'
            '<Image uuid="{12345678-2222-4333-8444-555555555555}"/></AttachedDevice></StorageController>'
            "</StorageControllers>"
        )

        cfg = VirtualBoxConfiguration(_minimal(hardware=hardware))

        assert cfg.hdds == []


@pytest.mark.unit
class TestVirtualBoxErrors:
    def test_foreign_root(self):
        with pytest.raises(UnrecognizedFormat):
            VirtualBoxConfiguration(b"<domain type='kvm'><name>x</name></domain>")

    def test_missing_version(self):
        data = f'<VirtualBox xmlns="{VBOX_NS}"><Machine uuid="{{x}}" name="a"><Hardware/></Machine></VirtualBox>'

        with pytest.raises(MalformedStructure, match="version"):
            VirtualBoxConfiguration(data.encode())

    def test_missing_name(self):
        with pytest.raises(MalformedStructure, match="name"):
            VirtualBoxConfiguration(_minimal(machine='uuid="{a3c2c7f4-2d8e-4b2f-9b1c-5e6f7a8b9c0d}"'))

    def test_missing_hardware(self):
        with pytest.raises(MalformedStructure):
            VirtualBoxConfiguration(_minimal(hardware=""))

    def test_unsupported_version_is_reported_by_validate(self):
        cfg = VirtualBoxConfiguration(_minimal(version="1.12-linux"))

        with pytest.raises(UnsupportedSchemaVersion):
            cfg.validate()

    def test_missing_file(self, tmp_path):
        with pytest.raises(IOFailure):
            VirtualBoxConfiguration.from_file(tmp_path / "nope.vbox")

    def test_patch_missing_vdi(self, tmp_path):
        assert not patch_vdi_uuid(tmp_path / "missing.vdi", uuid.uuid4())


@pytest.mark.unit
class TestVirtualBoxMutations:
    def test_attach_real_disk(self, vbox, tmp_path):
        vdi = tmp_path / "disk.vdi"
        vdi.write_bytes(bytes(512))

        assert vbox.add_hdd_template(vdi)

        hdd = _node(vbox, "/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk")
        image = _node(vbox, "/VirtualBox/Machine/StorageControllers/StorageController/AttachedDevice/Image")
        machine = _node(vbox, "/VirtualBox/Machine")
        assert hdd.get("location") == "disk.vdi"
        assert hdd.get("uuid") == image.get("uuid")
        assert machine.get("uuid") != hdd.get("uuid")
        new_uuid = uuid.UUID(hdd.get("uuid").strip("{}"))
        data = vdi.read_bytes()
        assert data[VDI_UUID_OFFSET:VDI_UUID_OFFSET + 16] == new_uuid.bytes_le
        assert len(data) == 512

    def test_default_nat(self, vbox):
        assert vbox.add_default_nat()

        adapter = _node(vbox, "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']")
        assert adapter.get("MACAddress") == DEFAULT_NAT_MAC
        assert [child.tag for child in adapter] == ["NAT"]

    def test_ethernet(self, vbox):
        assert vbox.add_ethernet(EtherType.NAT)

        node = _node(vbox, "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']/HostOnlyInterface")
        assert node.get("name") == "vboxnet1"

    def test_floppy_controller_is_shared(self, vbox):
        vbox.add_floppy(0, "boot.img", True)
        vbox.add_floppy(1, None, False)

        controller = _node(vbox, "/VirtualBox/Machine/StorageControllers/StorageController[@name='Floppy']")
        assert controller.get("type") == "I82078"
        devices = controller.findall("AttachedDevice")
        assert [d.get("device") for d in devices] == ["0", "1"]
        assert devices[0].find("Image").get("uuid") == PlaceHolder.FLOPPY_UUID.value
        assert devices[1].find("Image") is None
        registry = _node(vbox, "/VirtualBox/Machine/MediaRegistry/FloppyImages/Image")
        assert registry.get("location") == PlaceHolder.FLOPPY_LOCATION.value

    def test_cdrom_is_left_to_the_launcher(self, vbox):
        assert not vbox.add_cdrom("/isos/tools.iso")

    def test_machine_settings(self, vbox):
        assert vbox.add_display_name("Renamed")
        assert vbox.add_ram(4096)
        assert vbox.add_cpu_core_count(4)
        vbox.set_os("Windows10_64")

        machine = _node(vbox, "/VirtualBox/Machine")
        assert machine.get("name") == vbox.display_name == "Renamed"
        assert machine.get("OSType") == "Windows10_64"
        assert vbox.os.os_name == "Windows 10 (64 Bit)"
        assert _node(vbox, "/VirtualBox/Machine/Hardware/Memory").get("RAMSize") == "4096"
        assert _node(vbox, "/VirtualBox/Machine/Hardware/CPU").get("count") == "4"


def _drop_port(cfg):
    del _node(cfg, "/VirtualBox/Machine/StorageControllers/StorageController/AttachedDevice").attrib["port"]


def _unknown_hardware(cfg):
    etree.SubElement(_node(cfg, "/VirtualBox/Machine/Hardware"), "Tape")


def _second_memory(cfg):
    etree.SubElement(_node(cfg, "/VirtualBox/Machine/Hardware"), "Memory", RAMSize="1024")


def _controllers_in_hardware(cfg):
    # 1.16 keeps storage controllers next to the hardware section
    controllers = _node(cfg, "/VirtualBox/Machine/StorageControllers")
    _node(cfg, "/VirtualBox/Machine/Hardware").append(controllers)


def _unknown_controller_type(cfg):
    _node(cfg, "/VirtualBox/Machine/StorageControllers/StorageController").set("type", "Tape")


def _no_hardware(cfg):
    cfg.config.remove_nodes("/VirtualBox/Machine", "Hardware")


def _disk_without_location(cfg):
    del _node(cfg, "/VirtualBox/Machine/MediaRegistry/HardDisks/HardDisk").attrib["location"]


def _adapter_without_slot(cfg):
    del _node(cfg, "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='1']").attrib["slot"]


def _textual_ram(cfg):
    cfg.add_ram("lots")


@pytest.mark.unit
class TestVirtualBoxSchema:
    def test_filled_template_is_valid(self, filled):
        filled.validate()

    def test_generated_sections_are_valid(self, filled):
        filled.select_option(ConfigurationGroup.USB_SPEED, "")
        filled.select_option(ConfigurationGroup.SOUND_CARD_MODEL, "SB16")
        filled.select_option(ConfigurationGroup.NIC_MODEL, "virtio")
        filled.add_floppy(0, None, True)
        filled.add_ethernet(EtherType.NAT)
        filled.transform_editable()
        filled.transform_non_persistent()

        # OpenSLX marker and ExtraData after Hardware
        assert _node(filled, "/VirtualBox/OpenSLX/USB") is not None
        filled.validate()

    def test_placeholder_values_fail(self, vbox):
        with pytest.raises(SchemaValidationFailed):
            vbox.validate()

    @pytest.mark.parametrize(
        "corrupt",
        [
            _drop_port,
            _unknown_hardware,
            _second_memory,
            _controllers_in_hardware,
            _unknown_controller_type,
            _no_hardware,
            _disk_without_location,
            _adapter_without_slot,
            _textual_ram,
        ],
    )
    def test_well_formed_but_invalid_structure_fails(self, filled, corrupt):
        corrupt(filled)

        with pytest.raises(SchemaValidationFailed):
            filled.validate()


@pytest.mark.unit
class TestVirtualBoxOptions:
    def test_selected_options(self, vbox):
        assert _selected(vbox, ConfigurationGroup.SOUND_CARD_MODEL) == "HDA"
        assert _selected(vbox, ConfigurationGroup.GFX_TYPE) == "true"
        assert _selected(vbox, ConfigurationGroup.NIC_MODEL) == "82540EM"
        assert _selected(vbox, ConfigurationGroup.USB_SPEED) == "EHCI"
        assert vbox.get_option_group(ConfigurationGroup.HW_VERSION) is None

    def test_disable_sound_and_nic(self, vbox):
        vbox.select_option(ConfigurationGroup.SOUND_CARD_MODEL, "")
        vbox.select_option(ConfigurationGroup.NIC_MODEL, "")

        assert _node(vbox, "/VirtualBox/Machine/Hardware/AudioAdapter").get("enabled") == "false"
        adapter = _node(vbox, "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']")
        assert adapter.get("enabled") == "false"
        assert adapter.get("type") == "Am79C970A"
        assert _selected(vbox, ConfigurationGroup.NIC_MODEL) == ""

    def test_usb3(self, vbox):
        assert vbox.set_max_usb_speed(Usb.USB3_0)

        controllers = vbox.config.find_nodes("/VirtualBox/Machine/Hardware/USB/Controllers/Controller")
        assert [c.get("type") for c in controllers] == ["XHCI"]
        assert vbox.get_max_usb_speed() == Usb.USB3_0

    def test_usb_disabled_survives_a_reparse(self, vbox):
        vbox.select_option(ConfigurationGroup.USB_SPEED, "")

        assert vbox.config.find_nodes("/VirtualBox/Machine/Hardware/USB") == []
        assert _node(vbox, "/VirtualBox/OpenSLX/USB").get("disabled") == "true"

        again = VirtualBoxConfiguration(vbox.get_configuration_bytes())
        assert again.get_max_usb_speed() == Usb.NONE

    def test_gfx(self, vbox):
        vbox.select_option(ConfigurationGroup.GFX_TYPE, "false")

        assert _node(vbox, "/VirtualBox/Machine/Hardware/Display").get("accelerate3D") == "false"


@pytest.mark.unit
class TestVirtualBoxTransformations:
    def test_editable_disables_extra_adapters(self, vbox):
        vbox.transform_editable()

        assert _node(vbox, "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='1']").get("enabled") == "false"
        assert _node(vbox, "/VirtualBox/Machine/Hardware/Network/Adapter[@slot='0']").get("enabled") == "true"

    def test_non_persistent(self, vbox):
        vbox.transform_non_persistent()

        items = vbox.config.find_nodes("/VirtualBox/Machine/ExtraData/ExtraDataItem")
        assert len(items) == 7
        assert {i.get("name"): i.get("value") for i in items}["GUI/LastCloseAction"] == "PowerOff"
        assert vbox.config.find_nodes("/VirtualBox/Machine/Hardware/Network/Adapter[@slot='1']") == []

    def test_non_persistent_twice_does_not_duplicate(self, vbox):
        vbox.transform_non_persistent()
        vbox.transform_non_persistent()

        assert len(vbox.config.find_nodes("/VirtualBox/Machine/ExtraData/ExtraDataItem")) == 7

    def test_privacy_is_a_no_op(self, vbox):
        before = vbox.get_configuration_bytes()

        vbox.transform_privacy()

        assert vbox.get_configuration_bytes() == before
