# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the libvirt domain XML accessors."""
from __future__ import annotations

import pytest
from vmexchange.core.exceptions import MalformedStructure, SchemaValidationFailed
from vmexchange.libvirt.domain import (
    BusType,
    DiskDevice,
    Domain,
    GraphicsSpice,
    GraphicsVnc,
    InterfaceType,
    StorageType,
    decode_memory,
    encode_memory,
)


@pytest.fixture
def domain(fixtures_dir) -> Domain:
    return Domain((fixtures_dir / "configs" / "win10.xml").read_bytes())


@pytest.mark.unit
class TestMemoryUnits:
    @pytest.mark.parametrize(
        "value,unit,expected",
        [("1", None, 1024), ("1", "KiB", 1024), ("2", "MiB", 2 * 1024 ** 2), ("1", "GB", 10 ** 9), ("7", "b", 7)],
    )
    def test_decode(self, value, unit, expected):
        assert decode_memory(value, unit) == expected

    @pytest.mark.parametrize("value,unit", [(None, "KiB"), ("1", "parsecs"), ("lots", "KiB")])
    def test_decode_invalid(self, value, unit):
        assert decode_memory(value, unit) is None

    def test_encode(self):
        assert encode_memory(2 * 1024 ** 3, "MiB") == "2048"
        assert encode_memory(1, "parsecs") is None


@pytest.mark.unit
class TestDomainReading:
    def test_general(self, domain):
        assert domain.type == "kvm"
        assert domain.name == "win10"
        assert domain.uuid == "8dc5433c-0228-49e4-b019-fa2b606aa544"
        assert domain.memory == 4194304 * 1024
        assert domain.current_memory == domain.memory
        assert domain.vcpu == 2
        assert domain.os_type == "hvm"
        assert domain.os_arch == "x86_64"
        assert domain.os_machine == "pc-q35-4.1"
        assert domain.libosinfo_os_id == "http://microsoft.com/win/10"

    def test_devices_are_typed(self, domain):
        disks = domain.disk_devices()
        assert [d.device for d in disks] == [DiskDevice.STORAGE, DiskDevice.CDROM]
        assert disks[0].bus is BusType.VIRTIO
        assert disks[0].storage_type is StorageType.FILE
        assert disks[1].read_only
        assert not disks[0].read_only
        assert len(domain.disk_storage_devices()) == 1
        assert len(domain.disk_cdrom_devices()) == 1
        assert domain.disk_floppy_devices() == []

    def test_other_devices(self, domain):
        iface = domain.interface_devices()[0]
        assert iface.type is InterfaceType.NETWORK
        assert iface.source == "default"
        assert iface.mac_address == "52:54:00:aa:bb:cc"
        assert isinstance(domain.graphics_devices()[0], GraphicsSpice)
        assert not domain.graphics_spice_devices()[0].opengl
        assert [c.model for c in domain.usb_controller_devices()] == ["qemu-xhci"]
        assert [s.model for s in domain.sound_devices()] == ["ich9"]
        assert domain.video_devices()[0].model == "virtio"

    def test_vnc_graphics(self, fixtures_dir):
        domain = Domain((fixtures_dir / "configs" / "minimal.xml").read_bytes())

        assert isinstance(domain.graphics_devices()[0], GraphicsVnc)
        assert domain.graphics_spice_devices() == []
        assert domain.libosinfo_os_id is None
        assert domain.vcpu is None

    def test_unknown_interface_type_is_ignored(self):
        domain = Domain(b'<domain type="kvm"><name>d</name><devices><interface type="user"/></devices></domain>')

        assert domain.interface_devices() == []

    def test_no_devices(self):
        domain = Domain(b'<domain type="test"><name>d</name></domain>')

        assert domain.devices() == []


@pytest.mark.unit
class TestDomainEditing:
    def test_interface_source_follows_type(self, domain):
        iface = domain.interface_devices()[0]

        iface.type = InterfaceType.BRIDGE

        assert dict(iface.element.find("source").attrib) == {"bridge": "default"}

    def test_interface_removals(self, domain):
        iface = domain.interface_devices()[0]
        iface.remove_mac_address()
        iface.remove_source()

        assert iface.mac_address is None
        assert iface.source is None

    def test_empty_interface_sources(self, domain):
        domain.remove_interface_devices_source()

        assert domain.interface_devices()[0].element.find("source").get("network") == ""
        domain.validate()

    def test_acceleration_needs_virtio(self):
        domain = Domain(
            b'<domain type="kvm"><name>d</name><devices><video><model type="cirrus"/></video></devices></domain>'
        )
        video = domain.video_devices()[0]

        video.accel3d = True

        assert not video.accel3d

    def test_remove_boot_order(self, domain):
        domain.remove_boot_order()

        assert domain.element.find("os/boot") is None
        assert domain.disk_storage_devices()[0].element.find("boot") is None

    def test_new_devices_land_in_devices(self):
        domain = Domain(b'<domain type="kvm"><name>d</name></domain>')

        disk = domain.add_disk_storage_device()
        disk.bus = BusType.SATA
        disk.target_device = "sda"
        disk.set_storage(StorageType.FILE, "/tmp/a.qcow2")
        domain.add_graphics_spice_device().opengl = True

        assert domain.disk_storage_devices()[0].storage_source == "/tmp/a.qcow2"
        assert domain.graphics_spice_devices()[0].opengl
        domain.validate()

    def test_network_interface_and_detach(self, domain):
        iface = domain.add_interface_network_device()
        iface.source = "isolated"
        iface.model = "virtio"

        assert [i.source for i in domain.interface_devices()] == ["default", "isolated"]
        assert iface.type is InterfaceType.NETWORK

        domain.interface_devices()[0].detach()

        assert [i.source for i in domain.interface_devices()] == ["isolated"]
        domain.validate()

    def test_title_and_description(self, domain):
        domain.title = "Lab"
        domain.description = "Shared image"

        assert domain.title == "Lab"
        assert domain.description == "Shared image"


@pytest.mark.unit
class TestDomainValidation:
    def test_malformed_xml(self):
        with pytest.raises(MalformedStructure):
            Domain(b"<domain type='kvm'><name>")

    def test_disk_needs_a_target(self):
        data = b'<domain type="kvm"><name>d</name><devices><disk type="file" device="disk"/></devices></domain>'

        with pytest.raises(SchemaValidationFailed):
            Domain(data)

        # validation can be deferred
        assert Domain(data, validate=False).disk_devices()[0].target_device is None

    def test_empty_name(self):
        with pytest.raises(SchemaValidationFailed):
            Domain(b'<domain type="kvm"><name></name></domain>')

    @pytest.mark.parametrize(
        "body",
        [
            "<uuid>not-a-uuid</uuid>",
            '<memory unit="parsecs">1024</memory>',
            "<memory>-1</memory>",
            "<currentMemory>lots</currentMemory>",
            "<vcpu>0</vcpu>",
            '<vcpu placement="everywhere">2</vcpu>',
            "<os><type>dos</type></os>",
            '<devices><interface type="tokenring"/></devices>',
            '<devices><interface type="network"><mac address="52:54:00"/></interface></devices>',
            "<devices><graphics/></devices>",
            '<devices><disk device="disk"><target dev="vda" bus="floppybus"/></disk></devices>',
        ],
    )
    def test_typed_header_and_devices(self, body):
        with pytest.raises(SchemaValidationFailed):
            Domain(f'<domain type="kvm"><name>d</name>{body}</domain>'.encode())

    def test_accepted_header(self):
        domain = Domain(
            b'<domain type="kvm"><name>d</name><uuid>8dc5433c022849e4b019fa2b606aa544</uuid>'
            b'<memory unit="MiB" dumpCore="off">512</memory><vcpu placement="auto" current="1">2</vcpu>'
            b'<devices><interface type="user"><mac address="52:54:00:AA:bb:01"/></interface>'
            b'<graphics type="egl-headless"/></devices></domain>'
        )

        assert domain.memory == 512 * 1024 ** 2
        assert domain.vcpu == 2
