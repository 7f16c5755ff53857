# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for QEMU codec helpers."""
from __future__ import annotations

import pytest
from vmexchange.configuration import qemu_utils
from vmexchange.configuration.base import DriveBusType
from vmexchange.libvirt.domain import BusType, Domain
from vmexchange.version import Version


@pytest.mark.unit
class TestDeviceNames:
    @pytest.mark.parametrize("prefix,number,expected", [("vd", 0, "vda"), ("sd", 2, "sdc"), ("hd", 24, "hdy")])
    def test_alphabetical(self, prefix, number, expected):
        assert qemu_utils.create_alphabetical_device_name(prefix, number) == expected

    @pytest.mark.parametrize("number", [-1, 25, 100])
    def test_out_of_range(self, number):
        with pytest.raises(ValueError):
            qemu_utils.create_alphabetical_device_name("vd", number)

    def test_next_free_name_per_bus(self):
        domain = Domain(
            b'<domain type="kvm"><name>d</name><devices>'
            b'<disk type="file" device="disk"><target dev="vda" bus="virtio"/></disk>'
            b'<disk type="file" device="disk"><target dev="vdb" bus="virtio"/></disk>'
            b'<disk type="file" device="cdrom"><target dev="sda" bus="sata"/></disk>'
            b"</devices></domain>"
        )

        assert qemu_utils.create_device_name(domain, BusType.VIRTIO) == "vdc"
        assert qemu_utils.create_device_name(domain, BusType.SATA) == "sdb"
        assert qemu_utils.create_device_name(domain, BusType.IDE) == "hda"
        assert qemu_utils.create_device_name(domain, BusType.USB) is None
        assert qemu_utils.disk_names(domain) == ["vda", "vdb", "sda"]

    def test_gaps_are_reused(self):
        domain = Domain(
            b'<domain type="kvm"><name>d</name><devices>'
            b'<disk type="file" device="disk"><target dev="vda" bus="virtio"/></disk>'
            b'<disk type="file" device="disk"><target dev="vdc" bus="virtio"/></disk>'
            b"</devices></domain>"
        )

        assert qemu_utils.create_device_name(domain, BusType.VIRTIO) == "vdb"

    def test_full_bus(self):
        disks = "".join(
            f'<disk type="file" device="disk"><target dev="vd{chr(ord("a") + i)}" bus="virtio"/></disk>'
            for i in range(25)
        )
        domain = Domain(f'<domain type="kvm"><name>d</name><devices>{disks}</devices></domain>'.encode())

        with pytest.raises(ValueError):
            qemu_utils.create_device_name(domain, BusType.VIRTIO)


@pytest.mark.unit
class TestMachineTypes:
    def test_parse(self):
        assert qemu_utils.get_os_machine_name("pc-q35-4.1") == "pc-q35"
        assert qemu_utils.get_os_machine_version("pc-i440fx-2.12") == Version(2, 12)

    @pytest.mark.parametrize("machine", [None, "", "q35", "pc-q35-latest"])
    def test_unversioned(self, machine):
        assert qemu_utils.get_os_machine_name(machine) is None
        assert qemu_utils.get_os_machine_version(machine) is None

    def test_format(self):
        assert qemu_utils.format_os_machine_version(Version(3, 0)) == "3.0"
        assert qemu_utils.get_os_machine("pc-q35", "3.0") == "pc-q35-3.0"


@pytest.mark.unit
class TestMappings:
    def test_drive_bus(self):
        assert qemu_utils.to_drive_bus(BusType.IDE) is DriveBusType.IDE
        assert qemu_utils.to_drive_bus(BusType.SATA) is DriveBusType.SATA
        assert qemu_utils.to_drive_bus(BusType.SCSI) is DriveBusType.SCSI

    def test_buses_without_counterpart(self):
        assert qemu_utils.to_drive_bus(BusType.VIRTIO) is None
        assert qemu_utils.to_drive_bus(None) is None

    @pytest.mark.parametrize("arch,bits", [("x86_64", 64), ("i686", 32), ("aarch64", 64), ("armv7l", 32), ("z80", 0), (None, 0)])
    def test_arch_size(self, arch, bits):
        assert qemu_utils.get_os_arch_size(arch) == bits

    def test_array_index(self):
        assert qemu_utils.get_array_index(["a", "b"], 1) == "b"
        assert qemu_utils.get_array_index(["a", "b"], 2) is None
        assert qemu_utils.get_array_index(["a", "b"], -1) is None
