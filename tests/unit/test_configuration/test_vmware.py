# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for the VMware .vmx codec."""
from __future__ import annotations

from pathlib import Path

import pytest
from vmexchange.configuration.base import DriveBusType, EtherType, HardDisk
from vmexchange.configuration.vmware import VmwareConfiguration
from vmexchange.hardware import ConfigurationGroup, Usb
from vmexchange.version import Version


@pytest.fixture
def vmx(fixtures_dir, os_list) -> VmwareConfiguration:
    return VmwareConfiguration.from_file(fixtures_dir / "configs" / "windows10.vmx", os_list)


def _selected(config, group):
    return config.get_option_group(group).selected.id


@pytest.mark.unit
class TestVmwareParsing:
    def test_normalized_view(self, vmx):
        assert vmx.display_name == "Windows 10 Test"
        assert vmx.os is not None
        assert vmx.os.os_name == "Windows 10 (64 Bit)"
        assert vmx.file_name_extension == "vmx"
        assert not vmx.is_machine_snapshot
        assert vmx.get_virtualizer_version() == Version(14)

    def test_disks_are_folded_into_markers(self, vmx):
        assert vmx.hdds == [HardDisk(None, DriveBusType.SATA, "Windows 10 Test.vmdk")]
        assert vmx.get_value("sata0:0.fileName") is None
        assert vmx.get_value("#SLX_HDD_BUS") == "SATA"
        # the cdrom on the same controller stays
        assert vmx.get_value("sata0:1.deviceType") == "cdrom-raw"

    def test_values_are_unescaped(self, vmx):
        assert vmx.get_value("annotation") == 'Contains "quotes" and a pipe |'
        assert 'annotation = "Contains |22quotes|22 and a pipe |7C"' in vmx.get_configuration_string()

    def test_stored_template(self, fixtures_dir):
        cfg = VmwareConfiguration.from_file(fixtures_dir / "configs" / "template.vmx")

        assert cfg.hdds == [HardDisk("lsilogic", DriveBusType.IDE, "empty")]
        assert cfg.display_name is None
        assert cfg.os is None

    def test_usb_fix_for_old_exports(self):
        cfg = VmwareConfiguration(b'virtualHW.version = "10"\nehci.present = "TRUE"\n')

        assert cfg.get_value("usb.present") == "TRUE"

    def test_unknown_hardware_version(self):
        cfg = VmwareConfiguration(b'virtualHW.version = "5"\n')

        assert cfg.get_virtualizer_version() is None


@pytest.mark.unit
class TestVmwareOptions:
    def test_selected_options(self, vmx):
        assert _selected(vmx, ConfigurationGroup.SOUND_CARD_MODEL) == "hdaudio"
        assert _selected(vmx, ConfigurationGroup.NIC_MODEL) == "e1000e"
        assert _selected(vmx, ConfigurationGroup.USB_SPEED) == "2"
        assert _selected(vmx, ConfigurationGroup.GFX_TYPE) == "TRUE"
        assert _selected(vmx, ConfigurationGroup.HW_VERSION) == "14"
        assert vmx.get_max_usb_speed() == Usb.USB2_0

    def test_sound_none(self, vmx):
        assert vmx.select_option(ConfigurationGroup.SOUND_CARD_MODEL, "none")

        assert vmx.get_value("sound.present") == "FALSE"
        assert vmx.get_value("sound.virtualDev") is None
        assert _selected(vmx, ConfigurationGroup.SOUND_CARD_MODEL) == "none"

    def test_nic_default_removes_device(self, vmx):
        vmx.select_option(ConfigurationGroup.NIC_MODEL, "")

        assert vmx.get_value("ethernet0.virtualDev") is None
        assert _selected(vmx, ConfigurationGroup.NIC_MODEL) == ""

    def test_usb_speeds(self, vmx):
        assert vmx.set_max_usb_speed(Usb.USB3_0)
        assert vmx.get_value("usb_xhci.present") == "TRUE"
        assert vmx.get_max_usb_speed() == Usb.USB3_0

        vmx.select_option(ConfigurationGroup.USB_SPEED, "1")
        assert vmx.get_value("ehci.present") is None
        assert vmx.get_value("usb.mangleUsb3Speed") == "TRUE"

        vmx.select_option(ConfigurationGroup.USB_SPEED, "0")
        assert vmx.get_value("usb.present") is None
        assert vmx.get_max_usb_speed() == Usb.NONE

    def test_graphics(self, vmx):
        vmx.select_option(ConfigurationGroup.GFX_TYPE, "FALSE")

        assert vmx.get_value("mks.enable3d") == "FALSE"
        assert _selected(vmx, ConfigurationGroup.GFX_TYPE) == "FALSE"

    def test_hardware_version(self, vmx):
        assert vmx.select_option(ConfigurationGroup.HW_VERSION, "18")
        assert vmx.get_value("virtualHW.version") == "18"
        assert not vmx.select_option(ConfigurationGroup.HW_VERSION, "99")


@pytest.mark.unit
class TestVmwareMutations:
    def test_sata_disk_becomes_sas(self, vmx):
        assert vmx.add_hdd_template(Path("/images/disk.vmdk"))

        assert vmx.get_value("scsi0.present") == "TRUE"
        assert vmx.get_value("scsi0.virtualDev") == "lsisas1068"
        assert vmx.get_value("scsi0:0.deviceType") == "disk"
        assert vmx.get_value("scsi0:0.fileName") == "disk.vmdk"
        assert vmx.get_value("#SLX_HDD_BUS") is None

    def test_empty_template(self, fixtures_dir):
        cfg = VmwareConfiguration.from_file(fixtures_dir / "configs" / "template.vmx")

        assert cfg.add_empty_hdd_template()

        assert cfg.get_value("ide0.virtualDev") == "lsilogic"
        assert cfg.get_value("ide0:0.fileName") == "%VM_DISK_PATH%"
        assert cfg.get_value("ide0:0.mode") == "%VM_DISK_MODE%"
        assert cfg.get_value("ide0:0.redoLogDir") == "%VM_DISK_REDOLOGDIR%"

    def test_hdd_template_needs_a_disk(self):
        cfg = VmwareConfiguration(b'virtualHW.version = "10"\n')

        assert not cfg.add_hdd_template("disk.vmdk")
        assert not cfg.add_hdd_template("")

    def test_ethernet(self, vmx):
        assert vmx.add_ethernet(EtherType.HOST_ONLY)

        assert vmx.get_value("ethernet1.connectionType") == "custom"
        assert vmx.get_value("ethernet1.vnet") == "vmnet2"
        assert vmx.get_value("ethernet1.virtualDev") == "e1000e"

    def test_default_nat(self):
        cfg = VmwareConfiguration(b'virtualHW.version = "10"\n')

        assert cfg.add_default_nat()
        assert cfg.get_value("ethernet0.connectionType") == "nat"

    def test_cdroms_fill_free_ports(self, vmx):
        assert vmx.add_cdrom(None)
        assert vmx.add_cdrom("/isos/tools.iso")

        assert vmx.get_value("ide0:0.deviceType") == "cdrom-raw"
        assert vmx.get_value("ide0:0.autodetect") == "TRUE"
        assert vmx.get_value("ide0:1.deviceType") == "cdrom-image"
        assert vmx.get_value("ide0:1.fileName") == "/isos/tools.iso"

    def test_cdrom_ports_exhausted(self):
        data = b'virtualHW.version = "10"\n' + b"".join(
            f'{p}.present = "TRUE"\n'.encode() for p in ("ide0:0", "ide0:1", "ide1:0", "ide1:1", "scsi0:1")
        )
        cfg = VmwareConfiguration(data)

        assert not cfg.add_cdrom(None)

    def test_floppies(self, vmx):
        vmx.add_floppy(0, None, True)
        vmx.add_floppy(1, "boot.img", True)

        assert vmx.get_value("floppy0.fileType") == "device"
        assert vmx.get_value("floppy0.startConnected") == "FALSE"
        assert vmx.get_value("floppy1.fileName") == "boot.img"
        assert vmx.get_value("floppy1.readonly") == "TRUE"

    def test_machine_settings(self, vmx):
        vmx.add_display_name("Renamed")
        vmx.add_ram(2048)
        vmx.add_cpu_core_count(1)
        vmx.set_os("ubuntu-64")
        vmx.set_virtualizer_version(Version(16))

        assert vmx.display_name == "Renamed"
        assert vmx.get_value("memsize") == "2048"
        assert vmx.get_value("numvcpus") == "1"
        assert vmx.os.os_name == "Ubuntu (64 Bit)"
        assert vmx.get_virtualizer_version() == Version(16)


@pytest.mark.unit
class TestVmwareTransformations:
    def test_privacy(self, vmx):
        vmx.add_hdd_template("disk.vmdk")

        vmx.transform_privacy()

        for key in ("displayName", "memsize", "nvram", "extendedConfigFile", "gui.lastPoweredViewMode"):
            assert vmx.get_value(key) is None, key
        assert vmx.get_value("scsi0:0.fileName") is None
        # values without a path stay
        assert vmx.get_value("sata0:1.fileName") == "auto detect"
        assert vmx.get_value("guestOS") == "windows9-64"

    def test_editable(self, fixtures_dir):
        cfg = VmwareConfiguration.from_file(fixtures_dir / "configs" / "template.vmx")

        cfg.transform_editable()

        assert cfg.get_value("gui.applyHostDisplayScalingToGuest") == "FALSE"
        assert cfg.get_max_usb_speed() == Usb.USB2_0

    def test_editable_keeps_usb3(self, vmx):
        vmx.set_max_usb_speed(Usb.USB3_0)

        vmx.transform_editable()

        assert vmx.get_max_usb_speed() == Usb.USB3_0

    def test_non_persistent(self, vmx):
        vmx.transform_non_persistent()

        assert vmx.get_value("suspend.disabled") == "TRUE"
        assert vmx.get_value("memsize") is None
        assert vmx.get_value("ethernet0.connectionType") is None
        assert vmx.get_value("ethernet0.virtualDev") == "e1000e"
        assert vmx.get_value("guestOS") == "windows9-64"

    def test_filtered_bytes(self, vmx):
        vmx.add_display_name("Lab VM")

        text = vmx.get_filtered_bytes().decode("utf-8")

        assert 'displayName = "Lab VM"' in text
        assert "nvram" not in text
        assert 'guestOS = "windows9-64"' in text
