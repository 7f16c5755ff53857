# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/hardware.py
"""Display names of virtual hardware models shown to users."""
from __future__ import annotations

from enum import Enum


class ConfigurationGroup(Enum):
    """Semantic axes of configurable hardware; the value is the i18n key and never changes."""

    NIC_MODEL = "E0VirtDev"
    USB_SPEED = "maxUSBSpeed"
    SOUND_CARD_MODEL = "sound"
    GFX_TYPE = "3DAcceleration"
    HW_VERSION = "HWVersion"


class SoundCard:
    NONE = "None"
    DEFAULT = "(default)"
    SOUND_BLASTER = "Sound Blaster 16"
    ES = "ES 1371"
    HD_AUDIO = "Intel Integrated HD Audio"
    AC = "Intel ICH Audio Codec 97"


class Ethernet:
    AUTO = "(default)"
    PCNET32 = "AMD PCnet32"
    E1000 = "Intel E1000 (PCI)"
    E1000E = "Intel E1000e (PCI-Express)"
    VMXNET = "VMXnet"
    VMXNET3 = "VMXnet 3"
    PCNETPCI2 = "PCnet-PCI II"
    PCNETFAST3 = "PCnet-FAST III"
    PRO1000MTD = "Intel PRO/1000 MT Desktop"
    PRO1000TS = "Intel PRO/1000 T Server"
    PRO1000MTS = "Intel PRO/1000 MT Server"
    PARAVIRT = "Paravirtualized Network"
    NONE = "No Network Card"


class Usb:
    NONE = "None"
    USB1_1 = "USB 1.1"
    USB2_0 = "USB 2.0"
    USB3_0 = "USB 3.0"


__all__ = ["ConfigurationGroup", "SoundCard", "Ethernet", "Usb"]
