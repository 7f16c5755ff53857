# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/__init__.py
from .base import (
    ConfigurableOptionGroup,
    DriveBusType,
    EtherType,
    HardDisk,
    OptionValue,
    VirtualizationConfiguration,
)
from .dispatcher import detect
from .docker import DockerConfiguration
from .logic import DownloadData, DownloadLogic, StatelessData, StatelessLogic, UploadData, UploadLogic
from .qemu import QemuConfiguration
from .transformation import Transformation, TransformationManager
from .virtualbox import VirtualBoxConfiguration
from .vmware import VmwareConfiguration

__all__ = [
    "ConfigurableOptionGroup",
    "DriveBusType",
    "EtherType",
    "HardDisk",
    "OptionValue",
    "VirtualizationConfiguration",
    "detect",
    "DockerConfiguration",
    "QemuConfiguration",
    "VirtualBoxConfiguration",
    "VmwareConfiguration",
    "Transformation",
    "TransformationManager",
    "UploadLogic",
    "DownloadLogic",
    "StatelessLogic",
    "UploadData",
    "DownloadData",
    "StatelessData",
]
