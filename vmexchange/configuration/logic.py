# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/logic.py
"""
Configuration logics: the fixed transformation chains applied when a machine
descriptor is uploaded to the server, downloaded for local editing, or
handed to a stateless client for a single session.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..catalog import OperatingSystem
from ..core.exceptions import ConfigurationError, TransformationError
from ..hardware import Usb
from .base import EtherType, VirtualizationConfiguration
from .transformation import Transformation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadData:
    """Upload needs no arguments."""


@dataclass(frozen=True)
class DownloadData:
    display_name: str
    disk_image: Optional[Path]
    guest_os: Optional[OperatingSystem]
    virtualizer_id: Optional[str]
    total_memory: int


@dataclass(frozen=True)
class StatelessData:
    display_name: str
    os_id: Optional[str] = None
    has_usb_access: bool = False


class ConfigurationLogic(Transformation[VirtualizationConfiguration, object]):
    NAME = ""

    def __init__(self) -> None:
        super().__init__(self.NAME)

    @staticmethod
    def _check(config: Optional[VirtualizationConfiguration], args: object) -> None:
        if config is None or args is None:
            raise TransformationError(msg="Virtualization configuration or input arguments are missing!")

    @staticmethod
    def _run(step) -> None:
        try:
            step()
        except ConfigurationError as e:
            raise TransformationError(msg=e.msg, cause=e) from e


class UploadLogic(ConfigurationLogic):
    """Client to server: strip everything private before the descriptor is stored."""

    NAME = "Transformation of virtualization configuration during upload from client to server"

    def transform(self, config: VirtualizationConfiguration, args: UploadData) -> None:
        self._check(config, args)
        if config.display_name is None:
            raise TransformationError(msg="Display name is missing in virtualization configuration!")
        self._run(config.transform_privacy)


class DownloadLogic(ConfigurationLogic):
    """Server to client: make the machine runnable and editable on the user's host."""

    NAME = "Transformation of virtualization configuration during download from server to client"

    NUM_CPU_CORES = 1
    MEMORY_MIN = 1024

    @classmethod
    def memory_for_client(cls, total_memory: int, os_max_memory: int) -> int:
        """
        Half the host memory minus 512 MiB, at least 1 GiB, at most what the
        guest OS supports, rounded down to a multiple of 4 (VMware rejects
        anything else).

        Example:
            >>> DownloadLogic.memory_for_client(8192, 0)
            3584
            >>> DownloadLogic.memory_for_client(2048, 0)
            1024
        """
        memory = max(total_memory // 2 - 512, cls.MEMORY_MIN)
        if 0 < os_max_memory < memory:
            memory = os_max_memory
        return (memory // 4) * 4

    def _validate(self, config: VirtualizationConfiguration, args: DownloadData) -> None:
        self._check(config, args)
        if not args.display_name:
            raise TransformationError(msg="Valid display name is not specified!")
        if args.disk_image is None or not Path(args.disk_image).exists():
            raise TransformationError(msg="Valid disk image file is not specified!")
        if not args.total_memory > 0:
            raise TransformationError(msg="Total memory amount is not specified!")

    def transform(self, config: VirtualizationConfiguration, args: DownloadData) -> None:
        self._validate(config, args)

        if not config.add_display_name(args.display_name):
            raise TransformationError(msg="Can not set display name in virtualization configuration!")
        if not config.add_hdd_template(Path(args.disk_image), None, None):
            raise TransformationError(msg="Can not configure hard disk in virtualization configuration!")
        if not config.add_default_nat():
            raise TransformationError(msg="Can not configure NAT interface in virtualization configuration!")

        os_max_memory = 0
        if args.guest_os is not None and args.virtualizer_id is not None:
            vendor_os_id = args.guest_os.vendor_id(args.virtualizer_id)
            if vendor_os_id is not None:
                config.set_os(vendor_os_id)
            if args.guest_os.max_mem_mb > 0:
                os_max_memory = args.guest_os.max_mem_mb

        if not config.add_cpu_core_count(self.NUM_CPU_CORES):
            raise TransformationError(msg="Can not set CPU core count in virtualization configuration!")
        memory = self.memory_for_client(args.total_memory, os_max_memory)
        if not config.add_ram(memory):
            raise TransformationError(msg="Can not set memory in virtualization configuration!")

        # two empty floppy drives, an empty CD-ROM and one backed by the host drive
        config.add_floppy(0, None, True)
        config.add_floppy(1, None, True)
        config.add_cdrom("")
        config.add_cdrom(None)

        if config.get_max_usb_speed() != Usb.USB3_0:
            config.set_max_usb_speed(Usb.USB2_0)

        self._run(config.transform_editable)


class StatelessLogic(ConfigurationLogic):
    """Server to stateless client: a throw-away session on a lab machine."""

    NAME = "Transformation of virtualization configuration during download from server to stateless client"

    DEFAULT_ETHERNET_TYPE = EtherType.NAT

    def transform(self, config: VirtualizationConfiguration, args: StatelessData) -> None:
        self._check(config, args)
        if not args.display_name:
            raise TransformationError(msg="Valid display name is not specified!")

        self._run(config.transform_non_persistent)

        if not config.add_display_name(args.display_name):
            raise TransformationError(msg="Can not set display name in virtualization configuration!")
        if not config.add_empty_hdd_template():
            raise TransformationError(msg="Can not configure hard disk in virtualization configuration!")
        if not config.add_ethernet(self.DEFAULT_ETHERNET_TYPE):
            raise TransformationError(msg="Can not configure NAT interface in virtualization configuration!")
        if args.os_id is not None:
            config.set_os(args.os_id)
        if not args.has_usb_access:
            config.set_max_usb_speed(Usb.NONE)


__all__ = [
    "ConfigurationLogic",
    "UploadLogic",
    "DownloadLogic",
    "StatelessLogic",
    "UploadData",
    "DownloadData",
    "StatelessData",
]
