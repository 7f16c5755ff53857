# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/docker.py
"""
Container build contexts.

The descriptor is an opaque gzip compressed tarball; it is only recognized by
its gzip magic and passed through unchanged. Mutations report success without
touching it so that generic logics can run over containers too.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Union

from ..catalog import OperatingSystem
from ..core.exceptions import UnrecognizedFormat, wrap_io
from ..version import Version
from ..virtualizer import DOCKER
from .base import DiskImagePath, EtherType, VirtualizationConfiguration

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

DEFAULT_DISPLAY_NAME = "Docker container"


class DockerConfiguration(VirtualizationConfiguration):
    FILE_NAME_EXTENSION = None

    def __init__(
        self,
        data: bytes,
        os_list: Optional[Iterable[OperatingSystem]] = None,
        *,
        name: Optional[str] = None,
    ):
        if not data.startswith(GZIP_MAGIC):
            logger.debug("Not supported content, expected a tar.gz build context")
            raise UnrecognizedFormat(msg="Container definition is not tar.gz encoded content!")
        self.container_definition = data
        super().__init__(DOCKER, os_list)
        self.display_name = name or DEFAULT_DISPLAY_NAME

    @classmethod
    def from_file(cls, path: Union[str, Path], os_list: Optional[Iterable[OperatingSystem]] = None) -> "DockerConfiguration":
        p = Path(path)
        try:
            data = p.read_bytes()
        except OSError as e:
            raise wrap_io(f"Couldn't read container definition '{p}': {e.strerror or e}", e, path=str(p)) from e
        # "ubuntu.tar.gz" -> "ubuntu"
        return cls(data, os_list, name=p.name.split(".", 1)[0] or None)

    def register_virtual_hw(self) -> None:
        return None

    def add_empty_hdd_template(self) -> bool:
        return True

    def add_hdd_template(
        self, disk_image: DiskImagePath, hdd_mode: Optional[str] = None, redo_dir: Optional[str] = None
    ) -> bool:
        # an image file is accepted, a templated path has no meaning here
        return isinstance(disk_image, Path)

    def add_default_nat(self) -> bool:
        return True

    def set_os(self, vendor_os_id: str) -> None:
        return None

    def add_display_name(self, name: str) -> bool:
        return True

    def add_ram(self, mem_mb: int) -> bool:
        return True

    def add_floppy(self, index: int, image: Optional[str], read_only: bool) -> None:
        return None

    def add_cdrom(self, image: Optional[str]) -> bool:
        return True

    def add_cpu_core_count(self, cores: int) -> bool:
        return True

    def add_ethernet(self, ether_type: EtherType) -> bool:
        return True

    def set_virtualizer_version(self, version: Optional[Version]) -> None:
        return None

    def get_virtualizer_version(self) -> Optional[Version]:
        return None

    def get_configuration_bytes(self) -> bytes:
        return self.container_definition

    def get_configuration_string(self) -> str:
        # binary payload, not text
        return self.container_definition.decode("latin-1")

    def validate(self) -> None:
        return None

    def transform_privacy(self) -> None:
        return None

    def transform_editable(self) -> None:
        return None

    def transform_non_persistent(self) -> None:
        return None


__all__ = ["DockerConfiguration", "GZIP_MAGIC"]
