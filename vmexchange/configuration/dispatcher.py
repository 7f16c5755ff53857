# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/dispatcher.py
"""Pick the codec for a machine descriptor by trying each one on its content."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Type, Union

from ..catalog import OperatingSystem
from ..core.exceptions import ConfigurationError, UnrecognizedFormat
from ..core.logger import Log
from .base import VirtualizationConfiguration
from .docker import DockerConfiguration
from .qemu import QemuConfiguration
from .virtualbox import VirtualBoxConfiguration
from .vmware import VmwareConfiguration

logger = logging.getLogger(__name__)

# probing order; the first codec that accepts the content wins
CODECS: Tuple[Type[VirtualizationConfiguration], ...] = (
    VmwareConfiguration,
    VirtualBoxConfiguration,
    QemuConfiguration,
    DockerConfiguration,
)

Source = Union[bytes, str, Path]


def detect(
    source: Source,
    os_list: Optional[Iterable[OperatingSystem]] = None,
    *,
    codecs: Sequence[Type[VirtualizationConfiguration]] = CODECS,
) -> VirtualizationConfiguration:
    """
    Parse ``source`` with the first codec that accepts it.

    ``bytes`` are taken as descriptor content, ``str`` and ``Path`` as a file
    path. The file name extension is never consulted.

    Raises:
        UnrecognizedFormat: no codec accepted the content
        IOFailure: the file could not be read
    """
    os_list = list(os_list) if os_list is not None else []
    from_file = not isinstance(source, (bytes, bytearray))
    rejections: List[str] = []

    for codec in codecs:
        try:
            if from_file:
                config = codec.from_file(source, os_list)  # type: ignore[attr-defined]
            else:
                config = codec(bytes(source), os_list)  # type: ignore[call-arg]
        except ConfigurationError as e:
            Log.trace(logger, "%s rejected the descriptor: %s", codec.__name__, e.msg)
            rejections.append(f"{codec.__name__}: {e.msg}")
            continue
        logger.debug("Descriptor recognized by %s", codec.__name__)
        return config

    what = f"'{source}'" if from_file else "given content"
    raise UnrecognizedFormat(
        msg=f"Machine description {what} is not in a known format",
        context={"rejections": rejections},
    )


__all__ = ["detect", "CODECS"]
