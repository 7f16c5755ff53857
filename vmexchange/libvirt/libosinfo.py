# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/libvirt/libosinfo.py
"""Lookups in the bundled libosinfo operating system database."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from ..core.exceptions import MalformedStructure
from ..core.resources import LIBOSINFO_DIR
from ..core.xml_utils import parse_xml, strip_namespaces
from ..version import Version

logger = logging.getLogger(__name__)

OSINFO_DB = LIBOSINFO_DIR / "osinfo.xml"


@dataclass(frozen=True)
class OsInfo:
    id: str
    name: Optional[str]
    version: Optional[Version] = None
    family: Optional[str] = None
    distro: Optional[str] = None


@lru_cache(maxsize=4)
def load_database(path: Path = OSINFO_DB) -> Dict[str, OsInfo]:
    """Map of libosinfo id (``http://microsoft.com/win/10``) to its entry."""
    root = strip_namespaces(parse_xml(path.read_bytes()))
    out: Dict[str, OsInfo] = {}
    for node in root.iterfind("os"):
        os_id = node.get("id")
        if not os_id:
            continue
        out[os_id] = OsInfo(
            id=os_id,
            name=node.findtext("name"),
            version=Version.value_of(node.findtext("version")),
            family=node.findtext("family"),
            distro=node.findtext("distro"),
        )
    logger.debug("Loaded %d libosinfo entries from %s", len(out), path)
    return out


def lookup_os(os_id: Optional[str], path: Path = OSINFO_DB) -> Optional[OsInfo]:
    """Entry for ``os_id`` or None; an unreadable database counts as no match."""
    if not os_id:
        return None
    try:
        return load_database(path).get(os_id)
    except (OSError, MalformedStructure) as e:
        logger.warning("libosinfo database %s unusable: %s", path, e)
        return None


__all__ = ["OsInfo", "load_database", "lookup_os", "OSINFO_DB"]
