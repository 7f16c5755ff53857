# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/core/resources.py
"""Locations of the data files shipped inside the package."""
from __future__ import annotations

from pathlib import Path

RESOURCES_DIR = Path(__file__).resolve().parent.parent / "resources"

VIRTUALBOX_XSD_DIR = RESOURCES_DIR / "virtualbox" / "xsd"
LIBVIRT_RNG_DIR = RESOURCES_DIR / "libvirt" / "rng"
LIBOSINFO_DIR = RESOURCES_DIR / "libvirt" / "osinfo"
CATALOG_DIR = RESOURCES_DIR / "catalog"


def resource_path(*parts: str) -> Path:
    """Return the path of a bundled resource; raises FileNotFoundError if it is missing."""
    p = RESOURCES_DIR.joinpath(*parts)
    if not p.is_file():
        raise FileNotFoundError(f"Bundled resource not found: {p}")
    return p


__all__ = [
    "RESOURCES_DIR",
    "VIRTUALBOX_XSD_DIR",
    "LIBVIRT_RNG_DIR",
    "LIBOSINFO_DIR",
    "CATALOG_DIR",
    "resource_path",
]
