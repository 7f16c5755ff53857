# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/catalog.py
"""
Operating system catalog.

Each entry maps a canonical OS to the identifiers the individual virtualizers
use for it (``windows9-64`` for VMware, ``Windows10_64`` for VirtualBox ...).
The bundled catalog lives in ``resources/catalog/os_catalog.yaml``; a
different YAML file with the same layout can be passed instead.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from .core.exceptions import Fatal, wrap_io
from .core.resources import CATALOG_DIR

logger = logging.getLogger(__name__)

DEFAULT_CATALOG = CATALOG_DIR / "os_catalog.yaml"


@dataclass(frozen=True)
class OperatingSystem:
    os_id: int
    os_name: str
    virtualizer_os_id: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    architecture: str = ""
    max_mem_mb: int = 0
    max_cores: int = 0

    def vendor_id(self, virt_id: str) -> Optional[str]:
        return self.virtualizer_os_id.get(virt_id)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OperatingSystem":
        try:
            return cls(
                os_id=int(d["id"]),
                os_name=str(d["name"]),
                virtualizer_os_id={str(k): str(v) for k, v in (d.get("virtualizer_os_id") or {}).items()},
                architecture=str(d.get("architecture") or ""),
                max_mem_mb=int(d.get("max_mem_mb") or 0),
                max_cores=int(d.get("max_cores") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise Fatal(code=2, msg=f"Invalid OS catalog entry: {e}", cause=e, context={"entry": d}) from e


def os_of_virtualizer(
    os_list: Iterable[OperatingSystem], virt_id: str, vendor_os_id: Optional[str]
) -> Optional[OperatingSystem]:
    """First OS whose mapping for ``virt_id`` equals ``vendor_os_id``."""
    if vendor_os_id is None:
        return None
    for os_candidate in os_list:
        if os_candidate.virtualizer_os_id.get(virt_id) == vendor_os_id:
            return os_candidate
    return None


def load_os_catalog(path: Optional[Union[str, Path]] = None) -> List[OperatingSystem]:
    """
    Load an OS catalog YAML file (a top-level ``operating_systems`` list).

    Raises:
        IOFailure: the file cannot be read
        Fatal: the YAML is malformed
    """
    p = Path(path) if path else DEFAULT_CATALOG
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise wrap_io(f"Cannot read OS catalog '{p}': {e.strerror or e}", e, path=str(p)) from e

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise Fatal(code=2, msg=f"Invalid OS catalog YAML '{p}': {e}", cause=e) from e

    entries = data.get("operating_systems") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise Fatal(code=2, msg=f"OS catalog '{p}' must contain a list of operating systems")

    out = [OperatingSystem.from_dict(e) for e in entries]
    logger.debug("Loaded %d operating systems from %s", len(out), p)
    return out


__all__ = ["OperatingSystem", "os_of_virtualizer", "load_os_catalog", "DEFAULT_CATALOG"]
