# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/libvirt/__init__.py
from .domain import Domain
from .libosinfo import OsInfo, lookup_os

__all__ = ["Domain", "OsInfo", "lookup_os"]
