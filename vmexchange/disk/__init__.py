# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/disk/__init__.py
from .image import DiskImage, ImageFormat
from .probe import probe, probe_file

__all__ = ["DiskImage", "ImageFormat", "probe", "probe_file"]
