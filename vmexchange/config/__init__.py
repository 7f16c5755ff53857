# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/config/__init__.py
from .config_loader import Config, deep_merge_dict

__all__ = ["Config", "deep_merge_dict"]
