# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/cli/__init__.py
from .parser import build_parser, parse_args_with_config

__all__ = ["build_parser", "parse_args_with_config"]
