# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/__init__.py
"""Read, normalize and rewrite virtual machine descriptors and disk images."""

__version__ = "0.1.0"
