# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/core/__init__.py
from .exceptions import (
    ConfigurationError,
    DiskImageError,
    Fatal,
    IOFailure,
    MalformedStructure,
    SchemaValidationFailed,
    TransformationError,
    UnknownFormat,
    UnrecognizedFormat,
    UnsupportedSchemaVersion,
    VmExchangeError,
)

__all__ = [
    "ConfigurationError",
    "DiskImageError",
    "Fatal",
    "IOFailure",
    "MalformedStructure",
    "SchemaValidationFailed",
    "TransformationError",
    "UnknownFormat",
    "UnrecognizedFormat",
    "UnsupportedSchemaVersion",
    "VmExchangeError",
]
