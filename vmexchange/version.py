# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/version.py
"""Two-part (major.minor) versions used for hypervisors and file formats."""
from __future__ import annotations

import functools
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

_VERSION_RE = re.compile(r"^\s*(\d+)(?:\.(\d+))?")


@functools.total_ordering
@dataclass(frozen=True)
class Version:
    """
    A version ordered by (major, minor); the optional name is descriptive only
    and does not take part in comparisons.

    Example:
        >>> Version.value_of("1.17") < Version(1, 18)
        True
        >>> Version(14, name="Workstation/Player 14") == Version(14)
        True
    """
    major: int
    minor: int = 0
    name: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.major < 0 or self.minor < 0:
            raise ValueError(f"Invalid version {self.major}.{self.minor}")

    @property
    def version(self) -> int:
        """Major and minor packed into one integer (major in the upper 16 bits)."""
        return (self.major << 16) | self.minor

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return (self.major, self.minor) < (other.major, other.minor)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"

    def is_smaller_than(self, other: "Version") -> bool:
        return self < other

    def is_greater_than(self, other: "Version") -> bool:
        return self > other

    def is_supported(self, supported_versions: Iterable["Version"]) -> bool:
        return self in list(supported_versions)

    @classmethod
    def value_of(cls, text: Optional[str]) -> Optional["Version"]:
        """Parse ``"major"`` or ``"major.minor..."``; returns None when no number is found."""
        if not text:
            return None
        m = _VERSION_RE.match(text)
        if not m:
            return None
        return cls(int(m.group(1)), int(m.group(2) or 0))

    @staticmethod
    def _first(pred: Callable[["Version"], bool], versions: Iterable["Version"]) -> Optional["Version"]:
        return next((v for v in versions if pred(v)), None)

    @staticmethod
    def get_instance_by_major(major: int, versions: Iterable["Version"]) -> Optional["Version"]:
        return Version._first(lambda v: v.major == major, versions)

    @staticmethod
    def get_instance_by_major_minor(major: int, minor: int, versions: Iterable["Version"]) -> Optional["Version"]:
        return Version._first(lambda v: v.major == major and v.minor == minor, versions)


__all__ = ["Version"]
