# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/configuration/vmware_format.py
"""
Reader/writer for the VMware ``key = "value"`` format (.vmx, and the text
descriptor of .vmdk files).

Keys are case-insensitive and keep their first spelling and position. Each
entry carries a *filtered* flag: entries flagged filtered make up the reduced
export that is safe to persist. Keys matching :data:`STATELESS_ALLOW_LIST` are
flagged on load, every mutation flags the key it writes.
"""
from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from ..core.exceptions import UnrecognizedFormat, wrap_io

logger = logging.getLogger(__name__)

MAX_READ = 100_000

# lower-case keys allowed for stateless execution
STATELESS_ALLOW_LIST = re.compile(
    "|".join(
        (
            r"^guestos",
            r"^uuid\.bios",
            r"^config\.version",
            r"^ehci[.:]",
            r"^mks\.enable3d",
            r"^virtualhw\.",
            r"^sound[.:]",
            r"\.pcislotnumber$",
            r"^pcibridge",
            r"\.virtualdev$",
            r"^tools\.syncTime$",
            r"^time\.synchronize",
            r"^bios\.bootDelay",
            r"^rtc\.",
            r"^xhci[.:]",
            r"^usb_xhci[.:]",
            r"\.deviceType$",
            r"\.port$",
            r"\.parent$",
            r"^usb[.:]",
            r"^firmware",
            r"^hpet",
            r"^vm\.genid",
            r"^svga\.graphicsMemoryKB$",
        )
    ),
    re.IGNORECASE,
)

_QUOTED_LINE = re.compile(r'^\s*(#?[a-z0-9.:_]+)\s*=\s*"(.*)"\s*$', re.IGNORECASE)
_PLAIN_LINE = re.compile(r'^\s*(#?[a-z0-9.:_]+)\s*=\s*([^"]*)\s*$', re.IGNORECASE)
# only \r\n, \r and \n end a line, U+0085 and friends belong to the value
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

_VALIDITY_KEYS = ("virtualHW.version", "ddb.virtualHWVersion", "virtualhw.version")
_MARKER_KEYS = ("virtualHW.version", "memsize", "displayName")
_ENCODING_KEYS = (".encoding", "encoding")

FALLBACK_CHARSET = "ISO-8859-1"


def escape(value: str) -> str:
    # "|" first, the "|22" sequence must not be escaped again
    return value.replace("|", "|7C").replace('"', "|22")


def unescape(value: str) -> str:
    return value.replace("|22", '"').replace("|7C", "|")


def split_lines(text: str) -> List[str]:
    return _LINE_BREAK.split(text)


def parse_line(line: str) -> Optional[Tuple[str, str]]:
    m = _QUOTED_LINE.fullmatch(line) or _PLAIN_LINE.fullmatch(line)
    if not m:
        return None
    return m.group(1), m.group(2)


def detect_charset(data: bytes) -> Optional[str]:
    """
    Return the declared ``.encoding``, the Latin-1 fallback for files that
    look like VMware descriptors without one, or None for anything else.
    """
    is_vmware = False
    for line in split_lines(data.decode("latin-1")):
        kv = parse_line(line)
        if kv is None:
            continue
        key, value = kv
        if key in _ENCODING_KEYS:
            return value
        if key in _MARKER_KEYS:
            is_vmware = True
    return FALLBACK_CHARSET if is_vmware else None


def resolve_charset(data: bytes) -> str:
    name = detect_charset(data)
    if name is None:
        return "utf-8"
    try:
        return codecs.lookup(name).name
    except LookupError:
        logger.warning("Unknown charset %r in VMware descriptor, using %s", name, FALLBACK_CHARSET)
        return FALLBACK_CHARSET


@dataclass
class VmxEntry:
    value: str
    filtered: bool = False

    @property
    def escaped(self) -> str:
        return escape(self.value)


class VmxFileFormat:
    """Ordered, case-insensitive key/value store with VMware escaping."""

    def __init__(self) -> None:
        # lower-case key -> (key as first written, entry)
        self._entries: Dict[str, Tuple[str, VmxEntry]] = {}

    @classmethod
    def parse(cls, data: bytes) -> "VmxFileFormat":
        """
        Parse descriptor bytes (only the first ``MAX_READ`` bytes are looked at).

        Raises:
            UnrecognizedFormat: none of the hardware version keys is present
        """
        data = data[:MAX_READ]
        charset = resolve_charset(data)
        fmt = cls()
        is_valid = False
        for line in split_lines(data.decode(charset, errors="replace")):
            kv = parse_line(line)
            if kv is None:
                continue
            key, value = kv
            if key in _VALIDITY_KEYS:
                is_valid = True
            fmt.set(key, unescape(value), filtered=bool(STATELESS_ALLOW_LIST.search(key)))
        if not is_valid:
            raise UnrecognizedFormat(msg="Not in VMX format.")
        return fmt

    @classmethod
    def read_file(cls, path: Union[str, Path]) -> "VmxFileFormat":
        return cls.parse(read_head(path))

    def set(self, key: str, value: str, *, filtered: bool = False) -> VmxEntry:
        lk = key.lower()
        existing = self._entries.get(lk)
        entry = VmxEntry(value, filtered)
        self._entries[lk] = (existing[0] if existing else key, entry)
        return entry

    def get(self, key: str) -> Optional[str]:
        found = self._entries.get(key.lower())
        return found[1].value if found else None

    def entry(self, key: str) -> Optional[VmxEntry]:
        found = self._entries.get(key.lower())
        return found[1] if found else None

    def remove(self, key: str) -> None:
        self._entries.pop(key.lower(), None)

    def remove_prefix(self, prefix: str) -> int:
        lp = prefix.lower()
        doomed = [lk for lk in self._entries if lk.startswith(lp)]
        for lk in doomed:
            del self._entries[lk]
        return len(doomed)

    def retain(self, keep: Callable[[str, VmxEntry], bool]) -> None:
        self._entries = {lk: (k, e) for lk, (k, e) in self._entries.items() if keep(k, e)}

    def items(self) -> Iterator[Tuple[str, VmxEntry]]:
        for key, entry in list(self._entries.values()):
            yield key, entry

    def keys(self) -> List[str]:
        return [k for k, _ in self._entries.values()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def to_string(self, *, filtered_only: bool = False) -> str:
        self.set(".encoding", "UTF-8", filtered=True)
        lines = [
            f'{key} = "{entry.escaped}"\n'
            for key, entry in self._entries.values()
            if entry.filtered or not filtered_only
        ]
        return "".join(lines)

    def to_bytes(self, *, filtered_only: bool = False) -> bytes:
        return self.to_string(filtered_only=filtered_only).encode("utf-8")


def read_head(path: Union[str, Path], limit: int = MAX_READ) -> bytes:
    p = Path(path)
    try:
        with open(p, "rb") as fh:
            return fh.read(limit)
    except OSError as e:
        raise wrap_io(f"Cannot read configuration '{p}': {e.strerror or e}", e, path=str(p)) from e


__all__ = [
    "VmxFileFormat",
    "VmxEntry",
    "STATELESS_ALLOW_LIST",
    "MAX_READ",
    "escape",
    "unescape",
    "parse_line",
    "split_lines",
    "detect_charset",
    "resolve_charset",
    "read_head",
]
