# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/disk/probe.py
"""Disk image header probing (VMDK, VDI, QCOW2).

Each prober looks at a few fixed header offsets and either returns a
:class:`DiskImage` or ``None`` when the file is not in its format. The probers
are tried in a fixed order by :func:`probe`.
"""
from __future__ import annotations

import logging
import os
import re
import struct
from pathlib import Path
from typing import BinaryIO, Dict, Optional, Union

from ..core.exceptions import UnknownFormat, wrap_io
from .image import DiskImage, ImageFormat

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def _read_at(fh: BinaryIO, offset: int, size: int) -> bytes:
    fh.seek(offset)
    return fh.read(size)


def _file_size(fh: BinaryIO) -> int:
    return os.fstat(fh.fileno()).st_size


# ---------------------------------------------------------------------------
# VMDK
# ---------------------------------------------------------------------------

class VmdkProbe:
    """VMware VMDK: sparse extent header or plain text descriptor."""

    MAGIC = 0x4B444D56  # "KDMV" read big-endian
    SMALL_FILE_LIMIT = 4096
    DESCRIPTOR_OFFSET = 512
    DESCRIPTOR_MAX = 2048
    DEFAULT_HW_VERSION = 10
    NO_PARENT = "ffffffff"
    STANDALONE_TYPES = ("streamoptimized", "monolithicsparse")

    _LINE_RE = re.compile(r'^\s*([A-Za-z0-9_.:]+)\s*=\s*(?:"(.*)"|(.*?))\s*$')
    _LINE_BREAK = re.compile(r"\r\n|\r|\n")

    @classmethod
    def parse_descriptor(cls, text: str) -> Dict[str, str]:
        """Parse descriptor lines into a dict keyed by lower-case key."""
        out: Dict[str, str] = {}
        for line in cls._LINE_BREAK.split(text):
            m = cls._LINE_RE.match(line)
            if not m:
                continue
            value = m.group(2) if m.group(2) is not None else m.group(3)
            out[m.group(1).lower()] = value
        return out

    @classmethod
    def probe(cls, fh: BinaryIO) -> Optional[DiskImage]:
        head = _read_at(fh, 0, 4)
        small = _file_size(fh) < cls.SMALL_FILE_LIMIT
        is_sparse = len(head) == 4 and struct.unpack(">I", head)[0] == cls.MAGIC
        if not is_sparse and not small:
            return None

        offset = cls.DESCRIPTOR_OFFSET if is_sparse else 0
        raw = _read_at(fh, offset, cls.DESCRIPTOR_MAX)
        nul = raw.find(b"\x00")
        if nul >= 0:
            raw = raw[:nul]
        desc = cls.parse_descriptor(raw.decode("latin-1"))

        create_type = desc.get("createtype")
        parent_cid = desc.get("parentcid")
        if create_type is None and parent_cid is None:
            return None

        has_parent = parent_cid is not None and parent_cid.lower() != cls.NO_PARENT
        ct = (create_type or "").lower()

        try:
            hw_version = int(desc.get("ddb.virtualhwversion", cls.DEFAULT_HW_VERSION))
        except ValueError:
            hw_version = cls.DEFAULT_HW_VERSION

        return DiskImage(
            format=ImageFormat.VMDK,
            is_standalone=ct in cls.STANDALONE_TYPES and not has_parent,
            is_compressed=ct == "streamoptimized",
            is_snapshot=has_parent,
            hw_version=hw_version,
            sub_format=create_type,
        )


# ---------------------------------------------------------------------------
# VDI
# ---------------------------------------------------------------------------

class VdiProbe:
    """VirtualBox VDI: 64 byte opening tag followed by the binary header."""

    SIGNATURE_OFFSET = 64
    SIGNATURE = 0x7F10DABE
    # signature(4) + version(4) + header size(4) + image type(4) + flags(4)
    DESCRIPTION_OFFSET = SIGNATURE_OFFSET + 20
    DESCRIPTION_LEN = 256
    # 13 int fields of geometry, offsets and block metadata
    UUID_OFFSET = DESCRIPTION_OFFSET + DESCRIPTION_LEN + 13 * 4
    UUID_LEN = 16
    # last snapshot uuid + link uuid
    PARENT_UUID_OFFSET = UUID_OFFSET + UUID_LEN + 32

    @classmethod
    def probe(cls, fh: BinaryIO) -> Optional[DiskImage]:
        sig = _read_at(fh, cls.SIGNATURE_OFFSET, 4)
        if len(sig) != 4 or struct.unpack(">I", sig)[0] != cls.SIGNATURE:
            return None

        desc_raw = _read_at(fh, cls.DESCRIPTION_OFFSET, cls.DESCRIPTION_LEN)
        nul = desc_raw.find(b"\x00")
        description = (desc_raw[:nul] if nul >= 0 else desc_raw).decode("utf-8", errors="replace")

        parent = _read_at(fh, cls.PARENT_UUID_OFFSET, cls.UUID_LEN)
        if len(parent) != cls.UUID_LEN:
            raise UnknownFormat(msg="Truncated VDI header")

        return DiskImage(
            format=ImageFormat.VDI,
            is_standalone=True,
            is_compressed=False,
            is_snapshot=any(parent),
            hw_version=0,
            description=description,
        )


# ---------------------------------------------------------------------------
# QCOW2
# ---------------------------------------------------------------------------

class Qcow2Probe:
    """QEMU QCOW2 (versions 2 and 3)."""

    MAGIC = b"QFI\xfb"
    VERSION_OFFSET = 0x04
    BF_OFFSET = 0x08
    CLUSTER_BITS_OFFSET = 0x14
    L1_SIZE_OFFSET = 0x24
    L1_TABLE_OFFSET = 0x28
    NB_SNAPSHOTS_OFFSET = 0x38
    I_FEATURES = 0x48
    I_FEATURES_EXTL2_BIT = 4

    L1_ENTRY_SIZE = 8
    L1_OFFSET_MASK = 0x00FFFFFFFFFFFE00
    L2_COMPRESSED_MASK = 0x4000000000000000
    L2_ENTRY_SIZE = 8
    L2_EXTENDED_ENTRY_SIZE = 16

    MIN_CLUSTER_BITS = 9
    MAX_CLUSTER_BITS = 21
    L1_CHUNK = 512

    @classmethod
    def _u32(cls, fh: BinaryIO, offset: int) -> int:
        b = _read_at(fh, offset, 4)
        if len(b) != 4:
            raise UnknownFormat(msg="Truncated QCOW2 header", context={"offset": offset})
        return struct.unpack(">I", b)[0]

    @classmethod
    def _u64(cls, fh: BinaryIO, offset: int) -> int:
        b = _read_at(fh, offset, 8)
        if len(b) != 8:
            raise UnknownFormat(msg="Truncated QCOW2 header", context={"offset": offset})
        return struct.unpack(">Q", b)[0]

    @classmethod
    def _l2_has_compressed(cls, fh: BinaryIO, l2_offset: int, entries: int, entry_size: int) -> bool:
        table = _read_at(fh, l2_offset, entries * entry_size)
        for i in range(len(table) // entry_size):
            (entry,) = struct.unpack_from(">Q", table, i * entry_size)
            if (entry & cls.L2_COMPRESSED_MASK) >> 62:
                return True
        return False

    @classmethod
    def is_compressed(cls, fh: BinaryIO, version: int) -> bool:
        l2_entry_size = cls.L2_ENTRY_SIZE
        if version == 3:
            features = cls._u64(fh, cls.I_FEATURES)
            if features & (1 << cls.I_FEATURES_EXTL2_BIT):
                l2_entry_size = cls.L2_EXTENDED_ENTRY_SIZE

        l1_size = cls._u32(fh, cls.L1_SIZE_OFFSET)
        if l1_size == 0:
            return False
        l1_offset = cls._u64(fh, cls.L1_TABLE_OFFSET)

        cluster_bits = cls._u32(fh, cls.CLUSTER_BITS_OFFSET)
        if not cls.MIN_CLUSTER_BITS <= cluster_bits <= cls.MAX_CLUSTER_BITS:
            raise UnknownFormat(msg="Invalid QCOW2 cluster size", context={"cluster_bits": cluster_bits})
        l2_entries = (1 << cluster_bits) // l2_entry_size

        for start in range(0, l1_size, cls.L1_CHUNK):
            count = min(cls.L1_CHUNK, l1_size - start)
            chunk = _read_at(fh, l1_offset + start * cls.L1_ENTRY_SIZE, count * cls.L1_ENTRY_SIZE)
            for i in range(len(chunk) // cls.L1_ENTRY_SIZE):
                (l1_entry,) = struct.unpack_from(">Q", chunk, i * cls.L1_ENTRY_SIZE)
                l2_offset = l1_entry & cls.L1_OFFSET_MASK
                if l2_offset == 0:
                    continue
                if cls._l2_has_compressed(fh, l2_offset, l2_entries, l2_entry_size):
                    return True
            if len(chunk) < count * cls.L1_ENTRY_SIZE:
                break
        return False

    @classmethod
    def probe(cls, fh: BinaryIO) -> Optional[DiskImage]:
        if _read_at(fh, 0, 4) != cls.MAGIC:
            return None

        version = cls._u32(fh, cls.VERSION_OFFSET)
        if version not in (2, 3):
            raise UnknownFormat(msg=f"Unsupported QCOW2 version {version}", context={"version": version})

        backing_offset = cls._u64(fh, cls.BF_OFFSET)
        nb_snapshots = cls._u32(fh, cls.NB_SNAPSHOTS_OFFSET)

        return DiskImage(
            format=ImageFormat.QCOW2,
            is_standalone=backing_offset == 0,
            is_compressed=cls.is_compressed(fh, version),
            # zero internal snapshots reports True
            is_snapshot=nb_snapshots == 0,
            hw_version=version,
        )


_PROBERS = (VmdkProbe, VdiProbe, Qcow2Probe)


def probe_file(fh: BinaryIO, *, name: str = "<stream>") -> DiskImage:
    """Probe an already opened, seekable binary file."""
    for prober in _PROBERS:
        img = prober.probe(fh)
        if img is not None:
            logger.debug("%s: detected %s (%s)", name, img.format.value, prober.__name__)
            return img
    raise UnknownFormat(msg=f"File '{name}' is not a valid disk image!")


def probe(path: PathLike) -> DiskImage:
    """
    Identify a disk image by its header.

    Raises:
        UnknownFormat: no prober recognized the content
        IOFailure: the file could not be opened or read
    """
    p = Path(path)
    try:
        with open(p, "rb") as fh:
            return probe_file(fh, name=str(p.absolute()))
    except OSError as e:
        raise wrap_io(f"Cannot read disk image '{p}': {e.strerror or e}", e, path=str(p)) from e


__all__ = ["probe", "probe_file", "VmdkProbe", "VdiProbe", "Qcow2Probe"]
