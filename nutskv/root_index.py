"""Root index entries of the sparse B+ tree index files."""

from __future__ import annotations

import functools
import os
import struct
import zlib
from dataclasses import dataclass, field
from typing import BinaryIO, Callable

from .errors import CrcError

ROOT_IDX_HEADER_SIZE = 28

_HEADER = struct.Struct("<IQQII")
_BODY_HEADER = struct.Struct("<QQII")


@dataclass
class BPTreeRootIdx:
    """Where a tree's root node lives, and the key range that tree covers."""

    fid: int = 0
    root_off: int = 0
    start: bytes = b""
    end: bytes = b""
    crc: int = field(default=0, compare=False)

    @property
    def start_size(self) -> int:
        return len(self.start)

    @property
    def end_size(self) -> int:
        return len(self.end)

    def size(self) -> int:
        """Return the encoded size in bytes."""
        return ROOT_IDX_HEADER_SIZE + self.start_size + self.end_size

    def encode(self) -> bytes:
        """Return the on-disk form, checksum first."""
        body = (
            _BODY_HEADER.pack(self.fid, self.root_off, self.start_size, self.end_size)
            + bytes(self.start)
            + bytes(self.end)
        )
        return struct.pack("<I", zlib.crc32(body)) + body

    def get_crc(self, header: bytes) -> int:
        """Return the checksum of the header (minus its crc field) and keys."""
        crc = zlib.crc32(header[4:])
        crc = zlib.crc32(self.start, crc)
        return zlib.crc32(self.end, crc)

    def is_zero(self) -> bool:
        """Report whether this entry is empty padding rather than a real entry."""
        return (
            self.crc == 0
            and self.root_off == 0
            and self.fid == 0
            and self.start_size == 0
            and self.end_size == 0
        )

    def persist(self, path: str | os.PathLike, offset: int, sync: bool) -> int:
        """Write the entry into the file at offset; return the bytes written."""
        data = self.encode()
        fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o644)
        with os.fdopen(fd, "r+b") as f:
            f.seek(offset)
            written = f.write(data)
            f.flush()
            if sync:
                os.fsync(f.fileno())
        return written


def _read_exact(file: BinaryIO, offset: int, size: int) -> bytes:
    file.seek(offset)
    data = file.read(size)
    if len(data) < size:
        raise EOFError(f"expected {size} bytes at {offset}, got {len(data)}")
    return data


def read_root_idx_at(file: BinaryIO, offset: int) -> BPTreeRootIdx | None:
    """Read the entry at offset of an open binary file.

    Returns None where the file holds an all-zero entry.
    """
    header = _read_exact(file, offset, ROOT_IDX_HEADER_SIZE)
    crc, fid, root_off, start_size, end_size = _HEADER.unpack(header)

    if root_off == 0 and fid == 0 and start_size == 0 and end_size == 0:
        return None

    offset += ROOT_IDX_HEADER_SIZE
    start = _read_exact(file, offset, start_size)
    offset += start_size
    end = _read_exact(file, offset, end_size)

    idx = BPTreeRootIdx(fid=fid, root_off=root_off, start=start, end=end, crc=crc)
    if idx.get_crc(header) != crc:
        raise CrcError()
    return idx


def sort_fid(
    group: list[BPTreeRootIdx],
    less: Callable[[BPTreeRootIdx, BPTreeRootIdx], bool],
) -> None:
    """Sort the group in place using a less-than predicate."""

    def compare(p: BPTreeRootIdx, q: BPTreeRootIdx) -> int:
        if less(p, q):
            return -1
        if less(q, p):
            return 1
        return 0

    group.sort(key=functools.cmp_to_key(compare))