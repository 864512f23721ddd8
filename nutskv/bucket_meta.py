"""Bucket meta-information: the first and last key held by a bucket."""

from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass, field
from os import PathLike

from .errors import CrcError

BUCKET_META_HEADER_SIZE = 12
BUCKET_META_SUFFIX = ".meta"

_HEADER = struct.Struct("<III")


@dataclass
class BucketMeta:
    """The start and end keys of a bucket, stored with a CRC32 checksum."""

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
        return BUCKET_META_HEADER_SIZE + self.start_size + self.end_size

    def encode(self) -> bytes:
        """Return the on-disk form, checksum first."""
        body = (
            struct.pack("<II", self.start_size, self.end_size)
            + bytes(self.start)
            + bytes(self.end)
        )
        crc = zlib.crc32(body)
        return struct.pack("<I", crc) + body

    def get_crc(self, header: bytes) -> int:
        """Return the checksum of the header (minus its crc field) and keys."""
        crc = zlib.crc32(header[4:])
        crc = zlib.crc32(self.start, crc)
        return zlib.crc32(self.end, crc)


def _read_exact(f, size: int) -> bytes:
    data = f.read(size)
    if len(data) < size:
        raise EOFError(f"expected {size} bytes, got {len(data)}")
    return data


def read_bucket_meta(path: str | PathLike) -> BucketMeta:
    """Read and verify the bucket meta stored at the start of the file."""
    with open(path, "rb") as f:
        header = _read_exact(f, BUCKET_META_HEADER_SIZE)
        crc, start_size, end_size = _HEADER.unpack(header)
        start = _read_exact(f, start_size)
        end = _read_exact(f, end_size)

    meta = BucketMeta(start=start, end=end, crc=crc)
    if meta.get_crc(header) != crc:
        raise CrcError()
    return meta