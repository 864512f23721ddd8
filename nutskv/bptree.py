"""In-memory B+ tree index with a fixed-size binary node format."""

from __future__ import annotations

import os
import re
import struct
from bisect import bisect_left, bisect_right
from collections import deque
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterator, Sequence

from .errors import (
    BadRegexpError,
    KeyNotFoundError,
    KeyPosMapError,
    NodeAddressError,
    PrefixSearchScansNoResultError,
    ScansNoResultError,
    StartKeyError,
)

ORDER = 8
DEFAULT_INVALID_ADDRESS = -1
MAX_SIZE = 2**31 - 1

RANGE_SCAN = "RangeScan"
PREFIX_SCAN = "PrefixScan"
PREFIX_SEARCH_SCAN = "PrefixSearchScan"

COUNT_FLAG_ENABLED = True
COUNT_FLAG_DISABLED = False

BPT_INDEX_SUFFIX = ".bptidx"
BPT_ROOT_INDEX_SUFFIX = ".bptridx"
BPT_TXID_INDEX_SUFFIX = ".bpttxid"
BPT_ROOT_TXID_INDEX_SUFFIX = ".bptrtxid"

DATA_DELETE_FLAG = 0
DATA_SET_FLAG = 1

_KEY_SLOTS = ORDER - 1
_POINTER_SLOTS = ORDER + 1

# Packed on-disk layout: keys, pointers, is_leaf, keys_num, address, next address.
_NODE_STRUCT = struct.Struct(f"<{_KEY_SLOTS}q{_POINTER_SLOTS}qHHqq")
# Distance between node addresses: the packed layout plus alignment padding
# after the two 16-bit fields (128 + 4 -> 136, then two 64-bit fields).
_NODE_STRIDE = 152

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DECIMAL = re.compile(rb"[+-]?[0-9]+")


def _parse_int64(raw: bytes) -> int:
    """Parse a decimal key as a signed 64-bit integer; 0 if it is not one."""
    if not _DECIMAL.fullmatch(raw):
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(raw)))


def _split_index(length: int) -> int:
    return (length + 1) // 2


def _pad(values: Sequence[int], size: int) -> tuple[int, ...]:
    values = tuple(values)
    if len(values) > size:
        raise ValueError(f"at most {size} values allowed, got {len(values)}")
    return values + (0,) * (size - len(values))


@dataclass
class Record:
    """A value stored in the tree together with where its entry lives."""

    key: bytes
    value: bytes | None = None
    flag: int = DATA_SET_FLAG
    data_pos: int = 0
    file_id: int = 0


@dataclass(eq=False)
class Node:
    """A tree node; leaves hold records, inner nodes hold children."""

    address: int
    is_leaf: bool = False
    keys: list[bytes] = field(default_factory=list)
    children: list[Node] = field(default_factory=list, repr=False)
    records: list[Record] = field(default_factory=list, repr=False)
    parent: Node | None = field(default=None, repr=False)
    next_leaf: Node | None = field(default=None, repr=False)
    prev_leaf: Node | None = field(default=None, repr=False)
    next: Node | None = field(default=None, repr=False)

    @property
    def keys_num(self) -> int:
        return len(self.keys)


@dataclass(frozen=True)
class BinaryNode:
    """The fixed-size on-disk form of a node."""

    keys: tuple[int, ...] = ()
    pointers: tuple[int, ...] = ()
    is_leaf: int = 0
    keys_num: int = 0
    address: int = 0
    next_address: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "keys", _pad(self.keys, _KEY_SLOTS))
        object.__setattr__(self, "pointers", _pad(self.pointers, _POINTER_SLOTS))

    def pack(self) -> bytes:
        """Return the little-endian packed bytes."""
        return _NODE_STRUCT.pack(
            *self.keys,
            *self.pointers,
            self.is_leaf,
            self.keys_num,
            self.address,
            self.next_address,
        )


def decode_binary_node(data: bytes) -> BinaryNode:
    """Decode a packed node."""
    if len(data) < _NODE_STRUCT.size:
        raise ValueError(f"node needs {_NODE_STRUCT.size} bytes, got {len(data)}")
    values = _NODE_STRUCT.unpack_from(data)
    keys_end = _KEY_SLOTS
    pointers_end = keys_end + _POINTER_SLOTS
    is_leaf, keys_num, address, next_address = values[pointers_end:]
    return BinaryNode(
        keys=values[:keys_end],
        pointers=values[keys_end:pointers_end],
        is_leaf=is_leaf,
        keys_num=keys_num,
        address=address,
        next_address=next_address,
    )


def binary_node_size() -> int:
    """Return the address stride between consecutive nodes."""
    return _NODE_STRIDE


def is_valid_address(address: int) -> bool:
    """Report whether a node can start at this address."""
    return address >= 0 and address % _NODE_STRIDE == 0


def read_node(path: str | os.PathLike, address: int) -> BinaryNode:
    """Read the node stored at address in the index file."""
    if not is_valid_address(address):
        raise NodeAddressError(f"cannot read node at {address}")
    with open(path, "rb") as f:
        f.seek(address)
        data = f.read(_NODE_STRIDE)
    if not data:
        raise EOFError(f"no node at {address}")
    return decode_binary_node(data.ljust(_NODE_STRIDE, b"\x00"))


class BPTree:
    """An ordered index from byte keys to records."""

    def __init__(self) -> None:
        self.root: Node | None = None
        self.valid_key_count = 0
        self.first_key = b""
        self.last_key = b""
        self.last_address = 0
        self.filepath: str | os.PathLike = ""
        self.key_pos_map: dict[bytes, int] = {}
        self.enabled_key_pos_map = False

    def _new_node(self, is_leaf: bool = False) -> Node:
        node = Node(address=self.last_address, is_leaf=is_leaf)
        self.last_address += _NODE_STRIDE
        return node

    def find_leaf(self, key: bytes) -> Node | None:
        """Return the leaf where key belongs, or None for an empty tree."""
        node = self.root
        if node is None:
            return None
        while not node.is_leaf:
            node = node.children[bisect_right(node.keys, key)]
        return node

    def set_key_pos_map(self, key_pos_map: dict[bytes, int]) -> None:
        """Set the entry offset of every key, used when encoding nodes."""
        self.key_pos_map = key_pos_map

    def to_binary(self, node: Node) -> bytes:
        """Return the packed on-disk form of node."""
        if self.enabled_key_pos_map:
            if node.keys and not self.key_pos_map:
                raise KeyPosMapError()
            keys = [self.key_pos_map.get(key, 0) for key in node.keys]
        else:
            keys = [_parse_int64(key) for key in node.keys]

        if node.is_leaf:
            pointers = [record.data_pos for record in node.records]
        else:
            pointers = [child.address for child in node.children]

        next_address = node.next.address if node.next is not None else DEFAULT_INVALID_ADDRESS
        return BinaryNode(
            keys=keys,
            pointers=pointers,
            is_leaf=1 if node.is_leaf else 0,
            keys_num=node.keys_num,
            address=node.address,
            next_address=next_address,
        ).pack()

    def write_node(self, node: Node, offset: int, sync: bool, file: BinaryIO) -> int:
        """Write node at offset (its own address when offset is -1)."""
        data = self.to_binary(node)
        if offset == -1:
            offset = node.address
        file.seek(offset)
        written = file.write(data)
        file.flush()
        if sync:
            os.fsync(file.fileno())
        return written

    def write_nodes(self, sync: bool = False) -> None:
        """Write every node, breadth first, to the tree's file."""
        if self.root is None:
            return
        fd = os.open(self.filepath, os.O_CREAT | os.O_RDWR, 0o644)
        with os.fdopen(fd, "r+b") as f:
            queue: deque[Node] = deque([self.root])
            while queue:
                node = queue.popleft()
                node.next = queue[0] if queue else None
                self.write_node(node, -1, sync, f)
                if not node.is_leaf:
                    queue.extend(node.children)

    @staticmethod
    def _iter_leaves(leaf: Node | None, start: int) -> Iterator[tuple[bytes, Record]]:
        while leaf is not None:
            yield from zip(leaf.keys[start:], leaf.records[start:])
            leaf = leaf.next_leaf
            start = 0

    def _iter_from(self, key: bytes) -> Iterator[tuple[bytes, Record]]:
        leaf = self.find_leaf(key)
        if leaf is None:
            return iter(())
        return self._iter_leaves(leaf, bisect_left(leaf.keys, key))

    def find_range(
        self,
        start: bytes,
        end: bytes,
        fn: Callable[[bytes, Record], bool] | None = None,
    ) -> list[tuple[bytes, Record]]:
        """Return (key, record) pairs with start <= key <= end.

        With fn given, each record is passed to it instead; fn returning
        False skips the rest of the current leaf.
        """
        leaf = self.find_leaf(start)
        found: list[tuple[bytes, Record]] = []
        if leaf is None:
            return found
        first = bisect_left(leaf.keys, start)
        while leaf is not None:
            for key, record in zip(leaf.keys[first:], leaf.records[first:]):
                if key > end:
                    return found
                if fn is not None:
                    if not fn(record.key, record):
                        break
                else:
                    found.append((key, record))
            leaf = leaf.next_leaf
            first = 0
        return found

    def all(self) -> list[Record]:
        """Return every record in key order."""
        leaf = self.find_leaf(self.first_key)
        records = [record for _, record in self._iter_leaves(leaf, 0)]
        if not records:
            raise ScansNoResultError()
        return records

    def range(self, start: bytes, end: bytes) -> list[Record]:
        """Return the records with start <= key <= end."""
        if start > end:
            raise StartKeyError()
        records = [record for _, record in self.find_range(start, end)]
        if not records:
            raise ScansNoResultError()
        return records

    def prefix_scan(self, prefix: bytes, offset: int, limit: int) -> tuple[list[Record], int]:
        """Return records whose key has prefix, skipping offset of them.

        A limit above zero caps the number returned. Also returns how many
        records were skipped.
        """
        if self.root is None:
            raise ScansNoResultError()
        skipped = 0
        records: list[Record] = []
        for key, record in self._iter_from(prefix):
            if not key.startswith(prefix):
                break
            if skipped < offset:
                skipped += 1
                continue
            records.append(record)
            if limit > 0 and len(records) == limit:
                break
        if not records:
            raise ScansNoResultError()
        return records, skipped

    def prefix_search_scan(
        self, prefix: bytes, pattern: str | bytes, offset: int, limit: int
    ) -> tuple[list[Record], int]:
        """Like prefix_scan, keeping only keys whose rest matches pattern."""
        raw = pattern.encode() if isinstance(pattern, str) else pattern
        try:
            regex = re.compile(raw)
        except re.error as exc:
            raise BadRegexpError() from exc

        if self.root is None:
            raise PrefixSearchScansNoResultError()

        skipped = 0
        records: list[Record] = []
        for key, record in self._iter_from(prefix):
            if not key.startswith(prefix):
                break
            if skipped < offset:
                skipped += 1
                continue
            if not regex.search(key[len(prefix):]):
                continue
            records.append(record)
            if limit > 0 and len(records) == limit:
                break
        if not records:
            raise ScansNoResultError()
        return records, skipped

    def _locate(self, key: bytes) -> tuple[Node, int] | None:
        leaf = self.find_leaf(key)
        if leaf is None:
            return None
        index = bisect_left(leaf.keys, key)
        if index < len(leaf.keys) and leaf.keys[index] == key:
            return leaf, index
        return None

    def find(self, key: bytes) -> Record:
        """Return the record stored under key."""
        found = self._locate(key)
        if found is None:
            raise KeyNotFoundError()
        leaf, index = found
        return leaf.records[index]

    def insert(self, key: bytes, record: Record, count_flag: bool = True) -> None:
        """Insert record under key, replacing any record already there.

        With count_flag set, valid_key_count tracks keys that are not deleted.
        """
        if not self.first_key or key < self.first_key:
            self.first_key = key
        if key > self.last_key:
            self.last_key = key

        found = self._locate(key)
        if found is not None:
            leaf, index = found
            old = leaf.records[index]
            if (
                count_flag
                and record.flag == DATA_DELETE_FLAG
                and old.flag != DATA_DELETE_FLAG
                and self.valid_key_count > 0
            ):
                self.valid_key_count -= 1
            if count_flag and record.flag != DATA_DELETE_FLAG and old.flag == DATA_DELETE_FLAG:
                self.valid_key_count += 1
            leaf.records[index] = record
            return

        self.valid_key_count += 1

        if self.root is None:
            leaf = self._new_node(is_leaf=True)
            leaf.keys.append(key)
            leaf.records.append(record)
            self.root = leaf
            return

        leaf = self.find_leaf(key)
        if leaf.keys_num < ORDER - 1:
            index = bisect_left(leaf.keys, key)
            leaf.keys.insert(index, key)
            leaf.records.insert(index, record)
            return

        self._split_leaf(leaf, key, record)

    def _split_leaf(self, leaf: Node, key: bytes, record: Record) -> None:
        index = bisect_left(leaf.keys, key)
        keys = leaf.keys[:]
        records = leaf.records[:]
        keys.insert(index, key)
        records.insert(index, record)

        split = _split_index(ORDER)
        leaf.keys, leaf.records = keys[:split], records[:split]

        new_leaf = self._new_node(is_leaf=True)
        new_leaf.keys, new_leaf.records = keys[split:], records[split:]

        following = leaf.next_leaf
        if following is not None:
            new_leaf.next_leaf = following
            following.prev_leaf = new_leaf
        leaf.next_leaf = new_leaf
        new_leaf.prev_leaf = leaf

        new_leaf.parent = leaf.parent
        self._insert_into_parent(leaf, new_leaf.keys[0], new_leaf)

    def _insert_into_parent(self, left: Node, key: bytes, right: Node) -> None:
        parent = left.parent
        if parent is None:
            root = self._new_node()
            root.keys = [key]
            root.children = [left, right]
            left.parent = root
            right.parent = root
            self.root = root
            return

        left_index = next(i for i, child in enumerate(parent.children) if child is left)
        if parent.keys_num < ORDER - 1:
            parent.keys.insert(left_index, key)
            parent.children.insert(left_index + 1, right)
            return

        self._split_parent(parent, left_index, key, right)

    def _split_parent(self, node: Node, left_index: int, key: bytes, right: Node) -> None:
        keys = node.keys[:]
        children = node.children[:]
        keys.insert(left_index, key)
        children.insert(left_index + 1, right)

        split = _split_index(ORDER - 1)
        node.keys, node.children = keys[:split], children[: split + 1]

        new_node = self._new_node()
        new_node.keys, new_node.children = keys[split + 1 :], children[split + 1 :]
        new_node.parent = node.parent
        for child in new_node.children:
            child.parent = new_node

        self._insert_into_parent(node, keys[split], new_node)