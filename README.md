# nutskv

Building blocks for an embeddable, persistent key/value store:

- `nutskv.bptree` has `BPTree`, an in-memory B+ tree of order 8 keyed by
  bytes. It supports point lookups, range scans, prefix scans and
  prefix-plus-regex scans. It also has a fixed-size little-endian binary node
  format (`BinaryNode`) for writing the tree to an index file and reading nodes
  back.
- `nutskv.root_index` has `BPTreeRootIdx`, a CRC32-checked record of a persisted
  tree's file id, root offset and key range.
- `nutskv.bucket_meta` has `BucketMeta`, a CRC32-checked record of a bucket's
  first and last key.
- `nutskv.errors` holds the exceptions. They all derive from `NutsError`.

The package has no dependencies outside the standard library.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## The B+ tree

```python
from nutskv.bptree import BPTree, Record

tree = BPTree()
for i in range(100):
    key = f"key_{i:03d}".encode()
    tree.insert(key, Record(key=key, value=f"val_{i:03d}".encode()), True)

record = tree.find(b"key_001")                 # Record(key=b"key_001", ...)
records = tree.range(b"key_000", b"key_009")   # inclusive at both ends
records, skipped = tree.prefix_scan(b"key_", 10, 10)
records, skipped = tree.prefix_search_scan(b"key_", "00[1-5]", 0, 10)
everything = tree.all()
```

`Record` holds `key`, `value`, `flag`, `data_pos` and `file_id`.

### Inserting and counting

Inserting under a key that is already present replaces the record. With
`count_flag` true, `tree.valid_key_count` counts the keys whose record is not
a delete marker. A delete marker has `flag == DATA_DELETE_FLAG` (0), and
`DATA_SET_FLAG` is 1. The tree also updates `first_key` and `last_key` as
keys are inserted.

### Scans

- `range(start, end)` returns the records with `start <= key <= end`.
- `find_range(start, end, fn=None)` returns `(key, record)` pairs. If you
  pass a callback `fn(key, record)`, each record goes to the callback instead.
  When the callback returns `False`, the rest of the current leaf is skipped.
- `prefix_scan(prefix, offset, limit)` skips the first `offset` matching
  records. It returns at most `limit` records when `limit > 0`, and no limit
  applies otherwise. It returns `(records, skipped)`.
- `prefix_search_scan(prefix, pattern, offset, limit)` works the same way. It
  also keeps only the keys whose part after the prefix matches the regular
  expression `pattern`, given as `str` or `bytes`.

### Errors

Lookups and scans raise subclasses of `nutskv.errors.NutsError`:

| Case | Exception |
| --- | --- |
| `find` on a missing key | `KeyNotFoundError` |
| A scan that finds nothing | `ScansNoResultError` |
| `range` with `start > end` | `StartKeyError` |
| A malformed pattern | `BadRegexpError` |
| `prefix_search_scan` on an empty tree | `PrefixSearchScansNoResultError` |

### Binary nodes

- `tree.to_binary(node)` packs a node into a `BinaryNode` layout and returns
  its bytes. The layout holds 7 keys, 9 pointers, the leaf flag, the key count,
  the address and the next address.
- Keys are encoded in one of two ways:
  - By default, each key is parsed as a decimal 64-bit integer, and a key that
    is not decimal encodes as 0.
  - After `set_key_pos_map({key: offset, ...})` with `tree.enabled_key_pos_map
    = True`, keys are encoded as their mapped offsets. An empty map raises
    `KeyPosMapError`.
- Pointers are encoded as follows:
  - Leaves store each record's `data_pos`.
  - Inner nodes store child addresses.
- Node addresses are assigned in steps of `binary_node_size()` (152 bytes).
- `tree.write_node(node, offset, sync, file)` writes one node to an open binary
  file. An offset of `-1` means the node's own address.
- `tree.write_nodes(sync)` writes the whole tree breadth first to
  `tree.filepath`. It links each node's next address to the following node in
  that order.
- `read_node(path, address)` reads a node back as a `BinaryNode`. It raises
  `NodeAddressError` for a negative or misaligned address.
- `decode_binary_node(data)` decodes packed bytes.

## Root index and bucket metadata

```python
from nutskv.root_index import BPTreeRootIdx, read_root_idx_at, sort_fid
from nutskv.bucket_meta import BucketMeta, read_bucket_meta

idx = BPTreeRootIdx(fid=0, root_off=0, start=b"key001", end=b"key010")
written = idx.persist("tree.bptridx", 0, True)   # 40 bytes

with open("tree.bptridx", "rb") as fh:
    loaded = read_root_idx_at(fh, 0)

group = [loaded, BPTreeRootIdx(fid=1, start=b"key011", end=b"key020")]
sort_fid(group, lambda p, q: p.fid > q.fid)      # in place, fid descending

meta = BucketMeta(start=b"key100", end=b"key999")
with open("bucket.meta", "wb") as fh:
    fh.write(meta.encode())
assert read_bucket_meta("bucket.meta") == meta
```

Reading behaves as follows:

- `read_root_idx_at` returns `None` where the file holds an all-zero entry.
- A record whose checksum does not match raises `CrcError`.
- A file that ends too early raises `EOFError`.

## What this package does not do

This package provides index structures and record formats only. It has no:

- data files or write-ahead storage of entries
- transactions
- buckets of lists, sets or sorted sets
- merging or compaction
- backups
- command-line tool

`BucketMeta` can be encoded and read back, but writing it to a file is left
to the caller.