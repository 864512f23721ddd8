import random

import pytest

from nutskv.bptree import (
    DATA_DELETE_FLAG,
    DATA_SET_FLAG,
    DEFAULT_INVALID_ADDRESS,
    BinaryNode,
    BPTree,
    Record,
    binary_node_size,
    decode_binary_node,
    is_valid_address,
    read_node,
)
from nutskv.errors import (
    BadRegexpError,
    KeyNotFoundError,
    KeyPosMapError,
    NodeAddressError,
    PrefixSearchScansNoResultError,
    ScansNoResultError,
    StartKeyError,
)


def build_tree(key_format="key_{:03d}", count=100):
    tree = BPTree()
    for i in range(count):
        key = key_format.format(i).encode()
        tree.insert(key, Record(key=key, value=f"val_{i:03d}".encode()), True)
    return tree


def insert_names(tree, count=101, value_prefix="val_"):
    for i in range(count):
        key = f"name_{i:03d}".encode()
        tree.insert(key, Record(key=key, value=f"{value_prefix}{i:03d}".encode()), True)


def test_find():
    tree = build_tree()
    assert tree.find(b"key_001").value == b"val_001"


def test_find_missing_key():
    tree = build_tree()
    with pytest.raises(KeyNotFoundError):
        tree.find(b"key_500")


def test_find_in_empty_tree():
    with pytest.raises(KeyNotFoundError):
        BPTree().find(b"key_001")


def test_prefix_scan_empty_tree():
    with pytest.raises(ScansNoResultError):
        BPTree().prefix_scan(b"key_001", 0, 10)


def test_prefix_scan_from_beginning():
    tree = build_tree()
    records, skipped = tree.prefix_scan(b"key_", 0, 10)
    assert skipped == 0
    assert [r.key for r in records] == [f"key_{i:03d}".encode() for i in range(10)]
    assert [r.value for r in records] == [f"val_{i:03d}".encode() for i in range(10)]


def test_prefix_scan_in_the_middle():
    tree = build_tree()
    records, skipped = tree.prefix_scan(b"key_", 10, 10)
    assert skipped == 10
    assert len(records) == 10
    assert [r.key for r in records] == [f"key_{i:03d}".encode() for i in range(10, 20)]
    assert [r.value for r in records] == [f"val_{i:03d}".encode() for i in range(10, 20)]


def test_prefix_scan_at_the_end():
    tree = build_tree()
    records, _ = tree.prefix_scan(b"key_", 90, 100)
    assert len(records) == 10
    assert [r.key for r in records] == [f"key_{i:03d}".encode() for i in range(90, 100)]


def test_prefix_scan_missing_prefix():
    tree = build_tree()
    with pytest.raises(ScansNoResultError):
        tree.prefix_scan(b"key_xx", 0, 10)


def test_prefix_scan_after_new_records():
    tree = build_tree()
    insert_names(tree)
    records, _ = tree.prefix_scan(b"name_", 5, 1)
    assert len(records) == 1
    assert records[0].key == b"name_005"


def test_prefix_scan_no_limit():
    tree = build_tree()
    records, _ = tree.prefix_scan(b"key_", 0, -1)
    assert len(records) == 100


def test_prefix_search_scan_empty_tree():
    with pytest.raises(PrefixSearchScansNoResultError):
        BPTree().prefix_search_scan(b"key_", "001", 1, 10)


@pytest.mark.parametrize(
    "pattern, offset, expected",
    [("001", 1, b"key_001"), ("005", 5, b"key_005"), ("099", 99, b"key_099")],
)
def test_prefix_search_scan(pattern, offset, expected):
    tree = build_tree()
    records, skipped = tree.prefix_search_scan(b"key_", pattern, offset, 10)
    assert [r.key for r in records] == [expected]
    assert skipped == offset


def test_prefix_search_scan_after_new_records():
    tree = build_tree()
    insert_names(tree)
    records, _ = tree.prefix_search_scan(b"name_", "005", 5, 10)
    assert [r.key for r in records] == [b"name_005"]
    records, _ = tree.prefix_search_scan(b"key_", "099", 99, 10)
    assert [r.key for r in records] == [b"key_099"]


def test_prefix_search_scan_bad_regexp():
    tree = build_tree()
    with pytest.raises(BadRegexpError):
        tree.prefix_search_scan(b"key_", "[", 0, 10)


def test_prefix_search_scan_no_match():
    tree = build_tree()
    with pytest.raises(ScansNoResultError):
        tree.prefix_search_scan(b"key_", "zzz", 0, 10)


def test_all():
    with pytest.raises(ScansNoResultError):
        BPTree().all()
    tree = build_tree()
    records = tree.all()
    assert [r.key for r in records] == [f"key_{i:03d}".encode() for i in range(100)]
    assert [r.value for r in records] == [f"val_{i:03d}".encode() for i in range(100)]


def test_all_is_sorted_after_random_inserts():
    keys = [f"k{i:05d}".encode() for i in range(500)]
    shuffled = keys[:]
    random.Random(7).shuffle(shuffled)
    tree = BPTree()
    for key in shuffled:
        tree.insert(key, Record(key=key, value=key), True)
    assert [r.key for r in tree.all()] == keys
    assert tree.first_key == keys[0]
    assert tree.last_key == keys[-1]
    assert tree.valid_key_count == 500


def test_range():
    with pytest.raises(ScansNoResultError):
        BPTree().range(b"key_001", b"key_010")
    tree = build_tree()
    records = tree.range(b"key_000", b"key_009")
    assert [r.key for r in records] == [f"key_{i:03d}".encode() for i in range(10)]
    with pytest.raises(ScansNoResultError):
        tree.range(b"key_101", b"key_110")
    with pytest.raises(StartKeyError):
        tree.range(b"key_101", b"key_100")


def test_find_range_with_callback():
    tree = build_tree()
    seen = []

    def collect(key, record):
        seen.append(key)
        return True

    assert tree.find_range(b"key_010", b"key_014", collect) == []
    assert seen == [f"key_{i:03d}".encode() for i in range(10, 15)]


def test_find_range_pairs():
    tree = build_tree()
    pairs = tree.find_range(b"key_020", b"key_022")
    assert [k for k, _ in pairs] == [b"key_020", b"key_021", b"key_022"]
    assert [r.value for _, r in pairs] == [b"val_020", b"val_021", b"val_022"]


def test_find_leaf():
    tree = build_tree()
    assert tree.find_leaf(b"key_001").keys[0] == b"key_000"
    assert BPTree().find_leaf(b"key_001") is None


def test_update_and_delete():
    tree = build_tree()
    for i in range(101):
        key = f"key_{i:03d}".encode()
        tree.insert(key, Record(key=key, value=f"val_modify{i:03d}".encode()), True)
    assert tree.valid_key_count == 101

    records = tree.range(b"key_000", b"key_009")
    assert [r.key for r in records] == [f"key_{i:03d}".encode() for i in range(10)]
    assert records[3].value == b"val_modify003"

    for i in range(1, 11):
        key = f"key_{i:03d}".encode()
        tree.insert(key, Record(key=key, value=None, flag=DATA_DELETE_FLAG), True)
    assert tree.valid_key_count == 91

    records = tree.range(b"key_001", b"key_010")
    assert len(records) == 10
    assert all(r.flag == DATA_DELETE_FLAG for r in records)

    tree.insert(b"key_001", Record(key=b"key_001", flag=DATA_SET_FLAG), True)
    assert tree.find(b"key_001").flag == DATA_SET_FLAG
    assert tree.valid_key_count == 92


def test_count_flag_disabled_keeps_count():
    tree = build_tree(count=10)
    tree.insert(b"key_001", Record(key=b"key_001", flag=DATA_DELETE_FLAG), False)
    assert tree.valid_key_count == 10
    assert tree.find(b"key_001").flag == DATA_DELETE_FLAG


def test_set_key_pos_map():
    tree = BPTree()
    key_pos_map = {b"key_001": 1, b"key_002": 2, b"key_003": 3}
    tree.set_key_pos_map(key_pos_map)
    assert tree.key_pos_map == key_pos_map


def test_to_binary_leaf_without_key_pos_map():
    tree = build_tree("{:03d}")
    node = tree.find_leaf(b"001")
    expected = BinaryNode(
        keys=(0, 1, 2, 3), pointers=(), is_leaf=1, keys_num=4, address=0, next_address=-1
    )
    assert tree.to_binary(node) == expected.pack()


def test_to_binary_leaf_with_key_pos_map():
    tree = build_tree("{:03d}")
    tree.enabled_key_pos_map = True
    tree.key_pos_map = {b"000": 3, b"001": 2, b"002": 1, b"003": 0}
    node = tree.find_leaf(b"001")
    expected = BinaryNode(
        keys=(3, 2, 1, 0), pointers=(), is_leaf=1, keys_num=4, address=0, next_address=-1
    )
    assert tree.to_binary(node) == expected.pack()


def test_to_binary_root_without_key_pos_map():
    tree = build_tree("{:03d}")
    expected = BinaryNode(
        keys=(20, 40, 60, 80),
        pointers=(304, 1520, 2584, 3496, 4408),
        is_leaf=0,
        keys_num=4,
        address=1672,
        next_address=-1,
    )
    assert tree.to_binary(tree.root) == expected.pack()


def test_to_binary_root_with_key_pos_map():
    tree = build_tree("{:03d}")
    tree.enabled_key_pos_map = True
    tree.key_pos_map = {b"020": 80, b"040": 60, b"060": 40, b"080": 20}
    expected = BinaryNode(
        keys=(80, 60, 40, 20),
        pointers=(304, 1520, 2584, 3496, 4408),
        is_leaf=0,
        keys_num=4,
        address=1672,
        next_address=-1,
    )
    assert tree.to_binary(tree.root) == expected.pack()


def test_to_binary_requires_key_pos_map_when_enabled():
    tree = build_tree("{:03d}")
    tree.enabled_key_pos_map = True
    with pytest.raises(KeyPosMapError):
        tree.to_binary(tree.root)


def test_binary_node_round_trip():
    node = BinaryNode(
        keys=(5, 6), pointers=(7, 8, 9), is_leaf=1, keys_num=2, address=304, next_address=-1
    )
    data = node.pack()
    assert len(data) == 148
    assert decode_binary_node(data) == node
    assert decode_binary_node(data).keys == (5, 6, 0, 0, 0, 0, 0)


def test_binary_node_too_many_keys():
    with pytest.raises(ValueError):
        BinaryNode(keys=tuple(range(8)))


def test_node_size_and_addresses():
    assert binary_node_size() == 152
    assert is_valid_address(0)
    assert is_valid_address(304)
    assert not is_valid_address(5)
    assert not is_valid_address(-152)


def test_write_node(tmp_path):
    tree = build_tree()
    tree.filepath = tmp_path / "bptree_write_test.bptidx"
    node = tree.find_leaf(b"key_001")
    with open(tree.filepath, "w+b") as f:
        written = tree.write_node(node, -1, False, f)
    assert written == len(tree.to_binary(node))
    assert written == 148


def test_write_nodes_and_read_back(tmp_path):
    tree = build_tree("{:03d}")
    tree.filepath = tmp_path / "tree.bptidx"
    tree.write_nodes(False)

    root = read_node(tree.filepath, tree.root.address)
    assert root == decode_binary_node(tree.to_binary(tree.root))
    assert root.next_address == DEFAULT_INVALID_ADDRESS
    assert root.keys[:4] == (20, 40, 60, 80)

    leaf = read_node(tree.filepath, 0)
    assert leaf.is_leaf == 1
    assert leaf.keys[:4] == (0, 1, 2, 3)
    assert leaf.keys_num == 4


def test_read_node_errors(tmp_path):
    tree = build_tree()
    tree.filepath = tmp_path / "tree.bptidx"
    tree.write_nodes(True)
    with pytest.raises(NodeAddressError):
        read_node(tree.filepath, 5)
    with pytest.raises(EOFError):
        read_node(tree.filepath, 152 * 1000)