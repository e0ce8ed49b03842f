import dataclasses

import pytest

from qresextract.errors import DuplicateName, HashMismatch, IsADirectory, MalformedNode, ResourceNotFound
from qresextract.format.encoder import ResourceWriter
from qresextract.format.names import qt_hash
from qresextract.format.structure import ResourceVersion
from qresextract.tree import build, split_path

from conftest import JUNK, STAMP, patched


def _build(writer, version=ResourceVersion.V3, **kwargs):
    encoded = writer.encode(version)
    _, tables = encoded.embedded(prefix=JUNK, **kwargs)
    return encoded, tables, build(tables, version)


def test_list_is_preorder_and_restartable(app_writer):
    _, _, tree = _build(app_writer)
    listing = list(tree.list())
    assert listing[0] == ("/", True)
    assert list(tree.list()) == listing

    paths = [path for path, _ in listing]
    for path in paths[1:]:
        parent = path.rsplit("/", 1)[0] or "/"
        assert paths.index(parent) < paths.index(path)


def test_children_are_contiguous(app_writer):
    _, _, tree = _build(app_writer)
    for node in tree.walk():
        children = tree.children(node)
        if not node.is_directory:
            assert children == ()
            continue
        assert [c.index for c in children] == list(node.child_indices)
        assert all(c.parent == node.index for c in children)


def test_find_and_read(app_writer):
    _, _, tree = _build(app_writer)
    assert tree.find("qml\\main.qml") is tree.find("/qml/main.qml")
    assert tree.find("/./qml/Button.qml").name == "Button.qml"
    assert tree.find("/nope") is None
    assert len(tree) == 10

    with pytest.raises(ResourceNotFound):
        tree.read("/qml/missing.qml")
    with pytest.raises(IsADirectory):
        tree.read("/qml")


def test_timestamps(app_writer):
    _, _, tree = _build(app_writer, ResourceVersion.V3)
    assert tree.find("/qml/main.qml").last_modified == STAMP
    assert tree.find("/qml").last_modified is None

    _, _, old = _build(app_writer, ResourceVersion.V1)
    assert all(node.last_modified is None for node in old.walk())
    assert old.read("/images/logo.svg").startswith(b"<svg")


def test_locale_fields():
    writer = ResourceWriter().add_file("/i18n/hello.txt", b"Hallo", territory=82, language=42)
    _, _, tree = _build(writer)
    node = tree.find("/i18n/hello.txt")
    assert node.locale == (42, 82)
    assert node.size == 5


def test_hash_mismatch(hello):
    encoded, tables, _ = _build(hello)
    pos = tables.names_offset + encoded.name_offsets["hello.txt"] + 5
    broken = patched(tables, pos, bytes([tables.data[pos] ^ 0x01]))
    with pytest.raises(HashMismatch):
        build(broken, ResourceVersion.V3)


def test_child_range_past_the_last_row():
    encoded, tables, _ = _build(ResourceWriter().add_directory("/empty"))
    last = tables.tree_offset + (encoded.node_count - 1) * ResourceVersion.V3.row_size
    broken = patched(tables, last + 6, (1).to_bytes(4, "big") + encoded.node_count.to_bytes(4, "big"))
    with pytest.raises(MalformedNode):
        build(broken, ResourceVersion.V3)


def test_duplicate_sibling_names():
    writer = ResourceWriter().add_file("/a", b"first").add_file("/b", b"second")
    encoded, tables, _ = _build(writer)
    row = tables.tree_offset + encoded.rows["/b"] * ResourceVersion.V3.row_size
    broken = patched(tables, row, encoded.name_offsets["a"].to_bytes(4, "big"))
    with pytest.raises(DuplicateName):
        build(broken, ResourceVersion.V3)


def test_data_block_outside_the_range(hello):
    encoded, tables, _ = _build(hello)
    broken = patched(tables, tables.data_offset, (0xFFFF).to_bytes(4, "big"))
    with pytest.raises(MalformedNode):
        build(broken, ResourceVersion.V3)


def test_missing_data_table(hello):
    _, tables, _ = _build(hello)
    with pytest.raises(MalformedNode):
        build(dataclasses.replace(tables, data_offset=None), ResourceVersion.V3)


def test_dot_dot_is_kept_as_a_name():
    _, _, tree = _build(ResourceWriter().add_file("../evil.txt", b"x"))
    assert [path for path, _ in tree.list()] == ["/", "/..", "/../evil.txt"]


@pytest.mark.parametrize("path, segments", [
    ("/", []),
    ("a/b", ["a", "b"]),
    ("\\a\\b\\", ["a", "b"]),
    ("//a/./b", ["a", "b"]),
    ("a/../b", ["a", "..", "b"]),
])
def test_split_path(path, segments):
    assert split_path(path) == segments


def test_dot_name_is_rejected():
    encoded, tables, _ = _build(ResourceWriter().add_file("/x", b"data"))
    entry = tables.names_offset + encoded.name_offsets["x"]
    broken = patched(tables, entry + 2, qt_hash(".").to_bytes(4, "big") + ".".encode("utf-16-be"))
    with pytest.raises(MalformedNode):
        build(broken, ResourceVersion.V3)


def test_uncompressed_size(compressed_writer):
    _, _, tree = _build(compressed_writer)
    assert tree.uncompressed_size(tree.find("/stored.txt")) == len(b"stored data")
    assert tree.uncompressed_size(tree.find("/deflated.txt")) == len(b"payload data")
    assert tree.uncompressed_size(tree.find("/zstd.txt")) == len(b"zstandard payload " * 8)
    assert tree.find("/deflated.txt").size != len(b"payload data")
    with pytest.raises(IsADirectory):
        tree.uncompressed_size(tree.root)
