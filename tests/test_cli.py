import io
import sys

import pytest

import qresextract
from qresextract import QtResourceExtractor, locate_and_build
from qresextract.errors import NotFound

from conftest import JUNK


@pytest.fixture
def binary(app_writer, tmp_path):
    blob, _ = app_writer.encode().embedded(prefix=JUNK, suffix=JUNK)
    path = tmp_path / "app.bin"
    path.write_bytes(blob)
    return path


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["qresextract", *map(str, argv)])
    return qresextract.main()


def test_extract_mode(monkeypatch, binary, tmp_path):
    out = tmp_path / "out"
    assert _run(monkeypatch, binary, "-o", out, "-j", "2") == 0
    assert (out / "qml" / "Button.qml").read_bytes() == b"Rectangle { color: 'red' }\n"
    assert (out / "empty").is_dir()


def test_extract_selected_path(monkeypatch, binary, tmp_path):
    out = tmp_path / "out"
    assert _run(monkeypatch, binary, "-o", out, "-p", "/images") == 0
    assert (out / "images" / "logo.svg").exists()
    assert not (out / "qml").exists()


def test_missing_path_fails(monkeypatch, binary, tmp_path):
    assert _run(monkeypatch, binary, "-o", tmp_path, "-p", "/nope") == 1


def test_list_mode(monkeypatch, binary, tmp_path):
    assert _run(monkeypatch, binary, "-m", "List") == 0


def test_rcc_input(monkeypatch, app_writer, tmp_path):
    path = tmp_path / "app.rcc"
    path.write_bytes(app_writer.to_rcc())
    assert _run(monkeypatch, path, "-o", tmp_path / "out") == 0
    assert (tmp_path / "out" / "certs" / "Client" / "client.p12").exists()


def test_nothing_found(monkeypatch, tmp_path):
    path = tmp_path / "empty.bin"
    path.write_bytes(bytes(range(256)))
    assert _run(monkeypatch, path, "-o", tmp_path) == 1


def test_several_containers_get_their_own_folder(hello, app_writer, tmp_path):
    first, _ = hello.encode().embedded(prefix=JUNK)
    second, _ = app_writer.encode().embedded(prefix=JUNK)

    extractor = QtResourceExtractor(io.BytesIO(first + second), tmp_path)
    assert len(extractor.trees) == 2
    assert extractor.outputExtract() == 0

    folders = sorted(p.name for p in tmp_path.iterdir())
    assert folders == sorted(f"input_0x{t.source.tree_offset:x}" for t in extractor.trees)
    assert (extractor.destinationFor(extractor.trees[0]) / "hello.txt").read_bytes() == b"hi"


def test_locate_and_build_raises_not_found():
    with pytest.raises(NotFound):
        locate_and_build([("junk", b"\x00" * 64)])
