import struct

import pytest

from qresextract.errors import InvalidHeader, UnsupportedVersion
from qresextract.format.structure import ResourceVersion
from qresextract.rcc import is_rcc, parse_header, read_rcc, tables_from_rcc


@pytest.mark.parametrize("version", list(ResourceVersion))
def test_read_rcc(app_writer, version):
    blob = app_writer.to_rcc(version)
    assert is_rcc(blob)

    tree = read_rcc(blob)
    assert tree.version is version
    assert tree.read("/certs/Client/client.p12") == b"not really a certificate"
    assert sum(1 for _ in tree.files()) == 4


def test_header_fields(hello):
    blob = hello.to_rcc(ResourceVersion.V3, overall_flags=1)
    header = parse_header(blob)
    assert header.version is ResourceVersion.V3
    assert header.overall_flags == 1
    assert header.data_offset == 24
    assert header.names_offset == 24 + 6
    assert header.tree_offset == header.names_offset + 24

    tables, version = tables_from_rcc(blob, "app.rcc")
    assert tables.range_name == "app.rcc"
    assert version is ResourceVersion.V3


def test_v1_header_has_no_flags(hello):
    header = parse_header(hello.to_rcc(ResourceVersion.V1))
    assert header.overall_flags is None
    assert header.data_offset == 20


def test_bad_magic(hello):
    blob = b"qrez" + hello.to_rcc()[4:]
    assert not is_rcc(blob)
    with pytest.raises(InvalidHeader):
        parse_header(blob)


def test_truncated_header():
    with pytest.raises(InvalidHeader):
        parse_header(b"qres\x00\x00\x00\x03\x00")
    with pytest.raises(InvalidHeader):
        parse_header(b"qres" + struct.pack(">IIII", 3, 0, 0, 0))


def test_offsets_past_the_end(hello):
    blob = bytearray(hello.to_rcc())
    blob[8:12] = struct.pack(">I", len(blob) + 10)
    with pytest.raises(InvalidHeader):
        parse_header(bytes(blob))


def test_unsupported_version(hello):
    blob = bytearray(hello.to_rcc())
    blob[4:8] = struct.pack(">I", 4)
    with pytest.raises(UnsupportedVersion):
        read_rcc(bytes(blob))
