import dataclasses
from datetime import datetime, timezone

import pytest

from qresextract.format.encoder import ResourceWriter
from qresextract.format.structure import Compression

JUNK = bytes(range(0x41, 0x41 + 37))
STAMP = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def patched(tables, pos, raw):
    """Copy of `tables` with `raw` written over its range bytes at `pos`."""
    data = bytearray(tables.data)
    data[pos:pos + len(raw)] = raw
    return dataclasses.replace(tables, data=bytes(data))


@pytest.fixture
def hello():
    return ResourceWriter().add_file("hello.txt", b"hi")


@pytest.fixture
def app_writer():
    writer = ResourceWriter()
    writer.add_file("/qml/main.qml", b"import QtQuick\nItem {}\n", last_modified=STAMP)
    writer.add_file("/qml/Button.qml", b"Rectangle { color: 'red' }\n", last_modified=STAMP)
    writer.add_file("/images/logo.svg", b"<svg xmlns='http://www.w3.org/2000/svg'/>", last_modified=STAMP)
    writer.add_file("/certs/Client/client.p12", b"not really a certificate", last_modified=STAMP)
    writer.add_directory("/empty")
    return writer


@pytest.fixture
def compressed_writer():
    writer = ResourceWriter()
    writer.add_file("/stored.txt", b"stored data")
    writer.add_file("/deflated.txt", b"payload data", compression=Compression.ZLIB)
    writer.add_file("/zstd.txt", b"zstandard payload " * 8, compression=Compression.ZSTD)
    return writer
