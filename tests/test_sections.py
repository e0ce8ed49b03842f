import struct
import sys
from pathlib import Path

import pytest

from qresextract import locate_and_build
from qresextract.sections import ELF_MAGIC, read_sections, sections_from_bytes

from conftest import JUNK

FILE_ALIGNMENT = 0x200


def _section_header(name, virtual_address, raw_size, raw_pointer, characteristics):
    return struct.pack(
        "<8sIIIIIIHHI", name, FILE_ALIGNMENT, virtual_address, raw_size, raw_pointer, 0, 0, 0, 0, characteristics,
    )


def _minimal_pe(rdata):
    """Three section PE32 image: .text (code), .rdata (`rdata`), .bss (uninitialised)."""
    assert len(rdata) <= FILE_ALIGNMENT
    sections = [
        _section_header(b".text", 0x1000, FILE_ALIGNMENT, FILE_ALIGNMENT, 0x60000020),
        _section_header(b".rdata", 0x2000, FILE_ALIGNMENT, 2 * FILE_ALIGNMENT, 0x40000040),
        _section_header(b".bss", 0x3000, 0, 0, 0xC0000080),
    ]

    dos_header = b"MZ" + bytes(0x3A) + struct.pack("<I", 0x40)
    file_header = struct.pack("<HHIIIHH", 0x14C, len(sections), 0, 0, 0, 0xE0, 0x0102)
    optional_header = struct.pack(
        "<HBBIIIIIIIIIHHHHHHIIIIHHIIIIII",
        0x10B, 14, 0,                           # magic, linker version
        FILE_ALIGNMENT, FILE_ALIGNMENT, 0,      # code, initialised, uninitialised sizes
        0x1000, 0x1000, 0x2000,                 # entry point, base of code, base of data
        0x400000, 0x1000, FILE_ALIGNMENT,       # image base, section and file alignment
        6, 0, 0, 0, 6, 0,                       # OS, image and subsystem versions
        0, 0x4000, FILE_ALIGNMENT, 0,           # reserved, image size, header size, checksum
        3, 0,                                   # console subsystem, dll characteristics
        0x100000, 0x1000, 0x100000, 0x1000,     # stack and heap
        0, 16,                                  # loader flags, data directory count
    ) + bytes(16 * 8)

    headers = dos_header + b"PE\x00\x00" + file_header + optional_header + b"".join(sections)
    text = b"\xCC" * FILE_ALIGNMENT
    return headers.ljust(FILE_ALIGNMENT, b"\x00") + text + rdata.ljust(FILE_ALIGNMENT, b"\x00")


def test_plain_file_is_one_range(hello, tmp_path):
    blob, _ = hello.encode().embedded(prefix=JUNK)
    path = tmp_path / "resources.bin"
    path.write_bytes(blob)
    assert read_sections(path) == [("resources.bin", blob)]


def test_pe_keeps_initialised_data_only(hello):
    container, _ = hello.encode().embedded(prefix=JUNK)
    ranges = sections_from_bytes(_minimal_pe(container), "app.exe")

    assert [name for name, _ in ranges] == [".rdata"]
    assert ranges[0][1].startswith(container)
    assert locate_and_build(ranges).read("/hello.txt") == b"hi"


def test_elf_keeps_allocated_read_only_data():
    executable = Path(sys.executable).resolve()
    blob = executable.read_bytes()
    if not blob.startswith(ELF_MAGIC):
        pytest.skip("the interpreter is not an ELF image")

    names = [name for name, _ in sections_from_bytes(blob, executable.name)]
    assert ".rodata" in names
    assert ".text" not in names
    assert ".bss" not in names
    assert executable.name not in names


def test_broken_pe_falls_back_to_whole_file():
    blob = b"MZ" + bytes(10)
    assert sections_from_bytes(blob, "broken.exe") == [("broken.exe", blob)]


def test_broken_elf_falls_back_to_whole_file():
    blob = b"\x7fELF" + bytes(12)
    assert sections_from_bytes(blob, "broken.so") == [("broken.so", blob)]
