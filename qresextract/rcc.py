"""Standalone .rcc files as written by `rcc -binary`."""

import logging
from typing import NamedTuple, Optional

from qresextract.errors import InvalidHeader
from qresextract.format.structure import RCC_MAGIC, ResourceVersion, qrc_structure, read_u32
from qresextract.format.tables import CandidateTables
from qresextract.tree import build

log = logging.getLogger(__name__)


class RccHeader(NamedTuple):
    version: ResourceVersion
    tree_offset: int
    data_offset: int
    names_offset: int
    overall_flags: Optional[int]


def is_rcc(blob) -> bool:
    return bytes(blob[:4]) == RCC_MAGIC


def parse_header(blob) -> RccHeader:
    size = len(qrc_structure.RccHeader)
    if len(blob) < size:
        raise InvalidHeader(f"file is {len(blob)} bytes, too short for an rcc header")

    header = qrc_structure.RccHeader(bytes(blob[:size]))
    if header.magic != RCC_MAGIC:
        raise InvalidHeader(f"bad magic {header.magic!r}, expected {RCC_MAGIC!r}")

    version = ResourceVersion.from_header(header.version)
    overall_flags = None
    if version >= ResourceVersion.V3:
        if len(blob) < size + 4:
            raise InvalidHeader("header is truncated before the overall flags")
        overall_flags = read_u32(blob, size)

    for name in ('tree_offset', 'data_offset', 'names_offset'):
        value = getattr(header, name)
        if value >= len(blob):
            raise InvalidHeader(f"{name} 0x{value:x} is beyond the end of the file (0x{len(blob):x})")

    return RccHeader(version, header.tree_offset, header.data_offset, header.names_offset, overall_flags)


def tables_from_rcc(blob, range_name="<rcc>"):
    """Returns (CandidateTables, ResourceVersion) straight from the header."""
    header = parse_header(blob)
    tables = CandidateTables(range_name, bytes(blob), header.tree_offset, header.names_offset, header.data_offset)
    return tables, header.version


def read_rcc(blob, range_name="<rcc>"):
    tables, version = tables_from_rcc(blob, range_name)
    log.debug(f"{range_name}: rcc format version {int(version)}")
    return build(tables, version)
