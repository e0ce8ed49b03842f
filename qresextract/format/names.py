"""Name table entries and Qt's string hash."""

import struct
from typing import NamedTuple, Optional, Sequence, Union

from qresextract.format.structure import NAME_HEADER_SIZE, qrc_structure, read_u16, read_u32


def utf16_units(text: str) -> Sequence[int]:
    raw = text.encode("utf-16-be", "surrogatepass")
    return struct.unpack(f">{len(raw) // 2}H", raw)


def qt_hash(key: Union[str, Sequence[int]], chained: int = 0) -> int:
    """
    Port of Qt's qt_hash() as used by rcc for the name table.

    `key` is either a string or its UTF-16 code units.
    """
    units = utf16_units(key) if isinstance(key, str) else key
    result = chained
    for unit in units:
        result = (result << 4) + unit
        result ^= (result & 0xF0000000) >> 23
        result &= 0x0FFFFFFF
    return result


class NameEntry(NamedTuple):
    offset: int
    length: int
    stored_hash: int
    name: str
    computed_hash: int

    @property
    def valid(self):
        return self.stored_hash == self.computed_hash

    @property
    def size(self):
        return NAME_HEADER_SIZE + self.length * 2


def parse_name_entry(data, pos: int, end: Optional[int] = None) -> Optional[NameEntry]:
    """
    Decode the name table entry at `pos`.

    Returns None when the entry does not fit before `end` or its code units
    are not valid UTF-16. A returned entry may still carry a bad hash, check
    `valid` before trusting it.
    """
    end = len(data) if end is None else end
    if pos < 0 or pos + NAME_HEADER_SIZE > end:
        return None

    header = qrc_structure.NameHeader(data[pos:pos + NAME_HEADER_SIZE])
    start = pos + NAME_HEADER_SIZE
    stop = start + header.length * 2
    if stop > end:
        return None

    raw = bytes(data[start:stop])
    try:
        name = raw.decode("utf-16-be")
    except UnicodeDecodeError:
        return None

    units = struct.unpack(f">{header.length}H", raw)
    return NameEntry(pos, header.length, header.hash, name, qt_hash(units))


def plausible_name_at(data, pos: int) -> bool:
    """
    Cheap pre-check used while scanning for name tables.

    The hash never sets its top nibble and its low nibble always equals the
    low nibble of the last code unit, which rejects most positions without
    hashing the whole string.
    """
    if pos + NAME_HEADER_SIZE > len(data):
        return False

    length = read_u16(data, pos)
    stored = read_u32(data, pos + 2)
    last = pos + NAME_HEADER_SIZE + length * 2 - 2
    if length == 0 or stored & 0xF0000000 or last + 2 > len(data):
        return False

    return stored & 0xF == read_u16(data, last) & 0xF
