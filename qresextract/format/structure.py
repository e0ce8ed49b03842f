from collections import namedtuple
from enum import IntEnum, IntFlag

from dissect.cstruct import cstruct

from qresextract.errors import UnsupportedVersion

# All rcc tables are big-endian regardless of the host architecture
qrc_structure = cstruct(endian=">")
qrc_structure.load("""
    // Node table rows, format version 1 (14 bytes)
    struct DirectoryNodeV1 {
        uint32 name_offset;             // Byte offset into the name table
        uint16 flags;                   // NodeFlags, DIRECTORY is always set
        uint32 child_count;
        uint32 first_child;             // Row index of the first child
    };

    struct FileNodeV1 {
        uint32 name_offset;
        uint16 flags;
        uint16 territory;               // QLocale::Territory
        uint16 language;                // QLocale::Language
        uint32 data_offset;             // Byte offset into the data table
    };

    // Format versions 2 and 3 append the modification time (22 bytes)
    struct DirectoryNodeV2 {
        uint32 name_offset;
        uint16 flags;
        uint32 child_count;
        uint32 first_child;
        uint64 last_modified;           // Milliseconds since the epoch, 0 if unknown
    };

    struct FileNodeV2 {
        uint32 name_offset;
        uint16 flags;
        uint16 territory;
        uint16 language;
        uint32 data_offset;
        uint64 last_modified;
    };

    // Name table entry header, followed by `length` UTF-16BE code units
    struct NameHeader {
        uint16 length;
        uint32 hash;                    // qt_hash() of the code units
    };

    // Header of a standalone .rcc file (rcc -binary)
    struct RccHeader {
        char   magic[4];                // "qres"
        uint32 version;
        uint32 tree_offset;
        uint32 data_offset;
        uint32 names_offset;
    };
""", compiled=True)

RCC_MAGIC = b"qres"
MAX_FORMAT_VERSION = 3

NAME_HEADER_SIZE = len(qrc_structure.NameHeader)
DATA_LENGTH_SIZE = 4
FLAGS_OFFSET = 4  # flags follow the u32 name offset in every row layout


class NodeFlags(IntFlag):
    COMPRESSED = 0x01
    DIRECTORY = 0x02
    COMPRESSED_ZSTD = 0x04


KNOWN_FLAGS = int(NodeFlags.COMPRESSED | NodeFlags.DIRECTORY | NodeFlags.COMPRESSED_ZSTD)

RowLayout = namedtuple("RowLayout", ["directory", "file", "size"])

_LAYOUT_V1 = RowLayout(qrc_structure.DirectoryNodeV1, qrc_structure.FileNodeV1, len(qrc_structure.FileNodeV1))
_LAYOUT_V2 = RowLayout(qrc_structure.DirectoryNodeV2, qrc_structure.FileNodeV2, len(qrc_structure.FileNodeV2))


class ResourceVersion(IntEnum):
    V1 = 1
    V2 = 2
    V3 = 3

    @classmethod
    def newest_first(cls):
        return sorted(cls, reverse=True)

    @classmethod
    def from_header(cls, value):
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedVersion(f"format version {value} is not supported, expected 1..{MAX_FORMAT_VERSION}") from None

    @property
    def layout(self):
        return _LAYOUT_V1 if self is ResourceVersion.V1 else _LAYOUT_V2

    @property
    def row_size(self):
        return self.layout.size

    @property
    def has_timestamps(self):
        return self >= ResourceVersion.V2

    @property
    def supports_zstd(self):
        return self >= ResourceVersion.V3


class Compression(IntEnum):
    NONE = 0
    ZLIB = 1
    ZSTD = 2


def read_u16(data, pos):
    return int.from_bytes(data[pos:pos + 2], "big")


def read_u32(data, pos):
    return int.from_bytes(data[pos:pos + 4], "big")


def parse_row(data, pos, version):
    """
    Parse the node table row starting at `pos`.

    The directory flag decides which of the two row structs applies.
    Returns None when the row does not fit in `data`.
    """
    layout = version.layout
    if pos < 0 or pos + layout.size > len(data):
        return None

    flags = read_u16(data, pos + FLAGS_OFFSET)
    struct_type = layout.directory if flags & NodeFlags.DIRECTORY else layout.file
    return struct_type(data[pos:pos + layout.size])
