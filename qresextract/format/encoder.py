"""
Reference rcc layout encoder.

Builds the node, name and data tables the way rcc emits them: breadth-first
rows, children sorted by qt_hash, names written once, data blocks packed
back to back. Used to produce standalone .rcc files and test containers.
"""

import struct
import zlib
from datetime import datetime
from io import BytesIO
from typing import Dict, NamedTuple, Optional

import zstandard

from qresextract.format.names import qt_hash
from qresextract.format.structure import (
    RCC_MAGIC,
    Compression,
    NodeFlags,
    ResourceVersion,
    qrc_structure,
)
from qresextract.format.tables import CandidateTables
from qresextract.tree import split_path


class EncodedTables(NamedTuple):
    tree: bytes
    names: bytes
    data: bytes
    node_count: int
    version: ResourceVersion
    name_offsets: Dict[str, int]    # name -> offset in the name table
    data_offsets: Dict[str, int]    # file path -> offset in the data table
    rows: Dict[str, int]            # path -> node table row

    def embedded(self, prefix=b"", suffix=b"", range_name="<embedded>"):
        """
        Lay the tables out as rcc-generated code ends up in a data section:
        data, names, then the node table.

        Returns (range_bytes, CandidateTables).
        """
        data_offset = len(prefix)
        names_offset = data_offset + len(self.data)
        tree_offset = names_offset + len(self.names)
        blob = bytes(prefix) + self.data + self.names + self.tree + bytes(suffix)
        tables = CandidateTables(
            range_name, blob, tree_offset, names_offset,
            data_offset if self.data_offsets else None, self.node_count,
        )
        return blob, tables


def _timestamp_ms(value):
    if value is None:
        return 0
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)


class ResourceWriter:
    def __init__(self):
        self.root = {'name': "", 'children': {}, 'file': None}

    def _directory(self, segments):
        node = self.root
        for segment in segments:
            child = node['children'].get(segment)
            if child is None:
                child = {'name': segment, 'children': {}, 'file': None}
                node['children'][segment] = child
            elif child['file'] is not None:
                raise ValueError(f"{segment!r} is already a file")
            node = child
        return node

    def add_directory(self, path):
        self._directory(split_path(path))
        return self

    def add_file(self, path, data, compression=Compression.NONE, territory=0, language=0,
                 last_modified=None, precompressed=False):
        """
        Add a file at `path`, creating parent directories as needed.

        With `precompressed`, `data` is stored as the block payload unchanged
        and only the compression flag is set.
        """
        segments = split_path(path)
        if not segments:
            raise ValueError("a file needs a name")

        parent = self._directory(segments[:-1])
        if segments[-1] in parent['children']:
            raise ValueError(f"{path} already exists")

        parent['children'][segments[-1]] = {
            'name': segments[-1],
            'children': None,
            'file': {
                'data': bytes(data),
                'compression': Compression(compression),
                'territory': territory,
                'language': language,
                'last_modified': _timestamp_ms(last_modified),
                'precompressed': precompressed,
            },
        }
        return self

    def encode(self, version=ResourceVersion.V3) -> EncodedTables:
        version = ResourceVersion(version)
        layout = version.layout

        # PASS 1: assign rows breadth-first; siblings sorted by hash as rcc does
        order = [(self.root, "/")]
        first_child = {}
        rows = {"/": 0}
        cursor = 0
        while cursor < len(order):
            node, path = order[cursor]
            cursor += 1
            if node['children'] is None:
                continue
            children = sorted(node['children'].values(), key=lambda c: (qt_hash(c['name']), c['name']))
            first_child[id(node)] = len(order)
            for child in children:
                child_path = path.rstrip("/") + "/" + child['name']
                rows[child_path] = len(order)
                order.append((child, child_path))

        # PASS 2: names and data blobs
        names = BytesIO()
        name_offsets = {}
        data = BytesIO()
        data_offsets = {}
        for node, path in order[1:]:
            name = node['name']
            if name not in name_offsets:
                name_offsets[name] = names.tell()
                units = name.encode("utf-16-be", "surrogatepass")
                header = qrc_structure.NameHeader()
                header.length = len(units) // 2
                header.hash = qt_hash(name)
                names.write(header.dumps())
                names.write(units)

            if node['file'] is not None:
                payload = _compress(node['file'], version)
                data_offsets[path] = data.tell()
                data.write(struct.pack(">I", len(payload)))
                data.write(payload)

        # PASS 3: node rows
        tree = BytesIO()
        for node, path in order:
            info = node['file']
            if info is None:
                row = layout.directory()
                row.flags = NodeFlags.DIRECTORY
                row.child_count = len(node['children'])
                row.first_child = first_child[id(node)] if node['children'] else 0
            else:
                row = layout.file()
                row.flags = _flags(info)
                row.territory = info['territory']
                row.language = info['language']
                row.data_offset = data_offsets[path]
            row.name_offset = name_offsets[node['name']] if path != "/" else 0
            if version.has_timestamps:
                row.last_modified = info['last_modified'] if info else 0
            tree.write(row.dumps())

        return EncodedTables(
            tree.getvalue(), names.getvalue(), data.getvalue(), len(order), version,
            name_offsets, data_offsets, rows,
        )

    def to_rcc(self, version=ResourceVersion.V3, overall_flags=0) -> bytes:
        """Standalone .rcc file: header, data, names, node table."""
        tables = self.encode(version)
        header_size = len(qrc_structure.RccHeader) + (4 if tables.version >= ResourceVersion.V3 else 0)

        header = qrc_structure.RccHeader()
        header.magic = RCC_MAGIC
        header.version = int(tables.version)
        header.data_offset = header_size
        header.names_offset = header_size + len(tables.data)
        header.tree_offset = header.names_offset + len(tables.names)

        output = BytesIO()
        output.write(header.dumps())
        if tables.version >= ResourceVersion.V3:
            output.write(struct.pack(">I", overall_flags))
        output.write(tables.data)
        output.write(tables.names)
        output.write(tables.tree)
        return output.getvalue()


def _flags(info):
    if info['compression'] is Compression.ZLIB:
        return NodeFlags.COMPRESSED
    if info['compression'] is Compression.ZSTD:
        return NodeFlags.COMPRESSED_ZSTD
    return 0


def _compress(info, version) -> bytes:
    data = info['data']
    kind = info['compression']
    if kind is Compression.ZSTD and not version.supports_zstd:
        raise ValueError(f"zstd compression needs format version 3, not {int(version)}")
    if info['precompressed'] or kind is Compression.NONE:
        return data
    if kind is Compression.ZLIB:
        return struct.pack(">I", len(data)) + zlib.compress(data)
    return zstandard.ZstdCompressor().compress(data)


def encode_files(files: Dict[str, bytes], version=ResourceVersion.V3, compression=Compression.NONE,
                 last_modified: Optional[datetime] = None) -> EncodedTables:
    writer = ResourceWriter()
    for path, data in files.items():
        writer.add_file(path, data, compression=compression, last_modified=last_modified)
    return writer.encode(version)
