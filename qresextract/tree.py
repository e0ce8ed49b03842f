"""
Decoded resource hierarchy.

The tree is a flat arena: nodes are stored in breadth-first order, so the
children of every directory occupy one contiguous run of arena indices,
mirroring the node table they were decoded from.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Tuple

from qresextract.errors import DuplicateName, HashMismatch, IsADirectory, MalformedNode, ResourceNotFound
from qresextract.format.names import parse_name_entry
from qresextract.format.structure import NodeFlags
from qresextract.payload import decode, decoded_size, read_block
from qresextract.version import walk_tree

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceNode:
    name: str
    index: int
    parent: Optional[int]
    flags: int
    last_modified: Optional[datetime]

    is_directory = False


@dataclass(frozen=True)
class ResourceDirectory(ResourceNode):
    first_child: int = 0
    child_count: int = 0

    is_directory = True

    @property
    def child_indices(self):
        return range(self.first_child, self.first_child + self.child_count)


@dataclass(frozen=True)
class ResourceFile(ResourceNode):
    data_position: int = 0    # length prefix of the block inside the source range
    size: int = 0             # stored size, see VirtualTree.uncompressed_size
    territory: int = 0
    language: int = 0

    @property
    def locale(self):
        """(language, territory) as QLocale enum values, or None for the default locale."""
        if self.language == 0 and self.territory == 0:
            return None
        return self.language, self.territory


def split_path(path: str) -> List[str]:
    """Split a virtual path into name segments; backslashes count as separators."""
    return [segment for segment in path.replace("\\", "/").split("/") if segment and segment != "."]


class VirtualTree:
    def __init__(self, nodes, paths, data, version, source=None):
        self.nodes = tuple(nodes)
        self._paths = tuple(paths)
        self._by_path = {path: index for index, path in enumerate(self._paths)}
        self._data = data
        self.version = version
        self.source = source

    def __len__(self):
        return len(self.nodes)

    @property
    def root(self) -> ResourceDirectory:
        return self.nodes[0]

    def path_of(self, node) -> str:
        return self._paths[node.index]

    def children(self, node) -> Tuple[ResourceNode, ...]:
        if not node.is_directory:
            return ()
        return self.nodes[node.first_child:node.first_child + node.child_count]

    def find(self, path) -> Optional[ResourceNode]:
        key = "/" + "/".join(split_path(path))
        index = self._by_path.get(key)
        return None if index is None else self.nodes[index]

    def list(self) -> Iterator[Tuple[str, bool]]:
        """Pre-order listing of (virtual_path, is_directory), starting at "/"."""
        for node in self.walk():
            yield self.path_of(node), node.is_directory

    def walk(self, start=None) -> Iterator[ResourceNode]:
        stack = [start or self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(self.children(node)))

    def files(self, start=None) -> Iterator[ResourceFile]:
        return (node for node in self.walk(start) if not node.is_directory)

    def data_block(self, node):
        return read_block(self._data, node.data_position, node.flags, self.version)

    def uncompressed_size(self, node) -> Optional[int]:
        if node.is_directory:
            raise IsADirectory(f"{self.path_of(node)} is a directory")
        return decoded_size(self.data_block(node))

    def read_node(self, node) -> bytes:
        if node.is_directory:
            raise IsADirectory(f"{self.path_of(node)} is a directory")
        return decode(self.data_block(node))

    def read(self, path) -> bytes:
        node = self.find(path)
        if node is None:
            raise ResourceNotFound(f"{path} does not exist in the resource tree")
        return self.read_node(node)


def _timestamp(row, version):
    if not version.has_timestamps or not row.last_modified:
        return None
    try:
        return datetime.fromtimestamp(row.last_modified / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def build(tables, version) -> VirtualTree:
    """
    Decode the node table of `tables` under `version` into a VirtualTree.

    Any structural problem aborts the build; a half-built tree is never
    returned.
    """
    data = tables.data
    walk = walk_tree(data, tables.tree_offset, version, tables.node_count)
    if walk.problem:
        raise MalformedNode(walk.problem)

    arena = {walked.index: position for position, walked in enumerate(walk.rows)}
    nodes = []
    paths = []
    sibling_names = {}

    for position, (index, parent, row) in enumerate(walk.rows):
        parent_position = None if parent is None else arena[parent]
        name = ""
        if parent is not None:
            entry = parse_name_entry(data, tables.names_offset + row.name_offset)
            if entry is None:
                raise MalformedNode(f"row {index} has an unreadable name at offset 0x{row.name_offset:x}")
            if not entry.valid:
                raise HashMismatch(
                    f"row {index} name {entry.name!r} hashes to 0x{entry.computed_hash:x}, table says 0x{entry.stored_hash:x}"
                )
            name = entry.name
            if name in ("", ".") or "/" in name:
                raise MalformedNode(f"row {index} has an invalid name {name!r}")

            siblings = sibling_names.setdefault(parent_position, set())
            if name in siblings:
                raise DuplicateName(f"{name!r} appears twice in {paths[parent_position]}")
            siblings.add(name)

        if parent_position is None:
            path = "/"
        else:
            path = paths[parent_position].rstrip("/") + "/" + name
        paths.append(path)

        common = dict(
            name=name,
            index=position,
            parent=parent_position,
            flags=row.flags,
            last_modified=_timestamp(row, version),
        )
        if row.flags & NodeFlags.DIRECTORY:
            first = arena[row.first_child] if row.child_count else 0
            nodes.append(ResourceDirectory(first_child=first, child_count=row.child_count, **common))
            continue

        if tables.data_offset is None:
            raise MalformedNode(f"file {path} exists but no data table was located")
        block = read_block(data, tables.data_offset + row.data_offset, row.flags, version)
        if block is None:
            raise MalformedNode(f"data block of {path} at offset 0x{row.data_offset:x} lies outside the data table")

        nodes.append(ResourceFile(
            data_position=block.offset,
            size=len(block.payload),
            territory=row.territory,
            language=row.language,
            **common,
        ))

    log.debug(f"Built resource tree with {len(nodes)} nodes from {tables.range_name}")
    return VirtualTree(nodes, paths, data, version, source=tables)
