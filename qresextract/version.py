"""
Node table walking and format version detection.

Everything here is pure: hypotheses are checked by returning a description
of the first problem found (or None), never by raising, so the locator can
try thousands of them cheaply.
"""

import logging
from collections import deque
from typing import List, NamedTuple, Optional

from qresextract.errors import UnsupportedVersion
from qresextract.format.names import parse_name_entry
from qresextract.format.structure import (
    DATA_LENGTH_SIZE,
    KNOWN_FLAGS,
    NodeFlags,
    ResourceVersion,
    parse_row,
    read_u32,
)

log = logging.getLogger(__name__)


class WalkedRow(NamedTuple):
    index: int
    parent: Optional[int]
    row: object

    @property
    def is_directory(self):
        return bool(self.row.flags & NodeFlags.DIRECTORY)


class TreeWalk(NamedTuple):
    rows: List[WalkedRow]
    problem: Optional[str]
    highest: int = 0

    @property
    def node_count(self):
        return self.highest + 1

    def name_refs(self):
        return sorted({r.row.name_offset for r in self.rows if r.parent is not None})

    def data_refs(self):
        return sorted({r.row.data_offset for r in self.rows if not r.is_directory})


def walk_tree(data, tree_offset, version, row_limit=None, strict=False):
    """
    Breadth-first walk of the node table starting at row 0.

    Every child range must stay below `row_limit` and no row may be reached
    twice. With `strict`, rows carrying unknown flag bits are rejected and
    every row up to the highest referenced one must be reachable, which is
    how rcc lays tables out.
    """
    row_size = version.row_size
    available = max(0, len(data) - tree_offset) // row_size
    limit = available if row_limit is None else min(row_limit, available)
    if tree_offset < 0 or limit < 1:
        return TreeWalk([], f"node table at 0x{tree_offset:x} does not hold a single row")

    rows = []
    visited = {0}
    highest = 0
    pending = deque([(0, None)])
    while pending:
        index, parent = pending.popleft()
        row = parse_row(data, tree_offset + index * row_size, version)
        walked = WalkedRow(index, parent, row)

        if index == 0 and not walked.is_directory:
            return TreeWalk(rows, "root node is not a directory")
        if strict and row.flags & ~KNOWN_FLAGS:
            return TreeWalk(rows, f"row {index} has unknown flags 0x{row.flags:x}")
        rows.append(walked)

        if not walked.is_directory or row.child_count == 0:
            continue

        first, last = row.first_child, row.first_child + row.child_count
        if first < 1 or last > limit:
            return TreeWalk(rows, f"directory at row {index} references rows {first}..{last - 1} outside a table of {limit} rows")

        for child in range(first, last):
            if child in visited:
                return TreeWalk(rows, f"row {child} is referenced more than once")
            visited.add(child)
            pending.append((child, index))
        highest = max(highest, last - 1)

    if strict and len(visited) != highest + 1:
        return TreeWalk(rows, f"only {len(visited)} of {highest + 1} rows are reachable from the root")

    return TreeWalk(rows, None, highest)


def check_names(data, names_offset, refs):
    """Returns the end of the name table or None when any reference is invalid."""
    end = names_offset
    for ref in refs:
        entry = parse_name_entry(data, names_offset + ref)
        if entry is None or not entry.valid or entry.length == 0:
            return None
        end = max(end, entry.offset + entry.size)
    return end


def check_data(data, data_offset, refs):
    """
    Returns (end, packed) for the data table or None when a declared block
    length does not fit in `data`. `packed` tells whether the blocks tile the
    table from offset 0 without gaps, as rcc writes them.
    """
    end = data_offset
    packed = not refs or refs[0] == 0
    for i, ref in enumerate(refs):
        pos = data_offset + ref
        if pos + DATA_LENGTH_SIZE > len(data):
            return None
        length = read_u32(data, pos)
        stop = pos + DATA_LENGTH_SIZE + length
        if stop > len(data):
            return None
        if i + 1 < len(refs) and refs[i + 1] != ref + DATA_LENGTH_SIZE + length:
            packed = False
        end = max(end, stop)
    return end, packed


def validate(tables, version, strict=False):
    """Full check of a table triple under `version`; returns a problem or None."""
    walk = walk_tree(tables.data, tables.tree_offset, version, tables.node_count, strict=strict)
    if walk.problem:
        return walk.problem

    if check_names(tables.data, tables.names_offset, walk.name_refs()) is None:
        return "a name reference does not resolve to a valid name entry"

    data_refs = walk.data_refs()
    if data_refs:
        if tables.data_offset is None:
            return "file nodes exist but no data table was given"
        if check_data(tables.data, tables.data_offset, data_refs) is None:
            return "a data reference does not resolve to a block inside the range"

    return None


def detect_version(tables):
    """
    Pick the newest format version whose row layout validates.

    Newer layouts are supersets of older ones, and reading newer tables with
    an older row width can validate by accident, so newest wins.
    """
    problems = []
    for version in ResourceVersion.newest_first():
        problem = validate(tables, version)
        if problem is None:
            log.debug(f"Tables at 0x{tables.tree_offset:x} decode as format version {int(version)}")
            return version
        problems.append(f"v{int(version)}: {problem}")

    raise UnsupportedVersion("no known row layout validates: " + "; ".join(problems))


def layout_for(version):
    """Row structs (directory, file, size) used by `version`."""
    return ResourceVersion(version).layout
