"""
Heuristic search for rcc tables inside arbitrary byte ranges.

Every root-looking row is turned into a node table hypothesis per row width,
walked in full, then paired with every name table base on which all name
references hash correctly, then with data table bases on which all
declared block lengths fit. Data tables packed right before the name table
are looked up directly; every offset of the range is only tried when no such
table exists. Hypotheses are plain tuples and all checks are pure
functions from qresextract.version.
"""

import logging
import re
from typing import List, NamedTuple, Optional, Sequence, Tuple

from qresextract.errors import Ambiguous, NotFound
from qresextract.format.names import parse_name_entry, plausible_name_at
from qresextract.format.structure import DATA_LENGTH_SIZE, ResourceVersion, read_u32
from qresextract.format.tables import CandidateTables
from qresextract.version import check_data, check_names, walk_tree

log = logging.getLogger(__name__)

# name_offset == 0 and flags == DIRECTORY: how rcc writes the root row
ROOT_ROW = re.compile(rb"(?=\x00\x00\x00\x00\x00\x02)")

# Name entry shorter than 256 units whose hash has a clear top nibble
NAME_ANCHOR = re.compile(rb"(?=\x00[\x01-\xff][\x00-\x0f])", re.DOTALL)

# Alignment padding tolerated between tables that rcc emits back to back
LAYOUT_SLACK = 16

# Equally scored pairings kept per node table; more than one is ambiguous anyway
MAX_TIED_CANDIDATES = 32


class NodeHypothesis(NamedTuple):
    tree_offset: int
    version: ResourceVersion
    node_count: int
    name_refs: Tuple[int, ...]
    data_refs: Tuple[int, ...]

    @property
    def extent(self):
        return self.tree_offset, self.tree_offset + self.node_count * self.version.row_size


class Candidate(NamedTuple):
    tables: CandidateTables
    version: ResourceVersion
    score: Tuple[bool, int, int]


def _overlaps(a, b):
    return a[0] < b[1] and b[0] < a[1]


def _adjacency(end, start):
    """2 when `start` follows `end` directly, 1 within LAYOUT_SLACK, else 0."""
    if start == end:
        return 2
    return 1 if end < start <= end + LAYOUT_SLACK else 0


def node_hypotheses(data) -> List[NodeHypothesis]:
    """Node tables that walk cleanly under some row width, widest first."""
    hypotheses = []
    for match in ROOT_ROW.finditer(data):
        offset = match.start()
        widths = set()
        for version in ResourceVersion.newest_first():
            if version.row_size in widths:
                continue
            widths.add(version.row_size)

            walk = walk_tree(data, offset, version, strict=True)
            if walk.problem or len(walk.rows) < 2:
                continue
            hypotheses.append(NodeHypothesis(
                offset, version, walk.node_count, tuple(walk.name_refs()), tuple(walk.data_refs()),
            ))
    return hypotheses


def name_anchors(data) -> List[int]:
    """Positions holding a name entry whose stored hash verifies."""
    anchors = []
    for match in NAME_ANCHOR.finditer(data):
        pos = match.start()
        if not plausible_name_at(data, pos):
            continue
        entry = parse_name_entry(data, pos)
        if entry is not None and entry.valid:
            anchors.append(pos)
    return anchors


def _name_tables(data, hypothesis, anchors):
    first = hypothesis.name_refs[0]
    for anchor in anchors:
        base = anchor - first
        if base < 0:
            continue
        end = check_names(data, base, hypothesis.name_refs)
        if end is None or _overlaps((base, end), hypothesis.extent):
            continue
        yield base, end


def _find_all(data, pattern, end):
    pos = data.find(pattern, 0, end)
    while pos != -1:
        yield pos
        pos = data.find(pattern, pos + 1, end)


def _packed_data_tables(data, refs, names_offset):
    """
    Data table starts whose blocks tile from offset 0 and whose last block
    ends at most LAYOUT_SLACK bytes before the name table.
    """
    if refs[0] != 0:
        return

    last = refs[-1]
    if len(refs) > 1:
        # the first block's length is fixed by where the second one starts
        first_length = refs[1] - DATA_LENGTH_SIZE
        if first_length < 0:
            return
        starts = _find_all(data, first_length.to_bytes(DATA_LENGTH_SIZE, "big"), names_offset)
    else:
        starts = range(names_offset - DATA_LENGTH_SIZE, -1, -1)

    for base in starts:
        pos = base + last
        if pos + DATA_LENGTH_SIZE > names_offset:
            continue
        end = pos + DATA_LENGTH_SIZE + read_u32(data, pos)
        if not names_offset - LAYOUT_SLACK <= end <= names_offset:
            continue
        result = check_data(data, base, refs)
        if result is not None and result[1]:
            yield base, end


def _data_tables(data, hypothesis, names_offset, taken):
    refs = hypothesis.data_refs
    if not refs:
        yield None, None, True
        return

    packed = [
        (base, end) for base, end in _packed_data_tables(data, refs, names_offset)
        if not any(_overlaps((base, end), extent) for extent in taken)
    ]
    for base, end in packed:
        yield base, end, True
    # zero padding before the name table reads as a run of empty blocks
    if any(end - base > DATA_LENGTH_SIZE * len(refs) for base, end in packed):
        return

    log.debug(f"No non-empty packed data table before 0x{names_offset:x}, scanning every offset")
    seen = {base for base, _ in packed}
    for base in range(0, len(data) - refs[-1] - 3):
        if base in seen:
            continue
        result = check_data(data, base, refs)
        if result is None:
            continue
        end, tiled = result
        if any(_overlaps((base, end), extent) for extent in taken):
            continue
        yield base, end, tiled


class _BestCandidates:
    """Highest scoring candidates per (node table, version); lower scores are dropped on arrival."""

    def __init__(self):
        self.best = {}

    def add(self, candidate):
        key = (candidate.tables.tree_offset, candidate.version)
        current = self.best.get(key)
        if current is None or candidate.score > current[0].score:
            self.best[key] = [candidate]
        elif candidate.score == current[0].score and len(current) < MAX_TIED_CANDIDATES:
            current.append(candidate)

    def __iter__(self):
        for candidates in self.best.values():
            yield from candidates


def scan_range(range_name, data) -> List[Candidate]:
    data = bytes(data)
    hypotheses = node_hypotheses(data)
    if not hypotheses:
        return []

    log.debug(f"{range_name}: {len(hypotheses)} node table hypotheses")
    anchors = name_anchors(data)
    candidates = _BestCandidates()
    for hypothesis in hypotheses:
        for names_offset, names_end in _name_tables(data, hypothesis, anchors):
            taken = (hypothesis.extent, (names_offset, names_end))
            for data_offset, data_end, packed in _data_tables(data, hypothesis, names_offset, taken):
                score = (
                    packed,
                    2 if data_end is None else _adjacency(data_end, names_offset),
                    _adjacency(names_end, hypothesis.tree_offset),
                )
                tables = CandidateTables(
                    range_name, data, hypothesis.tree_offset, names_offset, data_offset, hypothesis.node_count,
                )
                candidates.add(Candidate(tables, hypothesis.version, score))
    return _newest_per_offset(list(candidates))


def _newest_per_offset(candidates):
    newest = {}
    for candidate in candidates:
        key = candidate.tables.tree_offset
        newest[key] = max(newest.get(key, candidate.version), candidate.version)
    return [c for c in candidates if c.version == newest[c.tables.tree_offset]]


def _candidates(byte_ranges):
    candidates = []
    for range_name, data in byte_ranges:
        found = scan_range(range_name, data)
        if found:
            log.info(f"Found {len(found)} candidate table triple(s) in {range_name}")
        candidates.extend(found)
    return candidates


def _best(candidates):
    top = max(c.score for c in candidates)
    return [c for c in candidates if c.score == top]


def locate(byte_ranges: Sequence[Tuple[str, bytes]], hint: Optional[str] = None) -> CandidateTables:
    """
    Find the single resource container in `byte_ranges`.

    `hint` names the preferred range and is only used to break ties. Raises
    NotFound when nothing validates and Ambiguous when several containers
    remain after the tie-breaks.
    """
    candidates = _candidates(byte_ranges)
    if not candidates:
        raise NotFound("no self-consistent resource tables in any of the supplied ranges")

    if len(candidates) > 1 and hint is not None:
        hinted = [c for c in candidates if c.tables.range_name == hint]
        candidates = hinted or candidates

    if len(candidates) > 1:
        candidates = _best(candidates)
    if len(candidates) > 1:
        raise Ambiguous([c.tables for c in candidates])

    tables = candidates[0].tables
    log.debug(f"Located tables in {tables.range_name}: tree 0x{tables.tree_offset:x}, names 0x{tables.names_offset:x}")
    return tables


def locate_all(byte_ranges: Sequence[Tuple[str, bytes]]) -> List[CandidateTables]:
    """
    Best candidate per node table, for images that register several
    containers. Node tables whose best pairing is itself ambiguous are
    skipped with a warning.
    """
    by_tree = {}
    for candidate in _candidates(byte_ranges):
        key = (candidate.tables.range_name, candidate.tables.tree_offset)
        by_tree.setdefault(key, []).append(candidate)

    found = []
    for (range_name, tree_offset), candidates in sorted(by_tree.items()):
        best = _best(candidates)
        if len(best) > 1:
            log.warning(f"Skipping node table at {range_name}@0x{tree_offset:x}: {len(best)} equally likely name/data tables")
            continue
        found.append(best[0].tables)
    return found
