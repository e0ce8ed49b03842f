from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class CandidateTables:
    """
    Offsets of the node, name and data tables inside one byte range.

    `data_offset` is None for containers without any file. `node_count` is
    the number of node rows when known; otherwise the node table is bounded
    by the end of the range.
    """
    range_name: str
    data: bytes = field(repr=False)
    tree_offset: int
    names_offset: int
    data_offset: Optional[int]
    node_count: Optional[int] = None

    def row_limit(self, row_size):
        available = max(0, len(self.data) - self.tree_offset) // row_size
        if self.node_count is None:
            return available
        return min(self.node_count, available)
