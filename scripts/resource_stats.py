# Script to print a per-container summary of the embedded Qt resources
# (file count, stored vs. decoded size and compression kinds)

from qresextract import QtResourceExtractor
from qresextract.errors import ReadError
from qresextract.format.structure import Compression
from rich.progress import track
from rich.table import Table
from collections import Counter
import argparse

parser = argparse.ArgumentParser(add_help=True, description="Summarise the Qt resources embedded in a binary", formatter_class=argparse.RawDescriptionHelpFormatter)
parser.add_argument("binary", type=argparse.FileType("rb"), help="Path to the binary or .rcc file")
parser.add_argument("-s", "--section", required=False, default=None, help="Section to prefer when several containers match")
args = parser.parse_args()

ext = QtResourceExtractor(args.binary, ".", hint=args.section)

table = Table(title=args.binary.name)
for column in ["Container", "Version", "Files", "Stored", "Decoded", "Compression", "Unreadable"]:
    table.add_column(column)

for tree in ext.trees:
    files = list(tree.files())
    kinds = Counter()
    stored = decoded = broken = 0
    for node in track(files, description=f"Reading {tree.source.range_name}"):
        block = tree.data_block(node)
        stored += node.size
        try:
            kinds[block.compression.name.lower()] += 1
            size = tree.uncompressed_size(node)
            if size is None:
                # zstd frame without a recorded content size
                size = len(tree.read_node(node))
        except ReadError:
            broken += 1
            continue
        decoded += size

    table.add_row(
        f"{tree.source.range_name} @ 0x{tree.source.tree_offset:x}",
        str(int(tree.version)),
        str(len(files)),
        str(stored),
        str(decoded),
        ", ".join(f"{k}: {v}" for k, v in sorted(kinds.items())) or Compression.NONE.name.lower(),
        str(broken),
    )

ext.console.print(table)
