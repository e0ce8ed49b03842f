# Script to dump every QML/JS file of the embedded Qt resources to stdout
# usage: dump_qml.py <binary> [section]

import sys

from qresextract import QtResourceExtractor
from qresextract.errors import ReadError

ext = QtResourceExtractor(open(sys.argv[1], "rb"), ".", hint=sys.argv[2] if len(sys.argv) > 2 else None)

for tree in ext.trees:
    for node in tree.files():
        path = tree.path_of(node)
        if not path.endswith((".qml", ".js", ".mjs", "qmldir")):
            continue
        try:
            source = tree.read_node(node).decode("utf-8", "replace")
        except ReadError as e:
            print(f"[-] {path}: {e}")
            continue
        print("--------------------------------------------------------------------------------")
        print(f"// {path}")
        print(source)
