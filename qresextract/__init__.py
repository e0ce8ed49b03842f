import logging
from rich.logging import RichHandler
from rich.console import Console
from rich.markup import escape

import argparse
import os, pathlib, re
import threading

from enum import Enum

from qresextract.errors import DecodeError, LocateError, QtResourceError
from qresextract.export import export
from qresextract.locator import locate, locate_all
from qresextract.rcc import is_rcc, read_rcc
from qresextract.sections import sections_from_bytes
from qresextract.tree import build
from qresextract.version import detect_version


def locate_and_build(byte_ranges, hint=None):
    """Locate the resource container in `byte_ranges` and decode it into a VirtualTree."""
    tables = locate(byte_ranges, hint)
    version = detect_version(tables)
    return build(tables, version)


class QtResourceExtractor(object):
    OutputMode = Enum('OutputMode', ['List', 'Extract'])

    def __init__(self, binary, outputfolder, console=None, hint=None):
        self.console = console or setup_logging()
        self.output = pathlib.Path(outputfolder)

        blob = binary.read()
        self.name = pathlib.Path(getattr(binary, 'name', '<input>')).name

        if is_rcc(blob):
            logging.info(f'{self.name} is a standalone rcc file')
            self.trees = [read_rcc(blob, self.name)]
        else:
            ranges = sections_from_bytes(blob, self.name)
            logging.info(f'Searching {len(ranges)} byte range(s) of {self.name}')
            if hint is not None:
                self.trees = [locate_and_build(ranges, hint)]
            else:
                self.trees = self.buildAll(ranges)

        for tree in self.trees:
            logging.info(f'Container in {tree.source.range_name} @ 0x{tree.source.tree_offset:x}: format version {int(tree.version)}, {len(tree)} nodes')

    @staticmethod
    def buildAll(ranges):
        trees = []
        for tables in locate_all(ranges):
            try:
                trees.append(build(tables, detect_version(tables)))
            except DecodeError as e:
                logging.warning(f'Skipping container at {tables.range_name}@0x{tables.tree_offset:x}: {e}')

        if not trees:
            raise LocateError('no resource container could be decoded')
        return trees

    def destinationFor(self, tree):
        if len(self.trees) == 1:
            return self.output
        rangename = re.sub(r'[^\w.-]', '_', tree.source.range_name).strip('._') or 'range'
        return self.output / f'{rangename}_0x{tree.source.tree_offset:x}'

    def outputList(self):
        """Print every path of every container."""
        for tree in self.trees:
            if len(self.trees) > 1:
                self.console.print(f"[bold]{escape(tree.source.range_name)} @ 0x{tree.source.tree_offset:x}[/bold]")
            for path, is_directory in tree.list():
                self.console.print(escape(path + '/' if is_directory and path != '/' else path))
        return 0

    def outputExtract(self, paths=None, workers=1, cancel=None):
        """Extract the selected paths (default: everything) to the output folder."""
        failures = 0
        for tree in self.trees:
            report = export(tree, paths, self.destinationFor(tree), workers=workers, cancel=cancel, progress=True)
            failures += len(report.failures)
            if report.ok:
                self.console.print(f"[green]✓[/green] {escape(report.summary)}")
            else:
                self.console.print(f"[red]✗[/red] {escape(report.summary)}")
        return failures


def setup_logging(level=logging.INFO):
    console = Console()
    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False
    )

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[rich_handler]
    )

    return console


def main():

    parser = argparse.ArgumentParser(add_help=True, description='Locate and extract Qt resources (rcc) embedded in executables', formatter_class=argparse.RawDescriptionHelpFormatter)

    parser.add_argument('binary', type=argparse.FileType('rb'), help="Path to an executable, shared library or standalone .rcc file.")
    parser.add_argument('-o', '--output', required=False, type=pathlib.Path, help="Path to an output folder. Folder will be created if it doesn't exist. Defaults to the current directory.", default=".")
    parser.add_argument('-m', '--mode', required=False, help="The output mode to use. List prints the resource tree, Extract writes it to the output folder.", choices=QtResourceExtractor.OutputMode.__members__, default='Extract')
    parser.add_argument('-s', '--section', required=False, help="Prefer the container found in this section when several match, and only extract that one.")
    parser.add_argument('-p', '--path', required=False, action='append', help="Virtual path to extract, e.g. /qml/main.qml. Can be given multiple times. Defaults to the whole tree.")
    parser.add_argument('-j', '--jobs', required=False, type=int, default=os.cpu_count() or 1, help="Number of writer threads.")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging.")

    args = parser.parse_args()

    console = setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        extractor = QtResourceExtractor(args.binary, args.output, console=console, hint=args.section)
    except QtResourceError as e:
        logging.error(f"{args.binary.name}: {e}")
        return 1

    outputmode = QtResourceExtractor.OutputMode[args.mode]
    if outputmode == QtResourceExtractor.OutputMode.List:
        return extractor.outputList()

    cancel = threading.Event()
    try:
        failures = extractor.outputExtract(args.path, workers=max(1, args.jobs), cancel=cancel)
    except KeyboardInterrupt:
        cancel.set()
        logging.warning("Interrupted, files already written are left in place")
        return 130
    except QtResourceError as e:
        logging.error(str(e))
        return 1

    return 1 if failures else 0

if __name__ == '__main__':
    raise SystemExit(main())
