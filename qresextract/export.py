"""Materialise a VirtualTree (or part of it) onto the local filesystem."""
import logging
import os
import pathlib
import queue
import threading
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional

from rich.progress import track

from qresextract.errors import ExportError, InvalidName, QtResourceError, ResourceNotFound
from qresextract.tree import split_path

log = logging.getLogger(__name__)

WINDOWS_ILLEGAL = set('<>:"/\\|?*')
WINDOWS_RESERVED = {"CON", "PRN", "AUX", "NUL"} | {f"COM{i}" for i in range(1, 10)} | {f"LPT{i}" for i in range(1, 10)}


class ExportedEntry(NamedTuple):
    path: str
    target: pathlib.Path
    size: Optional[int]     # None for directories


class ExportFailure(NamedTuple):
    path: str
    error: Exception


@dataclass
class ExportReport:
    destination: pathlib.Path
    written: List[ExportedEntry] = field(default_factory=list)
    failures: List[ExportFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self):
        return not self.failures and not self.cancelled

    @property
    def summary(self):
        files = sum(1 for entry in self.written if entry.size is not None)
        text = f"{files} files and {len(self.written) - files} directories written to {self.destination}"
        if self.failures:
            text += f", {len(self.failures)} failed"
        if self.cancelled:
            text += " (cancelled)"
        return text


def check_name(name, windows=None):
    """Raise InvalidName if `name` cannot be used as a single path component."""
    if windows is None:
        windows = os.name == "nt"

    if name in ("", ".", ".."):
        raise InvalidName(f"{name!r} is not a usable file name")
    if "/" in name or "\x00" in name:
        raise InvalidName(f"{name!r} contains a path separator or NUL")

    if windows:
        bad = WINDOWS_ILLEGAL.intersection(name) or {c for c in name if ord(c) < 0x20}
        if bad:
            raise InvalidName(f"{name!r} contains characters Windows does not allow: {''.join(sorted(bad))!r}")
        if name.split(".")[0].upper() in WINDOWS_RESERVED:
            raise InvalidName(f"{name!r} is a reserved device name on Windows")
        if name[-1] in ". ":
            raise InvalidName(f"{name!r} ends with a dot or space")


class _DirectoryMaker:
    """Creates directories once, one thread at a time."""

    def __init__(self):
        self.lock = threading.Lock()
        self.made = set()

    def make(self, path):
        with self.lock:
            if path in self.made:
                return
            path.mkdir(parents=True, exist_ok=True)
            self.made.add(path)


def _select(tree, selection, report):
    if selection is None:
        return list(tree.walk())

    chosen = {}
    for path in selection:
        node = tree.find(path)
        if node is None:
            report.failures.append(ExportFailure(path, ResourceNotFound(f"{path} does not exist in the resource tree")))
            continue
        for child in tree.walk(node):
            chosen.setdefault(child.index, child)
    return list(chosen.values())


def _export_one(tree, node, root, maker, preserve_times):
    path = tree.path_of(node)
    segments = split_path(path)
    for segment in segments:
        check_name(segment)
    target = root.joinpath(*segments)

    if node.is_directory:
        maker.make(target)
        return ExportedEntry(path, target, None)

    data = tree.read_node(node)
    maker.make(target.parent)
    target.write_bytes(data)
    if preserve_times and node.last_modified is not None:
        stamp = node.last_modified.timestamp()
        os.utime(target, (stamp, stamp))
    return ExportedEntry(path, target, len(data))


def export(tree, selection, destination_root, workers=1, cancel=None, preserve_times=True, progress=False):
    """
    Write the selected entries of `tree` below `destination_root`.

    `selection` is None for the whole tree or an iterable of virtual paths;
    directories expand to their subtree. Problems with single entries are
    recorded in the returned ExportReport, only an unusable destination
    raises. `cancel` is a threading.Event checked between entries; entries
    already written stay on disk. Any other error raised while exporting an
    entry stops the workers and is re-raised here.
    """
    root = pathlib.Path(destination_root)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportError(f"Unable to create output directory '{root}': {e}") from e

    report = ExportReport(root)
    nodes = _select(tree, selection, report)
    maker = _DirectoryMaker()

    job_q = queue.Queue()
    for node in nodes:
        job_q.put(node)

    result_q = queue.Queue()

    crashed = []

    def export_worker():
        try:
            while not crashed:
                if cancel is not None and cancel.is_set():
                    break
                try:
                    node = job_q.get_nowait()
                except queue.Empty:
                    break

                try:
                    result_q.put(_export_one(tree, node, root, maker, preserve_times))
                except (QtResourceError, OSError) as e:
                    result_q.put(ExportFailure(tree.path_of(node), e))
        except Exception as e:
            # re-raised by export() once every worker has stopped
            crashed.append(e)
        finally:
            result_q.put(None)

    threads = []
    for _ in range(max(1, workers)):
        worker = threading.Thread(target=export_worker)
        worker.daemon = True
        worker.start()
        threads.append(worker)

    def results():
        running = len(threads)
        while running:
            result = result_q.get()
            if result is None:
                running -= 1
                continue
            yield result

    if progress:
        stream = track(results(), description="Extracting resources", total=len(nodes))
    else:
        stream = results()

    for result in stream:
        if isinstance(result, ExportFailure):
            log.warning(f"Could not export {result.path}: {result.error}")
            report.failures.append(result)
        else:
            report.written.append(result)

    for worker in threads:
        worker.join()
    if crashed:
        raise crashed[0]

    report.cancelled = cancel is not None and cancel.is_set() and not job_q.empty()
    report.written.sort(key=lambda entry: entry.path)
    report.failures.sort(key=lambda failure: failure.path)
    return report
