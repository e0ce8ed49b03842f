"""
Error types raised while locating, decoding and exporting Qt resources.

Structural errors (everything under DecodeError) are fatal to the tree being
built. ReadError and ExportError are scoped to a single entry and are
collected by the exporter instead of aborting it.
"""


class QtResourceError(Exception):
    pass


class LocateError(QtResourceError):
    pass


class NotFound(LocateError):
    pass


class Ambiguous(LocateError):
    def __init__(self, candidates):
        self.candidates = list(candidates)
        locations = ", ".join(
            f"{c.range_name}@0x{c.tree_offset:x}" for c in self.candidates
        )
        super().__init__(f"{len(self.candidates)} resource containers match ({locations})")


class DecodeError(QtResourceError):
    pass


class InvalidHeader(DecodeError):
    pass


class UnsupportedVersion(DecodeError):
    pass


class MalformedNode(DecodeError):
    pass


class DuplicateName(DecodeError):
    pass


class HashMismatch(DecodeError):
    pass


class ReadError(QtResourceError):
    pass


class ResourceNotFound(ReadError):
    pass


class IsADirectory(ReadError):
    pass


class DecompressionError(ReadError):
    pass


class ExportError(QtResourceError):
    pass


class InvalidName(ExportError):
    pass
