"""Data table blocks and their decompression."""

import zlib
from typing import NamedTuple

import zstandard

from qresextract.errors import DecompressionError
from qresextract.format.structure import DATA_LENGTH_SIZE, KNOWN_FLAGS, Compression, NodeFlags, ResourceVersion, read_u32

QT_SIZE_PREFIX = 4  # qCompress() prepends the uncompressed size


class DataBlock(NamedTuple):
    offset: int          # position of the length prefix inside the source range
    payload: bytes
    flags: int
    version: ResourceVersion

    @property
    def compression(self):
        return compression_of(self.flags, self.version)


def compression_of(flags, version):
    """Map a file node's flags to its compression kind for `version`."""
    zlib_bit = bool(flags & NodeFlags.COMPRESSED)
    zstd_bit = bool(flags & NodeFlags.COMPRESSED_ZSTD)
    unknown = flags & ~KNOWN_FLAGS

    if unknown:
        raise DecompressionError(f"unknown flag bits 0x{unknown:x}, refusing to guess the compression")
    if zlib_bit and zstd_bit:
        raise DecompressionError("both zlib and zstd compression flags are set")
    if zstd_bit:
        if not version.supports_zstd:
            raise DecompressionError(f"zstd compression is not defined for format version {int(version)}")
        return Compression.ZSTD
    if zlib_bit:
        return Compression.ZLIB
    return Compression.NONE


def read_block(data, pos, flags, version):
    """Slice the length-prefixed block at `pos`; None if it does not fit."""
    if pos < 0 or pos + DATA_LENGTH_SIZE > len(data):
        return None
    length = read_u32(data, pos)
    end = pos + DATA_LENGTH_SIZE + length
    if end > len(data):
        return None
    return DataBlock(pos, data[pos + DATA_LENGTH_SIZE:end], flags, version)


def decode(block):
    """Return the uncompressed payload of `block`."""
    kind = block.compression
    payload = bytes(block.payload)
    if kind is Compression.NONE or not payload:
        return payload

    if kind is Compression.ZLIB:
        return _inflate(payload, block.offset)
    return _zstd(payload, block.offset)


def _inflate(payload, offset):
    if len(payload) < QT_SIZE_PREFIX:
        raise DecompressionError(f"zlib block at 0x{offset:x} is too short for its size prefix")

    expected = read_u32(payload, 0)
    try:
        result = zlib.decompress(payload[QT_SIZE_PREFIX:])
    except zlib.error as e:
        raise DecompressionError(f"zlib block at 0x{offset:x}: {e}") from e

    if len(result) != expected:
        raise DecompressionError(f"zlib block at 0x{offset:x} inflated to {len(result)} bytes, expected {expected}")
    return result


def _zstd(payload, offset):
    try:
        expected = zstandard.frame_content_size(payload)
        decompressor = zstandard.ZstdDecompressor().decompressobj()
        result = decompressor.decompress(payload)
    except zstandard.ZstdError as e:
        raise DecompressionError(f"zstd block at 0x{offset:x}: {e}") from e

    if not decompressor.eof:
        raise DecompressionError(f"zstd block at 0x{offset:x} is truncated")
    if expected >= 0 and len(result) != expected:
        raise DecompressionError(f"zstd block at 0x{offset:x} decompressed to {len(result)} bytes, expected {expected}")
    return result


def decoded_size(block):
    """
    Uncompressed size of `block` read from its headers without inflating it:
    the qCompress size prefix for zlib, the frame content size for zstd.
    None when a zstd frame does not record its size.
    """
    kind = block.compression
    payload = block.payload
    if kind is Compression.NONE or not payload:
        return len(payload)

    if kind is Compression.ZLIB:
        if len(payload) < QT_SIZE_PREFIX:
            raise DecompressionError(f"zlib block at 0x{block.offset:x} is too short for its size prefix")
        return read_u32(payload, 0)

    try:
        size = zstandard.frame_content_size(bytes(payload))
    except zstandard.ZstdError as e:
        raise DecompressionError(f"zstd block at 0x{block.offset:x}: {e}") from e
    return None if size < 0 else size
