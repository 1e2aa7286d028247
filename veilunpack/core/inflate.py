"""Deflate decompression of bundle payloads."""

import zlib


class DecompressionError(ValueError):
    """Raised when bytes at an offset are not a complete deflate stream."""


def inflate(data: bytes, offset: int, count: int, no_header: bool = True) -> bytes:
    """Decompress ``data[offset:offset + count]``.

    With ``no_header`` the input is a raw deflate stream, otherwise a zlib
    stream. Bytes after the end of the compressed stream are ignored, so a
    payload can be read out of the middle of a concatenated blob. Input that
    ends before the final deflate block raises :class:`DecompressionError`.
    """
    if offset < 0 or count < 0 or offset + count > len(data):
        raise DecompressionError(f"range {offset}+{count} outside of {len(data)} byte buffer")

    decompressor = zlib.decompressobj(-zlib.MAX_WBITS if no_header else zlib.MAX_WBITS)
    try:
        result = decompressor.decompress(memoryview(data)[offset:offset + count])
        result += decompressor.flush()
    except zlib.error as e:
        raise DecompressionError(f"invalid compressed data at offset {offset}: {e}") from e

    # a stream cut before its final block is an error, never a partial payload
    if not decompressor.eof:
        raise DecompressionError(f"truncated compressed data at offset {offset}")
    return result
