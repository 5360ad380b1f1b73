"""Archive resource compression (zlib with a big-endian decompressed-size prefix).

Stored layout of a compressed resource:
- `u32 decompressed_size`
- zlib stream
- zero padding up to the archive's 32-byte alignment

Used by the resource cache to peel the compression layer off a payload before
decoding, and to put it back on write-back.
"""

from __future__ import annotations

import struct
import zlib

from ..errors import ResourceDecodeError


def decompressed_size(stored: bytes) -> int:
    if len(stored) < 4:
        raise ResourceDecodeError("compressed payload too small for size header")
    return int(struct.unpack_from(">I", stored, 0)[0])


def decompress(stored: bytes) -> bytes:
    size = decompressed_size(stored)
    d = zlib.decompressobj()
    try:
        out = d.decompress(memoryview(stored)[4:])
    except zlib.error as e:
        raise ResourceDecodeError(f"zlib stream invalid: {e}") from e
    if not d.eof:
        raise ResourceDecodeError("zlib stream truncated")
    if d.unused_data.strip(b"\0"):
        raise ResourceDecodeError("unexpected data after zlib stream")
    if len(out) != size:
        raise ResourceDecodeError(
            f"decompressed size mismatch: header={size} actual={len(out)}"
        )
    return bytes(out)


def compress(payload: bytes, *, level: int = 9) -> bytes:
    raw = bytes(payload)
    if len(raw) > 0xFFFFFFFF:
        raise ValueError("payload too large for a 32-bit size header")
    return struct.pack(">I", len(raw)) + zlib.compress(raw, int(level))
