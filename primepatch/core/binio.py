"""Big-endian binary reader/writer used by every codec in this package.

All on-disc structures of the target platform are big-endian; nothing here
knows about any particular format.
"""

from __future__ import annotations

import struct
from typing import Tuple


class F32(float):
    """A float read off the wire that remembers its exact bit pattern.

    Writing an unmodified value back reproduces the original word, including
    NaN payloads that do not survive a round trip through a Python float.
    """

    def __new__(cls, value: float, bits: int):
        self = super().__new__(cls, value)
        self.bits = int(bits)
        return self

    def __reduce__(self):
        return (F32, (float(self), self.bits))


class _BinReader:
    __slots__ = ("_b", "_o")

    def __init__(self, data: bytes, offset: int = 0):
        self._b = memoryview(data)
        self._o = offset

    @property
    def tell(self) -> int:
        return self._o

    @property
    def remaining(self) -> int:
        return len(self._b) - self._o

    def __len__(self) -> int:
        return len(self._b)

    def read(self, size: int) -> bytes:
        o = self._o
        n = o + size
        if size < 0 or n > len(self._b):
            raise EOFError("read past end")
        self._o = n
        return self._b[o:n].tobytes()

    def _unpack(self, fmt: str, size: int):
        if self._o + size > len(self._b):
            raise EOFError("read past end")
        v = struct.unpack_from(fmt, self._b, self._o)[0]
        self._o += size
        return v

    def u8(self) -> int:
        return int(self._unpack(">B", 1))

    def u16(self) -> int:
        return int(self._unpack(">H", 2))

    def u32(self) -> int:
        return int(self._unpack(">I", 4))

    def u64(self) -> int:
        return int(self._unpack(">Q", 8))

    def f32(self) -> float:
        if self._o + 4 > len(self._b):
            raise EOFError("read past end")
        bits = struct.unpack_from(">I", self._b, self._o)[0]
        v = struct.unpack_from(">f", self._b, self._o)[0]
        self._o += 4
        return F32(v, bits)

    def f32s(self, count: int) -> Tuple[float, ...]:
        return tuple(self.f32() for _ in range(int(count)))

    def fourcc(self) -> str:
        return self.read(4).decode("ascii", "replace")

    def cstring(self) -> bytes:
        """Read a NUL-terminated string; the terminator is consumed, not returned."""
        b = self._b
        end = self._o
        while end < len(b) and b[end] != 0:
            end += 1
        if end >= len(b):
            raise EOFError("unterminated string")
        s = b[self._o : end].tobytes()
        self._o = end + 1
        return s


class _BinWriter:
    __slots__ = ("_b",)

    def __init__(self) -> None:
        self._b = bytearray()

    @property
    def tell(self) -> int:
        return len(self._b)

    def getvalue(self) -> bytes:
        return bytes(self._b)

    def align(self, boundary: int, pad: int = 0) -> None:
        mask = boundary - 1
        while (len(self._b) & mask) != 0:
            self._b.append(pad & 0xFF)

    def u8(self, v: int) -> None:
        self._b.append(_checked(v, 8))

    def u16(self, v: int) -> None:
        self._b += struct.pack(">H", _checked(v, 16))

    def u32(self, v: int) -> None:
        self._b += struct.pack(">I", _checked(v, 32))

    def u64(self, v: int) -> None:
        self._b += struct.pack(">Q", _checked(v, 64))

    def f32(self, v: float) -> None:
        if isinstance(v, F32):
            self._b += struct.pack(">I", v.bits)
        else:
            self._b += struct.pack(">f", float(v))

    def f32s(self, values) -> None:
        for v in values:
            self.f32(v)

    def fourcc(self, tag: str) -> None:
        raw = str(tag).encode("ascii", "replace")
        if len(raw) != 4:
            raise ValueError(f"type tag must be 4 ASCII characters: {tag!r}")
        self._b += raw

    def cstring(self, s: bytes) -> None:
        if b"\0" in s:
            raise ValueError("embedded NUL in string")
        self._b += s
        self._b.append(0)

    def bytes(self, b: bytes) -> None:
        self._b += b

    def reserve_u32(self) -> int:
        o = self.tell
        self.u32(0)
        return o

    def patch_u32(self, offset: int, v: int) -> None:
        if offset < 0 or offset + 4 > len(self._b):
            raise ValueError("patch offset out of range")
        struct.pack_into(">I", self._b, int(offset), _checked(v, 32))


def _checked(v: int, width: int) -> int:
    if not isinstance(v, int):
        raise TypeError(f"u{width} field needs an int, got {type(v).__name__}")
    if not 0 <= v < (1 << width):
        raise ValueError(f"value {v} does not fit in u{width}")
    return v


def align_up(x: int, a: int) -> int:
    a = int(a)
    if a <= 1:
        return int(x)
    return (int(x) + (a - 1)) & ~(a - 1)
