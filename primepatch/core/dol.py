"""GameCube DOL program image: section table, address mapping and patching.

Header (0x100 bytes, big-endian):
- 0x00 `u32[7]` text offsets, 0x1C `u32[11]` data offsets
- 0x48 `u32[7]` text addresses, 0x64 `u32[11]` data addresses
- 0x90 `u32[7]` text sizes, 0xAC `u32[11]` data sizes
- 0xD8 `u32` bss address, 0xDC `u32` bss size, 0xE0 `u32` entry point
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Iterator, List, Tuple

from ..errors import ContainerFormatError
from .binio import align_up

HEADER_SIZE = 0x100
TEXT_SLOTS = 7
DATA_SLOTS = 11
SECTION_ALIGN = 0x20


@dataclass
class DolSection:
    offset: int
    address: int
    size: int
    is_text: bool

    def contains(self, address: int) -> bool:
        return self.size > 0 and self.address <= address < self.address + self.size


@dataclass
class DolImage:
    text: List[DolSection]
    data_sections: List[DolSection]
    bss_address: int
    bss_size: int
    entry_point: int
    body: bytearray = field(default_factory=bytearray)

    def sections(self) -> Iterator[DolSection]:
        yield from self.text
        yield from self.data_sections

    def address_to_offset(self, address: int, size: int = 1) -> int:
        for sec in self.sections():
            if sec.contains(address):
                if address + size > sec.address + sec.size:
                    raise ContainerFormatError(
                        f"range 0x{address:08X}+0x{size:X} crosses a section end"
                    )
                return sec.offset + (address - sec.address)
        raise ContainerFormatError(f"address 0x{address:08X} is not mapped by the program image")

    def read(self, address: int, size: int) -> bytes:
        off = self.address_to_offset(address, size)
        return bytes(self.body[off : off + size])

    def write(self, address: int, payload: bytes) -> None:
        off = self.address_to_offset(address, len(payload))
        self.body[off : off + len(payload)] = payload

    def add_text_section(self, address: int, payload: bytes) -> DolSection:
        """Append `payload` to the end of the image as a new text section at `address`."""
        padded = bytes(payload) + b"\0" * (align_up(len(payload), SECTION_ALIGN) - len(payload))
        end = address + len(padded)
        taken = [(sec.address, sec.size, "a section") for sec in self.sections() if sec.size]
        if self.bss_size:
            taken.append((self.bss_address, self.bss_size, "bss"))
        for lo, size, what in taken:
            if not (end <= lo or lo + size <= address):
                raise ContainerFormatError(
                    f"new section at 0x{address:08X} overlaps {what} at 0x{lo:08X}"
                )
        for sec in self.text:
            if sec.size == 0:
                break
        else:
            raise ContainerFormatError("no free text section slot in program image")

        start = align_up(len(self.body), SECTION_ALIGN)
        self.body += b"\0" * (start - len(self.body))
        self.body += padded
        sec.offset = start
        sec.address = int(address)
        sec.size = len(padded)
        return sec


def _table(blob: bytes, offset: int, count: int) -> Tuple[int, ...]:
    return struct.unpack_from(f">{count}I", blob, offset)


def parse_dol(blob: bytes) -> DolImage:
    if len(blob) < HEADER_SIZE:
        raise ContainerFormatError("program image smaller than its header")
    t_off = _table(blob, 0x00, TEXT_SLOTS)
    d_off = _table(blob, 0x1C, DATA_SLOTS)
    t_addr = _table(blob, 0x48, TEXT_SLOTS)
    d_addr = _table(blob, 0x64, DATA_SLOTS)
    t_size = _table(blob, 0x90, TEXT_SLOTS)
    d_size = _table(blob, 0xAC, DATA_SLOTS)
    bss_addr, bss_size, entry = struct.unpack_from(">3I", blob, 0xD8)

    text = [DolSection(o, a, s, True) for o, a, s in zip(t_off, t_addr, t_size)]
    data = [DolSection(o, a, s, False) for o, a, s in zip(d_off, d_addr, d_size)]
    for sec in text + data:
        if sec.size and (sec.offset < HEADER_SIZE or sec.offset + sec.size > len(blob)):
            raise ContainerFormatError(
                f"section at 0x{sec.address:08X} has file range out of bounds"
            )
    return DolImage(
        text=text,
        data_sections=data,
        bss_address=int(bss_addr),
        bss_size=int(bss_size),
        entry_point=int(entry),
        body=bytearray(blob),
    )


def serialize_dol(image: DolImage) -> bytes:
    if len(image.text) != TEXT_SLOTS or len(image.data_sections) != DATA_SLOTS:
        raise ValueError("program image section table has the wrong slot count")
    out = bytearray(image.body)
    struct.pack_into(f">{TEXT_SLOTS}I", out, 0x00, *(s.offset for s in image.text))
    struct.pack_into(f">{DATA_SLOTS}I", out, 0x1C, *(s.offset for s in image.data_sections))
    struct.pack_into(f">{TEXT_SLOTS}I", out, 0x48, *(s.address for s in image.text))
    struct.pack_into(f">{DATA_SLOTS}I", out, 0x64, *(s.address for s in image.data_sections))
    struct.pack_into(f">{TEXT_SLOTS}I", out, 0x90, *(s.size for s in image.text))
    struct.pack_into(f">{DATA_SLOTS}I", out, 0xAC, *(s.size for s in image.data_sections))
    struct.pack_into(">3I", out, 0xD8, image.bss_address, image.bss_size, image.entry_point)
    return bytes(out)
