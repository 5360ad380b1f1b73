"""Disc image container parsing and rewriting.

Layout (big-endian):
- `char[4] magic` ("RDSC")
- `char[6] game_id`, `u8 revision`, `u8 reserved`
- `u32 capacity` (fixed size of the image, in bytes)
- `u32 entry_count`, `u32 string_table_size`
- `entry_count` x (`u32 name_offset`, `u32 data_offset`, `u32 size`)
- string table (NUL-terminated names, `name_offset` is relative to its start)
- entry data, each entry 32-byte aligned; the image is zero-filled up to
  `capacity`

Entries whose name ends in `.pak` are resource archives; everything else is
an uninterpreted file (the program image included).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

from ..errors import ContainerFormatError, SizeBudgetExceeded
from .binio import _BinReader, _BinWriter, align_up

log = logging.getLogger(__name__)

MAGIC = b"RDSC"
ENTRY_ALIGN = 0x20
ARCHIVE_SUFFIX = ".pak"


@dataclass
class ContainerEntry:
    name: str
    data: bytes

    @property
    def is_archive(self) -> bool:
        return self.name.lower().endswith(ARCHIVE_SUFFIX)


@dataclass
class Container:
    game_id: str
    revision: int
    capacity: int
    entries: List[ContainerEntry] = field(default_factory=list)
    reserved: int = 0

    @property
    def build_version(self) -> str:
        return f"{self.game_id}-{int(self.revision):02d}"

    def find(self, name: str) -> Optional[ContainerEntry]:
        for ent in self.entries:
            if ent.name == name:
                return ent
        return None

    def entry(self, name: str) -> ContainerEntry:
        ent = self.find(name)
        if ent is None:
            raise ContainerFormatError(f"container has no entry {name!r}")
        return ent

    def archive_entries(self) -> Iterator[ContainerEntry]:
        return (e for e in self.entries if e.is_archive)

    def file_entries(self) -> Iterator[ContainerEntry]:
        return (e for e in self.entries if not e.is_archive)


def parse_container(blob: bytes) -> Container:
    r = _BinReader(blob)
    try:
        magic = r.read(4)
        if magic != MAGIC:
            raise ContainerFormatError(f"not a disc image (magic={magic!r})")
        game_id = _ascii(r.read(6), "game id")
        revision = r.u8()
        reserved = r.u8()
        capacity = r.u32()
        count = r.u32()
        strtab_size = r.u32()
        if count > 0x10000:
            raise ContainerFormatError("invalid entry count")
        table = [(r.u32(), r.u32(), r.u32()) for _ in range(int(count))]
        strtab = r.read(strtab_size)
    except EOFError as e:
        raise ContainerFormatError("disc header truncated") from e

    if len(blob) != capacity:
        raise ContainerFormatError(
            f"image is 0x{len(blob):X} bytes, its capacity is 0x{capacity:X}"
        )

    # only the layout serialize_container writes is accepted: names packed in
    # table order, data packed in table order at 32-byte alignment, zero padding
    cur = r.tell
    name_cur = 0
    entries: List[ContainerEntry] = []
    for name_off, data_off, size in table:
        end = strtab.find(b"\0", name_off)
        if name_off != name_cur or end < 0:
            raise ContainerFormatError(f"entry name at 0x{name_off:X} is not packed in table order")
        name = _ascii(strtab[name_off:end], "entry name")
        name_cur = end + 1
        start = align_up(cur, ENTRY_ALIGN)
        if data_off != start:
            raise ContainerFormatError(
                f"entry {name!r} data at 0x{data_off:X}, expected 0x{start:X}"
            )
        if data_off + size > len(blob):
            raise ContainerFormatError(f"entry {name!r} slice out of range")
        _check_zero(blob, cur, start)
        entries.append(ContainerEntry(name=name, data=bytes(blob[data_off : data_off + size])))
        cur = data_off + size
    if name_cur != len(strtab):
        raise ContainerFormatError("string table has unreferenced bytes")
    _check_zero(blob, cur, len(blob))

    return Container(
        game_id=game_id,
        revision=int(revision),
        capacity=int(capacity),
        entries=entries,
        reserved=int(reserved),
    )


def _ascii(raw: bytes, what: str) -> str:
    try:
        return raw.decode("ascii")
    except UnicodeDecodeError as e:
        raise ContainerFormatError(f"{what} {raw!r} is not ASCII") from e


def _check_zero(blob: bytes, start: int, end: int) -> None:
    if blob.count(b"\0", start, end) != end - start:
        raise ContainerFormatError(f"non-zero padding in 0x{start:X}..0x{end:X}")


def serialized_size(container: Container) -> int:
    """Size the image would occupy before zero-filling up to capacity."""
    strtab_size = sum(len(e.name.encode("ascii", "replace")) + 1 for e in container.entries)
    cur = 0x18 + 12 * len(container.entries) + strtab_size
    for ent in container.entries:
        cur = align_up(cur, ENTRY_ALIGN) + len(ent.data)
    return align_up(cur, ENTRY_ALIGN)


def serialize_container(container: Container) -> bytes:
    size = serialized_size(container)
    if size > int(container.capacity):
        raise SizeBudgetExceeded("disc image", size, container.capacity)

    strtab = bytearray()
    name_offsets: List[int] = []
    for ent in container.entries:
        name_offsets.append(len(strtab))
        strtab += ent.name.encode("ascii", "replace") + b"\0"

    gid = container.game_id.encode("ascii", "replace")[:6]
    w = _BinWriter()
    w.bytes(MAGIC)
    w.bytes(gid + b"\0" * (6 - len(gid)))
    w.u8(container.revision)
    w.u8(container.reserved)
    w.u32(container.capacity)
    w.u32(len(container.entries))
    w.u32(len(strtab))
    data_fields: List[int] = []
    for ent, name_off in zip(container.entries, name_offsets):
        w.u32(name_off)
        data_fields.append(w.reserve_u32())
        w.u32(len(ent.data))
    w.bytes(bytes(strtab))

    for ent, field_off in zip(container.entries, data_fields):
        w.align(ENTRY_ALIGN)
        w.patch_u32(field_off, w.tell)
        w.bytes(ent.data)
    w.align(ENTRY_ALIGN)

    out = w.getvalue()
    return out + b"\0" * (int(container.capacity) - len(out))


def read_container(path: str) -> Container:
    with open(path, "rb") as f:
        return parse_container(f.read())


def write_container(container: Container, path: str) -> None:
    """Serialize first, then write through a temp file so a failure leaves no output."""
    blob = serialize_container(container)
    out_path = Path(path)
    tmp_path = out_path.with_name(out_path.name + ".tmp")
    tmp_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(tmp_path, "wb") as f:
            f.write(blob)
        os.replace(tmp_path, out_path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
    log.info("wrote %s (0x%X bytes)", out_path, len(blob))
