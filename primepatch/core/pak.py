"""Resource archive (`.pak`) parsing and rewriting.

Layout (all big-endian):
- `u16 major`, `u16 minor`, `u32 unused`
- `u32 named_count`, then per named entry: `char[4] type`, `u32 asset_id`,
  `u32 name_len`, `char[name_len] name`
- `u32 resource_count`, then per resource: `u32 compressed`, `char[4] type`,
  `u32 asset_id`, `u32 size`, `u32 offset`
- header zero-padded to 32 bytes, then resource payloads, each padded to 32

Payloads are kept exactly as stored; decompression and decoding belong to the
resource cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from ..errors import ContainerFormatError
from .binio import _BinReader, _BinWriter, align_up

PAK_ALIGN = 0x20
PAK_VERSION = (3, 5)


@dataclass(frozen=True)
class NamedResource:
    name: bytes
    asset_id: int
    type_tag: str


@dataclass(frozen=True)
class PakResource:
    asset_id: int
    type_tag: str
    compressed: bool
    stored: bytes

    @property
    def size(self) -> int:
        return len(self.stored)


@dataclass
class Archive:
    name: str
    version: Tuple[int, int] = PAK_VERSION
    unused: int = 0
    named_resources: List[NamedResource] = field(default_factory=list)
    resources: List[PakResource] = field(default_factory=list)

    def find(self, asset_id: int, type_tag: str) -> Optional[int]:
        for i, res in enumerate(self.resources):
            if res.asset_id == int(asset_id) and res.type_tag == type_tag:
                return i
        return None

    def contains(self, asset_id: int, type_tag: str) -> bool:
        return self.find(asset_id, type_tag) is not None

    def replace_stored(self, index: int, stored: bytes, *, compressed: bool) -> None:
        if index < 0 or index >= len(self.resources):
            raise IndexError("resource index out of range")
        self.resources[index] = replace(
            self.resources[index], stored=bytes(stored), compressed=bool(compressed)
        )

    def append(self, resource: PakResource) -> int:
        self.resources.append(resource)
        return len(self.resources) - 1


def parse_pak(name: str, blob: bytes) -> Archive:
    r = _BinReader(blob)
    try:
        major = r.u16()
        minor = r.u16()
        unused = r.u32()
        if (major, minor) != PAK_VERSION:
            raise ContainerFormatError(
                f"{name}: unsupported archive version {major}.{minor}"
            )

        named_count = r.u32()
        if named_count > 0x10000:
            raise ContainerFormatError(f"{name}: invalid named resource count")
        named: List[NamedResource] = []
        for _ in range(int(named_count)):
            tag = r.fourcc()
            asset_id = r.u32()
            name_len = r.u32()
            named.append(NamedResource(name=r.read(name_len), asset_id=asset_id, type_tag=tag))

        count = r.u32()
        if count > 0x100000:
            raise ContainerFormatError(f"{name}: invalid resource count")
        table: List[Tuple[bool, str, int, int, int]] = []
        for _ in range(int(count)):
            compressed = r.u32()
            tag = r.fourcc()
            asset_id = r.u32()
            size = r.u32()
            offset = r.u32()
            if compressed not in (0, 1):
                raise ContainerFormatError(
                    f"{name}: resource 0x{asset_id:08X}.{tag} has invalid compression flag"
                )
            table.append((bool(compressed), tag, asset_id, size, offset))
        header_end = r.tell
    except EOFError as e:
        raise ContainerFormatError(f"{name}: archive header truncated") from e

    resources: List[PakResource] = []
    for compressed, tag, asset_id, size, offset in table:
        if offset < header_end or offset + size > len(blob):
            raise ContainerFormatError(
                f"{name}: resource 0x{asset_id:08X}.{tag} slice out of range"
            )
        resources.append(
            PakResource(
                asset_id=int(asset_id),
                type_tag=tag,
                compressed=compressed,
                stored=bytes(blob[offset : offset + size]),
            )
        )

    return Archive(
        name=str(name),
        version=(int(major), int(minor)),
        unused=int(unused),
        named_resources=named,
        resources=resources,
    )


def serialize_pak(archive: Archive) -> bytes:
    """Lay the archive out sequentially, each payload 32-byte aligned."""
    w = _BinWriter()
    w.u16(archive.version[0])
    w.u16(archive.version[1])
    w.u32(archive.unused)

    w.u32(len(archive.named_resources))
    for nr in archive.named_resources:
        w.fourcc(nr.type_tag)
        w.u32(nr.asset_id)
        w.u32(len(nr.name))
        w.bytes(nr.name)

    w.u32(len(archive.resources))
    offset_fields: List[int] = []
    for res in archive.resources:
        w.u32(1 if res.compressed else 0)
        w.fourcc(res.type_tag)
        w.u32(res.asset_id)
        w.u32(res.size)
        offset_fields.append(w.reserve_u32())
    w.align(PAK_ALIGN)

    for res, field_off in zip(archive.resources, offset_fields):
        w.patch_u32(field_off, w.tell)
        w.bytes(res.stored)
        w.align(PAK_ALIGN)

    return w.getvalue()


def pad_stored(payload: bytes) -> bytes:
    raw = bytes(payload)
    return raw + b"\0" * (align_up(len(raw), PAK_ALIGN) - len(raw))

