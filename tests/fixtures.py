"""Synthetic areas, archives, disc images and program images for the tests."""

from __future__ import annotations

import struct
from typing import Iterable, List, Optional, Sequence, Tuple

from primepatch.core import compression
from primepatch.core.container import Container, ContainerEntry
from primepatch.core.pak import Archive, PakResource, pad_stored, serialize_pak
from primepatch.core.props import RawProperties, Relay
from primepatch.core.scly import encode_area
from primepatch.core.types import Area, Connection, Dependency, Layer, SclyObject

GAME_ID = "GM8E01"
BUILD = "GM8E01-00"

TEXT_ADDR = 0x80003100
TEXT_SIZE = 0x100
ARENA_BASE = 0x80400000
ARENA_SIZE = 0x100

IDENTITY = (1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0)
BBOX = (-10.0, -10.0, -10.0, 10.0, 10.0, 10.0)


def relay(instance_id: int, name: bytes, connections: Sequence[Tuple[int, int, int]] = ()) -> SclyObject:
    return SclyObject(
        object_type=0x15,
        instance_id=instance_id,
        property_data=Relay(name=name, active=1),
        connections=[Connection(*c) for c in connections],
    )


def raw_object(object_type: int, instance_id: int, name: bytes, extra: bytes = b"\x01\x02\x03") -> SclyObject:
    data = struct.pack(">I", 3) + name + b"\0" + extra
    return SclyObject(
        object_type=object_type,
        instance_id=instance_id,
        property_data=RawProperties(raw_type=object_type, data=data),
    )


def make_area(
    layers: Sequence[Tuple[bytes, List[SclyObject]]],
    *,
    layer_deps: Optional[Sequence[Sequence[Tuple[int, str]]]] = None,
    area_deps: Iterable[Tuple[int, str]] = (),
    active: int = 0xFFFFFFFFFFFFFFFF,
) -> Area:
    out = []
    for i, (name, objects) in enumerate(layers):
        deps = layer_deps[i] if layer_deps else ()
        out.append(
            Layer(
                name=name,
                objects=list(objects),
                dependencies=[Dependency(a, t) for a, t in deps],
            )
        )
    return Area(
        version=0x0F,
        transform=IDENTITY,
        bounding_box=BBOX,
        layers=out,
        active_layers=active,
        area_dependencies=[Dependency(a, t) for a, t in area_deps],
        scly_version=1,
    )


def scenario_a_area() -> Area:
    """One layer, objects 0x01 and 0x02, 0x01 wired to 0x02."""
    return make_area(
        [
            (
                b"Default",
                [relay(0x01, b"First", [(0x00, 0x01, 0x02)]), relay(0x02, b"Second")],
            )
        ]
    )


def four_layer_area() -> Area:
    return make_area(
        [
            (b"Default", [relay(0x01, b"Gate"), raw_object(0x00, 0x02, b"Statue")]),
            (b"Layer 1", [relay(0x04000003, b"One")]),
            (b"Layer 2", []),
            (b"Layer 3", [relay(0x0C000004, b"Three")]),
        ]
    )


def resource(asset_id: int, type_tag: str, payload: bytes, compressed: bool = True) -> PakResource:
    if compressed:
        stored = pad_stored(compression.compress(payload))
    else:
        stored = bytes(payload)
    return PakResource(asset_id=asset_id, type_tag=type_tag, compressed=compressed, stored=stored)


def area_resource(asset_id: int, area: Area, compressed: bool = True) -> PakResource:
    return resource(asset_id, "MREA", encode_area(area), compressed)


def make_pak(name: str, resources: Sequence[PakResource]) -> bytes:
    return serialize_pak(Archive(name=name, resources=list(resources)))


def make_dol(text_addr: int = TEXT_ADDR, text_size: int = TEXT_SIZE) -> bytes:
    header = bytearray(0x100)
    struct.pack_into(">I", header, 0x00, 0x100)
    struct.pack_into(">I", header, 0x48, text_addr)
    struct.pack_into(">I", header, 0x90, text_size)
    struct.pack_into(">I", header, 0xE0, text_addr)
    body = bytearray(struct.pack(">I", 0x60000000) * (text_size // 4))
    # a recognizable instruction at the start of the text section
    struct.pack_into(">I", body, 0, 0x7C0802A6)
    return bytes(header) + bytes(body)


def make_container(
    entries: Sequence[Tuple[str, bytes]], capacity: int = 0x20000
) -> Container:
    return Container(
        game_id=GAME_ID,
        revision=0,
        capacity=capacity,
        entries=[ContainerEntry(n, bytes(d)) for n, d in entries],
    )


def symbols_table():
    from primepatch.patching.symbols import Arena, SymbolTable

    table = SymbolTable()
    table.add_build(
        BUILD,
        arena=Arena(ARENA_BASE, ARENA_SIZE),
        symbols={"CMain::Update": TEXT_ADDR, "OSReport": TEXT_ADDR + 0x40},
    )
    return table
