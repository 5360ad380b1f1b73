"""Area (`MREA`) script-layer codec and graph integrity checks.

Layout (big-endian):
- `u32 magic` (0xDEADBEEF), `u32 version`
- `f32[12] transform`, `f32[6] bounding_box`
- `u32 layer_count`, `u64 active_layer_flags`, `layer_count` x cstring name
- dependencies: `u32 count`, `count` x (`u32 asset_id`, `char[4] type`),
  `u32 offset_count` (= layer_count + 1), `u32[offset_count] offsets`;
  layer `i` owns entries `offsets[i]:offsets[i+1]`, the area-level list starts
  at `offsets[layer_count]`
- script section: `char[4] "SCLY"`, `u32 version`, `u32 layer_count`,
  `u32[layer_count] layer_sizes`, then each layer:
  `u8 unknown`, `u32 object_count`, objects, zero padding to 32 bytes
- object: `u8 type`, `u32 size`, `u32 instance_id`, `u32 connection_count`,
  connection_count x (`u32 state`, `u32 message`, `u32 target`), properties;
  `size` counts everything after itself
- anything after the last layer is kept verbatim as the trailer

Only canonical encodings are accepted, so `encode_area(decode_area(b)) == b`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from ..errors import ResourceDecodeError
from .binio import _BinReader, _BinWriter, align_up
from .props import decode_properties
from .types import (
    MAX_LAYERS,
    Area,
    Connection,
    Dependency,
    Layer,
    SclyObject,
)

AREA_MAGIC = 0xDEADBEEF
SCLY_MAGIC = "SCLY"
LAYER_ALIGN = 0x20


def _read_object(r: _BinReader) -> SclyObject:
    obj_type = r.u8()
    size = r.u32()
    start = r.tell
    inst_id = r.u32()
    conn_count = r.u32()
    if 8 + 12 * conn_count > size:
        raise ResourceDecodeError(
            f"object 0x{inst_id:08X}: {conn_count} connections overflow size {size}"
        )
    conns = [Connection(r.u32(), r.u32(), r.u32()) for _ in range(int(conn_count))]
    prop_size = size - (r.tell - start)
    props = decode_properties(obj_type, r.read(prop_size))
    return SclyObject(
        object_type=int(obj_type),
        instance_id=int(inst_id),
        property_data=props,
        connections=conns,
    )


def _read_layer(blob: bytes, offset: int, size: int, index: int) -> Layer:
    r = _BinReader(blob[offset : offset + size])
    unknown = r.u8()
    count = r.u32()
    objects = [_read_object(r) for _ in range(int(count))]
    pad = r.read(r.remaining)
    if any(pad):
        raise ResourceDecodeError(f"layer {index}: non-zero padding")
    if align_up(size - len(pad), LAYER_ALIGN) != size:
        raise ResourceDecodeError(f"layer {index}: padding is not canonical")
    return Layer(name=b"", objects=objects, unknown=int(unknown))


def decode_area(blob: bytes) -> Area:
    r = _BinReader(blob)
    try:
        magic = r.u32()
        if magic != AREA_MAGIC:
            raise ResourceDecodeError(f"not an area (magic=0x{magic:08X})")
        version = r.u32()
        transform = r.f32s(12)
        bbox = r.f32s(6)

        layer_count = r.u32()
        if layer_count > MAX_LAYERS:
            raise ResourceDecodeError(f"layer count {layer_count} exceeds {MAX_LAYERS}")
        active = r.u64()
        names = [r.cstring() for _ in range(int(layer_count))]

        dep_count = r.u32()
        deps = [Dependency(r.u32(), r.fourcc()) for _ in range(int(dep_count))]
        offset_count = r.u32()
        if offset_count != layer_count + 1:
            raise ResourceDecodeError(
                f"dependency offset count {offset_count} != layer count + 1"
            )
        offsets = [r.u32() for _ in range(int(offset_count))]
        if offsets[0] != 0:
            raise ResourceDecodeError("first dependency offset must be 0")
        for a, b in zip(offsets, offsets[1:]):
            if b < a:
                raise ResourceDecodeError("dependency offsets are not monotonic")
        if offsets[-1] > dep_count:
            raise ResourceDecodeError("dependency offset past end of list")

        if r.fourcc() != SCLY_MAGIC:
            raise ResourceDecodeError("missing SCLY section")
        scly_version = r.u32()
        scly_layers = r.u32()
        if scly_layers != layer_count:
            raise ResourceDecodeError(
                f"script layer count {scly_layers} != header layer count {layer_count}"
            )
        sizes = [r.u32() for _ in range(int(layer_count))]

        layers: List[Layer] = []
        cur = r.tell
        for i, size in enumerate(sizes):
            if cur + size > len(blob):
                raise ResourceDecodeError(f"layer {i} runs past end of area")
            layer = _read_layer(blob, cur, size, i)
            layer.name = names[i]
            layer.dependencies = deps[offsets[i] : offsets[i + 1]]
            layers.append(layer)
            cur += size
    except EOFError as e:
        raise ResourceDecodeError("area truncated") from e

    return Area(
        version=int(version),
        transform=tuple(transform),
        bounding_box=tuple(bbox),
        layers=layers,
        active_layers=int(active),
        area_dependencies=deps[offsets[-1] :],
        scly_version=int(scly_version),
        trailer=bytes(blob[cur:]),
    )


def _write_object(w: _BinWriter, obj: SclyObject) -> None:
    props = obj.property_data.encode()
    w.u8(obj.object_type)
    w.u32(4 + 4 + 12 * len(obj.connections) + len(props))
    w.u32(obj.instance_id)
    w.u32(len(obj.connections))
    for c in obj.connections:
        w.u32(c.state)
        w.u32(c.message)
        w.u32(c.target)
    w.bytes(props)


def _encode_layer(layer: Layer) -> bytes:
    w = _BinWriter()
    w.u8(layer.unknown)
    w.u32(len(layer.objects))
    for obj in layer.objects:
        _write_object(w, obj)
    w.align(LAYER_ALIGN)
    return w.getvalue()


def encode_area(area: Area) -> bytes:
    if len(area.layers) > MAX_LAYERS:
        raise ValueError(f"area has {len(area.layers)} layers, max is {MAX_LAYERS}")
    if len(area.transform) != 12 or len(area.bounding_box) != 6:
        raise ValueError("area transform/bounding box has the wrong arity")

    w = _BinWriter()
    w.u32(AREA_MAGIC)
    w.u32(area.version)
    w.f32s(area.transform)
    w.f32s(area.bounding_box)

    w.u32(len(area.layers))
    w.u64(area.active_layers)
    for layer in area.layers:
        w.cstring(bytes(layer.name))

    deps: List[Dependency] = []
    offsets: List[int] = []
    for layer in area.layers:
        offsets.append(len(deps))
        deps.extend(layer.dependencies)
    offsets.append(len(deps))
    deps.extend(area.area_dependencies)

    w.u32(len(deps))
    for d in deps:
        w.u32(d.asset_id)
        w.fourcc(d.type_tag)
    w.u32(len(offsets))
    for o in offsets:
        w.u32(o)

    layer_blobs = [_encode_layer(layer) for layer in area.layers]
    w.fourcc(SCLY_MAGIC)
    w.u32(area.scly_version)
    w.u32(len(layer_blobs))
    for lb in layer_blobs:
        w.u32(len(lb))
    for lb in layer_blobs:
        w.bytes(lb)
    w.bytes(area.trailer)
    return w.getvalue()


@dataclass(frozen=True)
class Violation:
    kind: str
    instance_id: int
    detail: str = ""

    def __str__(self) -> str:
        s = f"{self.kind} at object 0x{self.instance_id:08X}"
        return f"{s} ({self.detail})" if self.detail else s


def _covered_dependencies(area: Area, layer_index: int) -> Set[Dependency]:
    out: Set[Dependency] = set(area.area_dependencies)
    for i, layer in enumerate(area.layers):
        if i == layer_index or area.is_layer_active(i):
            out.update(layer.dependencies)
    return out


def integrity_violations(area: Area) -> Set[Violation]:
    """Duplicate ids, dangling connection targets and uncovered asset references."""
    out: Set[Violation] = set()
    seen: Dict[int, int] = {}
    for _, obj in area.iter_objects():
        seen[obj.instance_id] = seen.get(obj.instance_id, 0) + 1
    for inst_id, n in seen.items():
        if n > 1:
            out.add(Violation("duplicate-id", inst_id, f"{n} objects"))

    covered: Dict[int, Set[Dependency]] = {}
    for li, obj in area.iter_objects():
        for c in obj.connections:
            if c.target not in seen:
                out.add(Violation("dangling-connection", obj.instance_id, f"target 0x{c.target:08X}"))
        refs = obj.property_data.asset_refs()
        if not refs:
            continue
        if li not in covered:
            covered[li] = _covered_dependencies(area, li)
        for asset_id, tag in refs:
            if Dependency(asset_id, tag) not in covered[li]:
                out.add(
                    Violation("uncovered-asset", obj.instance_id, f"0x{asset_id:08X}.{tag}")
                )
    return out


def new_violations(area: Area, baseline: Optional[Set[Violation]] = None) -> List[Violation]:
    """Violations present now that were not present in `baseline`, in a stable order."""
    now = integrity_violations(area)
    if baseline:
        now -= baseline
    return sorted(now, key=lambda v: (v.kind, v.instance_id, v.detail))
