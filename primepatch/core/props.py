"""Script object property payloads: a closed tagged union keyed by object type.

Every script object starts its payload with `u32 prop_count` followed by a
NUL-terminated name. Types listed in `PROPERTY_TYPES` decode into typed
dataclasses; everything else stays `RawProperties` (the name is still
readable). A typed decode must consume the payload exactly, otherwise the
payload belongs to a different build and `ResourceDecodeError` is raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import ClassVar, Dict, List, Optional, Sequence, Tuple, Type

from ..errors import ResourceDecodeError
from .binio import _BinReader, _BinWriter

Vec3 = Tuple[float, float, float]
AssetRef = Tuple[int, str]

NO_ASSET = 0xFFFFFFFF


class ObjectType(IntEnum):
    ACTOR = 0x00
    WAYPOINT = 0x02
    DOOR = 0x03
    TRIGGER = 0x04
    TIMER = 0x05
    COUNTER = 0x06
    EFFECT = 0x07
    PLATFORM = 0x08
    SOUND = 0x09
    GENERATOR = 0x0A
    DOCK = 0x0B
    CAMERA = 0x0C
    SPAWN_POINT = 0x0F
    CAMERA_HINT = 0x10
    PICKUP = 0x11
    MEMORY_RELAY = 0x13
    RANDOM_RELAY = 0x14
    RELAY = 0x15
    HUD_MEMO = 0x17
    DAMAGEABLE_TRIGGER = 0x1A
    DEBRIS = 0x1B
    WATER = 0x20
    SPECIAL_FUNCTION = 0x3A
    PLAYER_HINT = 0x3E
    DRONE = 0x43


class PropertyData:
    """Base of every payload variant."""

    OBJECT_TYPE: ClassVar[int] = -1

    name: bytes

    def encode(self) -> bytes:
        raise NotImplementedError

    def asset_refs(self) -> List[AssetRef]:
        return []

    @property
    def object_type(self) -> int:
        return int(self.OBJECT_TYPE)


PROPERTY_TYPES: Dict[int, Type["_TypedProperties"]] = {}


def register_property(cls: Type["_TypedProperties"]) -> Type["_TypedProperties"]:
    PROPERTY_TYPES[int(cls.OBJECT_TYPE)] = cls
    return cls


@dataclass
class RawProperties(PropertyData):
    """Payload of an object type without a typed decoder; kept byte-exact."""

    raw_type: int
    data: bytes

    @property
    def object_type(self) -> int:
        return int(self.raw_type)

    @property
    def name(self) -> Optional[bytes]:  # type: ignore[override]
        if len(self.data) < 5:
            return None
        end = self.data.find(b"\0", 4)
        if end < 0:
            return None
        return bytes(self.data[4:end])

    def encode(self) -> bytes:
        return bytes(self.data)


@dataclass
class DamageInfo:
    PROP_COUNT: ClassVar[int] = 4

    weapon_type: int = 0
    damage: float = 0.0
    radius: float = 0.0
    knockback: float = 0.0


def _read_value(r: _BinReader, kind: str):
    if kind == "u8":
        return r.u8()
    if kind == "u32":
        return r.u32()
    if kind == "f32":
        return r.f32()
    if kind == "vec3":
        return r.f32s(3)
    if kind == "cstr":
        return r.cstring()
    if kind == "damage":
        count = r.u32()
        if count != DamageInfo.PROP_COUNT:
            raise ResourceDecodeError(f"DamageInfo prop count {count} != {DamageInfo.PROP_COUNT}")
        return DamageInfo(r.u32(), r.f32(), r.f32(), r.f32())
    raise ValueError(f"unknown field kind {kind!r}")


def _write_value(w: _BinWriter, kind: str, v) -> None:
    if kind == "u8":
        w.u8(v)
    elif kind == "u32":
        w.u32(v)
    elif kind == "f32":
        w.f32(v)
    elif kind == "vec3":
        if len(v) != 3:
            raise ValueError("vec3 field needs 3 components")
        w.f32s(v)
    elif kind == "cstr":
        w.cstring(bytes(v))
    elif kind == "damage":
        w.u32(DamageInfo.PROP_COUNT)
        w.u32(v.weapon_type)
        w.f32(v.damage)
        w.f32(v.radius)
        w.f32(v.knockback)
    else:
        raise ValueError(f"unknown field kind {kind!r}")


class _TypedProperties(PropertyData):
    """Field-table driven payload; `FIELDS` lists (attribute, kind) in stream order."""

    PROP_COUNT: ClassVar[int] = 0
    FIELDS: ClassVar[Sequence[Tuple[str, str]]] = ()

    @classmethod
    def decode(cls, data: bytes):
        r = _BinReader(data)
        try:
            count = r.u32()
            if count != cls.PROP_COUNT:
                raise ResourceDecodeError(
                    f"{cls.__name__}: prop count {count}, expected {cls.PROP_COUNT}"
                )
            values = {attr: _read_value(r, kind) for attr, kind in cls.FIELDS}
        except EOFError as e:
            raise ResourceDecodeError(f"{cls.__name__}: payload truncated") from e
        if r.remaining != 0:
            raise ResourceDecodeError(
                f"{cls.__name__}: {r.remaining} trailing bytes in payload"
            )
        return cls(**values)

    def encode(self) -> bytes:
        w = _BinWriter()
        w.u32(self.PROP_COUNT)
        for attr, kind in self.FIELDS:
            _write_value(w, kind, getattr(self, attr))
        return w.getvalue()


@register_property
@dataclass
class Trigger(_TypedProperties):
    OBJECT_TYPE: ClassVar[int] = ObjectType.TRIGGER
    PROP_COUNT: ClassVar[int] = 9
    FIELDS: ClassVar[Sequence[Tuple[str, str]]] = (
        ("name", "cstr"),
        ("position", "vec3"),
        ("scale", "vec3"),
        ("damage_info", "damage"),
        ("force", "vec3"),
        ("flags", "u32"),
        ("active", "u8"),
        ("deactivate_on_enter", "u8"),
        ("deactivate_on_exit", "u8"),
    )

    name: bytes = b""
    position: Vec3 = (0.0, 0.0, 0.0)
    scale: Vec3 = (1.0, 1.0, 1.0)
    damage_info: DamageInfo = field(default_factory=DamageInfo)
    force: Vec3 = (0.0, 0.0, 0.0)
    flags: int = 1
    active: int = 1
    deactivate_on_enter: int = 0
    deactivate_on_exit: int = 0


@register_property
@dataclass
class Timer(_TypedProperties):
    OBJECT_TYPE: ClassVar[int] = ObjectType.TIMER
    PROP_COUNT: ClassVar[int] = 6
    FIELDS: ClassVar[Sequence[Tuple[str, str]]] = (
        ("name", "cstr"),
        ("start_time", "f32"),
        ("max_random_add", "f32"),
        ("looping", "u8"),
        ("start_immediately", "u8"),
        ("active", "u8"),
    )

    name: bytes = b""
    start_time: float = 0.0
    max_random_add: float = 0.0
    looping: int = 0
    start_immediately: int = 0
    active: int = 1


@register_property
@dataclass
class RandomRelay(_TypedProperties):
    OBJECT_TYPE: ClassVar[int] = ObjectType.RANDOM_RELAY
    PROP_COUNT: ClassVar[int] = 5
    FIELDS: ClassVar[Sequence[Tuple[str, str]]] = (
        ("name", "cstr"),
        ("send_set_size", "u32"),
        ("send_set_variance", "u32"),
        ("percent_size", "u8"),
        ("active", "u8"),
    )

    name: bytes = b""
    send_set_size: int = 0
    send_set_variance: int = 0
    percent_size: int = 0
    active: int = 1


@register_property
@dataclass
class Relay(_TypedProperties):
    OBJECT_TYPE: ClassVar[int] = ObjectType.RELAY
    PROP_COUNT: ClassVar[int] = 2
    FIELDS: ClassVar[Sequence[Tuple[str, str]]] = (
        ("name", "cstr"),
        ("active", "u8"),
    )

    name: bytes = b""
    active: int = 1


@register_property
@dataclass
class HudMemo(_TypedProperties):
    OBJECT_TYPE: ClassVar[int] = ObjectType.HUD_MEMO
    PROP_COUNT: ClassVar[int] = 6
    FIELDS: ClassVar[Sequence[Tuple[str, str]]] = (
        ("name", "cstr"),
        ("first_message_timer", "f32"),
        ("unknown", "u8"),
        ("memo_type", "u32"),
        ("strg", "u32"),
        ("active", "u8"),
    )

    name: bytes = b""
    first_message_timer: float = 3.0
    unknown: int = 1
    memo_type: int = 0
    strg: int = NO_ASSET
    active: int = 1

    def asset_refs(self) -> List[AssetRef]:
        if self.strg == NO_ASSET:
            return []
        return [(int(self.strg), "STRG")]


@register_property
@dataclass
class SpecialFunction(_TypedProperties):
    OBJECT_TYPE: ClassVar[int] = ObjectType.SPECIAL_FUNCTION
    PROP_COUNT: ClassVar[int] = 15
    FIELDS: ClassVar[Sequence[Tuple[str, str]]] = (
        ("name", "cstr"),
        ("position", "vec3"),
        ("rotation", "vec3"),
        ("type_", "u32"),
        ("unknown0", "cstr"),
        ("unknown1", "f32"),
        ("unknown2", "f32"),
        ("unknown3", "f32"),
        ("layer_change_room_id", "u32"),
        ("layer_change_layer_id", "u32"),
        ("item_id", "u32"),
        ("unknown4", "u8"),
        ("unknown5", "f32"),
        ("unknown6", "u32"),
        ("unknown7", "u32"),
        ("unknown8", "u32"),
    )

    LAYER_CHANGE: ClassVar[int] = 16
    ICE_TRAP: ClassVar[int] = 33

    name: bytes = b""
    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Vec3 = (0.0, 0.0, 0.0)
    type_: int = 0
    unknown0: bytes = b""
    unknown1: float = 0.0
    unknown2: float = 0.0
    unknown3: float = 0.0
    layer_change_room_id: int = 0
    layer_change_layer_id: int = 0
    item_id: int = 0
    unknown4: int = 1
    unknown5: float = 0.0
    unknown6: int = 0xFFFFFFFF
    unknown7: int = 0xFFFFFFFF
    unknown8: int = 0xFFFFFFFF

    @classmethod
    def layer_change_fn(cls, name: bytes, room_id: int, layer_num: int) -> "SpecialFunction":
        return cls(
            name=name,
            type_=cls.LAYER_CHANGE,
            layer_change_room_id=int(room_id),
            layer_change_layer_id=int(layer_num),
        )

    @classmethod
    def ice_trap_fn(cls, name: bytes) -> "SpecialFunction":
        return cls(name=name, type_=cls.ICE_TRAP, layer_change_layer_id=0xFFFFFFFF)


def decode_properties(object_type: int, data: bytes) -> PropertyData:
    cls = PROPERTY_TYPES.get(int(object_type))
    if cls is None:
        return RawProperties(raw_type=int(object_type), data=bytes(data))
    return cls.decode(data)

