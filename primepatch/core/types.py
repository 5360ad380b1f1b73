"""Decoded Area data model (script layers, objects, connections, dependencies).

This module intentionally contains no parsing logic; see `scly.py`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Optional, Tuple, Type, TypeVar

from .props import PropertyData, RawProperties

MAX_LAYERS = 64

LAYER_SHIFT = 26
AREA_SHIFT = 16
AREA_MASK = 0x3FF
COUNTER_MASK = 0xFFFF

T = TypeVar("T", bound=PropertyData)


class ConnectionState(IntEnum):
    ANY = 0xFFFFFFFF
    ACTIVE = 0x00
    ARRIVED = 0x01
    CLOSED = 0x02
    ENTERED = 0x03
    EXITED = 0x04
    INACTIVE = 0x05
    INSIDE = 0x06
    MAX_REACHED = 0x07
    OPEN = 0x08
    ZERO = 0x09
    ATTACK = 0x0A
    RETREAT = 0x0C
    PATROL = 0x0D
    DEAD = 0x0E
    CAMERA_PATH = 0x0F
    CAMERA_TARGET = 0x10
    PLAY = 0x12
    DAMAGE = 0x14
    MODIFY = 0x17
    SCAN_DONE = 0x1C
    REFLECTED_DAMAGE = 0x1F
    DFST = 0x20
    ARRIVE_AT_END = 0x22


class ConnectionMsg(IntEnum):
    NONE = 0xFFFFFFFF
    ACTIVATE = 0x01
    ARRIVED = 0x02
    CLOSE = 0x03
    DEACTIVATE = 0x04
    DECREMENT = 0x05
    FOLLOW = 0x06
    INCREMENT = 0x07
    NEXT = 0x08
    OPEN = 0x09
    RESET = 0x0A
    RESET_AND_START = 0x0B
    SET_TO_MAX = 0x0C
    SET_TO_ZERO = 0x0D
    START = 0x0E
    STOP = 0x0F
    STOP_AND_RESET = 0x10
    TOGGLE_ACTIVE = 0x11
    UNLOCK = 0x12
    LOAD = 0x13
    PLAY = 0x14


def instance_id(layer: int, area: int, counter: int) -> int:
    return (
        ((int(layer) & 0x3F) << LAYER_SHIFT)
        | ((int(area) & AREA_MASK) << AREA_SHIFT)
        | (int(counter) & COUNTER_MASK)
    )


def split_instance_id(value: int) -> Tuple[int, int, int]:
    """Return (layer, area, counter)."""
    v = int(value) & 0xFFFFFFFF
    return v >> LAYER_SHIFT, (v >> AREA_SHIFT) & AREA_MASK, v & COUNTER_MASK


@dataclass(frozen=True)
class Dependency:
    asset_id: int
    type_tag: str


@dataclass
class Connection:
    state: int
    message: int
    target: int


@dataclass
class SclyObject:
    object_type: int
    instance_id: int
    property_data: PropertyData
    connections: List[Connection] = field(default_factory=list)

    @property
    def name(self) -> Optional[bytes]:
        return self.property_data.name

    def is_a(self, cls: Type[PropertyData]) -> bool:
        return isinstance(self.property_data, cls)

    def typed(self, cls: Type[T]) -> Optional[T]:
        """The payload as `cls`, or None when the object is another type."""
        data = self.property_data
        if isinstance(data, cls):
            return data
        return None

    def add_connection(self, state: int, message: int, target: int) -> Connection:
        conn = Connection(int(state), int(message), int(target))
        self.connections.append(conn)
        return conn

    def is_raw(self) -> bool:
        return isinstance(self.property_data, RawProperties)


@dataclass
class Layer:
    name: bytes
    objects: List[SclyObject] = field(default_factory=list)
    dependencies: List[Dependency] = field(default_factory=list)
    unknown: int = 0


@dataclass
class Area:
    version: int
    transform: Tuple[float, ...]
    bounding_box: Tuple[float, ...]
    layers: List[Layer] = field(default_factory=list)
    active_layers: int = 0xFFFFFFFFFFFFFFFF
    area_dependencies: List[Dependency] = field(default_factory=list)
    scly_version: int = 1
    trailer: bytes = b""

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def is_layer_active(self, index: int) -> bool:
        return bool((self.active_layers >> int(index)) & 1)

    def set_layer_active(self, index: int, active: bool) -> None:
        bit = 1 << int(index)
        if active:
            self.active_layers |= bit
        else:
            self.active_layers &= ~bit & 0xFFFFFFFFFFFFFFFF

    def iter_objects(self) -> Iterator[Tuple[int, SclyObject]]:
        for i, layer in enumerate(self.layers):
            for obj in layer.objects:
                yield i, obj

    def area_number(self) -> int:
        """Area bits shared by the existing instance ids (0 for an empty area)."""
        for _, obj in self.iter_objects():
            return split_instance_id(obj.instance_id)[1]
        return 0

    def max_counter(self) -> int:
        best = 0
        for _, obj in self.iter_objects():
            best = max(best, int(obj.instance_id) & COUNTER_MASK)
        return best
