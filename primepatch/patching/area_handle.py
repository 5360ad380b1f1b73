"""Mutable view of one decoded Area, handed to area transforms."""

from __future__ import annotations

from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

from ..core.props import PropertyData
from ..core.types import MAX_LAYERS, Area, Connection, Dependency, Layer, SclyObject
from ..errors import AllocatorError, MissingObjectError, PatchApplicationError
from .keys import AreaKey
from .state import PatcherState

DepLike = Union[Dependency, Tuple[int, str]]


def _as_name(name: Union[str, bytes]) -> bytes:
    if isinstance(name, str):
        return name.encode("ascii")
    return bytes(name)


class AreaHandle:
    def __init__(self, state: PatcherState, key: AreaKey, area: Area):
        self.state = state
        self.key = key
        self.area = area

    def __repr__(self) -> str:
        return f"AreaHandle({self.key})"

    @property
    def layer_count(self) -> int:
        return len(self.area.layers)

    def _check_layer(self, layer_index: int) -> Layer:
        i = int(layer_index)
        if i < 0 or i >= len(self.area.layers):
            raise AllocatorError(
                f"{self.key}: layer {i} out of range (area has {len(self.area.layers)})"
            )
        return self.area.layers[i]

    def layer(self, layer_index: int) -> Layer:
        return self._check_layer(layer_index)

    def new_object_id(self, layer_index: int) -> int:
        self._check_layer(layer_index)
        return self.state.next_instance_id(self.key, self.area, int(layer_index))

    def add_layer(self, name: Union[str, bytes], active: bool = True) -> int:
        if len(self.area.layers) >= MAX_LAYERS:
            raise AllocatorError(f"{self.key}: area already has {MAX_LAYERS} layers")
        self.area.layers.append(Layer(name=_as_name(name)))
        index = len(self.area.layers) - 1
        self.area.set_layer_active(index, active)
        return index

    def set_layer_active(self, layer_index: int, active: bool) -> None:
        self._check_layer(layer_index)
        self.area.set_layer_active(int(layer_index), bool(active))

    def is_layer_active(self, layer_index: int) -> bool:
        self._check_layer(layer_index)
        return self.area.is_layer_active(int(layer_index))

    def add_dependencies(self, layer_index: int, deps: Iterable[DepLike]) -> int:
        """Add missing dependencies to a layer; returns how many were new."""
        layer = self._check_layer(layer_index)
        have = set(layer.dependencies)
        added: List[Dependency] = []
        for d in deps:
            dep = d if isinstance(d, Dependency) else Dependency(int(d[0]), str(d[1]))
            if dep in have:
                continue
            have.add(dep)
            added.append(dep)
        layer.dependencies.extend(added)
        self.state.require_resources(self.key.archive, added)
        return len(added)

    def objects(self) -> Iterator[SclyObject]:
        for _, obj in self.area.iter_objects():
            yield obj

    def layer_objects(self, layer_index: int) -> List[SclyObject]:
        return self._check_layer(layer_index).objects

    def add_object(self, layer_index: int, obj: SclyObject) -> SclyObject:
        layer = self._check_layer(layer_index)
        for existing in self.objects():
            if existing.instance_id == obj.instance_id:
                raise PatchApplicationError(
                    self.key, f"instance id 0x{obj.instance_id:08X} is already in use"
                )
        layer.objects.append(obj)
        return obj

    def new_object(
        self,
        layer_index: int,
        property_data: PropertyData,
        connections: Sequence[Connection] = (),
    ) -> SclyObject:
        """Allocate an id and add an object carrying `property_data` to a layer."""
        obj = SclyObject(
            object_type=property_data.object_type,
            instance_id=self.new_object_id(layer_index),
            property_data=property_data,
            connections=list(connections),
        )
        return self.add_object(layer_index, obj)

    def _prune_connections(self, removed: set) -> None:
        for obj in self.objects():
            obj.connections = [c for c in obj.connections if c.target not in removed]

    def remove_object(self, instance_id: int, prune_connections: bool = True) -> SclyObject:
        for layer in self.area.layers:
            for i, obj in enumerate(layer.objects):
                if obj.instance_id == instance_id:
                    del layer.objects[i]
                    if prune_connections:
                        self._prune_connections({instance_id})
                    return obj
        raise MissingObjectError(self.key, instance_id=instance_id)

    def retain_objects(self, pred: Callable[[SclyObject], bool], prune_connections: bool = True) -> int:
        """Keep only objects for which `pred` is true; returns how many were removed."""
        removed = set()
        for layer in self.area.layers:
            keep = []
            for obj in layer.objects:
                if pred(obj):
                    keep.append(obj)
                else:
                    removed.add(obj.instance_id)
            layer.objects[:] = keep
        if removed and prune_connections:
            self._prune_connections(removed)
        return len(removed)

    def get_object(self, instance_id: int) -> SclyObject:
        for obj in self.objects():
            if obj.instance_id == instance_id:
                return obj
        raise MissingObjectError(self.key, instance_id=instance_id)

    def find_object(self, name: Union[str, bytes]) -> Optional[SclyObject]:
        want = _as_name(name)
        for obj in self.objects():
            if obj.name == want:
                return obj
        return None

    def get_object_by_name(self, name: Union[str, bytes]) -> SclyObject:
        obj = self.find_object(name)
        if obj is None:
            raise MissingObjectError(
                self.key, name=name.decode("ascii", "replace") if isinstance(name, bytes) else name
            )
        return obj

    def layer_of(self, instance_id: int) -> int:
        for i, obj in self.area.iter_objects():
            if obj.instance_id == instance_id:
                return i
        raise MissingObjectError(self.key, instance_id=instance_id)
