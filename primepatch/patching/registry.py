"""Patch registrations, JSON patch descriptors and the `Patcher` front end."""

from __future__ import annotations

import importlib
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..core.container import Container
from .dispatcher import run_patches
from .keys import AreaKey, FileKey, MatchKey, ResourceKey, key_from_obj, key_to_obj
from .state import PatcherState
from .symbols import SymbolTable

Transform = Callable[..., None]


def function_ref(fn: Transform) -> str:
    """`"module:qualname"` for a module-level function."""
    mod = getattr(fn, "__module__", None)
    name = getattr(fn, "__qualname__", None)
    if not mod or not name or "<" in name:
        raise ValueError(f"{fn!r} is not addressable as module:function")
    return f"{mod}:{name}"


def resolve_function(ref: str) -> Transform:
    mod_name, sep, attr_path = str(ref).partition(":")
    if not sep or not mod_name or not attr_path:
        raise ValueError(f"function reference must look like 'module:function': {ref!r}")
    obj: Any = importlib.import_module(mod_name)
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise ValueError(f"{ref!r} is not callable")
    return obj


@dataclass(frozen=True)
class PatchDescriptor:
    """Serializable registration: key + function reference + parameters."""

    key: MatchKey
    function: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_obj(self) -> Dict[str, Any]:
        return {
            "key": key_to_obj(self.key),
            "function": str(self.function),
            "params": dict(self.params),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_obj(), separators=(",", ":"), sort_keys=True)

    def resolve(self) -> Transform:
        return resolve_function(self.function)


def descriptor_from_obj(obj: Any) -> PatchDescriptor:
    if not isinstance(obj, dict):
        raise ValueError("patch descriptor must be an object")
    key = key_from_obj(obj.get("key"))
    function = str(obj.get("function", "")).strip()
    if ":" not in function:
        raise ValueError("patch descriptor needs a 'module:function' reference")
    params = obj.get("params", {})
    if not isinstance(params, dict):
        raise ValueError("patch descriptor params must be an object")
    return PatchDescriptor(key=key, function=function, params=dict(params))


def descriptor_from_json(s: str) -> PatchDescriptor:
    return descriptor_from_obj(json.loads(s))


@dataclass(frozen=True)
class PatchRegistration:
    key: MatchKey
    order: int
    fn: Transform
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))

    def descriptor(self) -> PatchDescriptor:
        return PatchDescriptor(self.key, function_ref(self.fn), dict(self.params))


class Patcher:
    """Collects registrations and applies them to a container in one pass."""

    def __init__(
        self,
        *,
        symbols: Optional[SymbolTable] = None,
        build_version: Optional[str] = None,
        program_image: str = "default.dol",
        strict: bool = True,
    ):
        self.symbols = symbols
        self.build_version = build_version
        self.program_image = program_image
        self.strict = bool(strict)
        self._registrations: List[PatchRegistration] = []

    def _add(self, key: MatchKey, fn: Transform, params: Dict[str, Any]) -> PatchRegistration:
        if not callable(fn):
            raise TypeError(f"transform for {key} is not callable")
        reg = PatchRegistration(key, len(self._registrations), fn, dict(params))
        self._registrations.append(reg)
        return reg

    def register_resource_patch(
        self, archive: str, asset_id: int, type_tag: str, fn: Transform, **params: Any
    ) -> PatchRegistration:
        return self._add(ResourceKey(str(archive), int(asset_id), str(type_tag)), fn, params)

    def register_area_patch(
        self, archive: str, asset_id: int, fn: Transform, **params: Any
    ) -> PatchRegistration:
        return self._add(AreaKey(str(archive), int(asset_id)), fn, params)

    def register_file_patch(self, path: str, fn: Transform, **params: Any) -> PatchRegistration:
        return self._add(FileKey(str(path)), fn, params)

    def register(self, descriptor: PatchDescriptor) -> PatchRegistration:
        return self._add(descriptor.key, descriptor.resolve(), descriptor.params)

    def registrations(self) -> List[PatchRegistration]:
        return list(self._registrations)

    def run(self, container: Container) -> PatcherState:
        return run_patches(self, container)
