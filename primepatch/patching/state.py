"""Run-scoped context handed to every transform.

One `PatcherState` exists per `Patcher.run`; nothing in it outlives the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.types import COUNTER_MASK, Area, Dependency, instance_id
from ..errors import AllocatorError, PatcherError
from .injector import CodeInjector
from .keys import AreaKey
from .symbols import SymbolTable

log = logging.getLogger(__name__)

Finalizer = Callable[..., None]


@dataclass
class _IdCounter:
    area_number: int
    next_counter: int


@dataclass(frozen=True)
class DeferredCall:
    name: str
    fn: Finalizer
    args: Tuple[Any, ...]
    kwargs: Dict[str, Any]


class PatcherState:
    def __init__(
        self,
        build_version: str,
        *,
        symbols: Optional[SymbolTable] = None,
        program_image: str = "default.dol",
    ):
        self.build_version = str(build_version)
        self.symbols = symbols
        self.program_image = str(program_image)
        # cross-area bookkeeping shared by transforms and read back by finalizers
        self.data: Dict[str, Any] = {}
        self._code: Optional[CodeInjector] = None
        self._ids: Dict[AreaKey, _IdCounter] = {}
        self._required: List[Tuple[str, Dependency]] = []
        self._required_seen: set = set()
        self._deferred: List[DeferredCall] = []
        self._finalizing = False
        self.applied: List[str] = []

    @property
    def code(self) -> CodeInjector:
        """The run's code injector, created on first use for `build_version`."""
        if self._code is None:
            if self.symbols is None:
                raise PatcherError(f"no symbol table configured for build {self.build_version}")
            self._code = CodeInjector(self.symbols, self.build_version)
        return self._code

    @property
    def has_code(self) -> bool:
        return self._code is not None and not self._code.is_empty()

    def next_instance_id(self, key: AreaKey, area: Area, layer_index: int) -> int:
        ctr = self._ids.get(key)
        if ctr is None:
            ctr = _IdCounter(area.area_number(), area.max_counter() + 1)
            self._ids[key] = ctr
            log.debug("%s: id counter starts at 0x%04X", key, ctr.next_counter)
        in_use = {obj.instance_id for _, obj in area.iter_objects()}
        while True:
            if ctr.next_counter > COUNTER_MASK:
                raise AllocatorError(f"{key}: instance id counter exhausted")
            new_id = instance_id(layer_index, ctr.area_number, ctr.next_counter)
            ctr.next_counter += 1
            if new_id not in in_use:
                return new_id

    def require_resources(self, archive: str, deps) -> None:
        """Record dependencies that must be present in `archive` at the end of the run."""
        for dep in deps:
            k = (archive, dep)
            if k in self._required_seen:
                continue
            self._required_seen.add(k)
            self._required.append(k)

    def required_resources(self) -> List[Tuple[str, Dependency]]:
        return list(self._required)

    def defer(self, fn: Finalizer, *args: Any, name: Optional[str] = None, **kwargs: Any) -> None:
        """Run `fn(state, *args, **kwargs)` after every transform has run."""
        if self._finalizing:
            raise PatcherError("cannot defer new work while finalizing")
        label = name or getattr(fn, "__qualname__", repr(fn))
        self._deferred.append(DeferredCall(label, fn, tuple(args), dict(kwargs)))

    def begin_finalize(self) -> List[DeferredCall]:
        self._finalizing = True
        return list(self._deferred)
