"""Per-build symbol tables (name -> address) and code arena locations.

JSON shape:

    {"v": 1,
     "builds": {"GM8E01-00": {"arena": {"base": "0x80600000", "size": 4096},
                              "symbols": {"Func": "0x80001234"}}}}

Addresses may be ints or hex strings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import UnknownSymbolError


@dataclass(frozen=True)
class Arena:
    base: int
    size: int

    @property
    def end(self) -> int:
        return self.base + self.size


@dataclass
class BuildSymbols:
    arena: Optional[Arena] = None
    symbols: Dict[str, int] = field(default_factory=dict)


def _addr(v: Any, what: str) -> int:
    try:
        out = int(v, 0) if isinstance(v, str) else int(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid address for {what}: {v!r}") from e
    if out < 0 or out > 0xFFFFFFFF:
        raise ValueError(f"address for {what} out of 32-bit range: {v!r}")
    return out


class SymbolTable:
    def __init__(self, builds: Optional[Dict[str, BuildSymbols]] = None):
        self._builds: Dict[str, BuildSymbols] = dict(builds or {})

    def add_build(
        self,
        build_version: str,
        *,
        arena: Optional[Arena] = None,
        symbols: Optional[Dict[str, int]] = None,
    ) -> BuildSymbols:
        b = self._builds.setdefault(str(build_version), BuildSymbols())
        if arena is not None:
            b.arena = arena
        if symbols:
            b.symbols.update({str(k): int(v) for k, v in symbols.items()})
        return b

    def builds(self) -> List[str]:
        return sorted(self._builds)

    def resolve(self, name: str, build_version: str) -> int:
        b = self._builds.get(build_version)
        if b is None or name not in b.symbols:
            raise UnknownSymbolError(name, build_version)
        return b.symbols[name]

    def arena(self, build_version: str) -> Arena:
        b = self._builds.get(build_version)
        if b is None or b.arena is None:
            raise UnknownSymbolError("<code arena>", build_version)
        return b.arena

    def to_json(self) -> str:
        builds = {}
        for ver in self.builds():
            b = self._builds[ver]
            obj: Dict[str, Any] = {
                "symbols": {k: f"0x{v:08X}" for k, v in sorted(b.symbols.items())}
            }
            if b.arena is not None:
                obj["arena"] = {"base": f"0x{b.arena.base:08X}", "size": int(b.arena.size)}
            builds[ver] = obj
        return json.dumps({"v": 1, "builds": builds}, indent=2, sort_keys=True)


def symbols_from_json(s: str) -> SymbolTable:
    obj = json.loads(s)
    if not isinstance(obj, dict):
        raise ValueError("symbol table json must be an object")
    v = int(obj.get("v", 0))
    if v != 1:
        raise ValueError(f"unsupported symbol table version: {v}")
    builds = obj.get("builds", {})
    if not isinstance(builds, dict):
        raise ValueError("symbol table builds must be an object")

    table = SymbolTable()
    for ver, b in builds.items():
        if not isinstance(b, dict):
            raise ValueError(f"build {ver!r} must be an object")
        arena = None
        a = b.get("arena")
        if a is not None:
            if not isinstance(a, dict):
                raise ValueError(f"build {ver!r}: arena must be an object")
            base = _addr(a.get("base"), f"{ver} arena base")
            size = _addr(a.get("size"), f"{ver} arena size")
            if base & 3:
                raise ValueError(f"build {ver!r}: arena base must be 4-byte aligned")
            arena = Arena(base, size)
        syms = b.get("symbols", {})
        if not isinstance(syms, dict):
            raise ValueError(f"build {ver!r}: symbols must be an object")
        table.add_build(
            str(ver),
            arena=arena,
            symbols={str(k): _addr(addr, str(k)) for k, addr in syms.items()},
        )
    return table


def load_symbols(path: str) -> SymbolTable:
    with open(path, "r", encoding="utf-8") as f:
        return symbols_from_json(f.read())
