"""Binary code injector for the embedded program image.

Work is collected first and encoded once:

1. `append_code` lays a block out at the arena cursor. Labels get their
   absolute addresses and the cursor advances immediately, so later blocks
   (and hooks) can refer to earlier ones and vice versa.
2. `finalize` encodes every block, resolving references in this order:
   label of the same block, another block (`"name"` or `"name.label"`),
   symbol of the target build.
3. `apply` places the arena in the program image as a new text section,
   verifies expected original bytes and writes overwrites and hooks.

Nothing touches the image before `apply`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..core import ppcasm
from ..core.dol import DolImage
from ..core.ppcasm import Instruction, Ref
from ..errors import (
    ArenaOverflowError,
    HookConflictError,
    PatchApplicationError,
    PatcherError,
)
from .symbols import Arena, SymbolTable

log = logging.getLogger(__name__)


@dataclass
class CodeCave:
    name: str
    address: int
    instructions: List[Instruction]
    labels: Dict[str, int] = field(default_factory=dict)
    size: int = 0
    data: Optional[bytes] = None

    @property
    def end(self) -> int:
        return self.address + self.size


@dataclass(frozen=True)
class Hook:
    source: int
    target: Ref
    link: bool = False
    previous: Optional[Ref] = None


@dataclass(frozen=True)
class Overwrite:
    address: int
    data: bytes
    expected: Optional[bytes] = None

    @property
    def end(self) -> int:
        return self.address + len(self.data)


def _overlaps(a0: int, a1: int, b0: int, b1: int) -> bool:
    return a0 < b1 and b0 < a1


class CodeInjector:
    def __init__(
        self,
        symbols: SymbolTable,
        build_version: str,
        arena: Optional[Arena] = None,
    ):
        self.symbols = symbols
        self.build_version = str(build_version)
        self.arena = arena if arena is not None else symbols.arena(self.build_version)
        if self.arena.base & 3:
            raise ArenaOverflowError(
                f"arena base 0x{self.arena.base:08X} is not 4-byte aligned",
                build_version=self.build_version,
            )
        self._cursor = self.arena.base
        self._caves: List[CodeCave] = []
        self._caves_by_name: Dict[str, CodeCave] = {}
        self._overwrites: List[Overwrite] = []
        self._hooks: Dict[int, Hook] = {}
        self._hook_words: Dict[int, bytes] = {}
        self._arena_blob: Optional[bytes] = None

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def used(self) -> int:
        return self._cursor - self.arena.base

    @property
    def finalized(self) -> bool:
        return self._arena_blob is not None

    @property
    def caves(self) -> Tuple[CodeCave, ...]:
        return tuple(self._caves)

    @property
    def hooks(self) -> Tuple[Hook, ...]:
        return tuple(self._hooks[k] for k in sorted(self._hooks))

    @property
    def overwrites(self) -> Tuple[Overwrite, ...]:
        return tuple(self._overwrites)

    def is_empty(self) -> bool:
        return not (self._caves or self._overwrites or self._hooks)

    def _check_open(self, what: str) -> None:
        if self.finalized:
            raise ArenaOverflowError(
                f"{what} after finalize", build_version=self.build_version
            )

    def _check_free(self, start: int, end: int, what: str, *, ignore_hook: Optional[int] = None) -> None:
        if _overlaps(start, end, self.arena.base, self.arena.end):
            raise ArenaOverflowError(
                f"{what} at 0x{start:08X} overlaps the code arena",
                build_version=self.build_version,
            )
        for ow in self._overwrites:
            if _overlaps(start, end, ow.address, ow.end):
                raise ArenaOverflowError(
                    f"{what} at 0x{start:08X} overlaps an earlier overwrite at 0x{ow.address:08X}",
                    build_version=self.build_version,
                )
        for src in self._hooks:
            if src != ignore_hook and _overlaps(start, end, src, src + 4):
                raise ArenaOverflowError(
                    f"{what} at 0x{start:08X} overlaps a hook at 0x{src:08X}",
                    build_version=self.build_version,
                )

    def resolve(self, ref: Ref, cave: Optional[CodeCave] = None) -> int:
        if not isinstance(ref, str):
            return int(ref)
        if cave is not None and ref in cave.labels:
            return cave.labels[ref]
        if ref in self._caves_by_name:
            return self._caves_by_name[ref].address
        if "." in ref:
            cave_name, _, lbl = ref.partition(".")
            other = self._caves_by_name.get(cave_name)
            if other is not None and lbl in other.labels:
                return other.labels[lbl]
        return self.symbols.resolve(ref, self.build_version)

    def overwrite(self, address: int, data: bytes, expected: Optional[bytes] = None) -> Overwrite:
        self._check_open("overwrite")
        address = int(address)
        data = bytes(data)
        if not data:
            raise ValueError("overwrite needs at least one byte")
        if expected is not None and len(expected) != len(data):
            raise ValueError("expected bytes must match the overwrite length")
        self._check_free(address, address + len(data), "overwrite")
        ow = Overwrite(address, data, None if expected is None else bytes(expected))
        self._overwrites.append(ow)
        log.debug("[%s] overwrite 0x%08X (%d bytes)", self.build_version, address, len(data))
        return ow

    def append_code(
        self,
        instructions: Sequence[Union[Instruction, Sequence[Instruction]]],
        name: Optional[str] = None,
    ) -> CodeCave:
        self._check_open("append_code")
        body = ppcasm.flatten(instructions)
        if name is None:
            name = f"cave{len(self._caves)}"
        if name in self._caves_by_name:
            raise ValueError(f"code block {name!r} already exists")
        if "." in name:
            raise ValueError(f"code block name must not contain '.': {name!r}")

        base = self._cursor
        labels: Dict[str, int] = {}
        size = 0
        for ins in body:
            if isinstance(ins, ppcasm.Label):
                if ins.name in labels:
                    raise ValueError(f"{name}: duplicate label {ins.name!r}")
                labels[ins.name] = base + size
            size += ins.size
        if base + size > self.arena.end:
            raise ArenaOverflowError(
                f"code block {name!r} needs 0x{size:X} bytes, "
                f"0x{self.arena.end - base:X} left in arena",
                build_version=self.build_version,
            )

        cave = CodeCave(name=name, address=base, instructions=body, labels=labels, size=size)
        self._caves.append(cave)
        self._caves_by_name[name] = cave
        self._cursor = base + size
        log.debug("[%s] code block %s at 0x%08X (0x%X bytes)", self.build_version, name, base, size)
        return cave

    def hook(self, source: int, target: Ref, *, link: bool = False, chain: bool = False) -> Hook:
        """Overwrite the instruction at `source` with a branch to `target`."""
        self._check_open("hook")
        source = int(source)
        if source & 3:
            raise ValueError(f"hook source 0x{source:08X} is not word aligned")
        prev = self._hooks.get(source)
        if prev is not None and not chain:
            raise HookConflictError(
                f"0x{source:08X} is already hooked to {prev.target!r}",
                build_version=self.build_version,
            )
        self._check_free(source, source + 4, "hook", ignore_hook=source)
        h = Hook(source, target, bool(link), prev.target if prev is not None else None)
        self._hooks[source] = h
        return h

    def finalize(self) -> bytes:
        """Encode every code block; returns the arena contents. Only once."""
        self._check_open("finalize")
        out = bytearray()
        for cave in self._caves:

            def _resolve(ref: Ref, _cave: CodeCave = cave) -> int:
                return self.resolve(ref, _cave)

            try:
                cave.data = ppcasm.encode_block(cave.instructions, cave.address, _resolve)
            except ValueError as e:
                raise PatcherError(f"[{self.build_version}] code block {cave.name}: {e}") from e
            out += cave.data

        for src in sorted(self._hooks):
            h = self._hooks[src]
            ins = ppcasm.bl(h.target) if h.link else ppcasm.b(h.target)
            try:
                self._hook_words[src] = ins.encode(src, self.resolve)
            except ValueError as e:
                raise PatcherError(f"[{self.build_version}] hook at 0x{src:08X}: {e}") from e

        self._arena_blob = bytes(out)
        log.info(
            "[%s] code finalized: %d blocks (0x%X bytes), %d hooks, %d overwrites",
            self.build_version,
            len(self._caves),
            len(out),
            len(self._hooks),
            len(self._overwrites),
        )
        return self._arena_blob

    def apply(self, image: DolImage) -> None:
        if self._arena_blob is None:
            raise PatcherError("code injector must be finalized before it is applied")
        for ow in self._overwrites:
            if ow.expected is None:
                continue
            actual = image.read(ow.address, len(ow.expected))
            if actual != ow.expected:
                raise PatchApplicationError(
                    f"{self.build_version}@0x{ow.address:08X}",
                    f"expected original bytes {ow.expected.hex()}, found {actual.hex()}",
                )
        for src in self._hook_words:
            image.read(src, 4)

        if self._arena_blob:
            image.add_text_section(self.arena.base, self._arena_blob)
        for ow in self._overwrites:
            image.write(ow.address, ow.data)
        for src, word in self._hook_words.items():
            image.write(src, word)
