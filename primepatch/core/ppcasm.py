"""Minimal fixed-width PowerPC (Gekko) instruction builder.

Instructions are small value objects; nothing is encoded until the code
injector knows where a block lives. Branch targets and address operands are
references: an `int` is an absolute address, a `str` is resolved by the caller
(internal label, another cave, or a symbol).

Only the handful of instructions patch code actually needs are provided.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Callable, List, Sequence, Union

Ref = Union[int, str]
Resolver = Callable[[Ref], int]

BLR = 0x4E800020
BCTR = 0x4E800420
BCTRL = 0x4E800421
NOP = 0x60000000

SPR_LR = 8
SPR_CTR = 9

# (BO, BI) for the cr0 conditional branches
_COND = {
    "beq": (12, 2),
    "bne": (4, 2),
    "blt": (12, 0),
    "bge": (4, 0),
    "bgt": (12, 1),
    "ble": (4, 1),
}


def _reg(r: int) -> int:
    r = int(r)
    if r < 0 or r > 31:
        raise ValueError(f"invalid register r{r}")
    return r


def _simm(v: int) -> int:
    v = int(v)
    if v < -0x8000 or v > 0x7FFF:
        raise ValueError(f"signed immediate out of range: {v}")
    return v & 0xFFFF


def _uimm(v: int) -> int:
    v = int(v)
    if v < 0 or v > 0xFFFF:
        raise ValueError(f"unsigned immediate out of range: {v}")
    return v


def _word(v: int) -> bytes:
    return struct.pack(">I", int(v) & 0xFFFFFFFF)


class Instruction:
    size = 4

    def encode(self, address: int, resolve: Resolver) -> bytes:
        raise NotImplementedError


@dataclass(frozen=True)
class Label(Instruction):
    """Marks the address of the next instruction; occupies no space."""

    name: str
    size = 0

    def encode(self, address: int, resolve: Resolver) -> bytes:
        return b""


@dataclass(frozen=True)
class Fixed(Instruction):
    value: int

    def encode(self, address: int, resolve: Resolver) -> bytes:
        return _word(self.value)


@dataclass(frozen=True)
class Branch(Instruction):
    target: Ref
    link: bool = False

    def encode(self, address: int, resolve: Resolver) -> bytes:
        disp = int(resolve(self.target)) - int(address)
        if disp & 3:
            raise ValueError(f"branch target not word aligned (0x{address:08X} -> {self.target!r})")
        if disp < -0x2000000 or disp > 0x1FFFFFC:
            raise ValueError(f"branch out of range at 0x{address:08X} -> {self.target!r}")
        return _word((18 << 26) | (disp & 0x03FFFFFC) | (1 if self.link else 0))


@dataclass(frozen=True)
class CondBranch(Instruction):
    bo: int
    bi: int
    target: Ref
    link: bool = False

    def encode(self, address: int, resolve: Resolver) -> bytes:
        disp = int(resolve(self.target)) - int(address)
        if disp & 3:
            raise ValueError(f"branch target not word aligned (0x{address:08X} -> {self.target!r})")
        if disp < -0x8000 or disp > 0x7FFC:
            raise ValueError(f"conditional branch out of range at 0x{address:08X} -> {self.target!r}")
        return _word(
            (16 << 26)
            | (int(self.bo) << 21)
            | (int(self.bi) << 16)
            | (disp & 0xFFFC)
            | (1 if self.link else 0)
        )


@dataclass(frozen=True)
class AddressHalf(Instruction):
    """`lis rd, hi(ref)` or `ori rd, rd, lo(ref)`."""

    rd: int
    ref: Ref
    high: bool

    def encode(self, address: int, resolve: Resolver) -> bytes:
        value = int(resolve(self.ref)) & 0xFFFFFFFF
        rd = _reg(self.rd)
        if self.high:
            return _word((15 << 26) | (rd << 21) | (value >> 16))
        return _word((24 << 26) | (rd << 21) | (rd << 16) | (value & 0xFFFF))


@dataclass(frozen=True)
class DataWord(Instruction):
    ref: Ref

    def encode(self, address: int, resolve: Resolver) -> bytes:
        return _word(resolve(self.ref) if isinstance(self.ref, str) else int(self.ref))


@dataclass(frozen=True)
class DataBytes(Instruction):
    """Raw bytes, zero padded to a whole number of words."""

    data: bytes

    @property
    def size(self) -> int:  # type: ignore[override]
        return (len(self.data) + 3) & ~3

    def encode(self, address: int, resolve: Resolver) -> bytes:
        return bytes(self.data) + b"\0" * (self.size - len(self.data))


def label(name: str) -> Label:
    return Label(str(name))


def b(target: Ref) -> Branch:
    return Branch(target)


def bl(target: Ref) -> Branch:
    return Branch(target, link=True)


def beq(target: Ref) -> CondBranch:
    return CondBranch(*_COND["beq"], target)


def bne(target: Ref) -> CondBranch:
    return CondBranch(*_COND["bne"], target)


def blt(target: Ref) -> CondBranch:
    return CondBranch(*_COND["blt"], target)


def bge(target: Ref) -> CondBranch:
    return CondBranch(*_COND["bge"], target)


def bgt(target: Ref) -> CondBranch:
    return CondBranch(*_COND["bgt"], target)


def ble(target: Ref) -> CondBranch:
    return CondBranch(*_COND["ble"], target)


def blr() -> Fixed:
    return Fixed(BLR)


def bctr() -> Fixed:
    return Fixed(BCTR)


def bctrl() -> Fixed:
    return Fixed(BCTRL)


def nop() -> Fixed:
    return Fixed(NOP)


def addi(rd: int, ra: int, simm: int) -> Fixed:
    return Fixed((14 << 26) | (_reg(rd) << 21) | (_reg(ra) << 16) | _simm(simm))


def addis(rd: int, ra: int, simm: int) -> Fixed:
    return Fixed((15 << 26) | (_reg(rd) << 21) | (_reg(ra) << 16) | _simm(simm))


def li(rd: int, simm: int) -> Fixed:
    return addi(rd, 0, simm)


def lis(rd: int, simm: int) -> Fixed:
    return addis(rd, 0, simm)


def ori(ra: int, rs: int, uimm: int) -> Fixed:
    return Fixed((24 << 26) | (_reg(rs) << 21) | (_reg(ra) << 16) | _uimm(uimm))


def _dform(opcode: int, rd: int, d: int, ra: int) -> Fixed:
    return Fixed((opcode << 26) | (_reg(rd) << 21) | (_reg(ra) << 16) | _simm(d))


def lwz(rd: int, d: int, ra: int) -> Fixed:
    return _dform(32, rd, d, ra)


def lbz(rd: int, d: int, ra: int) -> Fixed:
    return _dform(34, rd, d, ra)


def stw(rs: int, d: int, ra: int) -> Fixed:
    return _dform(36, rs, d, ra)


def stwu(rs: int, d: int, ra: int) -> Fixed:
    return _dform(37, rs, d, ra)


def stb(rs: int, d: int, ra: int) -> Fixed:
    return _dform(38, rs, d, ra)


def cmpwi(ra: int, simm: int, crf: int = 0) -> Fixed:
    if crf < 0 or crf > 7:
        raise ValueError(f"invalid condition register field cr{crf}")
    return Fixed((11 << 26) | (int(crf) << 23) | (_reg(ra) << 16) | _simm(simm))


def mr(ra: int, rs: int) -> Fixed:
    rs = _reg(rs)
    return Fixed((31 << 26) | (rs << 21) | (_reg(ra) << 16) | (rs << 11) | (444 << 1))


def _spr(spr: int) -> int:
    return ((spr & 0x1F) << 5) | ((spr >> 5) & 0x1F)


def mfspr(rd: int, spr: int) -> Fixed:
    return Fixed((31 << 26) | (_reg(rd) << 21) | (_spr(spr) << 11) | (339 << 1))


def mtspr(spr: int, rs: int) -> Fixed:
    return Fixed((31 << 26) | (_reg(rs) << 21) | (_spr(spr) << 11) | (467 << 1))


def mflr(rd: int) -> Fixed:
    return mfspr(rd, SPR_LR)


def mtlr(rs: int) -> Fixed:
    return mtspr(SPR_LR, rs)


def mtctr(rs: int) -> Fixed:
    return mtspr(SPR_CTR, rs)


def long(value: Ref) -> DataWord:
    return DataWord(value)


def data(raw: bytes) -> DataBytes:
    return DataBytes(bytes(raw))


def load_address(rd: int, ref: Ref) -> List[Instruction]:
    """`lis rd, ref@h` / `ori rd, rd, ref@l`."""
    return [AddressHalf(rd, ref, True), AddressHalf(rd, ref, False)]


def flatten(instructions: Sequence[Union[Instruction, Sequence[Instruction]]]) -> List[Instruction]:
    out: List[Instruction] = []
    for ins in instructions:
        if isinstance(ins, Instruction):
            out.append(ins)
        else:
            out.extend(flatten(ins))
    return out


def encode_block(
    instructions: Sequence[Instruction], base: int, resolve: Resolver
) -> bytes:
    out = bytearray()
    for ins in instructions:
        out += ins.encode(base + len(out), resolve)
    return bytes(out)
