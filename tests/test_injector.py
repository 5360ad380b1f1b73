import struct
import unittest

from primepatch.core import ppcasm as asm
from primepatch.core.dol import parse_dol, serialize_dol
from primepatch.errors import (
    ArenaOverflowError,
    ContainerFormatError,
    HookConflictError,
    PatchApplicationError,
    PatcherError,
    UnknownSymbolError,
)
from primepatch.patching.injector import CodeInjector
from primepatch.patching.symbols import Arena, symbols_from_json

from .fixtures import ARENA_BASE, ARENA_SIZE, BUILD, TEXT_ADDR, make_dol, symbols_table


def _word(ins, address=0x80001000, resolve=int):
    return struct.unpack(">I", ins.encode(address, resolve))[0]


class TestEncodings(unittest.TestCase):
    def test_fixed_words(self):
        self.assertEqual(_word(asm.blr()), 0x4E800020)
        self.assertEqual(_word(asm.nop()), 0x60000000)
        self.assertEqual(_word(asm.bctrl()), 0x4E800421)
        self.assertEqual(_word(asm.li(3, 1)), 0x38600001)
        self.assertEqual(_word(asm.lis(3, 0x7FFF)), 0x3C607FFF)
        self.assertEqual(_word(asm.ori(3, 3, 0x1234)), 0x60631234)
        self.assertEqual(_word(asm.stwu(1, -16, 1)), 0x9421FFF0)
        self.assertEqual(_word(asm.stw(0, 20, 1)), 0x90010014)
        self.assertEqual(_word(asm.lwz(0, 20, 1)), 0x80010014)
        self.assertEqual(_word(asm.mflr(0)), 0x7C0802A6)
        self.assertEqual(_word(asm.mtlr(0)), 0x7C0803A6)
        self.assertEqual(_word(asm.mtctr(12)), 0x7D8903A6)
        self.assertEqual(_word(asm.cmpwi(3, 0)), 0x2C030000)
        self.assertEqual(_word(asm.mr(31, 3)), 0x7C7F1B78)

    def test_branches(self):
        self.assertEqual(_word(asm.b(0x80000FFC)), 0x4BFFFFFC)
        self.assertEqual(_word(asm.bl(0x80001100)), 0x48000101)
        self.assertEqual(_word(asm.beq(0x80001008)), 0x41820008)
        self.assertEqual(_word(asm.bne(0x80001008)), 0x40820008)
        with self.assertRaises(ValueError):
            _word(asm.beq(0x80010000))
        with self.assertRaises(ValueError):
            _word(asm.b(0x84000000))

    def test_immediate_ranges(self):
        with self.assertRaises(ValueError):
            asm.li(3, 0x8000)
        with self.assertRaises(ValueError):
            asm.addi(32, 0, 0)

    def test_load_address(self):
        hi, lo = asm.load_address(4, 0x80451234)
        self.assertEqual(_word(hi), 0x3C808045)
        self.assertEqual(_word(lo), 0x60841234)


class TestInjector(unittest.TestCase):
    def setUp(self):
        self.inj = CodeInjector(symbols_table(), BUILD)

    def test_layout_and_forward_reference(self):
        first = self.inj.append_code([asm.b("second"), asm.label("back"), asm.blr()], name="first")
        second = self.inj.append_code(
            [asm.load_address(3, "first.back"), asm.bl("OSReport"), asm.b("first.back")],
            name="second",
        )
        self.assertEqual(first.address, ARENA_BASE)
        self.assertEqual(first.labels["back"], ARENA_BASE + 4)
        self.assertEqual(second.address, ARENA_BASE + 8)
        self.assertEqual(second.size, 16)
        self.assertEqual(self.inj.cursor, ARENA_BASE + 24)

        blob = self.inj.finalize()
        self.assertEqual(len(blob), 24)
        words = struct.unpack(">6I", blob)
        self.assertEqual(words[0], 0x48000008)
        self.assertEqual(words[2], 0x3C608040)
        self.assertEqual(words[3], 0x60630004)
        self.assertEqual(words[5], 0x4BFFFFF0)

    def test_overflow_raises_before_layout(self):
        self.inj.append_code([asm.nop()] * (ARENA_SIZE // 4 - 1))
        with self.assertRaises(ArenaOverflowError):
            self.inj.append_code([asm.nop(), asm.blr()])
        self.assertEqual(self.inj.used, ARENA_SIZE - 4)
        self.assertEqual(len(self.inj.caves), 1)

    def test_double_hook(self):
        self.inj.hook(TEXT_ADDR, "OSReport")
        with self.assertRaises(HookConflictError):
            self.inj.hook(TEXT_ADDR, ARENA_BASE)
        chained = self.inj.hook(TEXT_ADDR, ARENA_BASE, chain=True)
        self.assertEqual(chained.previous, "OSReport")

    def test_overlapping_overwrites(self):
        self.inj.overwrite(TEXT_ADDR + 8, b"\0" * 8)
        with self.assertRaises(ArenaOverflowError):
            self.inj.overwrite(TEXT_ADDR + 12, b"\0" * 4)
        with self.assertRaises(ArenaOverflowError):
            self.inj.hook(TEXT_ADDR + 8, ARENA_BASE)
        with self.assertRaises(ArenaOverflowError):
            self.inj.overwrite(ARENA_BASE, b"\0" * 4)

    def test_finalize_once(self):
        self.inj.finalize()
        with self.assertRaises(ArenaOverflowError):
            self.inj.finalize()
        with self.assertRaises(ArenaOverflowError):
            self.inj.append_code([asm.blr()])

    def test_unknown_symbol_at_finalize(self):
        self.inj.append_code([asm.bl("NoSuchFunction")])
        with self.assertRaises(UnknownSymbolError) as ctx:
            self.inj.finalize()
        self.assertEqual(ctx.exception.build_version, BUILD)

    def test_branch_out_of_range_at_finalize(self):
        self.inj.append_code([asm.beq("OSReport")], name="far")
        with self.assertRaises(PatcherError):
            self.inj.finalize()

    def test_apply_to_image(self):
        image = parse_dol(make_dol())
        self.inj.append_code([asm.li(3, 1), asm.b(TEXT_ADDR + 4)], name="entry")
        self.inj.hook(TEXT_ADDR, "entry")
        self.inj.overwrite(TEXT_ADDR + 8, b"\x38\x60\x00\x00", expected=b"\x60\x00\x00\x00")
        self.inj.finalize()
        self.inj.apply(image)

        out = parse_dol(serialize_dol(image))
        self.assertEqual(out.text[1].address, ARENA_BASE)
        self.assertEqual(out.read(ARENA_BASE, 4), b"\x38\x60\x00\x01")
        (hook_word,) = struct.unpack(">I", out.read(TEXT_ADDR, 4))
        self.assertEqual(hook_word, 0x48000000 | ((ARENA_BASE - TEXT_ADDR) & 0x03FFFFFC))
        self.assertEqual(out.read(TEXT_ADDR + 8, 4), b"\x38\x60\x00\x00")

    def test_apply_checks_expected_bytes(self):
        image = parse_dol(make_dol())
        self.inj.overwrite(TEXT_ADDR, b"\0\0\0\0", expected=b"\x60\x00\x00\x00")
        self.inj.finalize()
        with self.assertRaises(PatchApplicationError):
            self.inj.apply(image)

    def test_explicit_arena(self):
        inj = CodeInjector(symbols_table(), BUILD, arena=Arena(0x80500000, 8))
        cave = inj.append_code([asm.nop(), asm.blr()])
        self.assertEqual(cave.address, 0x80500000)
        with self.assertRaises(ArenaOverflowError):
            inj.append_code([asm.blr()])


class TestNewTextSection(unittest.TestCase):
    def test_padding_counts_toward_overlap(self):
        image = parse_dol(make_dol())
        data = image.data_sections[0]
        data.offset, data.address, data.size = 0x100, ARENA_BASE + 0x10, 0x20
        with self.assertRaises(ContainerFormatError):
            image.add_text_section(ARENA_BASE, b"\x60\x00\x00\x00" * 2)

    def test_bss_is_reserved(self):
        image = parse_dol(make_dol())
        image.bss_address, image.bss_size = ARENA_BASE + 0x10, 0x40
        with self.assertRaises(ContainerFormatError):
            image.add_text_section(ARENA_BASE, b"\x60\x00\x00\x00" * 2)

        image.bss_address = ARENA_BASE + 0x20
        sec = image.add_text_section(ARENA_BASE, b"\x60\x00\x00\x00" * 2)
        self.assertEqual((sec.address, sec.size), (ARENA_BASE, 0x20))


class TestSymbols(unittest.TestCase):
    def test_json(self):
        table = symbols_from_json(
            '{"v": 1, "builds": {"GM8E01-00": {"arena": {"base": "0x80600000", "size": 256},'
            ' "symbols": {"Func": "0x80001234", "Other": 2147487744}}}}'
        )
        self.assertEqual(table.resolve("Func", "GM8E01-00"), 0x80001234)
        self.assertEqual(table.resolve("Other", "GM8E01-00"), 0x80001000)
        self.assertEqual(table.arena("GM8E01-00"), Arena(0x80600000, 256))
        with self.assertRaises(UnknownSymbolError):
            table.resolve("Func", "GM8P01-00")
        back = symbols_from_json(table.to_json())
        self.assertEqual(back.resolve("Func", "GM8E01-00"), 0x80001234)

    def test_bad_address(self):
        with self.assertRaises(ValueError):
            symbols_from_json('{"v": 1, "builds": {"X": {"symbols": {"f": "zz"}}}}')


if __name__ == "__main__":
    unittest.main()
