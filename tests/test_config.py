import json
import os
import tempfile
import unittest

from primepatch.cli import main
from primepatch.core.container import read_container, write_container
from primepatch.core.dol import parse_dol
from primepatch.core.pak import parse_pak
from primepatch.core import compression
from primepatch.core.scly import decode_area
from primepatch.patching.config import PatcherConfig, config_from_json, load_config
from primepatch.patching.keys import AreaKey, FileKey, ResourceKey
from primepatch.patching.registry import (
    PatchDescriptor,
    Patcher,
    descriptor_from_json,
    function_ref,
    resolve_function,
)
from primepatch.patching import builtin
from primepatch.patching.state import PatcherState

from .fixtures import (
    ARENA_BASE,
    BUILD,
    TEXT_ADDR,
    area_resource,
    four_layer_area,
    make_container,
    make_dol,
    make_pak,
    symbols_table,
)

AREA_ID = 0x1000


class TestDescriptors(unittest.TestCase):
    def test_json_round_trip(self):
        d = PatchDescriptor(
            ResourceKey("Metroid1.pak", 0x55, "STRG"),
            "primepatch.patching.builtin:patch_bytes",
            {"offset": "0x10", "data": "00ff"},
        )
        self.assertEqual(descriptor_from_json(d.to_json()), d)
        self.assertIs(d.resolve(), builtin.patch_bytes)

    def test_hex_asset_ids(self):
        d = descriptor_from_json(
            '{"key": {"kind": "area", "archive": "Metroid1.pak", "asset_id": "0x1000"},'
            ' "function": "primepatch.patching.builtin:add_layer"}'
        )
        self.assertEqual(d.key, AreaKey("Metroid1.pak", 0x1000))
        self.assertEqual(d.params, {})

    def test_bad_descriptors(self):
        for text in (
            "[]",
            '{"key": {"kind": "nope"}, "function": "a:b"}',
            '{"key": {"kind": "resource", "archive": "x.pak", "asset_id": 1, "type": "TX"},'
            ' "function": "a:b"}',
            '{"key": {"kind": "file", "path": "default.dol"}, "function": "no_colon"}',
            '{"key": {"kind": "file", "path": "default.dol"}, "function": "a:b", "params": []}',
        ):
            with self.assertRaises(ValueError):
                descriptor_from_json(text)

    def test_function_refs(self):
        self.assertEqual(
            function_ref(builtin.set_layer_active), "primepatch.patching.builtin:set_layer_active"
        )
        with self.assertRaises(ValueError):
            function_ref(lambda state, h: None)
        with self.assertRaises(ValueError):
            resolve_function("primepatch.patching.builtin")
        with self.assertRaises(AttributeError):
            resolve_function("primepatch.patching.builtin:no_such_transform")

    def test_register_descriptor(self):
        p = Patcher()
        reg = p.register(
            PatchDescriptor(FileKey("default.dol"), "primepatch.patching.builtin:patch_bytes", {"offset": 0})
        )
        self.assertIs(reg.fn, builtin.patch_bytes)
        self.assertEqual(reg.descriptor().function, "primepatch.patching.builtin:patch_bytes")


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        cfg = config_from_json('{"v": 1}')
        self.assertEqual(cfg, PatcherConfig())
        self.assertIsNone(cfg.load_symbols())
        self.assertEqual(config_from_json(cfg.to_json()), cfg)

    def test_validation(self):
        for text in (
            "{}",
            '{"v": 2}',
            '{"v": 1, "strict": "yes"}',
            '{"v": 1, "log_level": "LOUD"}',
            '{"v": 1, "patches": {}}',
            '{"v": 1, "program_image": " "}',
        ):
            with self.assertRaises(ValueError):
                config_from_json(text)

    def test_load_config_resolves_symbols_relative_to_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            with open(os.path.join(tmp, "symbols.json"), "w", encoding="utf-8") as f:
                f.write(symbols_table().to_json())
            cfg_path = os.path.join(tmp, "patch.json")
            with open(cfg_path, "w", encoding="utf-8") as f:
                json.dump({"v": 1, "symbols": "symbols.json", "log_level": "debug"}, f)

            cfg = load_config(cfg_path)
            self.assertEqual(cfg.symbols_path, os.path.join(tmp, "symbols.json"))
            self.assertEqual(cfg.log_level, "DEBUG")
            patcher = cfg.build_patcher()
            self.assertEqual(patcher.symbols.resolve("OSReport", "GM8E01-00"), TEXT_ADDR + 0x40)


class TestProgramHookParams(unittest.TestCase):
    def _hook_target(self, target):
        state = PatcherState(BUILD, symbols=symbols_table())
        builtin.program_hook(state, None, source=hex(TEXT_ADDR), target=target)
        return state.code.hooks[0].target

    def test_numeric_strings_are_addresses(self):
        self.assertEqual(self._hook_target(str(ARENA_BASE)), ARENA_BASE)
        self.assertEqual(self._hook_target(hex(ARENA_BASE)), ARENA_BASE)
        self.assertEqual(self._hook_target(ARENA_BASE), ARENA_BASE)

    def test_other_strings_are_symbols(self):
        self.assertEqual(self._hook_target("OSReport"), "OSReport")


def _area_patch(function, **params):
    return {
        "key": {"kind": "area", "archive": "Metroid1.pak", "asset_id": hex(AREA_ID)},
        "function": f"primepatch.patching.builtin:{function}",
        "params": params,
    }


class TestCli(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = self._tmp.name
        self.src = os.path.join(self.tmp, "in.iso")
        self.dst = os.path.join(self.tmp, "out.iso")
        container = make_container(
            [
                ("Metroid1.pak", make_pak("Metroid1.pak", [area_resource(AREA_ID, four_layer_area())])),
                ("default.dol", make_dol()),
            ]
        )
        write_container(container, self.src)
        with open(self.src, "rb") as f:
            self.src_bytes = f.read()
        with open(os.path.join(self.tmp, "symbols.json"), "w", encoding="utf-8") as f:
            f.write(symbols_table().to_json())

    def tearDown(self):
        self._tmp.cleanup()

    def _config(self, patches):
        path = os.path.join(self.tmp, "patch.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"v": 1, "symbols": "symbols.json", "log_level": "WARNING", "patches": patches}, f)
        return path

    def test_end_to_end(self):
        cfg = self._config(
            [
                _area_patch("set_layer_active", layer=3, active=False),
                _area_patch("add_layer", name="Patched", active=True),
                _area_patch("remove_objects", instance_ids=["0x02"]),
                _area_patch("add_connection", source=1, target="0x04000003", conn_state=0, message=1),
                {
                    "key": {"kind": "file", "path": "default.dol"},
                    "function": "primepatch.patching.builtin:program_overwrite",
                    "params": {"address": hex(TEXT_ADDR + 4), "data": "38600000", "expected": "60000000"},
                },
            ]
        )
        self.assertEqual(main([self.src, self.dst, "--config", cfg]), 0)

        with open(self.src, "rb") as f:
            self.assertEqual(f.read(), self.src_bytes)
        out = read_container(self.dst)
        arc = parse_pak("Metroid1.pak", out.entry("Metroid1.pak").data)
        area = decode_area(compression.decompress(arc.resources[0].stored))
        self.assertFalse(area.is_layer_active(3))
        self.assertEqual(area.layers[4].name, b"Patched")
        self.assertTrue(area.is_layer_active(4))
        self.assertEqual([o.name for o in area.layers[0].objects], [b"Gate"])
        self.assertEqual(area.layers[0].objects[0].connections[0].target, 0x04000003)
        dol = parse_dol(out.entry("default.dol").data)
        self.assertEqual(dol.read(TEXT_ADDR + 4, 4), b"\x38\x60\x00\x00")

    def test_failed_run_writes_nothing(self):
        cfg = self._config([_area_patch("remove_objects", instance_ids=["0x7777"])])
        self.assertEqual(main([self.src, self.dst, "--config", cfg]), 1)
        self.assertFalse(os.path.exists(self.dst))

    def test_bad_config(self):
        cfg = self._config([_area_patch("no_such_transform")])
        self.assertEqual(main([self.src, self.dst, "--config", cfg]), 1)
        self.assertEqual(main([self.src, self.dst, "--config", os.path.join(self.tmp, "missing.json")]), 1)


if __name__ == "__main__":
    unittest.main()
