import struct
import unittest

from primepatch.core.props import (
    HudMemo,
    ObjectType,
    RandomRelay,
    RawProperties,
    Relay,
    SpecialFunction,
    Timer,
    Trigger,
    decode_properties,
)
from primepatch.core.scly import decode_area, encode_area, integrity_violations, new_violations
from primepatch.core.types import ConnectionMsg, ConnectionState, SclyObject, split_instance_id
from primepatch.errors import ResourceDecodeError

from .fixtures import four_layer_area, make_area, raw_object, relay, scenario_a_area


def _typed_area():
    objs = [
        SclyObject(0x05, 0x00100010, Timer(name=b"Timer", start_time=2.5, looping=1)),
        SclyObject(0x04, 0x00100011, Trigger(name=b"Trigger", scale=(4.0, 4.0, 2.0))),
        SclyObject(0x14, 0x00100012, RandomRelay(name=b"Random", send_set_size=2)),
        SclyObject(0x17, 0x00100013, HudMemo(name=b"Memo", strg=0x1234)),
        SclyObject(
            0x3A,
            0x00100014,
            SpecialFunction.layer_change_fn(b"SpawnLayer", 0xAABBCCDD, 3),
            [],
        ),
        raw_object(0x43, 0x00100015, b"Drone"),
    ]
    objs[0].add_connection(ConnectionState.ZERO, ConnectionMsg.ACTIVATE, 0x00100011)
    area = make_area(
        [(b"Default", objs), (b"Extra", [relay(0x04100016, b"R")])],
        layer_deps=[[(0x1234, "STRG")], [(0x99, "TXTR")]],
        area_deps=[(0x77, "CMDL")],
        active=0b01,
    )
    area.trailer = b"\x01\x02\x03"
    return area


class TestAreaCodec(unittest.TestCase):
    def test_round_trip_is_byte_exact(self):
        blob = encode_area(_typed_area())
        area = decode_area(blob)
        self.assertEqual(encode_area(area), blob)

        self.assertEqual(area.layer_count, 2)
        self.assertEqual(area.active_layers, 0b01)
        self.assertEqual(area.trailer, b"\x01\x02\x03")
        self.assertEqual([d.asset_id for d in area.layers[0].dependencies], [0x1234])
        self.assertEqual([d.asset_id for d in area.area_dependencies], [0x77])

        objs = area.layers[0].objects
        timer = objs[0].typed(Timer)
        self.assertIsNotNone(timer)
        self.assertEqual(timer.start_time, 2.5)
        self.assertIsNone(objs[0].typed(Relay))
        self.assertTrue(objs[1].is_a(Trigger))
        self.assertEqual(objs[1].typed(Trigger).scale, (4.0, 4.0, 2.0))
        self.assertEqual(objs[3].property_data.asset_refs(), [(0x1234, "STRG")])
        sf = objs[4].typed(SpecialFunction)
        self.assertEqual(sf.type_, SpecialFunction.LAYER_CHANGE)
        self.assertEqual(sf.layer_change_layer_id, 3)
        self.assertTrue(objs[5].is_raw())
        self.assertEqual(objs[5].name, b"Drone")
        self.assertEqual(objs[0].connections[0].message, ConnectionMsg.ACTIVATE)

    def test_scenario_area_round_trip(self):
        for area in (scenario_a_area(), four_layer_area()):
            blob = encode_area(area)
            self.assertEqual(encode_area(decode_area(blob)), blob)

    def test_signalling_nan_floats_round_trip(self):
        blob = bytearray(encode_area(scenario_a_area()))
        # transform[0] follows magic and version
        struct.pack_into(">I", blob, 8, 0x7F800001)
        struct.pack_into(">I", blob, 8 + 48, 0xFF800123)
        self.assertEqual(encode_area(decode_area(bytes(blob))), bytes(blob))

        payload = bytearray(Timer(name=b"T", start_time=1.0).encode())
        struct.pack_into(">I", payload, 6, 0x7F800001)
        timer = decode_properties(ObjectType.TIMER, bytes(payload))
        self.assertEqual(timer.encode(), bytes(payload))
        timer.start_time = 4.0
        self.assertEqual(struct.unpack_from(">f", timer.encode(), 6)[0], 4.0)

    def test_layers_are_padded(self):
        blob = encode_area(scenario_a_area())
        i = blob.index(b"SCLY")
        (size,) = struct.unpack_from(">I", blob, i + 12)
        self.assertEqual(size % 32, 0)

    def test_non_zero_padding_rejected(self):
        blob = bytearray(encode_area(scenario_a_area()))
        blob[-1] = 0x01
        with self.assertRaises(ResourceDecodeError):
            decode_area(bytes(blob))

    def test_non_monotonic_dependency_offsets_rejected(self):
        area = make_area(
            [(b"L0", []), (b"L1", [])],
            layer_deps=[[(1, "TXTR")], [(2, "TXTR")]],
        )
        blob = bytearray(encode_area(area))
        i = bytes(blob).index(struct.pack(">IIII", 3, 0, 1, 2))
        struct.pack_into(">I", blob, i + 8, 3)
        with self.assertRaises(ResourceDecodeError):
            decode_area(bytes(blob))

    def test_layer_count_mismatch_rejected(self):
        blob = bytearray(encode_area(scenario_a_area()))
        i = bytes(blob).index(b"SCLY")
        struct.pack_into(">I", blob, i + 8, 3)
        with self.assertRaises(ResourceDecodeError):
            decode_area(bytes(blob))

    def test_typed_payload_must_be_consumed_exactly(self):
        good = Relay(name=b"R").encode()
        self.assertEqual(decode_properties(ObjectType.RELAY, good), Relay(name=b"R"))
        with self.assertRaises(ResourceDecodeError):
            decode_properties(ObjectType.RELAY, good + b"\0")
        with self.assertRaises(ResourceDecodeError):
            decode_properties(ObjectType.RELAY, good[:-1])

    def test_unknown_type_stays_raw(self):
        props = decode_properties(0x7F, b"\0\0\0\x01Thing\0")
        self.assertIsInstance(props, RawProperties)
        self.assertEqual(props.name, b"Thing")
        self.assertEqual(props.object_type, 0x7F)

    def test_instance_id_layout(self):
        self.assertEqual(split_instance_id(0x0C2A0005), (3, 0x2A, 5))


class TestIntegrity(unittest.TestCase):
    def test_clean_area(self):
        self.assertEqual(integrity_violations(_typed_area()), set())

    def test_duplicate_and_dangling(self):
        area = scenario_a_area()
        area.layers[0].objects.append(relay(0x02, b"Copy", [(0, 1, 0x99)]))
        kinds = sorted(v.kind for v in integrity_violations(area))
        self.assertEqual(kinds, ["dangling-connection", "duplicate-id"])

    def test_asset_coverage(self):
        memo = SclyObject(0x17, 0x04000001, HudMemo(name=b"Memo", strg=0x55))
        area = make_area(
            [(b"Default", []), (b"Memo", [memo]), (b"Off", [])],
            layer_deps=[[], [], [(0x55, "STRG")]],
            active=0b011,
        )
        # only an inactive foreign layer lists the string table
        self.assertEqual([v.kind for v in integrity_violations(area)], ["uncovered-asset"])
        area.set_layer_active(2, True)
        self.assertEqual(integrity_violations(area), set())
        area.set_layer_active(2, False)
        area.layers[1].dependencies.append(area.layers[2].dependencies[0])
        self.assertEqual(integrity_violations(area), set())

    def test_baseline_hides_preexisting_violations(self):
        area = scenario_a_area()
        area.layers[0].objects[1].add_connection(0, 1, 0x42)
        baseline = integrity_violations(area)
        self.assertEqual(new_violations(area, baseline), [])
        area.layers[0].objects[0].add_connection(0, 1, 0x43)
        self.assertEqual(len(new_violations(area, baseline)), 1)


if __name__ == "__main__":
    unittest.main()
