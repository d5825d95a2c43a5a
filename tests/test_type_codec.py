import unittest

from pythonosc.osc_message import OscMessage

from OSCQuery_Mirror.type_codec import (
    ParameterKind,
    TAG_SPECS,
    TypeMappingError,
    TypeTag,
    build_message,
    build_script_message,
    coerce_inbound,
    color_to_hex,
    decode,
    encode,
    tag_arity,
    tag_kind,
)


_ROUND_TRIP_SAMPLES = {
    TypeTag.NIL: None,
    TypeTag.IMPULSE: None,
    TypeTag.INT: -42,
    TypeTag.INT64: 2 ** 40,
    TypeTag.FLOAT: 0.25,
    TypeTag.DOUBLE: 1.0 / 3.0,
    TypeTag.INT_2: [3, -4],
    TypeTag.FLOAT_2: [0.5, -0.5],
    TypeTag.INT64_2: [1, 2],
    TypeTag.DOUBLE_2: [0.125, 8.0],
    TypeTag.INT_3: [1, 2, 3],
    TypeTag.FLOAT_3: [0.0, 0.5, 1.0],
    TypeTag.INT64_3: [7, 8, 9],
    TypeTag.DOUBLE_3: [0.1, 0.2, 0.3],
    TypeTag.FLOAT_COLOR: [0.0, 0.5, 1.0, 0.25],
    TypeTag.DOUBLE_COLOR: [1.0, 0.75, 0.5, 1.0],
    TypeTag.INT_COLOR: [0.0, 1.0, 51 / 255.0, 1.0],
    TypeTag.INT64_COLOR: [17 / 255.0, 34 / 255.0, 0.0, 1.0],
    TypeTag.STRING: "hello",
    TypeTag.SYMBOL: "sym",
    TypeTag.CHAR: "c",
    TypeTag.PACKED_COLOR: [1.0, 17 / 255.0, 34 / 255.0, 51 / 255.0],
    TypeTag.TRUE: True,
    TypeTag.FALSE: False,
}


class TypeTagTableTests(unittest.TestCase):
    def test_every_tag_maps_to_one_kind_and_arity(self):
        for tag in TypeTag:
            self.assertIn(tag, TAG_SPECS)
            self.assertIsInstance(tag_kind(tag), ParameterKind)
            self.assertIn(tag_arity(tag), (1, 2, 3, 4))

    def test_table_kinds_follow_tag_shape(self):
        self.assertIs(tag_kind(TypeTag.NIL), ParameterKind.TRIGGER)
        self.assertIs(tag_kind(TypeTag.INT64), ParameterKind.INT)
        self.assertIs(tag_kind(TypeTag.DOUBLE), ParameterKind.FLOAT)
        self.assertIs(tag_kind(TypeTag.INT64_2), ParameterKind.POINT2D)
        self.assertIs(tag_kind(TypeTag.DOUBLE_3), ParameterKind.POINT3D)
        self.assertIs(tag_kind(TypeTag.INT_COLOR), ParameterKind.COLOR)
        self.assertIs(tag_kind(TypeTag.PACKED_COLOR), ParameterKind.COLOR)
        self.assertIs(tag_kind(TypeTag.CHAR), ParameterKind.STRING)
        self.assertIs(tag_kind(TypeTag.FALSE), ParameterKind.BOOL)

    def test_unknown_tag_raises_mapping_error(self):
        with self.assertRaises(TypeMappingError) as ctx:
            TypeTag.parse("zz")
        self.assertEqual(ctx.exception.code, "unknown_type_tag")


class DecodeTests(unittest.TestCase):
    def test_packed_color_is_reordered_into_rgba(self):
        value = decode(TypeTag.PACKED_COLOR, "#FF112233")

        self.assertEqual(value, [1.0, 0x11 / 255.0, 0x22 / 255.0, 0x33 / 255.0])
        self.assertEqual(color_to_hex(value), "#FF112233")

    def test_packed_color_accepts_wire_rgba_int(self):
        self.assertEqual(decode(TypeTag.PACKED_COLOR, [0x00FF0080]), [0.0, 1.0, 0.0, 0x80 / 255.0])

    def test_points_default_to_origin(self):
        self.assertEqual(decode(TypeTag.FLOAT_2, None), [0.0, 0.0])
        self.assertEqual(decode(TypeTag.INT_3, None), [0, 0, 0])

    def test_int_color_is_scaled_to_unit_range(self):
        value = decode(TypeTag.INT_COLOR, [255, 0, 255, 255])
        self.assertEqual(value, [1.0, 0.0, 1.0, 1.0])

    def test_short_color_value_is_opaque_black(self):
        self.assertEqual(decode(TypeTag.FLOAT_COLOR, [0.5]), [0.0, 0.0, 0.0, 1.0])

    def test_bool_tags_default_to_their_own_truth(self):
        self.assertIs(decode(TypeTag.TRUE, None), True)
        self.assertIs(decode(TypeTag.FALSE, None), False)
        self.assertIs(decode(TypeTag.TRUE, False), False)

    def test_infinite_value_for_int_tag_raises_mapping_error(self):
        with self.assertRaises(TypeMappingError):
            decode(TypeTag.INT, float("inf"))
        with self.assertRaises(TypeMappingError):
            encode(TypeTag.INT_2, [float("inf"), 0])

    def test_bad_value_raises_mapping_error(self):
        with self.assertRaises(TypeMappingError):
            decode(TypeTag.INT, "not a number")


class EncodeTests(unittest.TestCase):
    def test_round_trip_for_every_tag(self):
        for tag, value in _ROUND_TRIP_SAMPLES.items():
            with self.subTest(tag=tag.value):
                encoded = encode(tag, value)
                self.assertEqual(decode(tag, encoded.args), value)

    def test_arrays_encode_one_argument_per_component(self):
        encoded = encode(TypeTag.FLOAT_3, [1, 2, 3])
        self.assertEqual(encoded.type_tags, "fff")
        self.assertEqual(encoded.args, [1.0, 2.0, 3.0])

    def test_trigger_encodes_without_arguments(self):
        self.assertEqual(encode(TypeTag.IMPULSE, None), ("", []))

    def test_bool_uses_true_false_type_tags(self):
        self.assertEqual(encode(TypeTag.FALSE, True).type_tags, "T")
        self.assertEqual(encode(TypeTag.TRUE, False).type_tags, "F")

    def test_int_color_encodes_bytes(self):
        encoded = encode(TypeTag.INT_COLOR, [1.0, 0.0, 0.2, 1.0])
        self.assertEqual(encoded.type_tags, "iiii")
        self.assertEqual(encoded.args, [255, 0, 51, 255])

    def test_missing_components_raise(self):
        with self.assertRaises(TypeMappingError) as ctx:
            encode(TypeTag.FLOAT_2, [1.0])
        self.assertEqual(ctx.exception.code, "shape_mismatch")


class CoerceInboundTests(unittest.TestCase):
    def test_numbers_are_accepted_for_bools(self):
        self.assertIs(coerce_inbound(TypeTag.TRUE, [0]), False)
        self.assertIs(coerce_inbound(TypeTag.FALSE, [1]), True)

    def test_point_requires_full_arity(self):
        with self.assertRaises(TypeMappingError):
            coerce_inbound(TypeTag.FLOAT_3, [1.0, 2.0])
        self.assertEqual(coerce_inbound(TypeTag.FLOAT_3, [1.0, 2.0, 3.0]), [1.0, 2.0, 3.0])

    def test_scalar_without_arguments_is_rejected(self):
        with self.assertRaises(TypeMappingError):
            coerce_inbound(TypeTag.FLOAT, [])

    def test_trigger_ignores_arguments(self):
        self.assertIsNone(coerce_inbound(TypeTag.NIL, []))


class MessageBuildTests(unittest.TestCase):
    def test_built_message_parses_back(self):
        message = build_message("/vol", encode(TypeTag.FLOAT, 0.5))
        parsed = OscMessage(message.dgram)

        self.assertEqual(parsed.address, "/vol")
        self.assertEqual(list(parsed.params), [0.5])

    def test_packed_color_travels_as_rgba_argument(self):
        message = build_message("/col", encode(TypeTag.PACKED_COLOR, decode(TypeTag.PACKED_COLOR, "#FF112233")))
        parsed = OscMessage(message.dgram)

        self.assertEqual(list(parsed.params), [0xFF112233])

    def test_script_arguments_are_flattened(self):
        message = build_script_message("/script", [1, [2.5, "x"], True])
        parsed = OscMessage(message.dgram)

        self.assertEqual(list(parsed.params), [1, 2.5, "x", 1])

    def test_script_rejects_unsupported_arguments(self):
        with self.assertRaises(TypeMappingError):
            build_script_message("/script", [{"a": 1}])


if __name__ == "__main__":
    unittest.main()
