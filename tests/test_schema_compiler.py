import json
import unittest

from OSCQuery_Mirror.mirror_tree import MirrorGroup, MirrorParameter
from OSCQuery_Mirror.schema_compiler import compile_parameter, compile_schema
from OSCQuery_Mirror.type_codec import INT32_MAX, INT32_MIN, ParameterKind, TypeMappingError, TypeTag


def _namespace(contents):
    return {"FULL_PATH": "/", "CONTENTS": contents}


class CompileSchemaTests(unittest.TestCase):
    def test_bare_float_leaf_compiles_with_range(self):
        root = compile_schema({"vol": {"TYPE": "f", "VALUE": 0.5, "RANGE": [{"MIN": 0, "MAX": 1}]}})

        param = root.find("/vol")
        self.assertIsInstance(param, MirrorParameter)
        self.assertIs(param.kind, ParameterKind.FLOAT)
        self.assertEqual(param.value, 0.5)
        self.assertEqual(param.minimum, [0.0])
        self.assertEqual(param.maximum, [1.0])
        self.assertEqual(param.address, "/vol")

    def test_packed_color_value_is_decoded(self):
        root = compile_schema(_namespace({"col": {"TYPE": "r", "VALUE": "#FF112233"}}))

        param = root.find("/col")
        self.assertIs(param.kind, ParameterKind.COLOR)
        self.assertEqual(param.value, [1.0, 0x11 / 255.0, 0x22 / 255.0, 0x33 / 255.0])

    def test_addresses_use_keys_not_descriptions(self):
        root = compile_schema(
            _namespace(
                {
                    "layer1": {
                        "DESCRIPTION": "Layer One",
                        "CONTENTS": {
                            "opacity": {"TYPE": "f", "VALUE": 1.0, "DESCRIPTION": "Opacity %"}
                        },
                    }
                }
            )
        )

        group = root.find("/layer1")
        param = root.find("/layer1/opacity")
        self.assertIsInstance(group, MirrorGroup)
        self.assertEqual(group.label, "Layer One")
        self.assertEqual(param.label, "Opacity %")
        self.assertEqual(param.address, "/layer1/opacity")
        self.assertIsNone(root.find("/Layer One"))

    def test_children_keep_schema_order(self):
        root = compile_schema(
            _namespace(
                {
                    "zeta": {"TYPE": "i", "VALUE": 1},
                    "alpha": {"TYPE": "i", "VALUE": 2},
                    "mid": {"TYPE": "i", "VALUE": 3},
                }
            )
        )
        self.assertEqual(list(root.children), ["zeta", "alpha", "mid"])

    def test_unknown_type_is_skipped_without_aborting_siblings(self):
        root = compile_schema(
            _namespace({"weird": {"TYPE": "zz", "VALUE": 1}, "flag": {"TYPE": "T", "VALUE": True}})
        )

        self.assertIsNone(root.find("/weird"))
        self.assertIs(root.find("/flag").value, True)

    def test_malformed_node_is_logged_and_skipped(self):
        with self.assertLogs("OSCQueryMirror.schema", level="WARNING"):
            root = compile_schema(_namespace({"bad": 5, "ok": {"TYPE": "s", "VALUE": "x"}}))

        self.assertEqual(list(root.children), ["ok"])

    def test_overflowing_numbers_skip_only_their_node(self):
        root = compile_schema(
            json.loads(
                '{"CONTENTS": {"ok": {"TYPE": "i", "VALUE": 3},'
                ' "big": {"TYPE": "i", "VALUE": 1e400},'
                ' "wide": {"TYPE": "i", "VALUE": 4, "RANGE": [{"MIN": 0, "MAX": 1e400}]}}}'
            )
        )

        self.assertEqual(list(root.children), ["ok", "wide"])
        self.assertEqual(root.find("/ok").value, 3)
        self.assertEqual(root.find("/wide").maximum, [INT32_MAX])
        self.assertEqual(root.find("/wide").value, 4)

    def test_empty_group_is_kept(self):
        root = compile_schema(_namespace({"empty": {"CONTENTS": {}}}))
        self.assertIsInstance(root.find("/empty"), MirrorGroup)

    def test_non_object_root_yields_empty_tree(self):
        with self.assertLogs("OSCQueryMirror.schema", level="WARNING"):
            root = compile_schema(["not", "a", "namespace"])
        self.assertEqual(root.children, {})


class CompileParameterTests(unittest.TestCase):
    def test_int_without_range_uses_int32_bounds(self):
        param = compile_parameter("n", {"TYPE": "i", "VALUE": 3})

        self.assertEqual(param.minimum, [INT32_MIN])
        self.assertEqual(param.maximum, [INT32_MAX])
        self.assertEqual(param.value, 3)

    def test_int_value_is_clamped_into_range(self):
        param = compile_parameter("n", {"TYPE": "i", "VALUE": 50, "RANGE": [{"MIN": 0, "MAX": 10}]})
        self.assertEqual(param.value, 10)

    def test_missing_value_uses_default(self):
        self.assertEqual(compile_parameter("n", {"TYPE": "h"}).value, 0)
        self.assertEqual(compile_parameter("p", {"TYPE": "ff"}).value, [0.0, 0.0])
        self.assertEqual(compile_parameter("c", {"TYPE": "ffff"}).value, [0.0, 0.0, 0.0, 1.0])
        self.assertEqual(compile_parameter("s", {"TYPE": "s"}).value, "")

    def test_point_range_needs_one_entry_per_component(self):
        partial = compile_parameter("p", {"TYPE": "ff", "RANGE": [{"MIN": 0, "MAX": 1}]})
        full = compile_parameter(
            "p",
            {"TYPE": "ff", "VALUE": [5, -5], "RANGE": [{"MIN": 0, "MAX": 1}, {"MIN": -1, "MAX": 1}]},
        )

        self.assertIsNone(partial.minimum)
        self.assertEqual(full.minimum, [0.0, -1.0])
        self.assertEqual(full.value, [1.0, -1.0])

    def test_string_with_vals_becomes_enum(self):
        param = compile_parameter(
            "mode", {"TYPE": "s", "VALUE": "b", "RANGE": [{"VALS": ["a", "b", "c"]}]}
        )

        self.assertIs(param.kind, ParameterKind.ENUM)
        self.assertEqual(param.option_values(), ["a", "b", "c"])
        self.assertEqual(param.value, "b")

    def test_enum_with_unknown_value_selects_first_option(self):
        param = compile_parameter("mode", {"TYPE": "s", "VALUE": "zz", "RANGE": [{"VALS": ["a", "b"]}]})
        self.assertEqual(param.value, "a")

    def test_access_one_is_read_only(self):
        self.assertTrue(compile_parameter("meter", {"TYPE": "f", "ACCESS": 1}).read_only)
        self.assertFalse(compile_parameter("fader", {"TYPE": "f", "ACCESS": 3}).read_only)
        self.assertFalse(compile_parameter("knob", {"TYPE": "f"}).read_only)

    def test_trigger_has_no_value(self):
        param = compile_parameter("go", {"TYPE": "N"})

        self.assertTrue(param.is_trigger)
        self.assertIsNone(param.value)
        self.assertIs(param.tag, TypeTag.NIL)

    def test_bad_value_raises(self):
        with self.assertRaises(TypeMappingError):
            compile_parameter("n", {"TYPE": "i", "VALUE": "loud"})


if __name__ == "__main__":
    unittest.main()
