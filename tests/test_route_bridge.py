import gc
import unittest

from pythonosc.osc_message import OscMessage

from OSCQuery_Mirror.config import MirrorConfig
from OSCQuery_Mirror.engine import MirrorEngine
from OSCQuery_Mirror.reconciler import reconcile


_NAMESPACE = {
    "CONTENTS": {
        "vol": {"TYPE": "f", "VALUE": 0.5, "RANGE": [{"MIN": 0, "MAX": 1}]},
        "pos": {"TYPE": "ff", "VALUE": [0, 0]},
        "go": {"TYPE": "I"},
    }
}


class _FakeTransport:
    def __init__(self):
        self.sent = []

    def sendto(self, data, target):
        self.sent.append(OscMessage(data))

    def close(self):
        pass


class _ExternalValue:
    """Stand-in for a host-side controllable with change callbacks."""

    def __init__(self, value):
        self.value = value
        self.listeners = []

    def add_value_listener(self, callback):
        self.listeners.append(callback)

    def remove_value_listener(self, callback):
        self.listeners.remove(callback)

    def set(self, value):
        self.value = value
        for callback in list(self.listeners):
            callback(self)


class _PlainValue:
    def __init__(self, value):
        self.value = value


class RouteBridgeTests(unittest.TestCase):
    def setUp(self):
        self.transport = _FakeTransport()
        self.engine = MirrorEngine(MirrorConfig(), session=object(), transport=self.transport)
        reconcile(self.engine.tree, _NAMESPACE, preserve_values=False)

    def tearDown(self):
        self.engine.routes.clear()
        self.engine.sync_channel.close()

    def test_scalar_source_drives_scalar_parameter(self):
        source = _ExternalValue(0.0)
        self.engine.bind_route(source, "/vol")

        source.set(0.25)

        self.assertEqual(self.engine.get_value("/vol"), 0.25)
        self.assertEqual(self.transport.sent[-1].address, "/vol")
        self.assertEqual(list(self.transport.sent[-1].params), [0.25])

    def test_array_source_drives_point_parameter(self):
        source = _ExternalValue([0.0, 0.0])
        self.engine.bind_route(source, "pos")

        source.set((1.5, -2.0))

        self.assertEqual(self.engine.get_value("/pos"), [1.5, -2.0])

    def test_shape_mismatch_is_not_routed(self):
        scalar = _ExternalValue(0.0)
        array = _ExternalValue([0.0, 0.0])
        self.engine.bind_route(scalar, "/pos")
        self.engine.bind_route(array, "/vol")

        scalar.set(3.0)
        array.set([0.1, 0.2])

        self.assertEqual(self.engine.get_value("/pos"), [0.0, 0.0])
        self.assertEqual(self.engine.get_value("/vol"), 0.5)
        self.assertEqual(self.transport.sent, [])

    def test_trigger_and_missing_targets_are_skipped(self):
        self.assertFalse(self.engine.routes.route_value(1, "/go"))
        self.assertFalse(self.engine.routes.route_value(1, "/missing"))

    def test_plain_source_is_routed_on_demand(self):
        source = _PlainValue(0.75)
        binding = self.engine.bind_route(source, "/vol")

        self.assertTrue(binding.handle_source_value())
        self.assertEqual(self.engine.get_value("/vol"), 0.75)

    def test_destroyed_source_clears_binding(self):
        source = _ExternalValue(0.0)
        binding = self.engine.bind_route(source, "/vol")
        self.assertEqual(len(self.engine.routes.bindings), 1)

        del source
        gc.collect()

        self.assertFalse(binding.is_bound)
        self.assertEqual(self.engine.routes.bindings, [])
        self.assertFalse(binding.handle_source_value())

    def test_unbind_removes_listener(self):
        source = _ExternalValue(0.0)
        binding = self.engine.bind_route(source, "/vol")

        binding.unbind()
        source.set(0.9)

        self.assertEqual(source.listeners, [])
        self.assertEqual(self.engine.get_value("/vol"), 0.5)
        self.assertEqual(self.engine.routes.bindings, [])


if __name__ == "__main__":
    unittest.main()
