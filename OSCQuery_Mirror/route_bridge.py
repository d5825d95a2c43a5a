"""Map external controllable values onto mirror tree addresses."""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Any, List, Optional

from OSCQuery_Mirror.mirror_tree import ChangeOrigin, MirrorTree, normalize_address


logger = logging.getLogger("OSCQueryMirror.routes")


def _is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


class RouteBinding:
    """
    Weak link from an external value source to one mirror address.

    The source is any object with a ``value`` attribute. When it also offers
    ``add_value_listener(callback)`` the binding registers there and routes
    every change automatically; otherwise the owner calls
    :meth:`handle_source_value` itself.
    """

    def __init__(self, bridge: "RouteBridge", source: Any, target_address: str):
        self.bridge = bridge
        self.target_address = normalize_address(target_address)
        self._source_ref: Optional[weakref.ref] = weakref.ref(source, self._source_destroyed)
        register = getattr(source, "add_value_listener", None)
        if callable(register):
            register(self.handle_source_value)

    @property
    def source(self) -> Any:
        return self._source_ref() if self._source_ref is not None else None

    @property
    def is_bound(self) -> bool:
        return self.source is not None

    def handle_source_value(self, *_args: Any) -> bool:
        source = self.source
        if source is None:
            return False
        return self.bridge.route_value(getattr(source, "value", None), self.target_address)

    def unbind(self) -> None:
        source = self.source
        if source is not None:
            unregister = getattr(source, "remove_value_listener", None)
            if callable(unregister):
                try:
                    unregister(self.handle_source_value)
                except ValueError:
                    pass
        self._source_ref = None
        self.bridge._forget(self)

    def _source_destroyed(self, _ref: weakref.ref) -> None:
        logger.debug(f"Route source for {self.target_address} was destroyed, clearing binding")
        self._source_ref = None
        self.bridge._forget(self)


class RouteBridge:
    def __init__(self, tree: MirrorTree):
        self.tree = tree
        self._bindings: List[RouteBinding] = []
        self._lock = threading.Lock()

    @property
    def bindings(self) -> List[RouteBinding]:
        with self._lock:
            return list(self._bindings)

    def bind(self, source: Any, target_address: str) -> RouteBinding:
        binding = RouteBinding(self, source, target_address)
        with self._lock:
            self._bindings.append(binding)
        return binding

    def route_value(self, value: Any, target_address: str) -> bool:
        """Copy ``value`` into the target parameter when their shapes agree."""
        param = self.tree.get_parameter(target_address)
        if param is None or param.is_trigger:
            logger.debug(f"No routable parameter at {target_address}")
            return False
        if _is_array(value) != param.is_array:
            logger.debug(f"Shape mismatch routing into {target_address}")
            return False
        return self.tree.set_value(param, list(value) if _is_array(value) else value, origin=ChangeOrigin.LOCAL)

    def clear(self) -> None:
        for binding in self.bindings:
            binding.unbind()

    def _forget(self, binding: RouteBinding) -> None:
        with self._lock:
            if binding in self._bindings:
                self._bindings.remove(binding)
