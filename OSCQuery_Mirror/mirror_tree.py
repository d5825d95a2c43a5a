"""Typed local replica of the remote's parameter tree."""

from __future__ import annotations

import copy
import enum
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

from OSCQuery_Mirror.type_codec import (
    ParameterKind,
    TypeMappingError,
    TypeTag,
    describe_value,
    tag_arity,
    tag_kind,
    tag_spec,
)


logger = logging.getLogger("OSCQueryMirror.tree")


class ChangeOrigin(enum.Enum):
    # Host-side edit: goes out to the remote.
    LOCAL = "local"
    # Received from the remote: never echoed back.
    REMOTE = "remote"


def normalize_address(address: str) -> str:
    parts = [part for part in str(address or "").split("/") if part]
    return "/" + "/".join(parts)


class MirrorNode:
    def __init__(self, key: str, label: Optional[str] = None):
        self.key = key
        self.label = label or key
        self.parent: Optional["MirrorGroup"] = None

    @property
    def address(self) -> str:
        """Slash-joined chain of stable keys; labels never take part."""
        parts: List[str] = []
        node: Optional[MirrorNode] = self
        while node is not None and node.parent is not None:
            parts.append(node.key)
            node = node.parent
        return "/" + "/".join(reversed(parts))


class MirrorParameter(MirrorNode):
    def __init__(
        self,
        key: str,
        tag: TypeTag,
        value: Any = None,
        label: Optional[str] = None,
        minimum: Optional[List[Any]] = None,
        maximum: Optional[List[Any]] = None,
        options: Optional[List[Tuple[str, Any]]] = None,
        read_only: bool = False,
        description: str = "",
    ):
        super().__init__(key, label)
        self.tag = tag
        self.kind = tag_kind(tag)
        self.arity = tag_arity(tag)
        self.minimum = minimum
        self.maximum = maximum
        self.options = options
        self.read_only = read_only
        self.description = description
        self.value = value

    @property
    def is_trigger(self) -> bool:
        return self.kind is ParameterKind.TRIGGER

    @property
    def is_array(self) -> bool:
        return isinstance(self.value, list)

    def option_values(self) -> List[Any]:
        return [value for _label, value in (self.options or [])]

    def normalize(self, value: Any) -> Any:
        """
        Validate ``value`` against this parameter's kind and range.

        Numbers are clamped into the range, enum values must be one of the
        options, array values must carry exactly the parameter's arity.
        """
        if self.kind is ParameterKind.TRIGGER:
            return None
        if self.kind is ParameterKind.BOOL:
            return bool(value)
        if self.kind is ParameterKind.INT:
            return int(self._clamp(int(value), 0))
        if self.kind is ParameterKind.FLOAT:
            return float(self._clamp(float(value), 0))
        if self.kind is ParameterKind.STRING:
            return "" if value is None else str(value)
        if self.kind is ParameterKind.ENUM:
            for _label, option_value in self.options or []:
                if option_value == value or str(option_value) == str(value):
                    return option_value
            raise TypeMappingError("unknown_option", f"{value!r} is not an option of {self.address}")

        if not isinstance(value, (list, tuple)) or len(value) != self.arity:
            raise TypeMappingError(
                "shape_mismatch", f"{self.address} expects {self.arity} components, got {value!r}"
            )
        if self.kind is ParameterKind.COLOR:
            return [max(0.0, min(1.0, float(channel))) for channel in value]
        cast = int if tag_spec(self.tag).component in ("i", "h") else float
        return [cast(self._clamp(cast(component), index)) for index, component in enumerate(value)]

    def _clamp(self, value: Any, index: int) -> Any:
        if self.minimum is not None and index < len(self.minimum) and value < self.minimum[index]:
            return self.minimum[index]
        if self.maximum is not None and index < len(self.maximum) and value > self.maximum[index]:
            return self.maximum[index]
        return value

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "address": self.address,
            "label": self.label,
            "type": self.tag.value,
            "kind": self.kind.value,
            "value": describe_value(self.tag, self.value),
            "read_only": self.read_only,
        }
        if self.minimum is not None:
            payload["min"] = list(self.minimum)
            payload["max"] = list(self.maximum or [])
        if self.options is not None:
            payload["options"] = [value for _label, value in self.options]
        return payload


class MirrorGroup(MirrorNode):
    def __init__(self, key: str, label: Optional[str] = None):
        super().__init__(key, label)
        self.children: Dict[str, MirrorNode] = {}
        self.listen_enabled = False
        self.expanded = False

    def add_child(self, node: MirrorNode) -> MirrorNode:
        if node.key in self.children:
            raise ValueError(f"Duplicate key {node.key!r} in {self.address}")
        node.parent = self
        self.children[node.key] = node
        return node

    def find(self, address: str) -> Optional[MirrorNode]:
        node: MirrorNode = self
        for part in normalize_address(address).split("/")[1:]:
            if not part:
                continue
            if not isinstance(node, MirrorGroup):
                return None
            child = node.children.get(part)
            if child is None:
                return None
            node = child
        return node

    def iter_groups(self) -> Iterator["MirrorGroup"]:
        """Yield every descendant group, depth first, in schema order."""
        for child in self.children.values():
            if isinstance(child, MirrorGroup):
                yield child
                yield from child.iter_groups()

    def iter_parameters(self, recursive: bool = True) -> Iterator[MirrorParameter]:
        for child in self.children.values():
            if isinstance(child, MirrorParameter):
                yield child
            elif recursive and isinstance(child, MirrorGroup):
                yield from child.iter_parameters(recursive=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "label": self.label,
            "listen": self.listen_enabled,
            "expanded": self.expanded,
            "children": [child.to_dict() for child in self.children.values()],
        }


def value_state(root: MirrorGroup) -> Dict[str, Any]:
    """Address → value for every non-trigger parameter below ``root``."""
    return {
        param.address: copy.deepcopy(param.value)
        for param in root.iter_parameters()
        if not param.is_trigger
    }


def apply_value_state(root: MirrorGroup, state: Dict[str, Any]) -> int:
    """
    Write a value snapshot onto ``root`` without notifying anyone.

    Addresses that no longer exist or no longer accept the value's shape are
    skipped; the tree's own structure always wins.
    """
    applied = 0
    for address, value in (state or {}).items():
        node = root.find(address)
        if not isinstance(node, MirrorParameter) or node.is_trigger:
            continue
        try:
            node.value = node.normalize(value)
            applied += 1
        except (TypeMappingError, TypeError, ValueError, OverflowError):
            logger.debug(f"Skipping stored value for {address}: shape changed")
    return applied


class MirrorTreeListener:
    """Receives every change that goes through :class:`MirrorTree`."""

    def parameter_changed(self, param: MirrorParameter, origin: ChangeOrigin) -> None:
        pass

    def listen_changed(self, group: MirrorGroup) -> None:
        pass

    def structure_replaced(self, root: MirrorGroup) -> None:
        pass


class MirrorTree:
    """
    Owner of the current mirror root.

    Every mutation, from network threads, the host or routes, goes through
    the same re-entrant lock, and listeners are notified while it is held so
    they observe changes in the order they were applied. A reconcile hands
    over a completely built root that replaces the old one in one assignment.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._root = MirrorGroup("", label="Values")
        self._listeners: List[MirrorTreeListener] = []

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def root(self) -> MirrorGroup:
        return self._root

    def add_listener(self, listener: MirrorTreeListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: MirrorTreeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def replace_root(self, root: MirrorGroup) -> MirrorGroup:
        with self._lock:
            previous = self._root
            self._root = root
            for listener in list(self._listeners):
                self._notify(listener.structure_replaced, root)
            return previous

    def find(self, address: str) -> Optional[MirrorNode]:
        with self._lock:
            return self._root.find(address)

    def get_parameter(self, address: str) -> Optional[MirrorParameter]:
        node = self.find(address)
        return node if isinstance(node, MirrorParameter) else None

    def get_group(self, address: str) -> Optional[MirrorGroup]:
        node = self.find(address)
        return node if isinstance(node, MirrorGroup) else None

    def set_value(self, target: Any, value: Any, origin: ChangeOrigin = ChangeOrigin.LOCAL) -> bool:
        """
        Set a parameter's value and notify listeners if it changed.

        ``target`` is an address or a parameter of the current tree. Triggers
        fire regardless of ``value``. Local edits of read-only parameters are
        refused.
        """
        with self._lock:
            param = self._resolve(target)
            if param is None:
                logger.debug(f"No parameter at {target!r}")
                return False
            if origin is ChangeOrigin.LOCAL and param.read_only:
                logger.warning(f"Parameter {param.address} is read-only, ignoring local change")
                return False
            if param.is_trigger:
                self._fire(param, origin)
                return True
            try:
                normalized = param.normalize(value)
            except (TypeMappingError, TypeError, ValueError, OverflowError) as exc:
                logger.warning(f"Rejected value {value!r} for {param.address}: {str(exc)}")
                return False
            if normalized == param.value:
                return False
            param.value = normalized
            self._fire(param, origin)
            return True

    def trigger(self, target: Any, origin: ChangeOrigin = ChangeOrigin.LOCAL) -> bool:
        with self._lock:
            param = self._resolve(target)
            if param is None or not param.is_trigger:
                logger.debug(f"No trigger at {target!r}")
                return False
            self._fire(param, origin)
            return True

    def set_listen(self, target: Any, enabled: bool) -> bool:
        with self._lock:
            group = target if isinstance(target, MirrorGroup) else self.get_group(target)
            if group is None or group is self._root:
                logger.debug(f"No group at {target!r}")
                return False
            enabled = bool(enabled)
            if group.listen_enabled == enabled:
                return False
            group.listen_enabled = enabled
            for listener in list(self._listeners):
                self._notify(listener.listen_changed, group)
            return True

    def value_state(self) -> Dict[str, Any]:
        with self._lock:
            return value_state(self._root)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return self._root.to_dict()

    def _resolve(self, target: Any) -> Optional[MirrorParameter]:
        if isinstance(target, MirrorParameter):
            # Stale references from a replaced tree resolve by address.
            if target.parent is None:
                return None
            target = target.address
        node = self._root.find(target)
        return node if isinstance(node, MirrorParameter) else None

    def _fire(self, param: MirrorParameter, origin: ChangeOrigin) -> None:
        for listener in list(self._listeners):
            self._notify(listener.parameter_changed, param, origin)

    @staticmethod
    def _notify(callback, *args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Tree listener failed: {str(e)}")
