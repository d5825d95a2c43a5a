"""Compile an OSCQuery JSON description into mirror tree nodes."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from OSCQuery_Mirror.mirror_tree import MirrorGroup, MirrorParameter
from OSCQuery_Mirror.type_codec import (
    INT32_MAX,
    INT32_MIN,
    ParameterKind,
    TypeMappingError,
    TypeTag,
    decode,
    tag_spec,
)


logger = logging.getLogger("OSCQueryMirror.schema")

_ACCESS_READ_ONLY = 1
_ACCESS_READ_WRITE = 3


def _description(data: Dict[str, Any]) -> str:
    text = data.get("DESCRIPTION")
    if text is None:
        return ""
    return str(text).strip()


def _range_entries(data: Dict[str, Any]) -> List[Any]:
    if "RANGE" not in data:
        return []
    raw = data.get("RANGE")
    if isinstance(raw, list):
        return raw
    return [raw]


def _range_bounds(entries: List[Any]) -> Tuple[List[Any], List[Any]]:
    minimum: List[Any] = []
    maximum: List[Any] = []
    for entry in entries:
        if isinstance(entry, dict):
            minimum.append(entry.get("MIN", INT32_MIN))
            maximum.append(entry.get("MAX", INT32_MAX))
        else:
            minimum.append(INT32_MIN)
            maximum.append(INT32_MAX)
    return minimum, maximum


def _cast_bounds(bounds: List[Any], component: str, default: int) -> List[Any]:
    cast = int if component in ("i", "h") else float
    result = []
    for bound in bounds:
        try:
            result.append(cast(bound))
        except (TypeError, ValueError, OverflowError):
            result.append(cast(default))
    return result


def _enum_options(entries: List[Any]) -> Optional[List[Any]]:
    if not entries or not isinstance(entries[0], dict):
        return None
    options = entries[0].get("VALS")
    if isinstance(options, list):
        return options
    return None


def compile_parameter(key: str, data: Dict[str, Any]) -> Optional[MirrorParameter]:
    """
    Build a leaf parameter from one schema node.

    Raises :class:`TypeMappingError` when the node's TYPE is unknown or its
    VALUE cannot be read with that type; the caller skips such nodes.
    """
    tag = TypeTag.parse(data.get("TYPE", ""))
    spec = tag_spec(tag)

    raw_value = data.get("VALUE")
    entries = _range_entries(data)
    minimum, maximum = _range_bounds(entries)
    label = _description(data) or key
    read_only = data.get("ACCESS", _ACCESS_READ_WRITE) == _ACCESS_READ_ONLY

    param = MirrorParameter(
        key,
        tag,
        label=label,
        read_only=read_only,
        description=_description(data),
    )

    if spec.kind in (ParameterKind.INT, ParameterKind.FLOAT):
        if not minimum:
            minimum, maximum = [INT32_MIN], [INT32_MAX]
        param.minimum = _cast_bounds(minimum[:1], spec.component, INT32_MIN)
        param.maximum = _cast_bounds(maximum[:1], spec.component, INT32_MAX)
        param.value = param.normalize(decode(tag, raw_value))
        return param

    if spec.kind in (ParameterKind.POINT2D, ParameterKind.POINT3D):
        if len(entries) >= spec.arity:
            param.minimum = _cast_bounds(minimum[: spec.arity], spec.component, INT32_MIN)
            param.maximum = _cast_bounds(maximum[: spec.arity], spec.component, INT32_MAX)
        param.value = param.normalize(decode(tag, raw_value))
        return param

    if spec.kind is ParameterKind.STRING:
        options = _enum_options(entries)
        if options is not None:
            param.kind = ParameterKind.ENUM
            param.options = [(str(option), option) for option in options]
            selected = decode(tag, raw_value)
            try:
                param.value = param.normalize(selected)
            except TypeMappingError:
                # No matching option: the first one stays selected.
                param.value = options[0] if options else None
            return param
        param.value = decode(tag, raw_value)
        return param

    param.value = decode(tag, raw_value)
    return param


def _fill_group(group: MirrorGroup, contents: Dict[str, Any]) -> None:
    for key, child in contents.items():
        if not isinstance(child, dict):
            logger.warning(f"Skipping malformed node {group.address.rstrip('/')}/{key}")
            continue

        if "CONTENTS" in child:
            subgroup = MirrorGroup(key, label=_description(child) or key)
            group.add_child(subgroup)
            nested = child.get("CONTENTS")
            if isinstance(nested, dict):
                _fill_group(subgroup, nested)
            continue

        try:
            param = compile_parameter(key, child)
        except TypeMappingError as e:
            logger.debug(f"Skipping {group.address.rstrip('/')}/{key}: {e.message}")
            continue
        if param is not None:
            group.add_child(param)


def compile_schema(schema_root: Dict[str, Any]) -> MirrorGroup:
    """
    Compile a structure response into a fresh root group.

    A root that carries ``CONTENTS`` is the usual OSCQuery shape; a bare
    mapping of key to node is accepted as the root's contents as well.
    """
    root = MirrorGroup("", label="Values")
    if not isinstance(schema_root, dict):
        logger.warning("Structure root is not an object, nothing to compile")
        return root

    if "CONTENTS" in schema_root:
        contents = schema_root.get("CONTENTS")
        if isinstance(contents, dict):
            _fill_group(root, contents)
        return root

    _fill_group(root, {key: node for key, node in schema_root.items() if isinstance(node, dict)})
    return root
