"""OSCQuery type tags and the value encoding shared by schemas and OSC messages."""

from __future__ import annotations

import enum
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from pythonosc.osc_message import OscMessage
from pythonosc.osc_message_builder import BuildError, OscMessageBuilder


INT32_MIN = -2147483648
INT32_MAX = 2147483647

_BLACK = [0.0, 0.0, 0.0, 1.0]


class TypeMappingError(Exception):
    """Structured error raised when a value does not fit a type tag."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ParameterKind(enum.Enum):
    TRIGGER = "trigger"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    ENUM = "enum"
    POINT2D = "point2d"
    POINT3D = "point3d"
    COLOR = "color"


class TypeTag(enum.Enum):
    NIL = "N"
    IMPULSE = "I"
    INT = "i"
    INT64 = "h"
    FLOAT = "f"
    DOUBLE = "d"
    INT_2 = "ii"
    FLOAT_2 = "ff"
    INT64_2 = "hh"
    DOUBLE_2 = "dd"
    INT_3 = "iii"
    FLOAT_3 = "fff"
    INT64_3 = "hhh"
    DOUBLE_3 = "ddd"
    FLOAT_COLOR = "ffff"
    DOUBLE_COLOR = "dddd"
    INT_COLOR = "iiii"
    INT64_COLOR = "hhhh"
    STRING = "s"
    SYMBOL = "S"
    CHAR = "c"
    PACKED_COLOR = "r"
    TRUE = "T"
    FALSE = "F"

    @classmethod
    def parse(cls, raw: Any) -> "TypeTag":
        try:
            return cls(str(raw))
        except ValueError:
            raise TypeMappingError("unknown_type_tag", f"Unknown OSCQuery type tag: {raw!r}")


class TagSpec(NamedTuple):
    kind: ParameterKind
    arity: int
    # OSC argument type used for each component on the wire ("" for triggers).
    component: str


TAG_SPECS: Dict[TypeTag, TagSpec] = {
    TypeTag.NIL: TagSpec(ParameterKind.TRIGGER, 1, ""),
    TypeTag.IMPULSE: TagSpec(ParameterKind.TRIGGER, 1, ""),
    TypeTag.INT: TagSpec(ParameterKind.INT, 1, "i"),
    TypeTag.INT64: TagSpec(ParameterKind.INT, 1, "h"),
    TypeTag.FLOAT: TagSpec(ParameterKind.FLOAT, 1, "f"),
    TypeTag.DOUBLE: TagSpec(ParameterKind.FLOAT, 1, "d"),
    TypeTag.INT_2: TagSpec(ParameterKind.POINT2D, 2, "i"),
    TypeTag.FLOAT_2: TagSpec(ParameterKind.POINT2D, 2, "f"),
    TypeTag.INT64_2: TagSpec(ParameterKind.POINT2D, 2, "h"),
    TypeTag.DOUBLE_2: TagSpec(ParameterKind.POINT2D, 2, "d"),
    TypeTag.INT_3: TagSpec(ParameterKind.POINT3D, 3, "i"),
    TypeTag.FLOAT_3: TagSpec(ParameterKind.POINT3D, 3, "f"),
    TypeTag.INT64_3: TagSpec(ParameterKind.POINT3D, 3, "h"),
    TypeTag.DOUBLE_3: TagSpec(ParameterKind.POINT3D, 3, "d"),
    TypeTag.FLOAT_COLOR: TagSpec(ParameterKind.COLOR, 4, "f"),
    TypeTag.DOUBLE_COLOR: TagSpec(ParameterKind.COLOR, 4, "d"),
    TypeTag.INT_COLOR: TagSpec(ParameterKind.COLOR, 4, "i"),
    TypeTag.INT64_COLOR: TagSpec(ParameterKind.COLOR, 4, "h"),
    TypeTag.STRING: TagSpec(ParameterKind.STRING, 1, "s"),
    TypeTag.SYMBOL: TagSpec(ParameterKind.STRING, 1, "s"),
    TypeTag.CHAR: TagSpec(ParameterKind.STRING, 1, "s"),
    TypeTag.PACKED_COLOR: TagSpec(ParameterKind.COLOR, 4, "r"),
    TypeTag.TRUE: TagSpec(ParameterKind.BOOL, 1, "T"),
    TypeTag.FALSE: TagSpec(ParameterKind.BOOL, 1, "F"),
}

_MISSING_TAGS = [tag for tag in TypeTag if tag not in TAG_SPECS]
if _MISSING_TAGS:
    raise RuntimeError(f"Type tags without a mapping: {_MISSING_TAGS}")


class EncodedValue(NamedTuple):
    type_tags: str
    args: List[Any]


def tag_spec(tag: TypeTag) -> TagSpec:
    return TAG_SPECS[tag]


def tag_kind(tag: TypeTag) -> ParameterKind:
    return TAG_SPECS[tag].kind


def tag_arity(tag: TypeTag) -> int:
    return TAG_SPECS[tag].arity


def _is_int_component(component: str) -> bool:
    return component in ("i", "h")


def _as_list(raw: Any) -> List[Any]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    return [raw]


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(float(value.strip()))
    return int(value)


def _to_float(value: Any) -> float:
    if isinstance(value, str):
        return float(value.strip())
    return float(value)


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "yes", "on")
    return bool(value)


def _component(component: str, value: Any) -> Any:
    if _is_int_component(component):
        return _to_int(value)
    return _to_float(value)


def parse_packed_color(packed: Any) -> List[float]:
    """
    Decode a packed color into RGBA floats.

    The packed value is read as a 32-bit ARGB word (hex string like
    ``"#FF112233"`` or an OSC rgba int). The remote lays its channels out
    reversed relative to that reading, so the four channels are reordered
    before they reach the parameter model: the ARGB word's alpha byte is red,
    red is green, green is blue and blue is alpha.
    """
    if isinstance(packed, bool):
        raise TypeMappingError("bad_packed_color", f"Invalid packed color: {packed!r}")
    if isinstance(packed, int):
        word = packed & 0xFFFFFFFF
    else:
        digits = "".join(ch for ch in str(packed) if ch in "0123456789abcdefABCDEF")
        if not digits:
            raise TypeMappingError("bad_packed_color", f"Invalid packed color: {packed!r}")
        word = int(digits[-8:], 16)

    alpha = (word >> 24) & 0xFF
    red = (word >> 16) & 0xFF
    green = (word >> 8) & 0xFF
    blue = word & 0xFF
    reordered = (alpha, red, green, blue)
    return [channel / 255.0 for channel in reordered]


def pack_color(rgba: Sequence[float]) -> int:
    """Pack RGBA floats into the remote's 0xRRGGBBAA word."""
    word = 0
    for channel in rgba[:4]:
        byte = int(round(max(0.0, min(1.0, float(channel))) * 255.0))
        word = (word << 8) | byte
    return word


def color_to_hex(rgba: Sequence[float]) -> str:
    return "#{0:08X}".format(pack_color(rgba))


def _decode_color(spec: TagSpec, values: List[Any]) -> List[float]:
    if len(values) == 1 and isinstance(values[0], (str, int)) and not isinstance(values[0], bool):
        if spec.component == "r" or isinstance(values[0], str):
            return parse_packed_color(values[0])
    if len(values) < 4:
        return list(_BLACK)
    if _is_int_component(spec.component):
        return [_to_int(v) / 255.0 for v in values[:4]]
    return [_to_float(v) for v in values[:4]]


def decode(tag: TypeTag, raw: Any) -> Any:
    """
    Decode a schema VALUE or a list of OSC arguments into the typed value
    held by a mirror parameter.

    Missing values fall back to the kind's default (0, empty string, zero
    point, opaque black). Triggers carry no value.
    """
    spec = TAG_SPECS[tag]
    values = _as_list(raw)

    try:
        if spec.kind is ParameterKind.TRIGGER:
            return None
        if spec.kind is ParameterKind.BOOL:
            if not values or values[0] is None:
                return tag is TypeTag.TRUE
            return _to_bool(values[0])
        if spec.kind is ParameterKind.INT:
            return _to_int(values[0]) if values and values[0] is not None else 0
        if spec.kind is ParameterKind.FLOAT:
            return _to_float(values[0]) if values and values[0] is not None else 0.0
        if spec.kind in (ParameterKind.STRING, ParameterKind.ENUM):
            return str(values[0]) if values and values[0] is not None else ""
        if spec.kind in (ParameterKind.POINT2D, ParameterKind.POINT3D):
            if len(values) < spec.arity:
                return [_component(spec.component, 0)] * spec.arity
            return [_component(spec.component, v) for v in values[: spec.arity]]
        if spec.kind is ParameterKind.COLOR:
            return _decode_color(spec, values)
    except (TypeError, ValueError, OverflowError) as exc:
        raise TypeMappingError("bad_value", f"Cannot decode {raw!r} as {tag.value}: {exc}")

    raise TypeMappingError("unmapped_kind", f"No decoder for {spec.kind}")


def encode(tag: TypeTag, value: Any) -> EncodedValue:
    """Encode a typed value into OSC type tags and arguments for ``tag``."""
    spec = TAG_SPECS[tag]

    try:
        if spec.kind is ParameterKind.TRIGGER:
            return EncodedValue("", [])
        if spec.kind is ParameterKind.BOOL:
            flag = _to_bool(value)
            return EncodedValue("T" if flag else "F", [flag])
        if spec.kind is ParameterKind.INT:
            return EncodedValue(spec.component, [_to_int(value)])
        if spec.kind is ParameterKind.FLOAT:
            return EncodedValue(spec.component, [_to_float(value)])
        if spec.kind in (ParameterKind.STRING, ParameterKind.ENUM):
            return EncodedValue("s", ["" if value is None else str(value)])

        components = _as_list(value)
        if len(components) < spec.arity:
            raise TypeMappingError(
                "shape_mismatch",
                f"{tag.value} expects {spec.arity} components, got {len(components)}",
            )
        if spec.kind is ParameterKind.COLOR:
            if spec.component == "r":
                return EncodedValue("r", [pack_color(components)])
            if _is_int_component(spec.component):
                ints = [int(round(_to_float(c) * 255.0)) for c in components[:4]]
                return EncodedValue(spec.component * 4, ints)
            return EncodedValue(spec.component * 4, [_to_float(c) for c in components[:4]])

        args = [_component(spec.component, c) for c in components[: spec.arity]]
        return EncodedValue(spec.component * spec.arity, args)
    except (TypeError, ValueError, OverflowError) as exc:
        raise TypeMappingError("bad_value", f"Cannot encode {value!r} as {tag.value}: {exc}")


def coerce_inbound(tag: TypeTag, args: Sequence[Any]) -> Any:
    """Turn received OSC arguments into a value for a parameter tagged ``tag``."""
    spec = TAG_SPECS[tag]
    if spec.kind is ParameterKind.TRIGGER:
        return None
    if not args:
        raise TypeMappingError("missing_arguments", f"No arguments for {tag.value}")
    if spec.kind in (ParameterKind.POINT2D, ParameterKind.POINT3D) and len(args) < spec.arity:
        raise TypeMappingError(
            "shape_mismatch", f"{tag.value} expects {spec.arity} arguments, got {len(args)}"
        )
    if spec.kind is ParameterKind.COLOR and len(args) != 1 and len(args) < 4:
        raise TypeMappingError("shape_mismatch", f"Color expects 1 or 4 arguments, got {len(args)}")
    return decode(tag, list(args))


def value_to_argument(value: Any) -> tuple:
    """Map a free script value to an ``(osc_type, value)`` pair."""
    if isinstance(value, bool):
        return "i", 1 if value else 0
    if isinstance(value, int):
        return "i", value
    if isinstance(value, float):
        return "f", value
    if isinstance(value, str):
        return "s", value
    raise TypeMappingError("unsupported_argument", f"Cannot send {type(value).__name__} as OSC argument")


def build_message(address: str, encoded: EncodedValue) -> OscMessage:
    builder = OscMessageBuilder(address=address)
    for arg_type, arg in zip(encoded.type_tags, encoded.args):
        builder.add_arg(arg, arg_type)
    try:
        return builder.build()
    except BuildError as exc:
        raise TypeMappingError("build_failed", f"Cannot build OSC message for {address}: {exc}")


def build_script_message(address: str, arguments: Sequence[Any]) -> OscMessage:
    """Build a message from free script arguments, flattening nested lists."""
    flat: List[Any] = []
    for argument in arguments:
        if isinstance(argument, (list, tuple)):
            flat.extend(argument)
        else:
            flat.append(argument)

    type_tags = []
    args = []
    for argument in flat:
        arg_type, arg = value_to_argument(argument)
        type_tags.append(arg_type)
        args.append(arg)
    return build_message(address, EncodedValue("".join(type_tags), args))


def describe_value(tag: TypeTag, value: Any) -> Optional[Any]:
    """JSON-friendly rendering of a parameter value."""
    if TAG_SPECS[tag].kind is ParameterKind.COLOR and value is not None:
        return {"rgba": list(value), "hex": color_to_hex(value)}
    return value
