"""Built-in coercers for the type tags a component schema may declare."""

from __future__ import annotations

import math
import re
from typing import Any, Optional, Sequence

from propbind.coercion.registry import register_coercer
from propbind.core.exceptions import CoercionError

_HEX_COLOR = re.compile(r"#[0-9A-Fa-f]{6}")
_INT_LITERAL = re.compile(r"[+-]?[0-9]+")
_DECIMAL_LITERAL = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


@register_coercer("Color")
def coerce_color(raw: Any, *, property_name: str = "-", options: Optional[Sequence[str]] = None) -> str:
    if isinstance(raw, str) and _HEX_COLOR.fullmatch(raw):
        return raw.upper()
    raise CoercionError(property_name, raw, "Color", "expected a #RRGGBB hex string")


@register_coercer("Text")
def coerce_text(raw: Any, *, property_name: str = "-", options: Optional[Sequence[str]] = None) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    raise CoercionError(property_name, raw, "Text", f"expected a string, got {type(raw).__name__}")


@register_coercer("Number")
def coerce_number(raw: Any, *, property_name: str = "-", options: Optional[Sequence[str]] = None) -> Any:
    if isinstance(raw, bool):
        raise CoercionError(property_name, raw, "Number", "booleans are not numbers")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if math.isfinite(raw):
            return raw
        raise CoercionError(property_name, raw, "Number", "value is not finite")
    if isinstance(raw, str):
        text = raw.strip()
        if _INT_LITERAL.fullmatch(text):
            return int(text)
        if not _DECIMAL_LITERAL.fullmatch(text):
            raise CoercionError(property_name, raw, "Number", "not a numeric string")
        parsed = float(text)
        if math.isfinite(parsed):
            return parsed
        raise CoercionError(property_name, raw, "Number", "value is not finite")
    raise CoercionError(property_name, raw, "Number", f"unsupported type {type(raw).__name__}")


@register_coercer("Integer")
def coerce_integer(raw: Any, *, property_name: str = "-", options: Optional[Sequence[str]] = None) -> int:
    if isinstance(raw, bool):
        raise CoercionError(property_name, raw, "Integer", "booleans are not integers")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and math.isfinite(raw) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and _INT_LITERAL.fullmatch(raw.strip()):
        return int(raw.strip())
    raise CoercionError(property_name, raw, "Integer", "expected an integral value")


@register_coercer("Boolean")
def coerce_boolean(raw: Any, *, property_name: str = "-", options: Optional[Sequence[str]] = None) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        lowered = raw.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise CoercionError(property_name, raw, "Boolean", "expected a bool or 'true'/'false'")


@register_coercer("Enum")
def coerce_enum(raw: Any, *, property_name: str = "-", options: Optional[Sequence[str]] = None) -> str:
    if not options:
        raise CoercionError(property_name, raw, "Enum", "no options declared")
    if isinstance(raw, str) and raw in options:
        return raw
    raise CoercionError(property_name, raw, "Enum", f"expected one of {list(options)}")
