from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from propbind.core.paths import Path, format_path


class ValueSource(str, Enum):
    LITERAL = "literal"
    BINDING = "binding"
    DEFAULT = "default"


@dataclass(frozen=True)
class Literal:
    """A fixed value authored in the editor."""

    value: Any


@dataclass(frozen=True)
class PathRef:
    """A binding to a location in the external data graph."""

    path: Path

    def __str__(self) -> str:
        return format_path(self.path)


BindingExpression = Union[Literal, PathRef]


@dataclass(frozen=True)
class ResolvedValue:
    """Concrete runtime value of one instance property.

    Derived cache; recomputed by the resolution engine whenever its binding,
    the bound data or the component schema changes.
    """

    property_name: str
    value: Any
    source: ValueSource
    valid_as_of: int                    # Engine logical clock at resolution time


@dataclass(frozen=True)
class PropertyKey:
    instance_id: str
    property_name: str

    def __str__(self) -> str:
        return f"{self.instance_id}.{self.property_name}"
