"""propbind.

Property binding resolution engine for visual-editor components.

Takes component property schemas plus a live data graph and produces,
maintains and updates every instance property's runtime value: literals,
data bindings, type coercion, default fallback and reactive updates.
"""

from propbind.core.contracts import Literal, PathRef, ResolvedValue, ValueSource
from propbind.runtime import EditorRuntime

__version__ = "0.1.0"

__all__ = [
    "EditorRuntime",
    "Literal",
    "PathRef",
    "ResolvedValue",
    "ValueSource",
]
