from __future__ import annotations

import re
from typing import Sequence, Tuple, Union

from propbind.core.exceptions import InvalidPath

Segment = Union[str, int]
Path = Tuple[Segment, ...]

PathLike = Union[str, Sequence[Segment]]

_INDEX = re.compile(r"0|[1-9][0-9]*")


def parse_path(value: PathLike) -> Path:
    """Normalize a data-graph path into a tuple of segments.

    - "/theme/accent" -> ("theme", "accent")
    - "/items/0/url"  -> ("items", 0, "url")
    - "/" or ""       -> () (the graph root)
    - sequences are validated and returned as a tuple

    Segments escape "/" as "~1" and "~" as "~0".
    """

    if isinstance(value, str):
        if value in ("", "/"):
            return ()
        if not value.startswith("/"):
            raise InvalidPath(f"Path must start with '/': {value!r}")
        parts = value[1:].split("/")
        if any(p == "" for p in parts):
            raise InvalidPath(f"Path contains an empty segment: {value!r}")
        return tuple(_parse_segment(p) for p in parts)

    if isinstance(value, (bytes, bytearray)):
        raise InvalidPath(f"Unsupported path type: {type(value).__name__}")

    segments = []
    for seg in value:
        if isinstance(seg, bool) or not isinstance(seg, (str, int)):
            raise InvalidPath(f"Path segments must be str or int, got {seg!r}")
        if isinstance(seg, int) and seg < 0:
            raise InvalidPath(f"Negative index segment: {seg!r}")
        if isinstance(seg, str) and seg == "":
            raise InvalidPath("Path contains an empty segment")
        segments.append(seg)
    return tuple(segments)


def _parse_segment(raw: str) -> Segment:
    if _INDEX.fullmatch(raw):
        return int(raw)
    return raw.replace("~1", "/").replace("~0", "~")


def format_path(path: Sequence[Segment]) -> str:
    if not path:
        return "/"
    return "/" + "/".join(str(s).replace("~", "~0").replace("/", "~1") for s in path)


def is_prefix(prefix: Sequence[Segment], path: Sequence[Segment]) -> bool:
    """True when `prefix` equals `path` or is one of its ancestors."""
    if len(prefix) > len(path):
        return False
    return tuple(path[: len(prefix)]) == tuple(prefix)


def ancestors(path: Sequence[Segment]) -> Tuple[Path, ...]:
    """All proper ancestors of `path`, root first."""
    return tuple(tuple(path[:i]) for i in range(len(path)))
