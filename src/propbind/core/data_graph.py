from __future__ import annotations

import copy
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol

from propbind.core.exceptions import UnresolvedPath
from propbind.core.paths import Path, PathLike, parse_path

ChangeListener = Callable[[Path], None]


class DataGraph(Protocol):
    """Read-only view of the host application's state, as seen by the engine."""

    def lookup(self, path: Path) -> Any:
        ...

    def add_listener(self, listener: ChangeListener) -> None:
        ...

    def remove_listener(self, listener: ChangeListener) -> None:
        ...


def lookup_path(root: Any, path: Path) -> Any:
    """Walk nested dicts/lists along `path`; raise UnresolvedPath when a segment is missing."""
    node = root
    for idx, seg in enumerate(path):
        if isinstance(node, dict):
            if seg in node:
                node = node[seg]
            elif isinstance(seg, int) and str(seg) in node:
                node = node[str(seg)]
            else:
                raise UnresolvedPath(path, missing_at=idx)
        elif isinstance(node, (list, tuple)):
            index = seg if isinstance(seg, int) else _as_index(seg)
            if index is None or index >= len(node):
                raise UnresolvedPath(path, missing_at=idx)
            node = node[index]
        else:
            raise UnresolvedPath(path, missing_at=idx)
    return node


def _as_index(seg: Any) -> Optional[int]:
    if isinstance(seg, str) and seg.isascii() and seg.isdigit():
        return int(seg)
    return None


def _dict_key(node: Dict[Any, Any], seg: Any) -> Any:
    """Map an index segment onto an existing string key ("42") of a JSON object."""
    if isinstance(seg, int) and seg not in node and str(seg) in node:
        return str(seg)
    return seg


class InMemoryDataGraph:
    """Nested dict/list data graph with change notifications.

    The host owns and mutates it; the engine only reads via `lookup` and
    receives the changed path through listeners. Listeners run after the
    mutation is applied, outside the graph lock.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._root: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.RLock()
        self._listeners: List[ChangeListener] = []

    def lookup(self, path: PathLike) -> Any:
        with self._lock:
            return lookup_path(self._root, parse_path(path))

    def get(self, path: PathLike, default: Any = None) -> Any:
        try:
            return self.lookup(path)
        except UnresolvedPath:
            return default

    def set(self, path: PathLike, value: Any) -> None:
        segments = parse_path(path)
        with self._lock:
            if not segments:
                if not isinstance(value, dict):
                    raise TypeError("The data graph root must be a dict")
                self._root = value
            else:
                parent = self._ensure_parent(segments)
                self._assign(parent, segments[-1], value)
        self._notify(segments)

    def delete(self, path: PathLike) -> None:
        segments = parse_path(path)
        if not segments:
            raise ValueError("Cannot delete the data graph root")
        with self._lock:
            try:
                parent = lookup_path(self._root, segments[:-1])
            except UnresolvedPath:
                return
            last = segments[-1]
            if isinstance(parent, dict):
                last = _dict_key(parent, last)
                if last not in parent:
                    return
                del parent[last]
                changed = segments
            elif isinstance(parent, list) and isinstance(last, int) and last < len(parent):
                shifted = last < len(parent) - 1
                del parent[last]
                # later elements shift down one index, so the whole list changed
                changed = segments[:-1] if shifted else segments
            else:
                return
        self._notify(changed)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._root)

    def add_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _ensure_parent(self, segments: Path) -> Any:
        node: Any = self._root
        for seg in segments[:-1]:
            if isinstance(node, dict):
                seg = _dict_key(node, seg)
                if seg not in node or not isinstance(node[seg], (dict, list)):
                    node[seg] = {}
                node = node[seg]
            elif isinstance(node, list) and isinstance(seg, int) and seg < len(node):
                if not isinstance(node[seg], (dict, list)):
                    node[seg] = {}
                node = node[seg]
            else:
                raise UnresolvedPath(segments)
        return node

    @staticmethod
    def _assign(parent: Any, seg: Any, value: Any) -> None:
        if isinstance(parent, dict):
            parent[_dict_key(parent, seg)] = value
        elif isinstance(parent, list) and isinstance(seg, int):
            if seg < len(parent):
                parent[seg] = value
            elif seg == len(parent):
                parent.append(value)
            else:
                raise IndexError(f"List index {seg} out of range for append")
        else:
            raise UnresolvedPath((seg,))

    def _notify(self, path: Path) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(path)
