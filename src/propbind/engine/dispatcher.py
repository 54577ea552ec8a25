from __future__ import annotations

import threading
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from propbind.core.contracts import PropertyKey
from propbind.core.logger import get_logger
from propbind.core.paths import Path, PathLike, ancestors, format_path, is_prefix, parse_path

logger = get_logger(__name__)

# (tracked property, path that changed)
ChangeHandler = Callable[[PropertyKey, Path], None]


class PathMatchPolicy(str, Enum):
    """Which tracked bindings a change at path P reaches."""

    EXACT = "exact"            # bound path == P
    ANCESTORS = "ancestors"    # bound path == P or an ancestor of P
    OVERLAP = "overlap"        # ancestors of P, P itself, or descendants of P (default)


def path_matches(policy: PathMatchPolicy, bound: Path, changed: Path) -> bool:
    if policy == PathMatchPolicy.EXACT:
        return bound == changed
    if policy == PathMatchPolicy.ANCESTORS:
        return is_prefix(bound, changed)
    return is_prefix(bound, changed) or is_prefix(changed, bound)


class ReactivityDispatcher:
    """Maps data-graph paths to the instance properties currently bound to them.

    A binding to ``/theme`` sees a change at ``/theme/accent`` under ANCESTORS
    and OVERLAP; replacing ``/theme`` reaches a binding to ``/theme/accent``
    only under OVERLAP. Siblings (``/theme/muted``) are never notified.
    """

    def __init__(
        self,
        on_change: Optional[ChangeHandler] = None,
        *,
        policy: PathMatchPolicy = PathMatchPolicy.OVERLAP,
    ) -> None:
        self.policy = policy
        self._on_change = on_change
        self._by_path: Dict[Path, Set[PropertyKey]] = {}
        self._by_key: Dict[PropertyKey, Path] = {}
        self._lock = threading.RLock()

    def set_handler(self, on_change: ChangeHandler) -> None:
        self._on_change = on_change

    def track(self, instance_id: str, property_name: str, path: PathLike) -> None:
        key = PropertyKey(instance_id, property_name)
        segments = parse_path(path)
        with self._lock:
            previous = self._by_key.get(key)
            if previous == segments:
                return
            if previous is not None:
                self._discard(key, previous)
            self._by_key[key] = segments
            self._by_path.setdefault(segments, set()).add(key)
        logger.debug(f"Tracking {key} at {format_path(segments)}")

    def untrack(self, instance_id: str, property_name: str) -> None:
        key = PropertyKey(instance_id, property_name)
        with self._lock:
            previous = self._by_key.pop(key, None)
            if previous is None:
                return
            self._discard(key, previous)
        logger.debug(f"Untracked {key} from {format_path(previous)}")

    def untrack_instance(self, instance_id: str) -> None:
        with self._lock:
            keys = [k for k in self._by_key if k.instance_id == instance_id]
        for key in keys:
            self.untrack(key.instance_id, key.property_name)

    def tracked_path(self, instance_id: str, property_name: str) -> Optional[Path]:
        return self._by_key.get(PropertyKey(instance_id, property_name))

    def is_affected(self, key: PropertyKey, changed: Path) -> bool:
        bound = self._by_key.get(key)
        return bound is not None and path_matches(self.policy, bound, changed)

    def affected_by(self, path: PathLike) -> List[PropertyKey]:
        changed = parse_path(path)
        with self._lock:
            if self.policy == PathMatchPolicy.EXACT:
                hits = set(self._by_path.get(changed, ()))
            else:
                hits = set()
                for candidate in ancestors(changed) + (changed,):
                    hits.update(self._by_path.get(candidate, ()))
                if self.policy == PathMatchPolicy.OVERLAP:
                    for bound, keys in self._by_path.items():
                        if len(bound) > len(changed) and is_prefix(changed, bound):
                            hits.update(keys)
        return sorted(hits, key=lambda k: (k.instance_id, k.property_name))

    def notify(self, path: PathLike) -> int:
        """Data-graph change entry point; returns the number of properties notified."""
        changed = parse_path(path)
        affected = self.affected_by(changed)
        if affected:
            logger.debug(f"Change at {format_path(changed)} reaches {len(affected)} properties")
        if self._on_change is not None:
            for key in affected:
                self._on_change(key, changed)
        return len(affected)

    def __len__(self) -> int:
        return len(self._by_key)

    def _discard(self, key: PropertyKey, path: Path) -> None:
        keys = self._by_path.get(path)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            del self._by_path[path]
