from __future__ import annotations

import itertools
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from propbind.bindings.store import BindingExpressionStore
from propbind.coercion.registry import coerce
from propbind.core.contracts import (
    BindingExpression,
    Literal,
    PathRef,
    PropertyKey,
    ResolvedValue,
    ValueSource,
)
from propbind.core.data_graph import DataGraph
from propbind.core.events import publish_event
from propbind.core.exceptions import (
    CoercionError,
    FallbackPolicy,
    FallbackReporter,
    ResolutionError,
    UnknownProperty,
    UnresolvedPath,
)
from propbind.core.logger import get_logger, instance_context
from propbind.core.paths import Path, format_path
from propbind.engine.dispatcher import ReactivityDispatcher
from propbind.models.component_schema import PropertyDescriptor
from propbind.schema.registry import SchemaRegistry

logger = get_logger(__name__)

OnChange = Callable[[ResolvedValue], None]


class PropertyState(str, Enum):
    UNCOMPUTED = "uncomputed"
    RESOLVED = "resolved"


class Subscription:
    """Handle for a resolved-value subscription; `close()` tears it down."""

    def __init__(self, engine: "ResolutionEngine", key: PropertyKey, on_change: OnChange) -> None:
        self._engine = engine
        self.key = key
        self.on_change = on_change
        self.active = True

    def close(self) -> None:
        if self.active:
            self.active = False
            self._engine._unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):  # type: ignore
        self.close()
        return False

    def __repr__(self) -> str:
        return f"Subscription({self.key}, active={self.active})"


class ResolutionEngine:
    """
    Produces and maintains the runtime value of every instance property.

    Per property, in order:
      1. read the current binding expression
      2. Literal(v): coerce v                 -> source=literal
      3. PathRef(p): look up p, coerce value  -> source=binding
      4. on coercion failure or missing path  -> registered default, source=default

    Values are cached until invalidated by a binding change, a data change
    on a tracked path, or a re-registration of the component type.
    Subscribed properties are re-resolved eagerly on invalidation; the rest
    are recomputed on the next `resolve`.

    Example:
        >>> engine = ResolutionEngine(registry, store, graph, dispatcher)
        >>> engine.resolve("x1", "donutColor")
        ResolvedValue(property_name='donutColor', value='#00AAFF', source=<ValueSource.BINDING: 'binding'>, valid_as_of=1)
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: BindingExpressionStore,
        graph: DataGraph,
        dispatcher: Optional[ReactivityDispatcher] = None,
        *,
        fallback_policy: FallbackPolicy = FallbackPolicy.WARN,
    ) -> None:
        self._registry = registry
        self._store = store
        self._graph = graph
        self._dispatcher = dispatcher or ReactivityDispatcher()
        self._reporter = FallbackReporter(policy=fallback_policy, logger=logger)
        self.fallback_policy = fallback_policy

        self._resolved: Dict[PropertyKey, ResolvedValue] = {}
        self._issues: Dict[PropertyKey, Optional[ResolutionError]] = {}
        self._counts: Dict[PropertyKey, int] = {}
        self._subscribers: Dict[PropertyKey, List[Subscription]] = {}
        self._clock = itertools.count(1)
        self._clock_lock = threading.Lock()
        self._lock = threading.RLock()

        self._dispatcher.set_handler(self._on_data_changed)
        self._store.add_listener(self._on_binding_changed)
        self._registry.add_listener(self._on_schema_registered)
        self._graph.add_listener(self._dispatcher.notify)

    @property
    def dispatcher(self) -> ReactivityDispatcher:
        return self._dispatcher

    # --- consumer API ---------------------------------------------------------

    def resolve(self, instance_id: str, property_name: str) -> ResolvedValue:
        key = PropertyKey(instance_id, property_name)
        self._store.get(instance_id, property_name)
        with self._store.lock_for(instance_id, property_name):
            cached = self._resolved.get(key)
            if cached is not None:
                return cached
            return self._compute(key)

    def resolve_all(self, instance_id: str) -> Dict[str, ResolvedValue]:
        return {name: self.resolve(instance_id, name) for name in self._store.property_names(instance_id)}

    def subscribe(
        self,
        instance_id: str,
        property_name: str,
        on_change: OnChange,
        *,
        emit_current: bool = True,
    ) -> Subscription:
        """Deliver every new ResolvedValue of the property to `on_change`.

        The property is resolved (and its binding tracked) immediately; with
        `emit_current` the current value is delivered before returning.
        """
        key = PropertyKey(instance_id, property_name)
        self._store.get(instance_id, property_name)
        with self._store.lock_for(instance_id, property_name):
            sub = Subscription(self, key, on_change)
            with self._lock:
                self._subscribers.setdefault(key, []).append(sub)
            current = self.resolve(instance_id, property_name)
            if emit_current:
                self._deliver(sub, current)
        return sub

    def invalidate(self, instance_id: str, property_name: str, *, reason: str = "manual") -> None:
        self._store.get(instance_id, property_name)
        self._invalidate(PropertyKey(instance_id, property_name), reason)

    def state(self, instance_id: str, property_name: str) -> PropertyState:
        if PropertyKey(instance_id, property_name) in self._resolved:
            return PropertyState.RESOLVED
        return PropertyState.UNCOMPUTED

    def last_issue(self, instance_id: str, property_name: str) -> Optional[ResolutionError]:
        """Reason the last resolution fell back to the default, if it did."""
        return self._issues.get(PropertyKey(instance_id, property_name))

    def resolution_count(self, instance_id: str, property_name: str) -> int:
        return self._counts.get(PropertyKey(instance_id, property_name), 0)

    def subscriptions(self, instance_id: str, property_name: str) -> Tuple[Subscription, ...]:
        with self._lock:
            return tuple(self._subscribers.get(PropertyKey(instance_id, property_name), ()))

    def forget_instance(self, instance_id: str) -> None:
        """Drop all cached state, tracking and subscriptions of an instance."""
        self._dispatcher.untrack_instance(instance_id)
        with self._lock:
            keys = {
                k
                for k in itertools.chain(self._resolved, self._subscribers, self._issues, self._counts)
                if k.instance_id == instance_id
            }
            for key in keys:
                self._drop(key)

    # --- resolution -----------------------------------------------------------

    def _compute(self, key: PropertyKey) -> ResolvedValue:
        with instance_context(key.instance_id):
            descriptor = self._descriptor(key)
            expression = self._store.get(key.instance_id, key.property_name)
            value, source, issue = self._evaluate(key, descriptor, expression)

            if issue is not None:
                value, source = descriptor.default_value, ValueSource.DEFAULT
                self._report(key, expression, issue)

            resolved = ResolvedValue(
                property_name=key.property_name,
                value=value,
                source=source,
                valid_as_of=self._tick(),
            )
            with self._lock:
                self._resolved[key] = resolved
                self._issues[key] = issue
                self._counts[key] = self._counts.get(key, 0) + 1
            logger.debug(f"Resolved {key} -> {value!r} ({source.value}, v{resolved.valid_as_of})")
            return resolved

    def _evaluate(
        self,
        key: PropertyKey,
        descriptor: PropertyDescriptor,
        expression: BindingExpression,
    ) -> Tuple[Any, ValueSource, Optional[ResolutionError]]:
        if isinstance(expression, Literal):
            self._dispatcher.untrack(key.instance_id, key.property_name)
            try:
                return self._coerce(descriptor, expression.value), ValueSource.LITERAL, None
            except CoercionError as exc:
                return None, ValueSource.DEFAULT, exc

        if isinstance(expression, PathRef):
            self._dispatcher.track(key.instance_id, key.property_name, expression.path)
            try:
                raw = self._graph.lookup(expression.path)
                return self._coerce(descriptor, raw), ValueSource.BINDING, None
            except (UnresolvedPath, CoercionError) as exc:
                return None, ValueSource.DEFAULT, exc

        raise TypeError(f"Unsupported binding expression: {expression!r}")

    @staticmethod
    def _coerce(descriptor: PropertyDescriptor, raw: Any) -> Any:
        return coerce(
            raw,
            descriptor.declared_type,
            property_name=descriptor.name,
            options=descriptor.options,
        )

    def _report(self, key: PropertyKey, expression: BindingExpression, issue: ResolutionError) -> None:
        self._reporter.report(issue, instance_id=key.instance_id, property_name=key.property_name)
        if self.fallback_policy == FallbackPolicy.ALLOW:
            return
        details: Dict[str, Any] = {"expression": type(expression).__name__}
        if isinstance(expression, PathRef):
            details["path"] = format_path(expression.path)
        publish_event(
            stage="resolution.fallback",
            status="fallback",
            instance_id=key.instance_id,
            property_name=key.property_name,
            component_type=self._store.component_type_of(key.instance_id),
            details=details,
            error={"code": type(issue).__name__, "message": str(issue)},
        )

    def _descriptor(self, key: PropertyKey) -> PropertyDescriptor:
        component_type = self._store.component_type_of(key.instance_id)
        descriptor = self._registry.descriptor(component_type, key.property_name)
        if descriptor is None:
            raise UnknownProperty(key.instance_id, key.property_name, component_type)
        return descriptor

    def _tick(self) -> int:
        with self._clock_lock:
            return next(self._clock)

    # --- invalidation ---------------------------------------------------------

    def _invalidate(self, key: PropertyKey, reason: str) -> None:
        with self._store.lock_for(key.instance_id, key.property_name):
            with self._lock:
                self._resolved.pop(key, None)
                subscribers = list(self._subscribers.get(key, ()))
            logger.debug(f"Invalidated {key} ({reason})")
            if not subscribers:
                return
            resolved = self._compute(key)
            for sub in subscribers:
                if sub.active:
                    self._deliver(sub, resolved)

    def _on_binding_changed(self, key: PropertyKey, expression: Optional[BindingExpression], version: int) -> None:
        # Runs under the property lock, together with the store mutation.
        self._dispatcher.untrack(key.instance_id, key.property_name)
        if expression is None:
            with self._lock:
                self._drop(key)
            return
        self._invalidate(key, f"binding v{version}")

    def _on_data_changed(self, key: PropertyKey, changed: Path) -> None:
        with self._store.lock_for(key.instance_id, key.property_name):
            # The binding may have moved between lookup and lock acquisition.
            if not self._dispatcher.is_affected(key, changed):
                return
            self._invalidate(key, f"data change at {format_path(changed)}")

    def _on_schema_registered(self, component_type: str, descriptors: Tuple[PropertyDescriptor, ...], replaced: bool) -> None:
        if not replaced:
            return
        self._store.reconcile(component_type)
        instances = self._store.instances_of(component_type)
        for instance_id in instances:
            for name in self._store.property_names(instance_id):
                self._invalidate(PropertyKey(instance_id, name), "schema re-registration")
        publish_event(
            stage="schema.invalidate",
            status="completed",
            component_type=component_type,
            details={"instances": len(instances)},
        )

    # --- subscribers ----------------------------------------------------------

    def _deliver(self, sub: Subscription, value: ResolvedValue) -> None:
        try:
            sub.on_change(value)
        except Exception:
            logger.exception(f"Subscriber of {sub.key} failed")

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.key)
            if subs and sub in subs:
                subs.remove(sub)
                if not subs:
                    del self._subscribers[sub.key]

    def _drop(self, key: PropertyKey) -> None:
        self._resolved.pop(key, None)
        self._issues.pop(key, None)
        self._counts.pop(key, None)
        for sub in self._subscribers.pop(key, []):
            sub.active = False
