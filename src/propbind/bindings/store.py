from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from propbind.core.contracts import BindingExpression, Literal, PathRef, PropertyKey
from propbind.core.exceptions import NotBindable, UnknownInstance, UnknownProperty
from propbind.core.logger import get_logger
from propbind.core.paths import PathLike, parse_path
from propbind.models.component_schema import PropertyDescriptor
from propbind.schema.registry import SchemaRegistry

logger = get_logger(__name__)

# (key, new expression or None when the property was removed, new version)
BindingListener = Callable[[PropertyKey, Optional[BindingExpression], int], None]


@dataclass
class _Slot:
    expression: BindingExpression
    version: int = 0


@dataclass
class _Instance:
    component_type: str
    slots: Dict[str, _Slot]


class BindingExpressionStore:
    """Per component instance, the literal or binding of every property.

    Mutated only through editor actions (`set_literal`, `set_binding`) and
    schema reconciliation. Each successful mutation bumps the property's
    version and notifies listeners while the property lock is held.
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self._registry = registry
        self._instances: Dict[str, _Instance] = {}
        self._locks: Dict[PropertyKey, threading.RLock] = {}
        self._lock = threading.RLock()
        self._listeners: List[BindingListener] = []

    # --- instance lifecycle -------------------------------------------------

    def create_instance(self, instance_id: str, component_type: str) -> None:
        descriptors = self._registry.describe(component_type)
        with self._lock:
            if instance_id in self._instances:
                raise ValueError(f"Instance already exists: {instance_id!r}")
            self._instances[instance_id] = _Instance(
                component_type=component_type,
                slots={d.name: _Slot(Literal(d.default_value)) for d in descriptors},
            )
        logger.debug(f"Created instance {instance_id!r} of {component_type!r}")

    def destroy_instance(self, instance_id: str) -> None:
        """Remove the instance; listeners see every property go away (expression None)."""
        with self._lock:
            inst = self._instances.pop(instance_id, None)
            if inst is None:
                raise UnknownInstance(instance_id)
        for name, slot in inst.slots.items():
            key = PropertyKey(instance_id, name)
            with self.lock_for(instance_id, name):
                self._notify(key, None, slot.version + 1)
            with self._lock:
                self._locks.pop(key, None)
        logger.debug(f"Destroyed instance {instance_id!r}")

    def has_instance(self, instance_id: str) -> bool:
        return instance_id in self._instances

    def component_type_of(self, instance_id: str) -> str:
        return self._instance(instance_id).component_type

    def instances_of(self, component_type: str) -> Tuple[str, ...]:
        with self._lock:
            return tuple(i for i, inst in self._instances.items() if inst.component_type == component_type)

    def property_names(self, instance_id: str) -> Tuple[str, ...]:
        return tuple(self._instance(instance_id).slots)

    # --- editor actions -----------------------------------------------------

    def set_literal(self, instance_id: str, property_name: str, value: Any) -> int:
        self._descriptor(instance_id, property_name)
        return self._mutate(instance_id, property_name, Literal(value))

    def set_binding(self, instance_id: str, property_name: str, path: PathLike) -> int:
        descriptor = self._descriptor(instance_id, property_name)
        if not descriptor.bindable:
            raise NotBindable(instance_id, property_name)
        return self._mutate(instance_id, property_name, PathRef(parse_path(path)))

    def get(self, instance_id: str, property_name: str) -> BindingExpression:
        return self._slot(instance_id, property_name).expression

    def version(self, instance_id: str, property_name: str) -> int:
        return self._slot(instance_id, property_name).version

    # --- schema re-registration ----------------------------------------------

    def reconcile(self, component_type: str) -> None:
        """Align instances of `component_type` with its (re-)registered schema.

        Removed properties are dropped, new ones start as Literal(default) and
        a PathRef on a property that is no longer bindable is reset to
        Literal(default).
        """
        descriptors = {d.name: d for d in self._registry.describe(component_type)}
        for instance_id in self.instances_of(component_type):
            inst = self._instances.get(instance_id)
            if inst is None:
                continue

            for name in [n for n in inst.slots if n not in descriptors]:
                key = PropertyKey(instance_id, name)
                with self.lock_for(instance_id, name):
                    slot = inst.slots.pop(name)
                    self._notify(key, None, slot.version + 1)
                with self._lock:
                    self._locks.pop(key, None)

            for name, d in descriptors.items():
                slot = inst.slots.get(name)
                if slot is None:
                    with self._lock:
                        inst.slots[name] = _Slot(Literal(d.default_value))
                    with self.lock_for(instance_id, name):
                        self._notify(PropertyKey(instance_id, name), inst.slots[name].expression, 0)
                elif isinstance(slot.expression, PathRef) and not d.bindable:
                    logger.warning(
                        f"{instance_id}.{name} is no longer bindable; resetting binding "
                        f"{slot.expression} to its default"
                    )
                    self._mutate(instance_id, name, Literal(d.default_value))

    # --- observers ----------------------------------------------------------

    def add_listener(self, listener: BindingListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def lock_for(self, instance_id: str, property_name: str) -> threading.RLock:
        key = PropertyKey(instance_id, property_name)
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    # --- internals ----------------------------------------------------------

    def _mutate(self, instance_id: str, property_name: str, expression: BindingExpression) -> int:
        with self.lock_for(instance_id, property_name):
            slot = self._slot(instance_id, property_name)
            slot.expression = expression
            slot.version += 1
            self._notify(PropertyKey(instance_id, property_name), expression, slot.version)
            return slot.version

    def _notify(self, key: PropertyKey, expression: Optional[BindingExpression], version: int) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(key, expression, version)

    def _instance(self, instance_id: str) -> _Instance:
        try:
            return self._instances[instance_id]
        except KeyError:
            raise UnknownInstance(instance_id) from None

    def _descriptor(self, instance_id: str, property_name: str) -> PropertyDescriptor:
        inst = self._instance(instance_id)
        descriptor = self._registry.descriptor(inst.component_type, property_name)
        if descriptor is None or property_name not in inst.slots:
            raise UnknownProperty(instance_id, property_name, inst.component_type)
        return descriptor

    def _slot(self, instance_id: str, property_name: str) -> _Slot:
        inst = self._instance(instance_id)
        try:
            return inst.slots[property_name]
        except KeyError:
            raise UnknownProperty(instance_id, property_name, inst.component_type) from None
