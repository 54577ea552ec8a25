from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from propbind.coercion.registry import coerce
from propbind.core.exceptions import CoercionError, DuplicateRegistration, InvalidDescriptor
from propbind.core.logger import get_logger
from propbind.models.component_schema import ComponentSchema, PropertyDescriptor

logger = get_logger(__name__)

# (component_type, descriptors, replaced)
RegistrationListener = Callable[[str, Tuple[PropertyDescriptor, ...], bool], None]


class SchemaRegistry:
    """Per component type, the immutable set of property descriptors.

    Defaults are coerced at registration, so the stored default of every
    descriptor is already of its declared type.
    """

    def __init__(
        self,
        *,
        enforce_section_policy: bool = False,
        renderable_sections: Iterable[str] = ("settings", "style"),
    ) -> None:
        self.enforce_section_policy = enforce_section_policy
        self.renderable_sections = frozenset(renderable_sections)
        self._registry: Dict[str, Tuple[PropertyDescriptor, ...]] = {}
        self._by_name: Dict[str, Dict[str, PropertyDescriptor]] = {}
        self._listeners: List[RegistrationListener] = []
        self._lock = threading.RLock()

    def register(
        self,
        component_type: str,
        descriptors: Sequence[PropertyDescriptor],
        *,
        overwrite: bool = False,
    ) -> Tuple[PropertyDescriptor, ...]:
        validated = tuple(self._validate(component_type, descriptors))

        with self._lock:
            replaced = component_type in self._registry
            if replaced and not overwrite:
                raise DuplicateRegistration(component_type)
            self._registry[component_type] = validated
            self._by_name[component_type] = {d.name: d for d in validated}
            listeners = list(self._listeners)

        logger.info(
            f"{'Re-registered' if replaced else 'Registered'} component type {component_type!r} "
            f"with {len(validated)} properties"
        )
        for listener in listeners:
            listener(component_type, validated, replaced)
        return validated

    def register_schema(self, schema: ComponentSchema, *, overwrite: bool = False) -> Tuple[PropertyDescriptor, ...]:
        return self.register(schema.component_type, schema.properties, overwrite=overwrite)

    def describe(self, component_type: str) -> Tuple[PropertyDescriptor, ...]:
        try:
            return self._registry[component_type]
        except KeyError as exc:
            raise KeyError(f"No component type registered: {component_type!r}") from exc

    def try_describe(self, component_type: str) -> Optional[Tuple[PropertyDescriptor, ...]]:
        return self._registry.get(component_type)

    def descriptor(self, component_type: str, property_name: str) -> Optional[PropertyDescriptor]:
        return self._by_name.get(component_type, {}).get(property_name)

    def component_types(self) -> Tuple[str, ...]:
        return tuple(self._registry)

    def add_listener(self, listener: RegistrationListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def clear(self) -> None:
        with self._lock:
            self._registry.clear()
            self._by_name.clear()

    def _validate(
        self, component_type: str, descriptors: Sequence[PropertyDescriptor]
    ) -> Iterable[PropertyDescriptor]:
        seen = set()
        for d in descriptors:
            if d.name in seen:
                raise InvalidDescriptor(component_type, d.name, "property declared twice")
            seen.add(d.name)

            if d.declared_type == "Enum" and not d.options:
                raise InvalidDescriptor(component_type, d.name, "Enum properties require options")

            if (
                self.enforce_section_policy
                and not d.bindable
                and d.section is not None
                and d.section not in self.renderable_sections
            ):
                raise InvalidDescriptor(
                    component_type,
                    d.name,
                    f"non-bindable property in section {d.section!r} cannot be rendered",
                )

            try:
                default = coerce(
                    d.default_value,
                    d.declared_type,
                    property_name=d.name,
                    options=d.options,
                )
            except CoercionError as exc:
                raise InvalidDescriptor(component_type, d.name, f"bad default: {exc}") from exc

            yield d.model_copy(update={"default_value": default})
