from __future__ import annotations

from typing import Any, Callable, ClassVar, Dict, Optional, Sequence, Tuple

from propbind.core.exceptions import CoercionError


CoercerFn = Callable[..., Any]


class CoercerRegistryError(RuntimeError):
    pass


class CoercerRegistry:
    _registry: ClassVar[Dict[str, CoercerFn]] = {}

    @classmethod
    def register(
        cls,
        *,
        type_tag: str,
        coercer: CoercerFn,
        overwrite: bool = False,
    ) -> None:
        if not overwrite and type_tag in cls._registry:
            existing = cls._registry[type_tag]
            raise CoercerRegistryError(
                f"Coercer already registered for type_tag={type_tag!r}: {existing}"
            )
        cls._registry[type_tag] = coercer

    @classmethod
    def get(cls, type_tag: str) -> CoercerFn:
        try:
            return cls._registry[type_tag]
        except KeyError as exc:
            raise CoercerRegistryError(f"No coercer registered for type_tag={type_tag!r}") from exc

    @classmethod
    def try_get(cls, type_tag: str) -> Optional[CoercerFn]:
        return cls._registry.get(type_tag)

    @classmethod
    def type_tags(cls) -> Tuple[str, ...]:
        return tuple(sorted(cls._registry))

    @classmethod
    def clear(cls) -> None:
        cls._registry.clear()


def register_coercer(
    type_tag: str,
    *,
    overwrite: bool = False,
) -> Callable[[CoercerFn], CoercerFn]:
    def decorator(coercer: CoercerFn) -> CoercerFn:
        CoercerRegistry.register(type_tag=type_tag, coercer=coercer, overwrite=overwrite)
        return coercer

    return decorator


def coerce(
    raw_value: Any,
    declared_type: str,
    *,
    property_name: str = "-",
    options: Optional[Sequence[str]] = None,
) -> Any:
    """Coerce `raw_value` to `declared_type` or raise CoercionError.

    Pure and deterministic. Never substitutes a value: an unknown type tag
    or a value outside the type's rules is a CoercionError.
    """

    from propbind.bootstrap import load_builtin_plugins

    load_builtin_plugins()

    coercer = CoercerRegistry.try_get(declared_type)
    if coercer is None:
        raise CoercionError(property_name, raw_value, declared_type, "unknown type tag")
    return coercer(raw_value, property_name=property_name, options=options)
