from propbind.coercion.registry import CoercerRegistry, coerce, register_coercer

__all__ = ["CoercerRegistry", "coerce", "register_coercer"]
