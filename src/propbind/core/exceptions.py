"""
Custom exception classes for the propbind engine.

Registration and store errors are raised to the caller. Resolution errors
(CoercionError, UnresolvedPath) are caught by the resolution engine, which
falls back to the property default and reports them as diagnostics.
"""

from enum import Enum
from typing import Any, Callable, Optional, Sequence, Union


class PropbindException(Exception):
    """Base exception class for all propbind exceptions."""

    pass


class RegistrationError(PropbindException):
    """Raised when a component schema cannot be registered."""

    pass


class DuplicateRegistration(RegistrationError):
    """Raised when a component type is registered twice without overwrite."""

    def __init__(self, component_type: str):
        self.component_type = component_type
        super().__init__(f"Component type already registered: {component_type!r}")


class InvalidDescriptor(RegistrationError):
    """
    Raised when a property descriptor is malformed.

    Typical causes:
    - the default value does not coerce against the declared type
    - an Enum property without options
    - a non-bindable property placed in a section the host cannot render
      (only when the section policy is enforced)

    Example:
        >>> raise InvalidDescriptor(
        ...     component_type="donut",
        ...     property_name="donutColor",
        ...     reason="default '#F60' is not a #RRGGBB color",
        ... )
    """

    def __init__(self, component_type: str, property_name: Optional[str], reason: str):
        self.component_type = component_type
        self.property_name = property_name
        self.reason = reason
        where = component_type if property_name is None else f"{component_type}.{property_name}"
        super().__init__(f"Invalid descriptor {where}: {reason}")


class BindingError(PropbindException):
    """Raised when an editor action on the binding store is rejected."""

    pass


class UnknownInstance(BindingError):
    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Unknown component instance: {instance_id!r}")


class UnknownProperty(BindingError):
    def __init__(self, instance_id: str, property_name: str, component_type: Optional[str] = None):
        self.instance_id = instance_id
        self.property_name = property_name
        self.component_type = component_type
        super().__init__(
            f"Property {property_name!r} is not declared by component type "
            f"{component_type!r} (instance {instance_id!r})"
        )


class NotBindable(BindingError):
    def __init__(self, instance_id: str, property_name: str):
        self.instance_id = instance_id
        self.property_name = property_name
        super().__init__(
            f"Property {property_name!r} of instance {instance_id!r} is not bindable"
        )


class InvalidPath(PropbindException):
    """Raised when a data-graph path string cannot be parsed."""

    pass


class ResolutionError(PropbindException):
    """Base class for errors recovered locally by the resolution engine."""

    pass


class CoercionError(ResolutionError):
    """
    Raised when a raw value cannot be coerced to a declared type.

    The coercion layer never substitutes a value; falling back to the
    property default is the resolution engine's decision.
    """

    def __init__(self, property_name: str, raw_value: Any, declared_type: str, reason: str = ""):
        self.property_name = property_name
        self.raw_value = raw_value
        self.declared_type = declared_type
        self.reason = reason
        message = f"Cannot coerce {raw_value!r} to {declared_type} for property {property_name!r}"
        if reason:
            message += f" - {reason}"
        super().__init__(message)


class UnresolvedPath(ResolutionError):
    """Raised when a binding path does not exist in the data graph."""

    def __init__(self, path: Sequence[Union[str, int]], missing_at: Optional[int] = None):
        self.path = tuple(path)
        self.missing_at = missing_at
        rendered = "/" + "/".join(str(s) for s in self.path)
        message = f"Path not found in data graph: {rendered}"
        if missing_at is not None:
            message += f" (missing segment #{missing_at})"
        super().__init__(message)


class FallbackPolicy(Enum):
    """Policy for reporting a fallback to the property default."""

    WARN = "warn"      # Log a warning and publish a diagnostic event (default)
    ALLOW = "allow"    # Fall back silently; the reason is still kept for last_issue()


class FallbackReporter:
    """
    Reports resolution fallbacks based on the configured policy.

    Usage:
        >>> reporter = FallbackReporter(policy=FallbackPolicy.WARN, logger=log)
        >>> reporter.report(error, instance_id="x1", property_name="donutColor")
        # Logs a warning
    """

    def __init__(
        self,
        policy: FallbackPolicy = FallbackPolicy.WARN,
        logger: Optional[Any] = None,
        custom_handler: Optional[Callable[[ResolutionError, str, str], Any]] = None,
    ):
        self.policy = policy
        self.logger = logger
        self.custom_handler = custom_handler

    def report(self, error: ResolutionError, *, instance_id: str, property_name: str) -> None:
        if self.custom_handler:
            self.custom_handler(error, instance_id, property_name)
            return

        if self.policy == FallbackPolicy.WARN:
            if self.logger:
                self.logger.warning(
                    f"Falling back to default for {instance_id}.{property_name}: {error}"
                )
            else:
                import warnings
                warnings.warn(f"{instance_id}.{property_name}: {error}", UserWarning)
