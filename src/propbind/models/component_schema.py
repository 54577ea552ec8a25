from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from propbind.core.exceptions import InvalidDescriptor

TypeTag = str
LocaleLabel = Dict[str, str]


class PropertyDescriptor(BaseModel):
    """One configurable property of a component type.

    Accepts the editor's authored keys (``type``, ``defaultValue``) as well as
    the python field names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    declared_type: TypeTag = Field(alias="type")
    default_value: Any = Field(default=None, alias="defaultValue")
    bindable: bool = False
    section: Optional[str] = None

    # Retained from the editor config; not rendered by the engine.
    label: LocaleLabel = Field(default_factory=dict)

    # Allowed values for Enum properties.
    options: Optional[Tuple[str, ...]] = None

    @field_validator("name", "declared_type")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be a non-empty string")
        return value

    @field_validator("options", mode="before")
    @classmethod
    def _options_tuple(cls, value: Any) -> Any:
        if isinstance(value, list):
            return tuple(value)
        return value


class EditorMeta(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    label: LocaleLabel = Field(default_factory=dict)


class ComponentSchema(BaseModel):
    """Property schema of a component type, as declared in its editor config."""

    model_config = ConfigDict(frozen=True)

    component_type: str
    editor: EditorMeta = Field(default_factory=EditorMeta)
    properties: Tuple[PropertyDescriptor, ...] = ()

    @property
    def property_names(self) -> List[str]:
        return [p.name for p in self.properties]

    @classmethod
    def from_editor_config(cls, component_type: str, config: Mapping[str, Any]) -> "ComponentSchema":
        """Parse ``{editor: {...}, properties: {<name>: {...}}}`` into a schema.

        Raises InvalidDescriptor when the config does not have that shape.
        """
        if not isinstance(config, Mapping):
            raise InvalidDescriptor(component_type, None, "editor config must be a mapping")

        raw_props = config.get("properties") or {}
        if not isinstance(raw_props, Mapping):
            raise InvalidDescriptor(component_type, None, "'properties' must be a mapping")

        descriptors = []
        for name, spec in raw_props.items():
            if not isinstance(spec, Mapping):
                raise InvalidDescriptor(component_type, str(name), "property spec must be a mapping")
            try:
                descriptors.append(PropertyDescriptor.model_validate({**spec, "name": name}))
            except ValidationError as exc:
                raise InvalidDescriptor(component_type, str(name), _first_error(exc)) from exc

        try:
            editor = EditorMeta.model_validate(config.get("editor") or {})
        except ValidationError as exc:
            raise InvalidDescriptor(component_type, None, _first_error(exc)) from exc

        return cls(component_type=component_type, editor=editor, properties=tuple(descriptors))


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    err = errors[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg')}" if loc else str(err.get("msg"))
