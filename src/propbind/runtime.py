from __future__ import annotations

import uuid
from typing import Any, Dict, Mapping, Optional, Union

from propbind.bindings.store import BindingExpressionStore
from propbind.core.contracts import BindingExpression, ResolvedValue
from propbind.core.data_graph import DataGraph, InMemoryDataGraph
from propbind.core.events import publish_event, timed_stage
from propbind.core.logger import configure_root_logger, get_logger
from propbind.core.paths import PathLike
from propbind.engine.dispatcher import ReactivityDispatcher
from propbind.engine.resolution import OnChange, ResolutionEngine, Subscription
from propbind.models.component_schema import ComponentSchema, PropertyDescriptor
from propbind.models.settings import EngineSettings
from propbind.schema.registry import SchemaRegistry

logger = get_logger(__name__)


class EditorRuntime:
    """
    Host-side entry point wiring the registry, binding store, data graph,
    resolution engine and reactivity dispatcher together.

    Example:
        >>> from propbind import EditorRuntime
        >>> runtime = EditorRuntime(data={"theme": {"accent": "#00AAFF"}})
        >>> runtime.register_component("mechlytix-viewer", config)
        >>> x = runtime.create_instance("mechlytix-viewer")
        >>> runtime.set_binding(x, "donutColor", "/theme/accent")
        >>> runtime.resolve(x, "donutColor").value
        '#00AAFF'
    """

    def __init__(
        self,
        *,
        settings: Optional[EngineSettings] = None,
        graph: Optional[DataGraph] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the runtime.

        Args:
            settings: Engine settings. Defaults to EngineSettings.from_env().
            graph: Host data graph. Defaults to an InMemoryDataGraph.
            data: Initial contents for the default in-memory graph; ignored
                  when `graph` is given.
        """
        self.settings = settings or EngineSettings.from_env()
        configure_root_logger(self.settings.log_level)

        self.graph: DataGraph = graph if graph is not None else InMemoryDataGraph(data)
        self.registry = SchemaRegistry(
            enforce_section_policy=self.settings.enforce_section_policy,
            renderable_sections=self.settings.renderable_sections,
        )
        self.store = BindingExpressionStore(self.registry)
        self.dispatcher = ReactivityDispatcher(policy=self.settings.path_match_policy)
        self.engine = ResolutionEngine(
            self.registry,
            self.store,
            self.graph,
            self.dispatcher,
            fallback_policy=self.settings.fallback_policy,
        )

    # --- schema ---------------------------------------------------------------

    def register_component(
        self,
        component_type: str,
        config: Union[Mapping[str, Any], ComponentSchema],
        *,
        overwrite: bool = False,
    ) -> ComponentSchema:
        """Register a component type from its editor config (or a parsed schema)."""
        with timed_stage("schema.register", component_type=component_type):
            if isinstance(config, ComponentSchema):
                schema = config
            else:
                schema = ComponentSchema.from_editor_config(component_type, config)
            self.registry.register(component_type, schema.properties, overwrite=overwrite)
        return schema

    def describe(self, component_type: str) -> tuple[PropertyDescriptor, ...]:
        return self.registry.describe(component_type)

    # --- instances ------------------------------------------------------------

    def create_instance(self, component_type: str, instance_id: Optional[str] = None) -> str:
        instance_id = instance_id or f"{component_type}-{uuid.uuid4().hex[:8]}"
        self.store.create_instance(instance_id, component_type)
        return instance_id

    def destroy_instance(self, instance_id: str) -> None:
        self.store.destroy_instance(instance_id)

    # --- editor actions -------------------------------------------------------

    def set_literal(self, instance_id: str, property_name: str, value: Any) -> int:
        return self.store.set_literal(instance_id, property_name, value)

    def set_binding(self, instance_id: str, property_name: str, path: PathLike) -> int:
        version = self.store.set_binding(instance_id, property_name, path)
        publish_event(
            stage="binding.changed",
            status="completed",
            instance_id=instance_id,
            property_name=property_name,
            details={"path": str(self.store.get(instance_id, property_name)), "version": version},
        )
        return version

    def binding(self, instance_id: str, property_name: str) -> BindingExpression:
        return self.store.get(instance_id, property_name)

    # --- consumer API ---------------------------------------------------------

    def resolve(self, instance_id: str, property_name: str) -> ResolvedValue:
        return self.engine.resolve(instance_id, property_name)

    def resolve_all(self, instance_id: str) -> Dict[str, ResolvedValue]:
        return self.engine.resolve_all(instance_id)

    def subscribe(self, instance_id: str, property_name: str, on_change: OnChange, **kwargs: Any) -> Subscription:
        return self.engine.subscribe(instance_id, property_name, on_change, **kwargs)
