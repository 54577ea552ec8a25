"""Example: resolving a viewer component's properties against live editor data.

Run from the repo root after `pip install -e .`:
    python examples/editor_runtime_usage.py
"""

from pathlib import Path

from propbind import EditorRuntime
from propbind.core.events import build_default_bus, set_global_bus
from propbind.models.settings import EngineSettings
from propbind.schema.loader import load_schema_file


def main() -> None:
    bus = build_default_bus()
    if bus is not None:
        bus.start()
        set_global_bus(bus)

    schema = load_schema_file(str(Path(__file__).with_name("mechlytix-viewer.json")))
    runtime = EditorRuntime(settings=EngineSettings.from_env(), data={"theme": {"accent": "#00AAFF"}})
    runtime.register_component(schema.component_type, schema)

    viewer = runtime.create_instance(schema.component_type, "viewer-1")
    runtime.set_binding(viewer, "donutColor", "/theme/accent")
    runtime.set_binding(viewer, "fileUrl", "/uploader/files/0/url")

    runtime.subscribe(viewer, "donutColor", lambda rv: print(f"donutColor -> {rv.value} ({rv.source.value})"))
    runtime.subscribe(viewer, "fileUrl", lambda rv: print(f"fileUrl    -> {rv.value!r} ({rv.source.value})"))

    # The file uploader element publishes its first file
    runtime.graph.set("/uploader", {"files": [{"url": "https://cdn.example/pump-housing.step"}]})

    # A theme editor writes something that is not a color; the default takes over
    runtime.graph.set("/theme/accent", "not-a-color")

    runtime.destroy_instance(viewer)

    if bus is not None:
        bus.shutdown()
        set_global_bus(None)


if __name__ == "__main__":
    main()
