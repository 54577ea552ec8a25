import pytest

from propbind.models.settings import EngineSettings
from propbind.runtime import EditorRuntime


DONUT_CONFIG = {
    "editor": {"label": {"en": "MechLytix Viewer"}},
    "properties": {
        "donutColor": {
            "label": {"en": "Shape Color"},
            "type": "Color",
            "defaultValue": "#FF6600",
            "bindable": True,
        },
        "fileUrl": {
            "label": {"en": "File URL"},
            "type": "Text",
            "defaultValue": "",
            "bindable": True,
            "section": "settings",
        },
    },
}


@pytest.fixture
def donut_config():
    return {
        "editor": dict(DONUT_CONFIG["editor"]),
        "properties": {k: dict(v) for k, v in DONUT_CONFIG["properties"].items()},
    }


@pytest.fixture
def runtime():
    return EditorRuntime(settings=EngineSettings(), data={"theme": {"accent": "#00AAFF"}})
