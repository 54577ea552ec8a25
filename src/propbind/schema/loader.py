from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from propbind.core.exceptions import InvalidDescriptor
from propbind.models.component_schema import ComponentSchema


def read_config_file(path: str) -> Dict[str, Any]:
    """Read a JSON or YAML mapping from disk."""
    config_file = Path(path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_file, "r") as f:
        if config_file.suffix == ".json":
            data = json.load(f)
        elif config_file.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported config format: {config_file.suffix}. Use .json or .yaml")

    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at the top of {path}")
    return data


def load_schema_file(path: str, component_type: Optional[str] = None) -> ComponentSchema:
    """Load an editor config file into a ComponentSchema.

    The component type defaults to ``component_type`` in the file, then to
    the file stem.
    """
    data = read_config_file(path)
    ctype = component_type or data.get("component_type") or Path(path).stem
    if not isinstance(ctype, str):
        raise InvalidDescriptor(str(ctype), None, "component_type must be a string")
    return ComponentSchema.from_editor_config(ctype, data)
