import argparse
import json
import sys
from typing import Any, Dict, Optional

from propbind.core.exceptions import PropbindException
from propbind.core.logger import get_logger
from propbind.models.settings import EngineSettings
from propbind.runtime import EditorRuntime
from propbind.schema.loader import load_schema_file, read_config_file
from propbind.schema.registry import SchemaRegistry

logger = get_logger(__name__)


def main(
    schema_path: str,
    *,
    data_path: Optional[str] = None,
    bindings: Optional[Dict[str, Any]] = None,
    settings: Optional[EngineSettings] = None,
) -> Dict[str, Any]:
    """
    Resolve every property of one instance of the schema's component.

    Args:
        schema_path: Path to the component's editor config (JSON/YAML)
        data_path: Optional data graph file (JSON/YAML)
        bindings: Mapping of property name to {"path": "/a/b"} or {"literal": value}

    Returns:
        {"status", "component_type", "properties": {name: {value, source, valid_as_of}}}

    Example:
        >>> from propbind.cli import main
        >>> result = main("viewer.json", data_path="data.json",
        ...               bindings={"donutColor": {"path": "/theme/accent"}})
        >>> result["properties"]["donutColor"]["source"]
        'binding'
    """
    try:
        schema = load_schema_file(schema_path)
        data = read_config_file(data_path) if data_path else {}

        runtime = EditorRuntime(settings=settings, data=data)
        runtime.register_component(schema.component_type, schema)
        instance_id = runtime.create_instance(schema.component_type, "cli")

        for name, spec in (bindings or {}).items():
            if not isinstance(spec, dict):
                raise ValueError(f"Binding for {name!r} must be an object with 'path' or 'literal'")
            if "path" in spec:
                runtime.set_binding(instance_id, name, spec["path"])
            elif "literal" in spec:
                runtime.set_literal(instance_id, name, spec["literal"])
            else:
                raise ValueError(f"Binding for {name!r} needs 'path' or 'literal'")

        resolved = runtime.resolve_all(instance_id)
        logger.info(f"Resolved {len(resolved)} properties of {schema.component_type!r}")
        return {
            "status": "success",
            "component_type": schema.component_type,
            "properties": {
                name: {"value": rv.value, "source": rv.source.value, "valid_as_of": rv.valid_as_of}
                for name, rv in resolved.items()
            },
        }

    except Exception as e:
        logger.error(f"Resolution failed: {str(e)}")
        raise


def validate_config(schema_path: str) -> bool:
    """
    Validate a component schema file without creating instances.

    Raises:
        FileNotFoundError, ValueError, InvalidDescriptor: if the schema is invalid
    """
    try:
        schema = load_schema_file(schema_path)
        logger.info(f"Validating schema: {schema_path}")
        SchemaRegistry().register_schema(schema)
        logger.info(f"Schema {schema.component_type!r} is valid ({len(schema.properties)} properties)")
        return True

    except Exception as e:
        logger.error(f"Schema validation failed: {str(e)}")
        raise


def cli(argv: Optional[list] = None) -> None:
    """
    Command-line interface for propbind.

    Usage:
        propbind validate viewer.json
        propbind resolve viewer.json --data data.json --bindings bindings.json
    """
    parser = argparse.ArgumentParser(
        prog="propbind",
        description="Resolve visual-editor component properties against a data graph",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    validate_parser = subparsers.add_parser("validate", help="Validate a component schema")
    validate_parser.add_argument("schema", help="Path to the editor config (JSON or YAML)")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve the properties of one instance")
    resolve_parser.add_argument("schema", help="Path to the editor config (JSON or YAML)")
    resolve_parser.add_argument("--data", help="Path to the data graph (JSON or YAML)")
    resolve_parser.add_argument("--bindings", help="Path to per-property bindings (JSON or YAML)")

    args = parser.parse_args(argv)

    if args.command == "validate":
        try:
            validate_config(args.schema)
            sys.exit(0)
        except (PropbindException, OSError, ValueError) as e:
            logger.error(f"Validation failed: {e}")
            sys.exit(1)

    elif args.command == "resolve":
        try:
            bindings = read_config_file(args.bindings) if args.bindings else None
            result = main(args.schema, data_path=args.data, bindings=bindings)
            print(json.dumps(result, indent=2, default=str))
            sys.exit(0)
        except (PropbindException, OSError, ValueError) as e:
            logger.error(f"Resolve failed: {e}")
            sys.exit(1)

    else:
        parser.print_help()
        sys.exit(0)


if __name__ == "__main__":
    cli()
