"""
Schema validation for catalog and block JSON files.
"""

import json
from pathlib import Path
from typing import Optional, Union

import jsonschema

CATALOG_SCHEMA = "catalog-0.1.0.schema.json"
BLOCK_SCHEMA = "block-0.1.0.schema.json"


def get_schema_path(name: str = BLOCK_SCHEMA) -> Path:
    """
    Get the path to a bundled schema file.

    Args:
        name: File name of the schema (CATALOG_SCHEMA or BLOCK_SCHEMA)

    Returns:
        Path to the schema file
    """
    return Path(__file__).parent / "schemas" / name


def _load(data: Union[dict, str, Path]) -> dict:
    if isinstance(data, (str, Path)):
        with open(data, "r", encoding="utf-8") as f:
            return json.load(f)
    return data


def _validate(
    data: Union[dict, str, Path],
    schema_path: Optional[Union[str, Path]],
    default: str,
) -> list[str]:
    data = _load(data)

    if schema_path is None:
        schema_path = get_schema_path(default)

    with open(schema_path, "r", encoding="utf-8") as f:
        schema = json.load(f)

    errors = []
    try:
        jsonschema.validate(data, schema)
    except jsonschema.ValidationError as e:
        errors.append(f"Validation error: {e.message}")
        if e.path:
            path_str = ".".join(str(p) for p in e.path)
            errors.append(f"  Location: {path_str}")
        if e.schema_path:
            schema_path_str = ".".join(str(p) for p in e.schema_path)
            errors.append(f"  Schema path: {schema_path_str}")
    except jsonschema.SchemaError as e:
        errors.append(f"Schema error: {e.message}")

    return errors


def validate_catalog(
    data: Union[dict, str, Path],
    schema_path: Optional[Union[str, Path]] = None,
) -> list[str]:
    """
    Validate elementary block catalog JSON against the catalog schema.

    Args:
        data: Either a dict with JSON data, or path to JSON file
        schema_path: Optional path to schema file (bundled schema if None)

    Returns:
        List of validation error messages (empty if valid)

    Example:
        >>> errors = validate_catalog("cdl_catalog.json")
        >>> for error in errors:
        ...     print(f"  - {error}")
    """
    return _validate(data, schema_path, CATALOG_SCHEMA)


def validate_block_json(
    data: Union[dict, str, Path],
    schema_path: Optional[Union[str, Path]] = None,
) -> list[str]:
    """
    Validate exported block JSON against the block schema.

    Args:
        data: Either a dict with JSON data, or path to JSON file
        schema_path: Optional path to schema file (bundled schema if None)

    Returns:
        List of validation error messages (empty if valid)
    """
    return _validate(data, schema_path, BLOCK_SCHEMA)


def validate_block_json_file(file_path: Union[str, Path]) -> bool:
    """
    Validate an exported block JSON file and print results.

    Returns:
        True if valid, False otherwise
    """
    errors = validate_block_json(file_path)

    if not errors:
        print(f"Valid: {file_path}")
        return True
    else:
        print(f"Invalid: {file_path}")
        for error in errors:
            print(f"  {error}")
        return False
