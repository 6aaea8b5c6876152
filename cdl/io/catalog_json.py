"""
Elementary block catalog in JSON format.

The catalog lists the interface of every elementary block a library is
built from: parameters with their defaults, connectors, and which outputs
depend directly on which inputs. Defaults and dimensions are written in
CDL expression syntax, so a String default is written with its quotes:

    {
      "version": "0.1.0",
      "blocks": [
        {
          "name": "CDL.Reals.MultiSum",
          "parameters": [
            {"name": "nin", "type": "Integer", "default": "0"},
            {"name": "k", "type": "Real", "dimension": "nin", "default": "fill(1, nin)"}
          ],
          "connectors": [
            {"name": "u", "direction": "input", "type": "Real", "dimension": "nin"},
            {"name": "y", "direction": "output", "type": "Real"}
          ],
          "direct_dependencies": [{"output": "y", "input": "u"}]
        }
      ]
    }
"""

import json
from pathlib import Path
from typing import Optional, Union

from cdl.catalog import Catalog
from cdl.ir import (
    BlockKind,
    BlockType,
    ConnectorDecl,
    Direction,
    Expr,
    Literal,
    ParameterDecl,
    PrimitiveType,
)
from cdl.io.validation import validate_catalog
from cdl.parser import parse_expression


def load_catalog(source: Union[dict, str, Path], validate: bool = True) -> Catalog:
    """
    Load an elementary block catalog.

    Args:
        source: Either a dict with catalog JSON data, or path to a JSON file
        validate: Check the data against the catalog schema first

    Returns:
        Catalog of elementary block types

    Raises:
        ValueError: If the data does not match the schema, or a block
            declares an inconsistent interface
        CDLSyntaxError: If a default or dimension is not a valid expression
        DuplicateDeclarationError: If a block name occurs twice

    Example:
        >>> catalog = load_catalog("cdl_catalog.json")
        >>> catalog["CDL.Reals.MultiplyByParameter"].feeds_through("y")
        ['u']
    """
    if isinstance(source, (str, Path)):
        with open(source, "r", encoding="utf-8") as f:
            data = json.load(f)
    else:
        data = source

    if validate:
        errors = validate_catalog(data)
        if errors:
            raise ValueError("Invalid block catalog:\n" + "\n".join(errors))

    return Catalog(_import_block(b) for b in data["blocks"])


def loads_catalog(json_str: str) -> Catalog:
    """Load an elementary block catalog from a JSON string."""
    return load_catalog(json.loads(json_str))


# ==================== Import Functions ====================


def _import_block(data: dict) -> BlockType:
    dependencies = frozenset((d["output"], d["input"]) for d in data.get("direct_dependencies", []))
    return BlockType(
        name=data["name"],
        kind=BlockKind.ELEMENTARY,
        parameters=tuple(_import_parameter(p) for p in data.get("parameters", [])),
        connectors=tuple(_import_connector(c) for c in data["connectors"]),
        direct_dependencies=dependencies,
        description=data.get("description", ""),
    )


def _import_parameter(data: dict) -> ParameterDecl:
    ptype = PrimitiveType.from_name(data["type"])
    enum_type = data.get("enumeration")
    if ptype == PrimitiveType.ENUMERATION and not enum_type:
        raise ValueError(f"Enumeration parameter '{data['name']}' needs an 'enumeration' type name")
    return ParameterDecl(
        name=data["name"],
        primitive_type=ptype,
        dimension=_import_dimension(data.get("dimension")),
        default=_import_expr(data.get("default")),
        description=data.get("description", ""),
        final=data.get("final", False),
        protected=data.get("protected", False),
        enum_type=enum_type,
        attributes=tuple(data.get("attributes", {}).items()),
    )


def _import_connector(data: dict) -> ConnectorDecl:
    return ConnectorDecl(
        name=data["name"],
        direction=Direction(data["direction"]),
        primitive_type=PrimitiveType.from_name(data["type"]),
        dimension=_import_dimension(data.get("dimension")),
        quantity=data.get("quantity", ""),
        unit=data.get("unit", ""),
        description=data.get("description", ""),
    )


def _import_dimension(value: Union[int, str, None]) -> Optional[Expr]:
    if value is None:
        return None
    if isinstance(value, int):
        return Literal(value)
    return parse_expression(value)


def _import_expr(value: Union[str, int, float, bool, None]) -> Optional[Expr]:
    if value is None:
        return None
    if isinstance(value, str):
        return parse_expression(value)
    return Literal(value)
