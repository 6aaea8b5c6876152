"""
Export validated composite blocks to JSON.

The exported document (block-0.1.0) is what downstream tools consume: the
block's own parameters and connectors, every instance with its evaluated
parameter bindings and resolved connector sizes, the connections in source
order, the feed-through of the block and all semantic tags. Expressions
are exported as written next to their evaluated values.
"""

import json
from pathlib import Path
from typing import Any, Optional, Union

from cdl.causality import derive_direct_dependencies
from cdl.ir import (
    CompositeBlock,
    Connection,
    ConnectorDecl,
    Endpoint,
    EnumValue,
    Expr,
    Instance,
    ParameterDecl,
    TagPayload,
)
from cdl.io.validation import validate_block_json

FORMAT_VERSION = "0.1.0"


def export_block(block: CompositeBlock, validate: bool = True) -> dict:
    """
    Convert a composite block to its JSON representation.

    Args:
        block: Built composite block
        validate: Check the result against the block schema

    Returns:
        JSON-compatible dict

    Raises:
        ValueError: If validation is enabled and the result does not match the schema
    """
    data = _export_block(block)

    if validate:
        errors = validate_block_json(data)
        if errors:
            raise ValueError(f"Exported block '{block.name}' is invalid:\n" + "\n".join(errors))

    return data


def export_block_json(
    block: CompositeBlock,
    path: Union[str, Path],
    validate: bool = True,
    pretty: bool = True,
) -> None:
    """
    Export a composite block to a JSON file.

    Args:
        block: Built composite block
        path: Output file path
        validate: Check the result against the block schema
        pretty: Pretty-print the JSON output

    Example:
        >>> block_type = resolver.resolve("Library.Controls.Supervisor")
        >>> export_block_json(block_type.composite, "Supervisor.json")
    """
    data = export_block(block, validate=validate)

    with open(path, "w", encoding="utf-8") as f:
        if pretty:
            json.dump(data, f, indent=2)
        else:
            json.dump(data, f)


def dumps_block(block: CompositeBlock, validate: bool = True) -> str:
    """Composite block as a JSON string."""
    return json.dumps(export_block(block, validate=validate), indent=2)


# ==================== Export Functions ====================


def _export_block(block: CompositeBlock) -> dict:
    data: dict[str, Any] = {
        "version": FORMAT_VERSION,
        "name": block.name,
    }
    if block.description:
        data["description"] = block.description
    if block.documentation:
        data["documentation"] = dict(block.documentation)
    if block.metadata:
        data["metadata"] = dict(block.metadata)
    if block.tags:
        data["tags"] = [_export_tag(t) for t in block.tags]

    data["parameters"] = [
        _export_parameter(p, block.parameter_values.get(p.name)) for p in block.parameters
    ]
    data["connectors"] = [
        _export_connector(c, block.connector_sizes.get(c.name)) for c in block.connectors
    ]
    data["instances"] = [_export_instance(inst) for inst in block.instances.values()]
    data["connections"] = [_export_connection(conn) for conn in block.connections]
    data["direct_dependencies"] = [
        {"output": out, "input": inp} for out, inp in sorted(derive_direct_dependencies(block))
    ]
    return data


def _export_tag(tag: TagPayload) -> dict:
    return {"kind": tag.kind.value, "raw": tag.raw}


def _export_expr(expr: Optional[Expr]) -> Optional[str]:
    return str(expr) if expr is not None else None


def _export_value(value: Any) -> Any:
    if isinstance(value, EnumValue):
        return {"enumeration": value.type_name, "literal": value.literal}
    if isinstance(value, tuple):
        return [_export_value(v) for v in value]
    return value


def _export_parameter(decl: ParameterDecl, value: Any) -> dict:
    data = {
        "name": decl.name,
        "type": decl.primitive_type.value,
        "value": _export_value(value),
        "expression": _export_expr(decl.default),
        "final": decl.final,
        "protected": decl.protected,
    }
    if decl.enum_type:
        data["enumeration"] = decl.enum_type
    if decl.description:
        data["description"] = decl.description
    return data


def _export_connector(decl: ConnectorDecl, size: Optional[int]) -> dict:
    data = {
        "name": decl.name,
        "direction": decl.direction.value,
        "type": decl.primitive_type.value,
        "size": size,
    }
    if decl.quantity:
        data["quantity"] = decl.quantity
    if decl.unit:
        data["unit"] = decl.unit
    if decl.description:
        data["description"] = decl.description
    if decl.tags:
        data["tags"] = [_export_tag(t) for t in decl.tags]
    return data


def _export_instance(inst: Instance) -> dict:
    data = {
        "name": inst.name,
        "type": inst.type_name,
        "kind": inst.block_type.kind.name.lower(),
        "parameters": [
            {
                "name": b.name,
                "value": _export_value(b.value),
                "expression": _export_expr(b.expr),
                "modified": b.modified,
            }
            for b in inst.bindings.values()
        ],
        "connector_sizes": dict(inst.connector_sizes),
    }
    if inst.description:
        data["description"] = inst.description
    if inst.protected:
        data["protected"] = True
    if inst.tags:
        data["tags"] = [_export_tag(t) for t in inst.tags]
    return data


def _export_endpoint(endpoint: Endpoint) -> dict:
    return {
        "instance": endpoint.instance,
        "connector": endpoint.connector,
        "index": endpoint.index,
    }


def _export_connection(conn: Connection) -> dict:
    data = {
        "source": _export_endpoint(conn.source),
        "sink": _export_endpoint(conn.sink),
    }
    if conn.location is not None:
        data["line"] = conn.location.line
    return data
