"""
Flattening of hierarchical block diagrams.

flatten() replaces every composite instance by its content, recursively,
so that only elementary instances remain. Instances are named by their
dotted path (ctl.gain), parameter values are evaluated again with the
modifications of the enclosing instances applied, and connections are
traced element by element through composite boundaries to the signal
that actually drives them: an elementary output or an input of the
top-level block.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from cdl.builder import bind_parameters
from cdl.ir.declarations import ConnectorDecl, TagPayload
from cdl.ir.model import BlockType, CompositeBlock, Endpoint, expand_elements, format_connector


@dataclass
class FlatInstance:
    """Elementary instance at a dotted path."""

    path: str
    block_type: BlockType
    parameters: dict[str, Any] = field(default_factory=dict)
    connector_sizes: dict[str, Optional[int]] = field(default_factory=dict)
    tags: tuple[TagPayload, ...] = ()

    @property
    def type_name(self) -> str:
        return self.block_type.name


@dataclass(frozen=True)
class FlatConnection:
    """Element-wise connection between flat endpoints."""

    source: Endpoint
    sink: Endpoint

    def __str__(self):
        return f"connect({self.source}, {self.sink})"


@dataclass
class FlatBlock:
    """Flat view of a composite block: elementary instances only."""

    name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    connectors: list[ConnectorDecl] = field(default_factory=list)
    connector_sizes: dict[str, Optional[int]] = field(default_factory=dict)
    instances: dict[str, FlatInstance] = field(default_factory=dict)
    connections: list[FlatConnection] = field(default_factory=list)

    def driver(self, sink: Endpoint) -> Optional[Endpoint]:
        """Source element driving a sink element, if connected."""
        for conn in self.connections:
            if conn.sink == sink:
                return conn.source
        return None

    def summary(self) -> str:
        lines = [f"Flat block: {self.name}"]
        if self.connectors:
            lines.append(f"\n  Connectors ({len(self.connectors)}):")
            for c in self.connectors:
                size = self.connector_sizes.get(c.name)
                lines.append(f"    {c.direction.value} {format_connector(c, size)}")
        lines.append(f"\n  Instances ({len(self.instances)}):")
        for inst in self.instances.values():
            lines.append(f"    {inst.type_name} {inst.path}")
        lines.append(f"\n  Connections ({len(self.connections)}):")
        for conn in self.connections:
            lines.append(f"    {conn}")
        return "\n".join(lines)

    def __str__(self):
        return self.summary()


def _globalize(endpoint: Endpoint, prefix: Optional[str]) -> Endpoint:
    if endpoint.instance is None:
        return Endpoint(prefix, endpoint.connector, endpoint.index)
    path = f"{prefix}.{endpoint.instance}" if prefix else endpoint.instance
    return Endpoint(path, endpoint.connector, endpoint.index)


class _Flattener:
    def __init__(self, block: CompositeBlock):
        self.flat = FlatBlock(
            name=block.name,
            parameters=dict(block.parameter_values),
            connectors=list(block.connectors),
            connector_sizes=dict(block.connector_sizes),
        )
        self.drivers: dict[Endpoint, Endpoint] = {}

    def walk(self, block: CompositeBlock, env: dict[str, Any], prefix: Optional[str]) -> None:
        for conn in block.connections:
            source = block.resolve_endpoint(conn.source)
            sink = block.resolve_endpoint(conn.sink)
            for src, dst in zip(expand_elements(source), expand_elements(sink)):
                self.drivers[_globalize(dst, prefix)] = _globalize(src, prefix)

        for inst in block.instances.values():
            path = f"{prefix}.{inst.name}" if prefix else inst.name
            modifications = {b.name: b.expr for b in inst.modified_bindings}
            bindings, sizes = bind_parameters(
                inst.block_type,
                modifications,
                env,
                path,
                location=inst.location,
                block=block.name,
            )
            values = {name: b.value for name, b in bindings.items()}
            if inst.block_type.is_composite:
                self.walk(inst.block_type.composite, values, path)
            else:
                self.flat.instances[path] = FlatInstance(
                    path=path,
                    block_type=inst.block_type,
                    parameters=values,
                    connector_sizes=sizes,
                    tags=inst.tags,
                )

    def trace(self, sink: Endpoint) -> Optional[Endpoint]:
        source = self.drivers.get(sink)
        seen = {sink}
        # Follow the signal through composite connectors
        while source is not None and source.instance is not None:
            if source.instance in self.flat.instances:
                return source
            if source in seen:
                return None
            seen.add(source)
            source = self.drivers.get(source)
        return source

    def connect(self) -> None:
        sinks: list[Endpoint] = []
        for inst in self.flat.instances.values():
            for decl in inst.block_type.inputs:
                sinks.extend(_elements(inst.path, decl.name, inst.connector_sizes.get(decl.name)))
        for decl in self.flat.connectors:
            if decl.is_output:
                sinks.extend(_elements(None, decl.name, self.flat.connector_sizes.get(decl.name)))

        for sink in sinks:
            source = self.trace(sink)
            if source is not None:
                self.flat.connections.append(FlatConnection(source, sink))


def _elements(instance: Optional[str], connector: str, size: Optional[int]) -> list[Endpoint]:
    if size is None:
        return [Endpoint(instance, connector)]
    return [Endpoint(instance, connector, i) for i in range(1, size + 1)]


def flatten(block: CompositeBlock) -> FlatBlock:
    """
    Flatten a built composite block.

    Args:
        block: Built (normally validated) composite block

    Returns:
        FlatBlock with elementary instances and element-wise connections.
        Sinks without a driver (only possible for unvalidated blocks) are
        left out.

    Example:
        >>> flat = flatten(resolver.resolve("Library.Supervisor").composite)
        >>> list(flat.instances)
        ['ctl.gain', 'ctl.maxValue', 'delay']
    """
    flattener = _Flattener(block)
    flattener.walk(block, dict(block.parameter_values), None)
    flattener.connect()
    return flattener.flat
