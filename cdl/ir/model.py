"""
Block diagram representation in the IR.

A CompositeBlock is a named scope holding instances of other blocks,
connections between their connectors, and its own exposed parameters and
connectors. BlockType is the interface view shared by every instance of a
block; for composite blocks it also references the built CompositeBlock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from cdl.errors import DuplicateInstanceNameError, SourceLocation
from cdl.ir.declarations import ConnectorDecl, ParameterDecl, TagPayload
from cdl.ir.expr import Expr
from cdl.ir.types import BlockKind, Direction


@dataclass(frozen=True)
class BlockType:
    """
    Interface of a block, shared by all of its instances.

    direct_dependencies lists (output, input) connector pairs where the
    output depends on the input within the same evaluation instant.
    State-holding blocks (delays, integrators, samplers) declare none.
    """

    name: str
    kind: BlockKind
    parameters: tuple[ParameterDecl, ...] = ()
    connectors: tuple[ConnectorDecl, ...] = ()
    direct_dependencies: frozenset[tuple[str, str]] = frozenset()
    description: str = ""
    tags: tuple[TagPayload, ...] = ()
    composite: Optional[CompositeBlock] = field(default=None, repr=False, hash=False)

    def __post_init__(self):
        names = [p.name for p in self.parameters] + [c.name for c in self.connectors]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Block type '{self.name}' declares {duplicates} more than once")
        connectors = {c.name: c for c in self.connectors}
        for out, inp in self.direct_dependencies:
            if out not in connectors or not connectors[out].is_output:
                raise ValueError(f"Block type '{self.name}': '{out}' is not an output connector")
            if inp not in connectors or not connectors[inp].is_input:
                raise ValueError(f"Block type '{self.name}': '{inp}' is not an input connector")

    @property
    def is_elementary(self) -> bool:
        return self.kind == BlockKind.ELEMENTARY

    @property
    def is_composite(self) -> bool:
        return self.kind == BlockKind.COMPOSITE

    @property
    def inputs(self) -> list[ConnectorDecl]:
        return [c for c in self.connectors if c.is_input]

    @property
    def outputs(self) -> list[ConnectorDecl]:
        return [c for c in self.connectors if c.is_output]

    def get_parameter(self, name: str) -> Optional[ParameterDecl]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def get_connector(self, name: str) -> Optional[ConnectorDecl]:
        for conn in self.connectors:
            if conn.name == name:
                return conn
        return None

    def feeds_through(self, output: str) -> list[str]:
        """Inputs on which `output` depends directly, in connector order."""
        return [c.name for c in self.inputs if (output, c.name) in self.direct_dependencies]

    def signature(self) -> tuple:
        """Comparable interface used to detect conflicting re-registration."""
        return (
            self.name,
            self.kind,
            tuple(
                (p.name, p.primitive_type, str(p.dimension), str(p.default), p.enum_type)
                for p in self.parameters
            ),
            tuple(
                (c.name, c.direction, c.primitive_type, str(c.dimension))
                for c in self.connectors
            ),
            tuple(sorted(self.direct_dependencies)),
        )


@dataclass(frozen=True)
class ParameterBinding:
    """
    Value of one parameter of an instance.

    expr is the modification as written, or the declared default when the
    instantiation does not modify the parameter (modified=False). value is
    the eagerly evaluated result; None if it depends on an unknown value.
    """

    name: str
    expr: Optional[Expr]
    value: Any
    modified: bool = False


@dataclass
class Instance:
    """Instance of a block type inside a composite scope."""

    name: str
    block_type: BlockType
    bindings: dict[str, ParameterBinding] = field(default_factory=dict)
    connector_sizes: dict[str, Optional[int]] = field(default_factory=dict)
    description: str = ""
    tags: tuple[TagPayload, ...] = ()
    protected: bool = False
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)

    @property
    def type_name(self) -> str:
        return self.block_type.name

    def get_connector(self, name: str) -> Optional[ConnectorDecl]:
        return self.block_type.get_connector(name)

    def size(self, connector: str) -> Optional[int]:
        """Resolved array size of a connector (None for scalars)."""
        return self.connector_sizes.get(connector)

    def value(self, parameter: str) -> Any:
        binding = self.bindings.get(parameter)
        return binding.value if binding is not None else None

    @property
    def modified_bindings(self) -> list[ParameterBinding]:
        return [b for b in self.bindings.values() if b.modified]


@dataclass(frozen=True)
class Endpoint:
    """
    One side of a connection.

    instance is None for a connector of the enclosing composite block.
    index is the 1-based array element, or None for a whole connector.
    """

    instance: Optional[str]
    connector: str
    index: Optional[int] = None

    @property
    def node(self) -> tuple[Optional[str], str]:
        return (self.instance, self.connector)

    @property
    def connector_path(self) -> str:
        return self.connector if self.instance is None else f"{self.instance}.{self.connector}"

    def element(self, index: Optional[int]) -> Endpoint:
        return Endpoint(self.instance, self.connector, index)

    def __str__(self):
        path = self.connector_path
        return f"{path}[{self.index}]" if self.index is not None else path


@dataclass(frozen=True)
class Connection:
    """Directed binding from a source (output) endpoint to a sink (input) endpoint."""

    source: Endpoint
    sink: Endpoint
    location: Optional[SourceLocation] = field(default=None, compare=False)

    def __str__(self):
        return f"connect({self.source}, {self.sink})"


@dataclass(frozen=True)
class ResolvedEndpoint:
    """Connector declaration behind an endpoint plus its role in the scope."""

    endpoint: Endpoint
    connector: ConnectorDecl
    size: Optional[int]
    is_source: bool

    @property
    def element_count(self) -> int:
        """Number of scalar signals carried by the endpoint."""
        if self.endpoint.index is not None or self.size is None:
            return 1
        return self.size


@dataclass
class CompositeBlock:
    """
    Represents a composite block: a scope of instances and connections.

    Parameters and connectors declared by the block itself form its
    interface. Inside the scope, the block's own inputs act as signal
    sources and its own outputs act as sinks.
    """

    name: str
    parameters: list[ParameterDecl] = field(default_factory=list)
    parameter_values: dict[str, Any] = field(default_factory=dict)
    connectors: list[ConnectorDecl] = field(default_factory=list)
    connector_sizes: dict[str, Optional[int]] = field(default_factory=dict)
    instances: dict[str, Instance] = field(default_factory=dict)
    connections: list[Connection] = field(default_factory=list)

    description: str = ""
    documentation: dict[str, str] = field(default_factory=dict)
    tags: tuple[TagPayload, ...] = ()

    # Other annotation content kept for downstream tooling (version, raw __cdl entries)
    metadata: dict[str, Any] = field(default_factory=dict)

    frozen: bool = field(default=False, compare=False)

    def _check_mutable(self) -> None:
        if self.frozen:
            raise ValueError(f"Composite block '{self.name}' is validated and cannot be modified")

    def _check_name_free(self, name: str, location: Optional[SourceLocation]) -> None:
        if name in self.instances or self.get_parameter(name) or self.get_connector(name):
            raise DuplicateInstanceNameError(
                f"Name '{name}' is already declared in '{self.name}'",
                location=location,
                block=self.name,
                instance=name,
            )

    def add_parameter(
        self, decl: ParameterDecl, value: Any, location: Optional[SourceLocation] = None
    ) -> None:
        """Add a declared parameter together with its evaluated value."""
        self._check_mutable()
        self._check_name_free(decl.name, location)
        self.parameters.append(decl)
        self.parameter_values[decl.name] = value

    def add_connector(
        self, decl: ConnectorDecl, size: Optional[int], location: Optional[SourceLocation] = None
    ) -> None:
        """Add an exposed connector together with its resolved size."""
        self._check_mutable()
        self._check_name_free(decl.name, location)
        self.connectors.append(decl)
        self.connector_sizes[decl.name] = size

    def add_instance(self, instance: Instance) -> None:
        """Add an instance; names are unique within the scope."""
        self._check_mutable()
        self._check_name_free(instance.name, instance.location)
        self.instances[instance.name] = instance

    def add_connection(self, connection: Connection) -> None:
        self._check_mutable()
        self.connections.append(connection)

    def freeze(self) -> None:
        """Mark the block immutable (done once validation succeeds)."""
        self.frozen = True

    def get_instance(self, name: str) -> Optional[Instance]:
        return self.instances.get(name)

    def get_parameter(self, name: str) -> Optional[ParameterDecl]:
        for param in self.parameters:
            if param.name == name:
                return param
        return None

    def get_connector(self, name: str) -> Optional[ConnectorDecl]:
        for conn in self.connectors:
            if conn.name == name:
                return conn
        return None

    @property
    def inputs(self) -> list[ConnectorDecl]:
        return [c for c in self.connectors if c.is_input]

    @property
    def outputs(self) -> list[ConnectorDecl]:
        return [c for c in self.connectors if c.is_output]

    def resolve_endpoint(self, endpoint: Endpoint) -> Optional[ResolvedEndpoint]:
        """Look up the connector behind an endpoint; None if it does not exist."""
        if endpoint.instance is None:
            decl = self.get_connector(endpoint.connector)
            if decl is None:
                return None
            size = self.connector_sizes.get(decl.name)
            # The block's own inputs drive signals inside the scope
            return ResolvedEndpoint(endpoint, decl, size, decl.direction == Direction.INPUT)

        instance = self.instances.get(endpoint.instance)
        if instance is None:
            return None
        decl = instance.get_connector(endpoint.connector)
        if decl is None:
            return None
        return ResolvedEndpoint(
            endpoint, decl, instance.size(decl.name), decl.direction == Direction.OUTPUT
        )

    def sinks(self) -> list[Endpoint]:
        """All sink elements of the scope: instance inputs and own outputs, element-wise."""
        result: list[Endpoint] = []
        for inst in self.instances.values():
            for decl in inst.block_type.inputs:
                result.extend(_elements(Endpoint(inst.name, decl.name), inst.size(decl.name)))
        for decl in self.outputs:
            result.extend(_elements(Endpoint(None, decl.name), self.connector_sizes.get(decl.name)))
        return result

    def to_block_type(
        self, direct_dependencies: frozenset[tuple[str, str]] = frozenset()
    ) -> BlockType:
        """Interface view of this composite block."""
        return BlockType(
            name=self.name,
            kind=BlockKind.COMPOSITE,
            parameters=tuple(self.parameters),
            connectors=tuple(self.connectors),
            direct_dependencies=direct_dependencies,
            description=self.description,
            tags=self.tags,
            composite=self,
        )

    def summary(self) -> str:
        """String representation of the block."""
        lines = [f"Block: {self.name}"]
        if self.description:
            lines.append(f"  Description: {self.description}")

        if self.parameters:
            lines.append(f"\n  Parameters ({len(self.parameters)}):")
            for p in self.parameters:
                lines.append(f"    {p.name} = {self.parameter_values.get(p.name)!r}")

        if self.inputs:
            lines.append(f"\n  Inputs ({len(self.inputs)}):")
            for c in self.inputs:
                lines.append(f"    {format_connector(c, self.connector_sizes.get(c.name))}")

        if self.outputs:
            lines.append(f"\n  Outputs ({len(self.outputs)}):")
            for c in self.outputs:
                lines.append(f"    {format_connector(c, self.connector_sizes.get(c.name))}")

        if self.instances:
            lines.append(f"\n  Instances ({len(self.instances)}):")
            for inst in self.instances.values():
                lines.append(f"    {inst.type_name} {inst.name}")

        if self.connections:
            lines.append(f"\n  Connections ({len(self.connections)}):")
            for conn in self.connections:
                lines.append(f"    {conn}")

        if self.tags:
            lines.append(f"\n  Tags ({len(self.tags)}):")
            for tag in self.tags:
                lines.append(f"    {tag.kind.value}")

        return "\n".join(lines)

    def __str__(self):
        return self.summary()


def _elements(endpoint: Endpoint, size: Optional[int]) -> list[Endpoint]:
    if size is None:
        return [endpoint]
    return [endpoint.element(i) for i in range(1, size + 1)]


def expand_elements(resolved: ResolvedEndpoint) -> list[Endpoint]:
    """Scalar elements covered by an endpoint (a whole array expands to each element)."""
    if resolved.endpoint.index is not None:
        return [resolved.endpoint]
    return _elements(resolved.endpoint, resolved.size)


def format_connector(decl: ConnectorDecl, size: Optional[int]) -> str:
    dims = f"[{size}]" if size is not None else ""
    unit = f" [{decl.unit}]" if decl.unit else ""
    return f"{decl.primitive_type.value} {decl.name}{dims}{unit}"
