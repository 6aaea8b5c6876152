"""
Model builder: syntax tree -> CompositeBlock.

The builder turns the declarations of one class into the block's own
parameters and connectors, instantiates every block it uses (resolving
composite types recursively through the symbol table), binds parameters
and normalises each connect() into a source -> sink Connection.

Building fails fast: the first structural error is raised and the
partially built block is discarded.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Optional

from cdl.annotations import TagIndex, extract_tags
from cdl.catalog import SymbolTable, connector_kind
from cdl.errors import (
    ArrayDimensionMismatchError,
    DuplicateDeclarationError,
    ExpressionError,
    FinalModificationError,
    InvalidConnectionDirectionError,
    SourceLocation,
    TypeMismatchError,
    UnknownBlockError,
    UnknownConnectorError,
    UnknownParameterError,
    UnsupportedConstructError,
)
from cdl.ir.declarations import ConnectorDecl, ParameterDecl
from cdl.ir.expr import Colon, EnumValue, Expr, evaluate, references
from cdl.ir.model import (
    BlockType,
    CompositeBlock,
    Connection,
    Endpoint,
    Instance,
    ParameterBinding,
    ResolvedEndpoint,
)
from cdl.ir.types import PRIMITIVE_TYPE_NAMES, PrimitiveType
from cdl.parser.syntax import (
    Argument,
    ClassDefinition,
    ComponentDeclaration,
    ComponentRef,
    ConnectClause,
)


def _describe(value: Any) -> str:
    if isinstance(value, bool):
        return "Boolean"
    if isinstance(value, int):
        return "Integer"
    if isinstance(value, float):
        return "Real"
    if isinstance(value, str):
        return "String"
    if isinstance(value, EnumValue):
        return f"enumeration literal {value}"
    return type(value).__name__


def coerce_value(
    primitive_type: PrimitiveType,
    value: Any,
    what: str,
    enum_type: Optional[str] = None,
    location: Optional[SourceLocation] = None,
    block: Optional[str] = None,
) -> Any:
    """
    Check a parameter value against its declared type.

    Integer values are widened to Real. Arrays are checked element-wise.

    Raises:
        TypeMismatchError: If the value does not have the declared type
    """
    if value is None:
        return None
    if isinstance(value, tuple):
        return tuple(
            coerce_value(primitive_type, v, what, enum_type, location, block) for v in value
        )

    ok = False
    if primitive_type == PrimitiveType.REAL:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif primitive_type == PrimitiveType.INTEGER:
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif primitive_type == PrimitiveType.BOOLEAN:
        ok = isinstance(value, bool)
    elif primitive_type == PrimitiveType.STRING:
        ok = isinstance(value, str)
    elif primitive_type == PrimitiveType.ENUMERATION:
        # Enumeration types may be spelled with or without their package prefix
        ok = isinstance(value, EnumValue) and (
            enum_type is None
            or value.type_name.rpartition(".")[2] == enum_type.rpartition(".")[2]
        )

    if not ok:
        expected = enum_type or primitive_type.value
        raise TypeMismatchError(
            f"{what} has type {expected} but is bound to {_describe(value)} {value}",
            location=location,
            block=block,
            expected=expected,
            actual=_describe(value),
        )
    return value


def evaluate_size(
    expr: Expr,
    env: Mapping[str, Any],
    what: str,
    location: Optional[SourceLocation] = None,
    block: Optional[str] = None,
) -> Optional[int]:
    """Evaluate an array dimension; None if it depends on an unknown value."""
    size = evaluate(expr, env, location, block)
    if size is None:
        return None
    if not isinstance(size, int) or isinstance(size, bool):
        raise TypeMismatchError(
            f"Dimension of {what} must be an Integer, got {_describe(size)} {size}",
            location=location,
            block=block,
        )
    if size < 0:
        raise ArrayDimensionMismatchError(
            f"Dimension of {what} is negative ({size})", location=location, block=block
        )
    return size


class ParameterScope:
    """
    Evaluates the parameters of one scope in dependency order.

    Parameters without a modification are evaluated from their declared
    default in this scope, so defaults may refer to other parameters of the
    same block regardless of declaration order. Modified parameters are
    evaluated in the environment the modification was written in.
    """

    def __init__(
        self,
        decls: Iterable[ParameterDecl],
        owner: str,
        location: Optional[SourceLocation] = None,
        block: Optional[str] = None,
    ):
        self.decls = {d.name: d for d in decls}
        self.owner = owner
        self.location = location
        self.block = block
        self.exprs: dict[str, Optional[Expr]] = {n: d.default for n, d in self.decls.items()}
        self.env: dict[str, Any] = {}
        self._outer: dict[str, Mapping[str, Any]] = {}
        self._active: list[str] = []

    def modify(self, name: str, expr: Expr, outer_env: Mapping[str, Any]) -> None:
        self.exprs[name] = expr
        self._outer[name] = outer_env

    def is_modified(self, name: str) -> bool:
        return name in self._outer

    def value(self, name: str) -> Any:
        """Value of one parameter, evaluating the parameters it refers to first."""
        self._visit(name)
        return self.env[name]

    def evaluate_all(self) -> dict[str, Any]:
        for name in self.decls:
            self._visit(name)
        return self.env

    def _visit(self, name: str) -> None:
        if name in self.env:
            return
        if name in self._active:
            cycle = self._active[self._active.index(name) :] + [name]
            raise ExpressionError(
                f"Circular parameter definition in {self.owner or self.block}: "
                f"{' -> '.join(cycle)}",
                location=self.location,
                block=self.block,
                cycle=cycle,
            )
        self._active.append(name)
        decl = self.decls[name]
        expr = self.exprs[name]

        deps = references(decl.dimension)
        scope_env = self._outer.get(name)
        if scope_env is None:
            deps |= references(expr)
            scope_env = self.env
        for ref in sorted(deps):
            if ref in self.decls:
                self._visit(ref)

        value = None if expr is None else evaluate(expr, scope_env, self.location, self.block)
        self.env[name] = self._check(decl, value)
        self._active.pop()

    def _check(self, decl: ParameterDecl, value: Any) -> Any:
        what = f"parameter '{self.owner}.{decl.name}'" if self.owner else f"parameter '{decl.name}'"
        if decl.dimension is None:
            if isinstance(value, tuple):
                raise ArrayDimensionMismatchError(
                    f"Scalar {what} is bound to an array of {len(value)} elements",
                    location=self.location,
                    block=self.block,
                    parameter=decl.name,
                )
        else:
            expected = None
            if not isinstance(decl.dimension, Colon):
                expected = evaluate_size(decl.dimension, self.env, what, self.location, self.block)
            if value is not None:
                if not isinstance(value, tuple):
                    raise ArrayDimensionMismatchError(
                        f"Array {what} is bound to the scalar {value}",
                        location=self.location,
                        block=self.block,
                        parameter=decl.name,
                    )
                if any(isinstance(v, tuple) for v in value):
                    raise ArrayDimensionMismatchError(
                        f"{what} is bound to a multi-dimensional array",
                        location=self.location,
                        block=self.block,
                        parameter=decl.name,
                    )
                if expected is not None and len(value) != expected:
                    raise ArrayDimensionMismatchError(
                        f"{what} has dimension {expected} but is bound to "
                        f"{len(value)} elements",
                        location=self.location,
                        block=self.block,
                        parameter=decl.name,
                        expected=expected,
                        actual=len(value),
                    )
        return coerce_value(
            decl.primitive_type, value, what, decl.enum_type, self.location, self.block
        )


def connector_size(
    decl: ConnectorDecl,
    env: Mapping[str, Any],
    owner: str,
    location: Optional[SourceLocation] = None,
    block: Optional[str] = None,
) -> Optional[int]:
    """Resolved size of a connector in a parameter environment (None for scalars)."""
    if decl.dimension is None:
        return None
    what = f"connector '{owner}.{decl.name}'" if owner else f"connector '{decl.name}'"
    if isinstance(decl.dimension, Colon):
        raise UnsupportedConstructError(
            f"Size of {what} must be given explicitly", location=location, block=block
        )
    size = evaluate_size(decl.dimension, env, what, location, block)
    if size is None:
        raise ExpressionError(
            f"Size of {what} depends on a parameter without a value",
            location=location,
            block=block,
        )
    return size


def bind_parameters(
    block_type: BlockType,
    modifications: Mapping[str, Expr],
    outer_env: Mapping[str, Any],
    instance: str,
    location: Optional[SourceLocation] = None,
    block: Optional[str] = None,
) -> tuple[dict[str, ParameterBinding], dict[str, Optional[int]]]:
    """
    Bind the parameters of an instance and size its connectors.

    Args:
        block_type: Type being instantiated
        modifications: Parameter name -> expression as written in the enclosing scope
        outer_env: Parameter values of the enclosing scope
        instance: Instance name, for diagnostics
        location: Location of the instantiation
        block: Qualified name of the enclosing block

    Returns:
        (bindings by parameter name, connector sizes by connector name)

    Raises:
        UnknownParameterError: If a modification names no public parameter
        FinalModificationError: If a modification targets a final parameter
    """
    for name in modifications:
        decl = block_type.get_parameter(name)
        if decl is None or decl.protected:
            raise UnknownParameterError(
                f"Block '{block_type.name}' has no parameter '{name}' (instance '{instance}')",
                location=location,
                block=block,
                instance=instance,
                parameter=name,
            )
        if decl.final:
            raise FinalModificationError(
                f"Parameter '{name}' of '{block_type.name}' is final and cannot be "
                f"modified (instance '{instance}')",
                location=location,
                block=block,
                instance=instance,
                parameter=name,
            )

    scope = ParameterScope(block_type.parameters, instance, location, block)
    for name, expr in modifications.items():
        scope.modify(name, expr, outer_env)
    values = scope.evaluate_all()

    bindings = {
        decl.name: ParameterBinding(
            name=decl.name,
            expr=scope.exprs[decl.name],
            value=values[decl.name],
            modified=scope.is_modified(decl.name),
        )
        for decl in block_type.parameters
    }
    sizes = {
        decl.name: connector_size(decl, values, instance, location, block)
        for decl in block_type.connectors
    }
    return bindings, sizes


def structural_parameters(block_type: BlockType) -> frozenset[str]:
    """
    Parameters of a block type that determine array sizes.

    These are the parameters its connector and parameter dimensions refer
    to and, for a composite type, those that flow into a structural
    parameter of one of its instances. A parameter whose default refers to
    other parameters makes those structural too.
    """
    names: set[str] = set()
    for decl in (*block_type.parameters, *block_type.connectors):
        names |= references(decl.dimension)
    if block_type.composite is not None:
        for inst in block_type.composite.instances.values():
            inner = structural_parameters(inst.block_type)
            for binding in inst.modified_bindings:
                if binding.name in inner:
                    names |= references(binding.expr)

    pending = list(names)
    while pending:
        decl = block_type.get_parameter(pending.pop())
        if decl is None:
            continue
        for ref in references(decl.default) - names:
            names.add(ref)
            pending.append(ref)
    return frozenset(n for n in names if block_type.get_parameter(n) is not None)


def _lookup_candidates(type_name: str, within: Optional[str]) -> list[str]:
    """Qualified names a type reference may denote, innermost package first."""
    candidates = []
    if within:
        parts = within.split(".")
        for i in range(len(parts), 0, -1):
            candidates.append(".".join(parts[:i]) + "." + type_name)
    candidates.append(type_name)
    return candidates


class ModelBuilder:
    """
    Builds CompositeBlocks from syntax trees.

    Example:
        >>> builder = ModelBuilder(symbols)
        >>> block = builder.build(parse(source), "Library.Controller")
        >>> list(block.instances)
        ['gain', 'maxValue']
    """

    def __init__(self, symbols: SymbolTable):
        self.symbols = symbols

    def build(
        self,
        tree: ClassDefinition,
        qualified_name: Optional[str] = None,
        tags: Optional[TagIndex] = None,
    ) -> CompositeBlock:
        """
        Build the block declared by `tree`.

        Args:
            tree: Parsed class definition
            qualified_name: Name to build under (defaults to within + class name)
            tags: Tags already extracted from `tree` (extracted here if omitted)

        Returns:
            The populated, not yet validated CompositeBlock
        """
        name = qualified_name or tree.qualified_name
        if tree.restriction == "package":
            raise UnsupportedConstructError(
                f"'{name}' is a package, not a block", location=tree.location, block=name
            )
        if tree.partial:
            raise UnsupportedConstructError(
                f"Partial class '{name}' cannot be built", location=tree.location, block=name
            )
        if tags is None:
            tags = extract_tags(tree)

        block = CompositeBlock(
            name=name,
            description=tree.description,
            documentation=dict(tags.documentation),
            tags=tags.block,
            metadata=dict(tags.metadata),
        )

        parameters: list[ComponentDeclaration] = []
        connectors: list[ComponentDeclaration] = []
        instances: list[ComponentDeclaration] = []
        for decl in tree.components:
            if decl.parameter or decl.constant:
                parameters.append(decl)
            elif connector_kind(decl.type_name) is not None:
                connectors.append(decl)
            elif decl.type_name in PRIMITIVE_TYPE_NAMES:
                raise UnsupportedConstructError(
                    f"Variable '{decl.name}' is not permitted; declare it as a parameter "
                    "or use a connector from CDL.Interfaces",
                    location=decl.location,
                    block=name,
                )
            else:
                instances.append(decl)

        self._add_parameters(block, parameters)
        for decl in connectors:
            self._add_connector(block, decl, tags)
        for decl in instances:
            self._add_instance(block, decl, tree.within, tags)
        for clause in tree.connects:
            self._add_connection(block, clause)
        return block

    # ==================== Declarations ====================

    def _parameter_decl(self, block: str, decl: ComponentDeclaration) -> ParameterDecl:
        if decl.type_name in PRIMITIVE_TYPE_NAMES:
            primitive_type = PrimitiveType.from_name(decl.type_name)
            enum_type = None
        elif connector_kind(decl.type_name) is not None or decl.type_name in self.symbols:
            raise UnsupportedConstructError(
                f"Parameter '{decl.name}' must have a primitive or enumeration type, "
                f"not '{decl.type_name}'",
                location=decl.location,
                block=block,
            )
        else:
            primitive_type = PrimitiveType.ENUMERATION
            enum_type = decl.type_name

        if decl.condition is not None:
            raise UnsupportedConstructError(
                f"Conditional declaration of parameter '{decl.name}' is not supported",
                location=decl.location,
                block=block,
            )
        attributes = []
        for arg in decl.arguments:
            if arg.value is None or arg.arguments:
                raise UnsupportedConstructError(
                    f"Modification '{arg.name}' of parameter '{decl.name}' is not supported",
                    location=decl.location,
                    block=block,
                )
            attributes.append((arg.name, _attribute_value(arg)))

        dimensions = decl.dimensions
        return ParameterDecl(
            name=decl.name,
            primitive_type=primitive_type,
            dimension=dimensions[0] if dimensions else None,
            default=decl.binding,
            description=decl.description,
            final=decl.final or decl.constant,
            protected=decl.protected,
            enum_type=enum_type,
            attributes=tuple(attributes),
        )

    def _add_parameters(self, block: CompositeBlock, decls: list[ComponentDeclaration]) -> None:
        params = [self._parameter_decl(block.name, d) for d in decls]
        locations = {d.name: d.location for d in decls}
        scope = ParameterScope(params, "", block=block.name)
        values = {}
        for param in params:
            # Errors are reported at the declaration being evaluated
            scope.location = locations[param.name]
            values[param.name] = scope.value(param.name)
        for param in params:
            block.add_parameter(param, values[param.name], locations[param.name])

    def _add_connector(
        self, block: CompositeBlock, decl: ComponentDeclaration, tags: TagIndex
    ) -> None:
        direction, primitive_type = connector_kind(decl.type_name)
        if decl.condition is not None:
            raise UnsupportedConstructError(
                f"Conditional connector '{decl.name}' is not supported",
                location=decl.location,
                block=block.name,
            )
        if decl.binding is not None:
            raise UnsupportedConstructError(
                f"Connector '{decl.name}' cannot have a binding equation",
                location=decl.location,
                block=block.name,
            )
        attrs: dict[str, str] = {}
        for arg in decl.arguments:
            if arg.name in ("unit", "quantity") and arg.value is not None:
                value = evaluate(arg.value, block.parameter_values, decl.location, block.name)
                if not isinstance(value, str):
                    raise TypeMismatchError(
                        f"'{arg.name}' of connector '{decl.name}' must be a String",
                        location=decl.location,
                        block=block.name,
                    )
                attrs[arg.name] = value

        dimensions = decl.dimensions
        connector = ConnectorDecl(
            name=decl.name,
            direction=direction,
            primitive_type=primitive_type,
            dimension=dimensions[0] if dimensions else None,
            quantity=attrs.get("quantity", ""),
            unit=attrs.get("unit", ""),
            description=decl.description,
            tags=tags.for_connector(decl.name),
        )
        size = connector_size(connector, block.parameter_values, "", decl.location, block.name)
        block.add_connector(connector, size, decl.location)

    def _resolve_type(
        self, type_name: str, within: Optional[str], location: Optional[SourceLocation], block: str
    ) -> BlockType:
        candidates = _lookup_candidates(type_name, within)
        for candidate in candidates:
            if candidate in self.symbols:
                return self.symbols.resolve(candidate)
        for candidate in candidates:
            try:
                return self.symbols.resolve(candidate)
            except UnknownBlockError as exc:
                # Only a miss on this very name means "try the next scope"
                if exc.details.get("name") != candidate:
                    raise
        raise UnknownBlockError(
            f"Unknown block '{type_name}' in '{block}'",
            location=location,
            block=block,
            name=type_name,
        )

    def _add_instance(
        self,
        block: CompositeBlock,
        decl: ComponentDeclaration,
        within: Optional[str],
        tags: TagIndex,
    ) -> None:
        if decl.condition is not None:
            raise UnsupportedConstructError(
                f"Conditional instantiation of '{decl.name}' is not supported",
                location=decl.location,
                block=block.name,
                instance=decl.name,
            )
        if decl.dimensions:
            raise UnsupportedConstructError(
                f"Arrays of block instances are not supported ('{decl.name}')",
                location=decl.location,
                block=block.name,
                instance=decl.name,
            )
        if decl.binding is not None:
            raise UnsupportedConstructError(
                f"Instance '{decl.name}' cannot have a binding equation",
                location=decl.location,
                block=block.name,
                instance=decl.name,
            )

        block_type = self._resolve_type(decl.type_name, within, decl.location, block.name)

        modifications: dict[str, Expr] = {}
        for arg in decl.arguments:
            self._check_modification(block.name, decl, arg)
            if arg.name in modifications:
                raise DuplicateDeclarationError(
                    f"Parameter '{arg.name}' of instance '{decl.name}' is modified more than once",
                    location=decl.location,
                    block=block.name,
                    instance=decl.name,
                )
            modifications[arg.name] = arg.value

        bindings, sizes = bind_parameters(
            block_type,
            modifications,
            block.parameter_values,
            decl.name,
            location=decl.location,
            block=block.name,
        )
        if block_type.composite is not None:
            self._check_structure(block, decl, block_type, bindings)
        block.add_instance(
            Instance(
                name=decl.name,
                block_type=block_type,
                bindings=bindings,
                connector_sizes=sizes,
                description=decl.description,
                tags=tags.for_instance(decl.name),
                protected=decl.protected,
                location=decl.location,
            )
        )

    def _check_structure(
        self,
        block: CompositeBlock,
        decl: ComponentDeclaration,
        block_type: BlockType,
        bindings: Mapping[str, ParameterBinding],
    ) -> None:
        # A composite type is built and validated once, with its own defaults
        defaults = block_type.composite.parameter_values
        for name in sorted(structural_parameters(block_type)):
            value = bindings[name].value
            if value != defaults[name]:
                raise UnsupportedConstructError(
                    f"Instance '{decl.name}' sets '{name}' of composite block "
                    f"'{block_type.name}' to {value!r}, which changes array sizes inside it "
                    f"(built with {name} = {defaults[name]!r})",
                    location=decl.location,
                    block=block.name,
                    instance=decl.name,
                    parameter=name,
                )

    def _check_modification(self, block: str, decl: ComponentDeclaration, arg: Argument) -> None:
        if arg.value is None or arg.arguments or "." in arg.name:
            raise UnsupportedConstructError(
                f"Modification '{arg.name}' of instance '{decl.name}' is not supported; "
                "only parameter bindings are permitted",
                location=decl.location,
                block=block,
                instance=decl.name,
            )

    # ==================== Connections ====================

    def _endpoint(
        self, block: CompositeBlock, ref: ComponentRef, clause: ConnectClause
    ) -> ResolvedEndpoint:
        location = ref.location or clause.location
        parts = ref.parts
        if len(parts) == 1:
            instance, part = None, parts[0]
        elif len(parts) == 2:
            instance, part = parts[0].name, parts[1]
            if parts[0].subscripts:
                raise UnsupportedConstructError(
                    f"Arrays of block instances are not supported ('{ref}')",
                    location=location,
                    block=block.name,
                )
        else:
            raise UnknownConnectorError(
                f"'{ref}' does not name a connector of '{block.name}' or of one of its instances",
                location=location,
                block=block.name,
                connector=str(ref),
            )

        if instance is not None and instance not in block.instances:
            raise UnknownConnectorError(
                f"Unknown instance '{instance}' in {clause}",
                location=location,
                block=block.name,
                instance=instance,
                connector=str(ref),
            )

        index = None
        if part.subscripts:
            if len(part.subscripts) != 1 or isinstance(part.subscripts[0], Colon):
                raise UnsupportedConstructError(
                    f"Only single-element subscripts are supported in {clause}",
                    location=location,
                    block=block.name,
                )
            index = evaluate(part.subscripts[0], block.parameter_values, location, block.name)
            if not isinstance(index, int) or isinstance(index, bool):
                raise TypeMismatchError(
                    f"Subscript of '{ref}' must be a known Integer",
                    location=location,
                    block=block.name,
                    connector=str(ref),
                )

        resolved = block.resolve_endpoint(Endpoint(instance, part.name, index))
        if resolved is None:
            owner = f"instance '{instance}'" if instance else f"'{block.name}'"
            raise UnknownConnectorError(
                f"{owner} has no connector '{part.name}' ({clause})",
                location=location,
                block=block.name,
                instance=instance,
                connector=str(ref),
            )
        if index is not None:
            if resolved.size is None:
                raise ArrayDimensionMismatchError(
                    f"Scalar connector '{resolved.endpoint.connector_path}' cannot be indexed",
                    location=location,
                    block=block.name,
                    connector=str(ref),
                )
            if not 1 <= index <= resolved.size:
                raise ArrayDimensionMismatchError(
                    f"Index {index} of '{resolved.endpoint.connector_path}' is out of range "
                    f"1..{resolved.size}",
                    location=location,
                    block=block.name,
                    connector=str(ref),
                )
        return resolved

    def _add_connection(self, block: CompositeBlock, clause: ConnectClause) -> None:
        left = self._endpoint(block, clause.left, clause)
        right = self._endpoint(block, clause.right, clause)

        if left.is_source == right.is_source:
            role = "signal sources" if left.is_source else "signal sinks"
            raise InvalidConnectionDirectionError(
                f"{clause} connects two {role}; exactly one side must be an output",
                location=clause.location,
                block=block.name,
                left=str(left.endpoint),
                right=str(right.endpoint),
            )
        source, sink = (left, right) if left.is_source else (right, left)

        if source.element_count != sink.element_count:
            raise ArrayDimensionMismatchError(
                f"{clause} connects {source.element_count} element(s) to "
                f"{sink.element_count} element(s)",
                location=clause.location,
                block=block.name,
                source=str(source.endpoint),
                sink=str(sink.endpoint),
            )
        block.add_connection(Connection(source.endpoint, sink.endpoint, clause.location))


def _attribute_value(arg: Argument) -> Any:
    # Attributes that refer to parameters are kept as written
    if references(arg.value):
        return str(arg.value)
    return evaluate(arg.value, {})
