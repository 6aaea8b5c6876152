"""
Semantic validation of composite blocks.

Provides validation for built CompositeBlocks, including:
- Connector type compatibility (primitive type and element count)
- Single assignment: every input element is driven by exactly one connection
- Acyclicity of direct (same-instant) dependencies
- Unit consistency across connections (warning only)

All enabled checks run and all issues are collected; raise_for_errors()
turns the result into the first error.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from cdl.causality import DependencyGraph, format_cycle
from cdl.errors import (
    AlgebraicLoopError,
    CDLError,
    Diagnostic,
    ErrorKind,
    MultipleAssignmentError,
    SourceLocation,
    TypeMismatchError,
    UnconnectedInputError,
    UnconnectedOutputError,
)
from cdl.ir.model import CompositeBlock, Connection, Endpoint, expand_elements


class ValidationSeverity(Enum):
    """Severity level of a validation issue."""

    ERROR = "error"  # Block is rejected
    WARNING = "warning"  # Advisory, the block is still valid


@dataclass
class ValidationIssue:
    """A single validation issue."""

    severity: ValidationSeverity
    kind: ErrorKind
    message: str
    location: Optional[str] = None  # e.g. "Library.Controller 12:3"
    details: dict = field(default_factory=dict)
    error: Optional[CDLError] = field(default=None, repr=False, compare=False)

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(
            kind=self.kind,
            location=self.location or "",
            message=self.message,
            details=dict(self.details),
        )

    def __str__(self) -> str:
        loc = f" at {self.location}" if self.location else ""
        return f"[{self.severity.value.upper()}] {self.kind.value}: {self.message}{loc}"


@dataclass
class ValidationResult:
    """Result of block validation."""

    block: str = ""
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """True if there are any errors."""
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        """True if there are any warnings."""
        return any(i.severity == ValidationSeverity.WARNING for i in self.issues)

    @property
    def is_valid(self) -> bool:
        """True if there are no errors (warnings are OK)."""
        return not self.has_errors

    @property
    def errors(self) -> list[ValidationIssue]:
        """Get all errors."""
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> list[ValidationIssue]:
        """Get all warnings."""
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    def add(self, issue: ValidationIssue) -> None:
        """Add an issue."""
        self.issues.append(issue)

    def add_error(self, error: CDLError) -> None:
        """Add an error."""
        self.add(
            ValidationIssue(
                severity=ValidationSeverity.ERROR,
                kind=error.kind,
                message=error.message,
                location=error.where or None,
                details=dict(error.details),
                error=error,
            )
        )

    def add_warning(
        self,
        kind: ErrorKind,
        message: str,
        location: Optional[str] = None,
        **details,
    ) -> None:
        """Add a warning."""
        self.add(
            ValidationIssue(
                severity=ValidationSeverity.WARNING,
                kind=kind,
                message=message,
                location=location,
                details=details,
            )
        )

    def diagnostics(self) -> list[Diagnostic]:
        """All issues as (kind, location, message) diagnostics."""
        return [i.to_diagnostic() for i in self.issues]

    def raise_for_errors(self) -> None:
        """Raise the first error, if any."""
        for issue in self.errors:
            if issue.error is not None:
                raise issue.error

    def summary(self) -> str:
        """Get a summary of validation results."""
        status = "VALID" if self.is_valid else "INVALID"
        name = f" {self.block}" if self.block else ""
        lines = [
            f"Validation Result{name}: {status}",
            f"  Errors: {len(self.errors)}",
            f"  Warnings: {len(self.warnings)}",
        ]

        if self.issues:
            lines.append("\nIssues:")
            for issue in self.issues:
                lines.append(f"  - {issue}")

        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()


def _where(block: CompositeBlock, location: Optional[SourceLocation]) -> str:
    return f"{block.name} {location}" if location is not None else block.name


def _check_connections(
    block: CompositeBlock, result: ValidationResult, check_types: bool, check_units: bool
) -> None:
    for conn in block.connections:
        source = block.resolve_endpoint(conn.source)
        sink = block.resolve_endpoint(conn.sink)
        if source is None or sink is None:
            continue

        src_type = source.connector.primitive_type
        sink_type = sink.connector.primitive_type
        if check_types and src_type != sink_type:
            result.add_error(
                TypeMismatchError(
                    f"{conn}: {src_type.value} signal '{conn.source}' cannot drive "
                    f"{sink_type.value} connector '{conn.sink}'",
                    location=conn.location,
                    block=block.name,
                    source=str(conn.source),
                    sink=str(conn.sink),
                )
            )
        elif check_types and source.element_count != sink.element_count:
            result.add_error(
                TypeMismatchError(
                    f"{conn}: '{conn.source}' carries {source.element_count} element(s) "
                    f"but '{conn.sink}' expects {sink.element_count}",
                    location=conn.location,
                    block=block.name,
                    source=str(conn.source),
                    sink=str(conn.sink),
                )
            )

        src_unit, sink_unit = source.connector.unit, sink.connector.unit
        if check_units and src_unit and sink_unit and src_unit != sink_unit:
            result.add_warning(
                ErrorKind.UNIT_MISMATCH,
                f"{conn}: unit '{src_unit}' of '{conn.source}' differs from "
                f"unit '{sink_unit}' of '{conn.sink}'",
                location=_where(block, conn.location),
                source=str(conn.source),
                sink=str(conn.sink),
            )


def _check_assignment(block: CompositeBlock, result: ValidationResult) -> None:
    drivers: dict[Endpoint, list[tuple[Endpoint, Connection]]] = {}
    for conn in block.connections:
        source = block.resolve_endpoint(conn.source)
        sink = block.resolve_endpoint(conn.sink)
        if source is None or sink is None:
            continue
        src_elements = expand_elements(source)
        sink_elements = expand_elements(sink)
        if len(src_elements) != len(sink_elements):
            continue  # reported by the type check
        for src, dst in zip(src_elements, sink_elements):
            drivers.setdefault(dst, []).append((src, conn))

    for sink in block.sinks():
        sources = drivers.get(sink, [])
        if not sources:
            if sink.instance is None:
                result.add_error(
                    UnconnectedOutputError(
                        f"Output '{sink}' of '{block.name}' is not connected",
                        block=block.name,
                        connector=str(sink),
                    )
                )
            else:
                instance = block.instances[sink.instance]
                result.add_error(
                    UnconnectedInputError(
                        f"Input '{sink}' is not connected",
                        location=instance.location,
                        block=block.name,
                        instance=sink.instance,
                        connector=str(sink),
                    )
                )
        elif len(sources) > 1:
            names = [str(src) for src, _ in sources]
            result.add_error(
                MultipleAssignmentError(
                    f"'{sink}' is the sink of {len(sources)} connections, "
                    f"from {', '.join(names)}",
                    location=sources[1][1].location,
                    block=block.name,
                    connector=str(sink),
                    sources=names,
                )
            )


def _check_loops(block: CompositeBlock, result: ValidationResult, graph: DependencyGraph) -> None:
    for cycle in graph.find_cycles():
        names = format_cycle(cycle)
        first = block.instances.get(cycle[0][0]) if cycle[0][0] is not None else None
        result.add_error(
            AlgebraicLoopError(
                f"Algebraic loop in '{block.name}': {' -> '.join(names + names[:1])}",
                location=first.location if first is not None else None,
                block=block.name,
                cycle=names,
            )
        )


def validate_block(
    block: CompositeBlock,
    check_types: bool = True,
    check_assignment: bool = True,
    check_loops: bool = True,
    check_units: bool = True,
    graph: Optional[DependencyGraph] = None,
) -> ValidationResult:
    """
    Validate a built composite block.

    Args:
        block: The block to validate
        check_types: Check primitive type and element count of each connection
        check_assignment: Check that every input element has exactly one driver
        check_loops: Check the direct-dependency graph for algebraic loops
        check_units: Warn about connections between different units
        graph: Dependency graph of `block`, if already built

    Returns:
        ValidationResult containing all issues found
    """
    result = ValidationResult(block=block.name)

    if check_types or check_units:
        _check_connections(block, result, check_types, check_units)

    if check_assignment:
        _check_assignment(block, result)

    if check_loops:
        if graph is None:
            graph = DependencyGraph.from_block(block)
        _check_loops(block, result, graph)

    return result
