"""
Error taxonomy for the CDL compiler.

Every error raised while parsing, building or validating a block derives
from CDLError. Errors carry an ErrorKind, a human readable message, an
optional source location and the identity of the offending element
(qualified block name, instance, connector, cycle path) so that a
diagnostic can be reported without re-parsing the source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Kind of a CDL diagnostic."""

    SYNTAX = "SyntaxError"
    DUPLICATE_DECLARATION = "DuplicateDeclarationError"
    UNKNOWN_BLOCK = "UnknownBlockError"
    CYCLIC_IMPORT = "CyclicImportError"
    DUPLICATE_INSTANCE_NAME = "DuplicateInstanceNameError"
    UNKNOWN_PARAMETER = "UnknownParameterError"
    UNKNOWN_CONNECTOR = "UnknownConnectorError"
    FINAL_MODIFICATION = "FinalModificationError"
    INVALID_CONNECTION_DIRECTION = "InvalidConnectionDirectionError"
    ARRAY_DIMENSION_MISMATCH = "ArrayDimensionMismatchError"
    TYPE_MISMATCH = "TypeMismatchError"
    UNCONNECTED_INPUT = "UnconnectedInputError"
    UNCONNECTED_OUTPUT = "UnconnectedOutputError"
    MULTIPLE_ASSIGNMENT = "MultipleAssignmentError"
    ALGEBRAIC_LOOP = "AlgebraicLoopError"
    STORAGE_CONVENTION = "StorageConventionError"
    TAG_PLACEMENT = "TagPlacementError"
    UNSUPPORTED_CONSTRUCT = "UnsupportedConstructError"
    EXPRESSION = "ExpressionError"
    UNIT_MISMATCH = "UnitMismatch"


@dataclass(frozen=True)
class SourceLocation:
    """Position of a token in a CDL source file (1-based)."""

    line: int
    column: int
    filename: Optional[str] = None

    def __str__(self) -> str:
        prefix = f"{self.filename}:" if self.filename else ""
        return f"{prefix}{self.line}:{self.column}"


@dataclass(frozen=True)
class Diagnostic:
    """Structured diagnostic: (kind, location, message) plus identity details."""

    kind: ErrorKind
    location: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        loc = f" at {self.location}" if self.location else ""
        return f"{self.kind.value}: {self.message}{loc}"


class CDLWarning(UserWarning):
    """Advisory condition found while compiling a block."""


class CDLError(Exception):
    """Base class of all CDL compilation errors."""

    kind: ErrorKind = ErrorKind.SYNTAX

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        block: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.location = location
        self.block = block
        self.details = details

    @property
    def where(self) -> str:
        """Human readable location: qualified block name and/or source position."""
        parts = []
        if self.block:
            parts.append(self.block)
        if self.location is not None:
            parts.append(str(self.location))
        return " ".join(parts)

    def to_diagnostic(self) -> Diagnostic:
        return Diagnostic(
            kind=self.kind,
            location=self.where,
            message=self.message,
            details=dict(self.details),
        )

    def __str__(self) -> str:
        where = self.where
        return f"{self.message} ({where})" if where else self.message


class CDLSyntaxError(CDLError):
    """Source text does not conform to the supported CDL grammar."""

    kind = ErrorKind.SYNTAX


class DuplicateDeclarationError(CDLError):
    kind = ErrorKind.DUPLICATE_DECLARATION


class UnknownBlockError(CDLError):
    kind = ErrorKind.UNKNOWN_BLOCK


class CyclicImportError(CDLError):
    """A composite block contains itself, directly or transitively."""

    kind = ErrorKind.CYCLIC_IMPORT


class DuplicateInstanceNameError(CDLError):
    kind = ErrorKind.DUPLICATE_INSTANCE_NAME


class UnknownParameterError(CDLError):
    kind = ErrorKind.UNKNOWN_PARAMETER


class UnknownConnectorError(CDLError):
    kind = ErrorKind.UNKNOWN_CONNECTOR


class FinalModificationError(CDLError):
    kind = ErrorKind.FINAL_MODIFICATION


class InvalidConnectionDirectionError(CDLError):
    kind = ErrorKind.INVALID_CONNECTION_DIRECTION


class ArrayDimensionMismatchError(CDLError):
    kind = ErrorKind.ARRAY_DIMENSION_MISMATCH


class TypeMismatchError(CDLError):
    kind = ErrorKind.TYPE_MISMATCH


class UnconnectedInputError(CDLError):
    kind = ErrorKind.UNCONNECTED_INPUT


class UnconnectedOutputError(CDLError):
    kind = ErrorKind.UNCONNECTED_OUTPUT


class MultipleAssignmentError(CDLError):
    kind = ErrorKind.MULTIPLE_ASSIGNMENT


class AlgebraicLoopError(CDLError):
    """Cycle in the direct (same-instant) dependency graph."""

    kind = ErrorKind.ALGEBRAIC_LOOP

    @property
    def cycle(self) -> list[str]:
        return list(self.details.get("cycle", []))


class StorageConventionError(CDLError):
    kind = ErrorKind.STORAGE_CONVENTION


class TagPlacementError(CDLError):
    kind = ErrorKind.TAG_PLACEMENT


class UnsupportedConstructError(CDLError):
    """Construct that parses but whose semantics are not supported."""

    kind = ErrorKind.UNSUPPORTED_CONSTRUCT


class ExpressionError(CDLError):
    """Parameter expression cannot be evaluated."""

    kind = ErrorKind.EXPRESSION
