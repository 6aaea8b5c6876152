"""
Parameter and connector declarations.

These are the building pieces of a block interface (see cdl.ir.model.BlockType).
Declarations are immutable; dimensions and defaults are kept as expressions
and evaluated per instance, since they may depend on other parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from cdl.ir.expr import Expr
from cdl.ir.types import Direction, PrimitiveType, TagKind


@dataclass(frozen=True)
class TagPayload:
    """Opaque Brick (Turtle) or Haystack (JSON) payload."""

    kind: TagKind
    raw: str

    def __str__(self):
        return f"{self.kind.value}({self.raw})"


@dataclass(frozen=True)
class ParameterDecl:
    """
    Declared parameter of a block.

    The dimension is None for scalars; otherwise an expression that must
    evaluate to a non-negative Integer in the block's parameter scope.
    """

    name: str
    primitive_type: PrimitiveType = PrimitiveType.REAL
    dimension: Optional[Expr] = None
    default: Optional[Expr] = None
    description: str = ""
    final: bool = False
    protected: bool = False
    enum_type: Optional[str] = None  # qualified type name of Enumeration parameters
    attributes: tuple[tuple[str, Any], ...] = ()  # unit, quantity, min, max, ...

    @property
    def is_array(self) -> bool:
        return self.dimension is not None

    def attribute(self, name: str, default: Any = None) -> Any:
        for key, value in self.attributes:
            if key == name:
                return value
        return default


@dataclass(frozen=True)
class ConnectorDecl:
    """Input or output connector of a block."""

    name: str
    direction: Direction
    primitive_type: PrimitiveType = PrimitiveType.REAL
    dimension: Optional[Expr] = None
    quantity: str = ""
    unit: str = ""
    description: str = ""
    tags: tuple[TagPayload, ...] = ()

    @property
    def is_input(self) -> bool:
        return self.direction == Direction.INPUT

    @property
    def is_output(self) -> bool:
        return self.direction == Direction.OUTPUT

    @property
    def is_array(self) -> bool:
        return self.dimension is not None


