"""
Intermediate Representation (IR) for CDL block diagrams.

This module provides the data structures the model builder produces:
block interfaces (BlockType), instances with bound parameters, connections
between connectors, and composite blocks that own them.
"""

from cdl.ir.types import BlockKind, Direction, PrimitiveType, TagKind
from cdl.ir.expr import (
    Expr,
    Literal,
    NameRef,
    ArrayLiteral,
    UnaryOp,
    BinaryOp,
    IfExpr,
    FunctionCall,
    Colon,
    EnumValue,
    evaluate,
    references,
)
from cdl.ir.declarations import ConnectorDecl, ParameterDecl, TagPayload
from cdl.ir.model import (
    BlockType,
    CompositeBlock,
    Connection,
    Endpoint,
    Instance,
    ParameterBinding,
    ResolvedEndpoint,
    expand_elements,
)

__all__ = [
    # Types
    "BlockKind",
    "Direction",
    "PrimitiveType",
    "TagKind",
    # Expressions
    "Expr",
    "Literal",
    "NameRef",
    "ArrayLiteral",
    "UnaryOp",
    "BinaryOp",
    "IfExpr",
    "FunctionCall",
    "Colon",
    "EnumValue",
    "evaluate",
    "references",
    # Declarations
    "ConnectorDecl",
    "ParameterDecl",
    "TagPayload",
    # Block diagram
    "BlockType",
    "CompositeBlock",
    "Connection",
    "Endpoint",
    "Instance",
    "ParameterBinding",
    "ResolvedEndpoint",
    "expand_elements",
]
