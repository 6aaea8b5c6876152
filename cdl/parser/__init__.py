"""
CDL source parsing: PEG grammar, syntax tree and syntax tree builder.
"""

from cdl.parser.grammar import CDL_GRAMMAR, CLOCK_CONSTRUCTS, EXCLUDED_KEYWORDS, KEYWORDS
from cdl.parser.parser import SyntaxTreeBuilder, parse, parse_expression
from cdl.parser.syntax import (
    Annotation,
    Argument,
    ClassDefinition,
    ComponentDeclaration,
    ComponentRef,
    ConnectClause,
    RefPart,
)

__all__ = [
    "CDL_GRAMMAR",
    "KEYWORDS",
    "SyntaxTreeBuilder",
    "parse",
    "parse_expression",
    "CLOCK_CONSTRUCTS",
    "EXCLUDED_KEYWORDS",
    "Annotation",
    "Argument",
    "ClassDefinition",
    "ComponentDeclaration",
    "ComponentRef",
    "ConnectClause",
    "RefPart",
]
