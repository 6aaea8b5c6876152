"""
cdl - Semantic compiler and validator for the Control Description Language

Parses CDL block sources, builds composite blocks from a catalog of
elementary blocks, and validates connections, single assignment and
algebraic loops before exporting the result for downstream tools.
"""

from beartype.claw import beartype_package

beartype_package(__name__)

__version__ = "0.1.0"

from . import ir
from . import parser
from .catalog import Catalog, SymbolTable
from .errors import CDLError, CDLWarning, Diagnostic, ErrorKind, SourceLocation
from .flatten import FlatBlock, flatten
from .resolver import CompositeResolver, SourceFile
from .validation import ValidationResult, validate_block

__all__ = [
    "ir",
    "parser",
    "Catalog",
    "SymbolTable",
    "CompositeResolver",
    "SourceFile",
    "CDLError",
    "CDLWarning",
    "Diagnostic",
    "ErrorKind",
    "SourceLocation",
    "ValidationResult",
    "validate_block",
    "FlatBlock",
    "flatten",
    "__version__",
]
