"""
Concrete syntax tree for the supported CDL grammar subset.

The tree stays close to the source: names are kept as written, expressions
use the IR expression nodes, and annotations are kept as generic
modification trees. Interpretation happens in the model builder and the
annotation extractor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from cdl.errors import SourceLocation
from cdl.ir.expr import Expr


@dataclass(frozen=True)
class Argument:
    """
    One element of a modification or annotation.

    Examples:
        k=2                        -> Argument("k", value=Literal(2))
        y(unit="K")                -> Argument("y", arguments=(Argument("unit", ...),))
        Placement(transformation(extent={{-10,-10},{10,10}}))
                                   -> nested arguments
        brick(<turtle text>)       -> Argument("brick", raw="<turtle text>")
    """

    name: str
    value: Optional[Expr] = None
    arguments: tuple[Argument, ...] = ()
    raw: Optional[str] = None
    each: bool = False
    final: bool = False
    description: str = ""
    location: Optional[SourceLocation] = None

    def get(self, name: str) -> Optional[Argument]:
        for arg in self.arguments:
            if arg.name == name:
                return arg
        return None


@dataclass(frozen=True)
class Annotation:
    """annotation(...) clause."""

    arguments: tuple[Argument, ...] = ()
    location: Optional[SourceLocation] = None

    def get(self, name: str) -> Optional[Argument]:
        for arg in self.arguments:
            if arg.name == name:
                return arg
        return None


@dataclass(frozen=True)
class ComponentDeclaration:
    """
    Parameter, connector or block instance declaration.

    Array sizes may be written on the type (Real[3] k) or on the name
    (Real k[3]); both are kept as written in type_subscripts/subscripts.
    """

    type_name: str
    name: str
    parameter: bool = False
    constant: bool = False
    final: bool = False
    protected: bool = False
    type_subscripts: tuple[Expr, ...] = ()
    subscripts: tuple[Expr, ...] = ()
    arguments: tuple[Argument, ...] = ()
    binding: Optional[Expr] = None
    condition: Optional[Expr] = None
    description: str = ""
    annotation: Optional[Annotation] = None
    location: Optional[SourceLocation] = None

    @property
    def dimensions(self) -> tuple[Expr, ...]:
        return self.type_subscripts + self.subscripts

    def get_argument(self, name: str) -> Optional[Argument]:
        for arg in self.arguments:
            if arg.name == name:
                return arg
        return None


@dataclass(frozen=True)
class RefPart:
    name: str
    subscripts: tuple[Expr, ...] = ()

    def __str__(self):
        if self.subscripts:
            return f"{self.name}[{','.join(str(s) for s in self.subscripts)}]"
        return self.name


@dataclass(frozen=True)
class ComponentRef:
    """Connector reference in a connect() equation, e.g. gain.y or mulSum.u[2]."""

    parts: tuple[RefPart, ...]
    location: Optional[SourceLocation] = None

    def __str__(self):
        return ".".join(str(p) for p in self.parts)


@dataclass(frozen=True)
class ConnectClause:
    """connect(left, right) with optional description and annotation."""

    left: ComponentRef
    right: ComponentRef
    description: str = ""
    annotation: Optional[Annotation] = None
    location: Optional[SourceLocation] = None

    def __str__(self):
        return f"connect({self.left}, {self.right})"


@dataclass(frozen=True)
class ClassDefinition:
    """One class declaration (block, model or package) with its within clause."""

    name: str
    restriction: str
    within: Optional[str] = None
    partial: bool = False
    description: str = ""
    components: tuple[ComponentDeclaration, ...] = ()
    connects: tuple[ConnectClause, ...] = ()
    annotation: Optional[Annotation] = None
    location: Optional[SourceLocation] = None
    filename: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        return f"{self.within}.{self.name}" if self.within else self.name

    def get_component(self, name: str) -> Optional[ComponentDeclaration]:
        for comp in self.components:
            if comp.name == name:
                return comp
        return None
