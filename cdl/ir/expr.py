"""
Expression representation in the IR.

CDL restricts parameter bindings to a small closed expression language:
literals, parameter references, enumeration literals, array literals,
arithmetic, relational and logical operators, if-expressions and a fixed set
of builtin functions. Expressions are evaluated eagerly when a parameter is
bound, so every binding in a built block carries both the expression as
written and its value.

A value is one of: float, int, bool, str, EnumValue, a tuple of values
(1-D array), or None when it depends on a parameter without a value.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union

from cdl.errors import (
    ExpressionError,
    SourceLocation,
    TypeMismatchError,
    UnknownParameterError,
    UnsupportedConstructError,
)


@dataclass(frozen=True)
class Expr:
    """Base class for all expressions."""

    pass


@dataclass(frozen=True)
class Literal(Expr):
    """Literal constant value."""

    value: Union[float, int, bool, str]

    def __str__(self):
        if isinstance(self.value, bool):
            return "true" if self.value else "false"
        if isinstance(self.value, str):
            escaped = self.value.replace("\\", "\\\\").replace('"', '\\"')
            return f'"{escaped}"'
        return repr(self.value)


@dataclass(frozen=True)
class NameRef(Expr):
    """
    Reference to a parameter, or an enumeration literal when qualified.

    Examples:
        k                                  -> NameRef("k")
        k[2]                               -> NameRef("k", (Literal(2),))
        Types.SimpleController.PI          -> NameRef("Types.SimpleController.PI")
    """

    name: str
    subscripts: tuple[Expr, ...] = ()

    def __str__(self):
        if self.subscripts:
            subs = ",".join(str(s) for s in self.subscripts)
            return f"{self.name}[{subs}]"
        return self.name

    @property
    def is_simple(self) -> bool:
        return "." not in self.name


@dataclass(frozen=True)
class ArrayLiteral(Expr):
    """Array literal: {elem1, elem2, ...}."""

    elements: tuple[Expr, ...]

    def __str__(self):
        return "{" + ", ".join(str(e) for e in self.elements) + "}"


@dataclass(frozen=True)
class UnaryOp(Expr):
    """Unary operation: op operand."""

    op: str  # "-", "+", "not"
    operand: Expr

    def __str__(self):
        if self.op == "not":
            return f"not {self.operand}"
        return f"{self.op}{self.operand}"


@dataclass(frozen=True)
class BinaryOp(Expr):
    """Binary operation: left op right."""

    op: str  # "+", "-", "*", "/", "^", "==", "<>", "<", ">", "and", ...
    left: Expr
    right: Expr

    def __str__(self):
        return f"({self.left} {self.op} {self.right})"


@dataclass(frozen=True)
class IfExpr(Expr):
    """Conditional expression: if condition then true_expr else false_expr."""

    condition: Expr
    true_expr: Expr
    false_expr: Expr

    def __str__(self):
        return f"if {self.condition} then {self.true_expr} else {self.false_expr}"


@dataclass(frozen=True)
class FunctionCall(Expr):
    """
    Function call or record constructor: func(args..., name=value...).

    Named arguments only occur in annotations (e.g. Placement(...)); the
    evaluator accepts positional arguments of builtin functions only.
    """

    func: str
    args: tuple[Expr, ...] = ()
    named_args: tuple[tuple[str, Expr], ...] = ()

    def __str__(self):
        items = [str(a) for a in self.args]
        items.extend(f"{n}={v}" for n, v in self.named_args)
        return f"{self.func}({', '.join(items)})"


@dataclass(frozen=True)
class Colon(Expr):
    """Unspecified array size in a declaration (Real k[:]); taken from the binding."""

    def __str__(self):
        return ":"


@dataclass(frozen=True)
class EnumValue:
    """Value of an enumeration literal such as Types.SimpleController.PI."""

    type_name: str
    literal: str

    def __str__(self):
        return f"{self.type_name}.{self.literal}" if self.type_name else self.literal


# ==================== Evaluation ====================

_ARITHMETIC = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": lambda a, b: a / b,
    "^": lambda a, b: a**b,
}

_RELATIONAL = {
    "==": lambda a, b: a == b,
    "<>": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _enum_value(name: str) -> EnumValue:
    type_name, _, literal = name.rpartition(".")
    return EnumValue(type_name=type_name, literal=literal)


class Evaluator:
    """
    Eager evaluator for parameter expressions.

    Parameters
    ----------
    env : Mapping[str, Any]
        Values of the parameters visible in the current scope. A value of
        None marks a declared parameter without a known value.
    location : SourceLocation, optional
        Location reported by evaluation errors.
    block : str, optional
        Qualified name of the enclosing block, for diagnostics.
    """

    def __init__(
        self,
        env: Mapping[str, Any],
        location: Optional[SourceLocation] = None,
        block: Optional[str] = None,
    ):
        self.env = env
        self.location = location
        self.block = block
        self._builtins: dict[str, Callable[..., Any]] = {
            "fill": self._fill,
            "abs": self._abs,
            "min": self._min,
            "max": self._max,
            "sum": self._sum,
            "integer": self._integer,
            "size": self._size,
        }

    def evaluate(self, expr: Expr) -> Any:
        if isinstance(expr, Literal):
            return expr.value
        elif isinstance(expr, NameRef):
            return self._name(expr)
        elif isinstance(expr, ArrayLiteral):
            elements = tuple(self.evaluate(e) for e in expr.elements)
            return None if any(e is None for e in elements) else elements
        elif isinstance(expr, UnaryOp):
            return self._unary(expr)
        elif isinstance(expr, BinaryOp):
            return self._binary(expr)
        elif isinstance(expr, IfExpr):
            cond = self.evaluate(expr.condition)
            if cond is None:
                return None
            if not isinstance(cond, bool):
                raise self._type_error(f"if-condition '{expr.condition}' is not Boolean")
            return self.evaluate(expr.true_expr if cond else expr.false_expr)
        elif isinstance(expr, FunctionCall):
            return self._call(expr)
        raise ExpressionError(
            f"Cannot evaluate expression of type {type(expr).__name__}",
            location=self.location,
            block=self.block,
        )

    # ---------------------------------------------------------------

    def _type_error(self, message: str) -> TypeMismatchError:
        return TypeMismatchError(message, location=self.location, block=self.block)

    def _name(self, expr: NameRef) -> Any:
        head = expr.name.split(".", 1)[0]
        if head not in self.env:
            if not expr.is_simple and not expr.subscripts:
                return _enum_value(expr.name)
            raise UnknownParameterError(
                f"Reference to undeclared parameter '{expr.name}'",
                location=self.location,
                block=self.block,
                parameter=expr.name,
            )
        if not expr.is_simple:
            raise UnsupportedConstructError(
                f"Component access '{expr.name}' in a parameter expression is not supported",
                location=self.location,
                block=self.block,
            )
        value = self.env[expr.name]
        for sub in expr.subscripts:
            if value is None:
                return None
            index = self.evaluate(sub)
            if index is None:
                return None
            if not isinstance(value, tuple):
                raise self._type_error(f"Cannot index scalar parameter '{expr.name}'")
            if not isinstance(index, int) or isinstance(index, bool):
                raise self._type_error(f"Index of '{expr.name}' must be an Integer")
            if index < 1 or index > len(value):
                raise ExpressionError(
                    f"Index {index} out of range 1..{len(value)} for '{expr.name}'",
                    location=self.location,
                    block=self.block,
                )
            value = value[index - 1]
        return value

    def _unary(self, expr: UnaryOp) -> Any:
        value = self.evaluate(expr.operand)
        if value is None:
            return None
        if expr.op == "not":
            if not isinstance(value, bool):
                raise self._type_error(f"Operand of 'not' must be Boolean: {expr.operand}")
            return not value
        if isinstance(value, tuple):
            return tuple(self._unary_number(expr.op, v) for v in value)
        return self._unary_number(expr.op, value)

    def _unary_number(self, op: str, value: Any) -> Any:
        if not _is_number(value):
            raise self._type_error(f"Operand of unary '{op}' must be numeric, got {value!r}")
        return -value if op == "-" else value

    def _binary(self, expr: BinaryOp) -> Any:
        left = self.evaluate(expr.left)
        right = self.evaluate(expr.right)
        if left is None or right is None:
            return None
        if expr.op in ("and", "or"):
            if not isinstance(left, bool) or not isinstance(right, bool):
                raise self._type_error(f"Operands of '{expr.op}' must be Boolean: {expr}")
            return (left and right) if expr.op == "and" else (left or right)
        if expr.op in _RELATIONAL:
            if isinstance(left, tuple) or isinstance(right, tuple):
                raise self._type_error(f"Relational operator on arrays: {expr}")
            if _is_number(left) != _is_number(right):
                raise self._type_error(f"Incompatible operands for '{expr.op}': {expr}")
            return _RELATIONAL[expr.op](left, right)
        if expr.op in _ARITHMETIC:
            return self._arithmetic(expr, left, right)
        raise UnsupportedConstructError(
            f"Operator '{expr.op}' is not permitted in parameter expressions",
            location=self.location,
            block=self.block,
        )

    def _arithmetic(self, expr: BinaryOp, left: Any, right: Any) -> Any:
        if isinstance(left, tuple) and isinstance(right, tuple):
            if expr.op not in ("+", "-"):
                raise self._type_error(f"Operator '{expr.op}' is not defined for two arrays")
            if len(left) != len(right):
                raise self._type_error(f"Array sizes differ in {expr}")
            return tuple(self._scalar_op(expr, a, b) for a, b in zip(left, right))
        if isinstance(left, tuple):
            return tuple(self._scalar_op(expr, a, right) for a in left)
        if isinstance(right, tuple):
            if expr.op != "*":
                raise self._type_error(f"Operator '{expr.op}' needs the array on the left: {expr}")
            return tuple(self._scalar_op(expr, left, b) for b in right)
        return self._scalar_op(expr, left, right)

    def _scalar_op(self, expr: BinaryOp, left: Any, right: Any) -> Any:
        if expr.op == "+" and isinstance(left, str) and isinstance(right, str):
            return left + right
        if not _is_number(left) or not _is_number(right):
            raise self._type_error(f"Operands of '{expr.op}' must be numeric: {expr}")
        if expr.op == "/":
            if right == 0:
                raise ExpressionError(
                    f"Division by zero in {expr}", location=self.location, block=self.block
                )
            # Modelica '/' always yields a Real
            return left / right
        if expr.op == "^":
            return self._power(expr, left, right)
        return _ARITHMETIC[expr.op](left, right)

    def _power(self, expr: BinaryOp, base: Any, exponent: Any) -> Any:
        if base == 0 and exponent < 0:
            raise ExpressionError(
                f"Zero raised to a negative power in {expr}",
                location=self.location,
                block=self.block,
            )
        try:
            if isinstance(base, int) and isinstance(exponent, int) and exponent < 0:
                base = float(base)
            result = base ** exponent
        except OverflowError:
            raise ExpressionError(
                f"Result of {expr} is out of range", location=self.location, block=self.block
            ) from None
        if isinstance(result, complex):
            raise ExpressionError(
                f"Result of {expr} is not a real number",
                location=self.location,
                block=self.block,
            )
        return result

    def _call(self, expr: FunctionCall) -> Any:
        fn = self._builtins.get(expr.func)
        if fn is None or expr.named_args:
            raise UnsupportedConstructError(
                f"Function '{expr.func}' is not permitted in parameter expressions",
                location=self.location,
                block=self.block,
            )
        args = [self.evaluate(a) for a in expr.args]
        if any(a is None for a in args):
            return None
        try:
            return fn(*args)
        except TypeError as exc:
            raise ExpressionError(
                f"Invalid arguments to {expr.func}(): {exc}",
                location=self.location,
                block=self.block,
            ) from exc

    def _fill(self, value, n):
        if not isinstance(n, int) or isinstance(n, bool) or n < 0:
            raise self._type_error(f"fill() size must be a non-negative Integer, got {n!r}")
        return tuple(value for _ in range(n))

    def _abs(self, value):
        if not _is_number(value):
            raise self._type_error(f"abs() needs a numeric argument, got {value!r}")
        return abs(value)

    def _min(self, *values):
        return min(self._reduce_args("min", values))

    def _max(self, *values):
        return max(self._reduce_args("max", values))

    def _sum(self, values):
        return sum(self._reduce_args("sum", (values,)))

    def _reduce_args(self, name: str, values: tuple) -> list:
        if len(values) == 1 and isinstance(values[0], tuple):
            values = values[0]
        if not values or not all(_is_number(v) for v in values):
            raise self._type_error(f"{name}() needs numeric arguments")
        return list(values)

    def _integer(self, value):
        if not _is_number(value):
            raise self._type_error(f"integer() needs a numeric argument, got {value!r}")
        return int(math.floor(value))

    def _size(self, value, dim=1):
        if not isinstance(value, tuple) or dim != 1:
            raise self._type_error("size() is only defined for the first dimension of an array")
        return len(value)


def evaluate(
    expr: Expr,
    env: Mapping[str, Any],
    location: Optional[SourceLocation] = None,
    block: Optional[str] = None,
) -> Any:
    """Evaluate an expression in a parameter environment."""
    return Evaluator(env, location=location, block=block).evaluate(expr)


def references(expr: Optional[Expr]) -> set[str]:
    """Collect the simple parameter names referenced by an expression."""
    refs: set[str] = set()
    if expr is None:
        return refs
    if isinstance(expr, NameRef):
        if expr.is_simple:
            refs.add(expr.name)
        for sub in expr.subscripts:
            refs |= references(sub)
    elif isinstance(expr, ArrayLiteral):
        for elem in expr.elements:
            refs |= references(elem)
    elif isinstance(expr, UnaryOp):
        refs |= references(expr.operand)
    elif isinstance(expr, BinaryOp):
        refs |= references(expr.left)
        refs |= references(expr.right)
    elif isinstance(expr, IfExpr):
        refs |= references(expr.condition)
        refs |= references(expr.true_expr)
        refs |= references(expr.false_expr)
    elif isinstance(expr, FunctionCall):
        for arg in expr.args:
            refs |= references(arg)
        for _, arg in expr.named_args:
            refs |= references(arg)
    return refs
