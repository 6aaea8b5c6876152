"""
CDL parser: grammar match followed by a syntax tree builder.

The source text is matched against CDL_GRAMMAR and the parse tree is turned
into the dataclasses of cdl.parser.syntax by SyntaxTreeBuilder. Every
construct that CDL excludes is rejected as a located CDLSyntaxError instead
of being accepted and ignored later:

- ``redeclare``, ``constrainedby``, ``replaceable``, ``inner``, ``outer``
- clocked constructs (``Clock``, ``sample``, ``hold``, ...)
- ``algorithm``, ``initial equation`` and ``initial algorithm`` sections
- equations other than ``connect(a, b)``
- ``constant`` declarations in packages
- ``input``/``output`` prefixes (connectors come from CDL.Interfaces)
- ``import``, ``extends`` and nested class definitions

Example:
    >>> tree = parse('''
    ... block Controller
    ...   parameter Real k = 2 "Gain";
    ...   Buildings.Controls.OBC.CDL.Interfaces.RealInput u;
    ...   Buildings.Controls.OBC.CDL.Interfaces.RealOutput y;
    ...   Buildings.Controls.OBC.CDL.Reals.MultiplyByParameter gain(k=k);
    ... equation
    ...   connect(u, gain.u);
    ...   connect(gain.y, y);
    ... end Controller;
    ... ''')
    >>> [c.name for c in tree.components]
    ['k', 'u', 'y', 'gain']
"""

from __future__ import annotations

import bisect
import re
from dataclasses import replace
from typing import Optional

from parsimonious.exceptions import IncompleteParseError, ParseError
from parsimonious.nodes import NodeVisitor

from cdl.errors import CDLSyntaxError, SourceLocation
from cdl.ir.expr import (
    ArrayLiteral,
    BinaryOp,
    Colon,
    Expr,
    FunctionCall,
    IfExpr,
    Literal,
    NameRef,
    UnaryOp,
)
from cdl.parser.grammar import (
    CDL_GRAMMAR,
    CLOCK_CONSTRUCTS,
    EXCLUDED_KEYWORDS,
    SUPPORTED_RESTRICTIONS,
)
from cdl.parser.syntax import (
    Annotation,
    Argument,
    ClassDefinition,
    ComponentDeclaration,
    ComponentRef,
    ConnectClause,
    RefPart,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "'": "'"}

_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_TOKEN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+(?:\.\d*)?(?:[eE][+-]?\d+)?|<=|>=|==|<>|:=|\S")
_STRING = re.compile(r'"(?:[^"\\]|\\.)*"')
_INITIAL_SECTION = re.compile(r"initial\s+(equation|algorithm)\b")

_NESTED_CLASS_KEYWORDS = frozenset(
    {"block", "model", "package", "class", "connector", "record", "type", "encapsulated", "partial"}
)

# Rules worth naming in "Expected ..., found ..." messages
_RULE_DESCRIPTIONS = {
    "expression": "expression",
    "ident": "identifier",
    "name": "name",
    "class_definition": "class definition",
    "class_prefixes": "class definition",
    "component_ref": "connector reference",
    "subscript": "subscript",
}


def _unescape(text: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), text, flags=re.S)


def _items(first, rest, index: int) -> list:
    """Items of a `first (separator item)*` repetition; `index` locates the item."""
    return [first] + [r[index] for r in rest]


class _Locator:
    """Offset to line/column conversion for one source text."""

    def __init__(self, text: str, filename: Optional[str] = None):
        self.text = text
        self.filename = filename
        self._line_starts = [0]
        for i, ch in enumerate(text):
            if ch == "\n":
                self._line_starts.append(i + 1)

    def location(self, offset: int) -> SourceLocation:
        line = bisect.bisect_right(self._line_starts, offset)
        column = offset - self._line_starts[line - 1] + 1
        return SourceLocation(line=line, column=column, filename=self.filename)

    def found(self, offset: int) -> str:
        if offset >= len(self.text):
            return "end of file"
        match = _TOKEN.match(self.text, offset)
        return f"'{match.group() if match else self.text[offset]}'"

    def error(self, message: str, offset: int, token: Optional[str] = None) -> CDLSyntaxError:
        details = {"token": token} if token is not None else {}
        return CDLSyntaxError(message, location=self.location(offset), **details)


# ==================== Parse failures ====================


def _diagnose(locator: _Locator, error: ParseError) -> CDLSyntaxError:
    """Turn the furthest grammar failure into a located CDLSyntaxError."""
    text, pos = locator.text, error.pos
    if pos >= len(text):
        return locator.error("Unexpected end of file", pos)

    match = _WORD.match(text, pos)
    word = match.group() if match else None
    if word in EXCLUDED_KEYWORDS or word in ("discrete", "flow", "stream", "expandable"):
        return locator.error(f"'{word}' is not permitted in CDL", pos, word)
    if word == "algorithm":
        return locator.error("'algorithm' sections are not permitted in CDL", pos, word)
    if word == "initial":
        section = _INITIAL_SECTION.match(text, pos)
        if section:
            message = f"'initial {section.group(1)}' sections are not permitted in CDL"
        else:
            message = "'initial' is not permitted in CDL expressions"
        return locator.error(message, pos, word)
    if word in ("input", "output"):
        return locator.error(
            f"'{word}' prefix is not permitted; declare connectors with types from CDL.Interfaces",
            pos,
            word,
        )
    if word in ("import", "extends"):
        return locator.error(f"'{word}' clauses are not supported", pos, word)
    if word == "der":
        return locator.error("'der' is not permitted in CDL expressions", pos, word)
    if word == "for":
        return locator.error("Array comprehensions are not supported", pos, word)
    if word in _NESTED_CLASS_KEYWORDS:
        return locator.error("Nested class definitions are not supported", pos, word)

    if text.startswith("/*", pos):
        return locator.error("Unterminated comment", pos)
    if text[pos] == '"' and not _STRING.match(text, pos):
        return locator.error("Unterminated string literal", pos)
    if text.startswith(":=", pos):
        return locator.error("':=' bindings are not permitted in declarations", pos, ":=")

    found = locator.found(pos)
    rule = getattr(error.expr, "name", "")
    if rule in _RULE_DESCRIPTIONS:
        message = f"Expected {_RULE_DESCRIPTIONS[rule]}, found {found}"
        return locator.error(message, pos, found.strip("'"))
    return locator.error(f"Unexpected {found}", pos, found.strip("'"))


# ==================== Syntax tree builder ====================


class SyntaxTreeBuilder(NodeVisitor):
    """Transforms a parsimonious parse tree of CDL_GRAMMAR into syntax tree dataclasses."""

    unwrapped_exceptions = (CDLSyntaxError,)

    def __init__(self, text: str, filename: Optional[str] = None):
        self.locator = _Locator(text, filename)
        self.filename = filename
        self._annotation_depth = 0

    def visit(self, node):
        # Clocked constructs are only checked outside of annotations
        if node.expr_name == "annotation":
            self._annotation_depth += 1
            try:
                return super().visit(node)
            finally:
                self._annotation_depth -= 1
        return super().visit(node)

    def generic_visit(self, node, visited_children):
        return visited_children

    def _location(self, offset: int) -> SourceLocation:
        return self.locator.location(offset)

    def _error(self, message: str, offset: int, token: Optional[str] = None) -> CDLSyntaxError:
        return self.locator.error(message, offset, token)

    def _check_clock(self, name: str, offset: int) -> None:
        if self._annotation_depth:
            return
        if name.split(".")[-1] in CLOCK_CONSTRUCTS:
            raise self._error(f"Clocked construct '{name}' is not permitted in CDL", offset, name)

    # ---------------------------------------------------------------
    # Class definitions
    # ---------------------------------------------------------------

    def visit_stored_definition(self, node, visited_children):
        _, within, definition = visited_children
        return replace(definition, within=within[0] if within else None)

    def visit_within_clause(self, node, visited_children):
        _, _, name, _, _ = visited_children
        return name[0] if name else None

    def visit_class_prefixes(self, node, visited_children):
        _, partial, restriction = visited_children
        return bool(partial), restriction

    def visit_partial(self, node, visited_children):
        return True

    def visit_restriction(self, node, visited_children):
        return " ".join(node.children[0].text.split()), node.start

    def visit_class_specifier(self, node, visited_children):
        return visited_children[0]

    def visit_short_specifier(self, node, visited_children):
        raise self._error("Short class definitions are not supported", node.start, "=")

    def visit_long_specifier(self, node, visited_children):
        description, items, _, _, end_name, _, _ = visited_children
        return description, items, end_name, node.children[4].start

    def visit_class_definition(self, node, visited_children):
        (partial, (restriction, restriction_offset)), name, specifier = visited_children
        if restriction.startswith("expandable"):
            raise self._error(
                "'expandable' is not permitted in CDL", restriction_offset, "expandable"
            )
        if restriction not in SUPPORTED_RESTRICTIONS:
            raise self._error(
                f"Only block, model and package classes are supported, found '{restriction}'",
                restriction_offset,
                restriction,
            )
        description, items, end_name, end_offset = specifier

        components: list[ComponentDeclaration] = []
        connects: list[ConnectClause] = []
        annotation: Optional[Annotation] = None
        protected = False
        for kind, value, offset in items:
            if kind == "visibility":
                protected = value
            elif kind == "equations":
                connects.extend(value)
            elif kind == "annotation":
                if annotation is not None:
                    raise self._error("Duplicate class annotation", offset, "annotation")
                annotation = value
            else:
                for decl in value:
                    if restriction == "package":
                        if decl.constant:
                            raise self._error(
                                "Package-level 'constant' declarations are not permitted in CDL",
                                offset,
                                "constant",
                            )
                        raise self._error("Packages may not declare components", offset)
                    components.append(replace(decl, protected=True) if protected else decl)

        if end_name != name:
            raise self._error(
                f"End name '{end_name}' does not match class name '{name}'", end_offset, end_name
            )

        return ClassDefinition(
            name=name,
            restriction=restriction,
            partial=partial,
            description=description,
            components=tuple(components),
            connects=tuple(connects),
            annotation=annotation,
            location=self._location(node.start),
            filename=self.filename,
        )

    def visit_composition_item(self, node, visited_children):
        return visited_children[0]

    def visit_visibility(self, node, visited_children):
        return "visibility", node.text.startswith("protected"), node.start

    def visit_class_annotation(self, node, visited_children):
        annotation, _, _ = visited_children
        return "annotation", annotation, node.start

    # ---------------------------------------------------------------
    # Declarations
    # ---------------------------------------------------------------

    def visit_element(self, node, visited_children):
        final, prefix, type_name, type_subscripts, declarations, _, _ = visited_children
        self._check_clock(type_name, node.children[2].start)
        prefix = prefix[0] if prefix else None
        type_subscripts = type_subscripts[0] if type_subscripts else ()

        result = []
        for decl in declarations:
            if len(type_subscripts) + len(decl["subscripts"]) > 1:
                raise self._error(
                    f"'{decl['name']}': only one-dimensional arrays are supported",
                    decl["offset"],
                    decl["name"],
                )
            result.append(
                ComponentDeclaration(
                    type_name=type_name,
                    name=decl["name"],
                    parameter=prefix == "parameter",
                    constant=prefix == "constant",
                    final=bool(final),
                    type_subscripts=type_subscripts,
                    subscripts=decl["subscripts"],
                    arguments=decl["arguments"],
                    binding=decl["binding"],
                    condition=decl["condition"],
                    description=decl["description"],
                    annotation=decl["annotation"],
                    location=self._location(decl["offset"]),
                )
            )
        return "element", result, node.start

    def visit_final(self, node, visited_children):
        return True

    def visit_type_prefix(self, node, visited_children):
        return node.children[0].text

    def visit_component_list(self, node, visited_children):
        first, rest = visited_children
        return _items(first, rest, 2)

    def visit_component_declaration(self, node, visited_children):
        (
            name,
            subscripts,
            modification,
            binding,
            condition,
            description,
            annotation,
        ) = visited_children
        return {
            "name": name,
            "offset": node.start,
            "subscripts": subscripts[0] if subscripts else (),
            "arguments": modification[0] if modification else (),
            "binding": binding[0] if binding else None,
            "condition": condition[0] if condition else None,
            "description": description,
            "annotation": annotation[0] if annotation else None,
        }

    def visit_binding(self, node, visited_children):
        return visited_children[-1]

    def visit_condition_attribute(self, node, visited_children):
        return visited_children[-1]

    def visit_array_subscripts(self, node, visited_children):
        _, _, first, rest, _, _ = visited_children
        return tuple(_items(first, rest, 2))

    def visit_subscript(self, node, visited_children):
        return visited_children[0]

    def visit_colon(self, node, visited_children):
        return Colon()

    # ---------------------------------------------------------------
    # Modifications and annotations
    # ---------------------------------------------------------------

    def visit_class_modification(self, node, visited_children):
        _, _, arguments, _, _ = visited_children
        return tuple(arguments[0]) if arguments else ()

    def visit_argument_list(self, node, visited_children):
        first, rest = visited_children
        return _items(first, rest, 2)

    def visit_argument(self, node, visited_children):
        return visited_children[0]

    def visit_element_modification(self, node, visited_children):
        each, final, name, modification, value, description = visited_children
        return Argument(
            name=name,
            value=value[0] if value else None,
            arguments=modification[0] if modification else (),
            each=bool(each),
            final=bool(final),
            description=description,
            location=self._location(node.children[2].start),
        )

    def visit_each(self, node, visited_children):
        return True

    def visit_modification_value(self, node, visited_children):
        return visited_children[-1]

    def visit_annotation(self, node, visited_children):
        _, _, arguments = visited_children
        return Annotation(arguments=arguments, location=self._location(node.start))

    def visit_cdl_argument(self, node, visited_children):
        _, _, _, _, entries, _, _ = visited_children
        return Argument(
            name="__cdl",
            arguments=tuple(entries[0]) if entries else (),
            location=self._location(node.start),
        )

    def visit_cdl_argument_list(self, node, visited_children):
        first, rest = visited_children
        return _items(first, rest, 2)

    def visit_cdl_entry(self, node, visited_children):
        return visited_children[0]

    def visit_tag_argument(self, node, visited_children):
        name = node.children[0].children[0].text
        raw = node.children[2].text.strip()
        return Argument(name=name, raw=raw, location=self._location(node.start))

    # ---------------------------------------------------------------
    # Equations
    # ---------------------------------------------------------------

    def visit_equation_section(self, node, visited_children):
        _, _, equations = visited_children
        return "equations", equations, node.start

    def visit_equation(self, node, visited_children):
        return visited_children[0]

    def visit_connect_clause(self, node, visited_children):
        left, right = visited_children[4], visited_children[7]
        description, annotation = visited_children[10], visited_children[11]
        return ConnectClause(
            left=left,
            right=right,
            description=description,
            annotation=annotation[0] if annotation else None,
            location=self._location(node.start),
        )

    def visit_other_equation(self, node, visited_children):
        head = re.match(r"[A-Za-z_][A-Za-z0-9_.]*", node.text)
        if head:
            self._check_clock(head.group(), node.start)
        found = self.locator.found(node.start)
        message = f"Only connect() equations are permitted in CDL, found {found}"
        raise self._error(message, node.start)

    def visit_component_ref(self, node, visited_children):
        first, rest = visited_children
        parts = tuple(_items(first, rest, 2))
        return ComponentRef(parts=parts, location=self._location(node.start))

    def visit_ref_part(self, node, visited_children):
        name, subscripts = visited_children
        return RefPart(name=name, subscripts=subscripts[0] if subscripts else ())

    # ---------------------------------------------------------------
    # Expressions
    # ---------------------------------------------------------------

    def visit_standalone_expression(self, node, visited_children):
        return visited_children[1]

    def visit_expression(self, node, visited_children):
        return visited_children[0]

    def visit_if_expression(self, node, visited_children):
        _, _, condition, _, _, value, branches, _, _, otherwise = visited_children
        # elseif chains nest in the else branch
        for branch_condition, branch_value in reversed(branches):
            otherwise = IfExpr(branch_condition, branch_value, otherwise)
        return IfExpr(condition, value, otherwise)

    def visit_elseif_branch(self, node, visited_children):
        _, _, condition, _, _, value = visited_children
        return condition, value

    def visit_logical_expression(self, node, visited_children):
        left, rest = visited_children
        for item in rest:
            left = BinaryOp("or", left, item[2])
        return left

    def visit_logical_term(self, node, visited_children):
        left, rest = visited_children
        for item in rest:
            left = BinaryOp("and", left, item[2])
        return left

    def visit_logical_factor(self, node, visited_children):
        negate, relation = visited_children
        return UnaryOp("not", relation) if negate else relation

    def visit_not_operator(self, node, visited_children):
        return True

    def visit_relation(self, node, visited_children):
        left, rest = visited_children
        if rest:
            op, right = rest[0]
            return BinaryOp(op, left, right)
        return left

    def visit_relational_operator(self, node, visited_children):
        return node.children[0].text

    def visit_arithmetic(self, node, visited_children):
        sign, first, rest = visited_children
        left = UnaryOp(sign[0], first) if sign else first
        for op, operand in rest:
            left = BinaryOp(op, left, operand)
        return left

    def visit_add_operator(self, node, visited_children):
        return node.children[0].text

    def visit_term(self, node, visited_children):
        left, rest = visited_children
        for op, operand in rest:
            left = BinaryOp(op, left, operand)
        return left

    def visit_mul_operator(self, node, visited_children):
        return node.children[0].text

    def visit_factor(self, node, visited_children):
        base, exponent = visited_children
        if exponent:
            return BinaryOp("^", base, exponent[0][2])
        return base

    def visit_primary(self, node, visited_children):
        return visited_children[0]

    def visit_number(self, node, visited_children):
        text = node.children[0].text
        if any(ch in text for ch in ".eE"):
            return Literal(float(text))
        return Literal(int(text))

    def visit_string(self, node, visited_children):
        return Literal(_unescape(node.children[0].text[1:-1]))

    def visit_boolean(self, node, visited_children):
        return Literal(node.children[0].text == "true")

    def visit_parenthesized(self, node, visited_children):
        return visited_children[2]

    def visit_array_constructor(self, node, visited_children):
        _, _, elements, _, _ = visited_children
        return ArrayLiteral(tuple(elements[0]) if elements else ())

    def visit_matrix_constructor(self, node, visited_children):
        _, _, first, rest, _, _ = visited_children
        rows = _items(first, rest, 2)
        if len(rows) == 1:
            return ArrayLiteral(tuple(rows[0]))
        return ArrayLiteral(tuple(ArrayLiteral(tuple(r)) for r in rows))

    def visit_expression_list(self, node, visited_children):
        first, rest = visited_children
        return _items(first, rest, 2)

    def visit_function_call(self, node, visited_children):
        name, _, _, arguments, _, _ = visited_children
        self._check_clock(name, node.start)
        args: list[Expr] = []
        named: list[tuple[str, Expr]] = []
        for argument in arguments[0] if arguments else ():
            if isinstance(argument, tuple):
                named.append(argument)
            elif named:
                raise self._error("Positional argument after named argument", node.start, name)
            else:
                args.append(argument)
        return FunctionCall(name, tuple(args), tuple(named))

    def visit_call_arguments(self, node, visited_children):
        first, rest = visited_children
        return _items(first, rest, 2)

    def visit_call_argument(self, node, visited_children):
        return visited_children[0]

    def visit_named_argument(self, node, visited_children):
        return visited_children[0], visited_children[-1]

    def visit_name_reference(self, node, visited_children):
        name, subscripts = visited_children
        return NameRef(name, subscripts[0] if subscripts else ())

    # ---------------------------------------------------------------
    # Lexical elements
    # ---------------------------------------------------------------

    def visit_string_comment(self, node, visited_children):
        if not visited_children:
            return ""
        first, rest = visited_children[0]
        return first.value + "".join(item[2].value for item in rest)

    def visit_name(self, node, visited_children):
        first, rest = visited_children
        return ".".join(_items(first, rest, 1))

    def visit_ident(self, node, visited_children):
        return node.children[0].text


def parse(source: str, filename: Optional[str] = None) -> ClassDefinition:
    """
    Parse the CDL source text of one class declaration.

    Args:
        source: Source text (one class per file)
        filename: Optional file name reported in error locations

    Returns:
        ClassDefinition syntax tree

    Raises:
        CDLSyntaxError: If the text is not valid CDL
    """
    locator = _Locator(source, filename)
    try:
        tree = CDL_GRAMMAR.parse(source)
    except IncompleteParseError as e:
        raise locator.error(
            f"Expected end of file after class definition, found {locator.found(e.pos)}", e.pos
        ) from None
    except ParseError as e:
        raise _diagnose(locator, e) from None
    return SyntaxTreeBuilder(source, filename).visit(tree)


def parse_expression(text: str) -> Expr:
    """Parse a standalone expression, e.g. a catalog default value."""
    locator = _Locator(text)
    try:
        tree = CDL_GRAMMAR["standalone_expression"].parse(text)
    except IncompleteParseError as e:
        raise locator.error(
            f"Unexpected trailing input in expression, found {locator.found(e.pos)}", e.pos
        ) from None
    except ParseError as e:
        raise _diagnose(locator, e) from None
    return SyntaxTreeBuilder(text).visit(tree)
