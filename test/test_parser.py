"""
Tests for the CDL parser: accepted subset and rejected constructs.
"""

import pytest

from cdl.errors import CDLSyntaxError, ErrorKind
from cdl.ir import ArrayLiteral, BinaryOp, Colon, FunctionCall, IfExpr, Literal, NameRef, UnaryOp
from cdl.parser import parse, parse_expression

from conftest import SUPERVISOR


def _block(body: str, equations: str = "") -> str:
    eq = f"equation\n{equations}\n" if equations else ""
    return f"block B\n{body}\n{eq}end B;\n"


class TestAccepted:
    """Constructs of the supported subset."""

    def test_supervisor(self):
        tree = parse(SUPERVISOR)
        assert tree.name == "Supervisor"
        assert tree.within == "Library.Controls"
        assert tree.qualified_name == "Library.Controls.Supervisor"
        assert tree.restriction == "block"
        assert tree.description == "Scaled and limited signal"
        assert [c.name for c in tree.components] == ["k", "yMax", "u", "y", "gain", "maxValue"]
        assert [str(c) for c in tree.connects] == [
            "connect(u, gain.u)",
            "connect(gain.y, maxValue.u)",
            "connect(maxValue.y, y)",
        ]

    def test_parameter_declaration(self):
        tree = parse(_block('  parameter Real k = 2 "Gain";'))
        k = tree.get_component("k")
        assert k.parameter
        assert k.type_name == "Real"
        assert k.binding == Literal(2)
        assert k.description == "Gain"

    def test_array_dimensions_on_name_and_type(self):
        tree = parse(_block("  parameter Real k[3] = {1, 2, 3};\n  parameter Real[2] m = {1, 2};"))
        assert tree.get_component("k").dimensions == (Literal(3),)
        assert tree.get_component("m").dimensions == (Literal(2),)
        assert tree.get_component("k").binding == ArrayLiteral((Literal(1), Literal(2), Literal(3)))

    def test_colon_dimension(self):
        tree = parse(_block("  parameter Real k[:] = {1, 2};"))
        assert tree.get_component("k").dimensions == (Colon(),)

    def test_multiple_declarations_share_type(self):
        tree = parse(_block("  parameter Real a = 1, b = 2;"))
        assert [c.name for c in tree.components] == ["a", "b"]
        assert all(c.parameter for c in tree.components)

    def test_enumeration_parameter(self):
        tree = parse(
            _block("  parameter CDL.Types.SimpleController ctl = CDL.Types.SimpleController.PI;")
        )
        decl = tree.get_component("ctl")
        assert decl.type_name == "CDL.Types.SimpleController"
        assert decl.binding == NameRef("CDL.Types.SimpleController.PI")

    def test_final_protected_and_constant(self):
        source = _block(
            "  final parameter Real a = 1;\n"
            "protected\n"
            "  constant Real b = 2;\n"
            "public\n"
            "  parameter Real c = 3;"
        )
        tree = parse(source)
        a, b, c = tree.components
        assert a.final and not a.protected
        assert b.constant and b.protected
        assert not c.protected

    def test_instance_modifications(self):
        tree = parse(_block("  CDL.Reals.Limiter lim(uMax=2, final uMin=-1) \"Limiter\";"))
        lim = tree.get_component("lim")
        assert lim.type_name == "CDL.Reals.Limiter"
        assert [a.name for a in lim.arguments] == ["uMax", "uMin"]
        assert lim.get_argument("uMin").final
        assert lim.get_argument("uMin").value == UnaryOp("-", Literal(1))
        assert lim.description == "Limiter"

    def test_each_modifier(self):
        tree = parse(_block("  CDL.Reals.MultiSum sum(each k=1);"))
        assert tree.get_component("sum").get_argument("k").each

    def test_conditional_declaration_is_parsed(self):
        tree = parse(
            _block(
                "  parameter Boolean use = true;\n"
                "  CDL.Reals.MultiplyByParameter g(k=1) if use;"
            )
        )
        assert tree.get_component("g").condition == NameRef("use")

    def test_connect_with_subscripts_and_annotation(self):
        tree = parse(
            _block(
                "  CDL.Reals.MultiSum s(nin=2);",
                "  connect(a.y, s.u[2])\n"
                "    annotation(Line(points={{0, 0}, {10, 10}}, color={0, 0, 127}));",
            )
        )
        clause = tree.connects[0]
        assert str(clause.right) == "s.u[2]"
        assert clause.right.parts[1].subscripts == (Literal(2),)
        assert clause.annotation.get("Line") is not None

    def test_class_annotation_and_documentation(self):
        tree = parse(
            "block B\n"
            "annotation(defaultComponentName=\"b\",\n"
            "  Documentation(info=\"<html>\" + \"</html>\"));\n"
            "end B;"
        )
        doc = tree.annotation.get("Documentation")
        assert doc.get("info").value == BinaryOp("+", Literal("<html>"), Literal("</html>"))
        assert tree.annotation.get("defaultComponentName").value == Literal("b")

    def test_model_and_package_restrictions(self):
        assert parse("model M\nend M;").restriction == "model"
        package = parse("within;\npackage P\nannotation(version=\"1.0\");\nend P;")
        assert package.restriction == "package"

    def test_within_without_name(self):
        tree = parse("within;\nblock B\nend B;")
        assert tree.within is None
        assert tree.qualified_name == "B"

    def test_partial_block(self):
        assert parse("partial block B\nend B;").partial

    def test_string_comment_concatenation(self):
        tree = parse('block B "first" + " second"\nend B;')
        assert tree.description == "first second"


class TestTagCapture:
    """Raw capture of __cdl(brick(...)) and __cdl(haystack(...)) payloads."""

    def test_brick_payload_is_verbatim(self):
        tree = parse(
            "block B\n"
            "  CDL.Reals.MultiplyByParameter g(k=1)\n"
            "    annotation(__cdl(brick( :g a brick:Damper ; @prefix ex: <http://x> . )));\n"
            "end B;"
        )
        cdl = tree.get_component("g").annotation.get("__cdl")
        brick = cdl.get("brick")
        assert brick.raw == ":g a brick:Damper ; @prefix ex: <http://x> ."

    def test_haystack_payload_with_parenthesis_in_string(self):
        tree = parse(
            "block B\n"
            'annotation(__cdl(haystack({"dis": "Zone (north)", "point": "m:"})));\n'
            "end B;"
        )
        haystack = tree.annotation.get("__cdl").get("haystack")
        assert haystack.raw == '{"dis": "Zone (north)", "point": "m:"}'

    def test_parsing_continues_after_payload(self):
        tree = parse(
            "block B\n"
            "  CDL.Interfaces.RealInput u\n"
            "    annotation(__cdl(haystack({\"a\": 1}), semantic=\"x\"));\n"
            "  CDL.Interfaces.RealOutput y;\n"
            "end B;"
        )
        assert [c.name for c in tree.components] == ["u", "y"]
        cdl = tree.get_component("u").annotation.get("__cdl")
        assert [a.name for a in cdl.arguments] == ["haystack", "semantic"]

    def test_brick_outside_cdl_is_an_ordinary_modification(self):
        tree = parse("block B\nannotation(brick(x=1));\nend B;")
        assert tree.annotation.get("brick").raw is None


class TestExpressions:
    """Parameter expression grammar."""

    def test_precedence(self):
        expr = parse_expression("1 + 2 * 3")
        assert expr == BinaryOp("+", Literal(1), BinaryOp("*", Literal(2), Literal(3)))

    def test_power_binds_tighter_than_unary_minus(self):
        assert parse_expression("-2^2") == UnaryOp("-", BinaryOp("^", Literal(2), Literal(2)))

    def test_logical_and_relational(self):
        expr = parse_expression("not a and b or c < 1")
        assert expr == BinaryOp(
            "or",
            BinaryOp("and", UnaryOp("not", NameRef("a")), NameRef("b")),
            BinaryOp("<", NameRef("c"), Literal(1)),
        )

    def test_if_elseif(self):
        expr = parse_expression("if a then 1 elseif b then 2 else 3")
        inner = IfExpr(NameRef("b"), Literal(2), Literal(3))
        assert expr == IfExpr(NameRef("a"), Literal(1), inner)

    def test_function_call(self):
        expr = parse_expression("fill(1, n)")
        assert expr == FunctionCall("fill", (Literal(1), NameRef("n")), ())

    def test_named_arguments(self):
        expr = parse_expression("f(1, x=2)")
        assert expr.args == (Literal(1),)
        assert expr.named_args == (("x", Literal(2)),)

    def test_subscripted_reference(self):
        assert parse_expression("k[2]") == NameRef("k", (Literal(2),))

    def test_matrix_row(self):
        assert parse_expression("[1, 2]") == ArrayLiteral((Literal(1), Literal(2)))

    def test_booleans_and_strings(self):
        assert parse_expression("true") == Literal(True)
        assert parse_expression('"degC"') == Literal("degC")

    def test_trailing_input(self):
        with pytest.raises(CDLSyntaxError, match="trailing"):
            parse_expression("1 2")

    def test_array_comprehension_rejected(self):
        with pytest.raises(CDLSyntaxError, match="comprehension"):
            parse_expression("{i for i in 1:3}")


class TestRejected:
    """Constructs excluded from CDL are syntax errors."""

    @pytest.mark.parametrize(
        "body",
        [
            "  replaceable CDL.Reals.MultiplyByParameter g(k=1);",
            "  inner CDL.Reals.MultiplyByParameter g(k=1);",
            "  outer CDL.Reals.MultiplyByParameter g(k=1);",
            "  CDL.Reals.MultiplyByParameter g(redeclare CDL.Reals.Limiter k);",
        ],
    )
    def test_excluded_keywords(self, body):
        with pytest.raises(CDLSyntaxError, match="not permitted in CDL"):
            parse(_block(body))

    @pytest.mark.parametrize(
        "name", ["Clock", "sample", "hold", "subSample", "previous", "interval"]
    )
    def test_clocked_constructs(self, name):
        with pytest.raises(CDLSyntaxError, match="Clocked construct"):
            parse(_block(f"  parameter Real p = {name}(1);"))

    def test_clock_type_rejected(self):
        with pytest.raises(CDLSyntaxError, match="Clocked construct"):
            parse(_block("  Clock c;"))

    def test_algorithm_section(self):
        with pytest.raises(CDLSyntaxError, match="'algorithm'"):
            parse("block B\nalgorithm\nend B;")

    @pytest.mark.parametrize("section", ["equation", "algorithm"])
    def test_initial_sections(self, section):
        with pytest.raises(CDLSyntaxError, match=f"'initial {section}'"):
            parse(f"block B\ninitial {section}\nend B;")

    def test_non_connect_equation(self):
        with pytest.raises(CDLSyntaxError, match="Only connect"):
            parse(_block("  CDL.Interfaces.RealOutput y;", "  y = 1;"))

    def test_package_constant(self):
        with pytest.raises(CDLSyntaxError, match="Package-level 'constant'"):
            parse("package P\n  constant Real c = 1;\nend P;")

    @pytest.mark.parametrize("prefix", ["input", "output"])
    def test_causality_prefix(self, prefix):
        with pytest.raises(CDLSyntaxError, match=f"'{prefix}' prefix"):
            parse(_block(f"  {prefix} Real u;"))

    def test_import(self):
        with pytest.raises(CDLSyntaxError, match="'import'"):
            parse(_block("  import Buildings.Controls.OBC.CDL;"))

    def test_extends(self):
        with pytest.raises(CDLSyntaxError, match="'extends'"):
            parse(_block("  extends Base;"))

    def test_nested_class(self):
        with pytest.raises(CDLSyntaxError, match="Nested class"):
            parse(_block("  block Inner\n  end Inner;"))

    def test_end_name_mismatch(self):
        with pytest.raises(CDLSyntaxError, match="does not match"):
            parse("block A\nend B;")

    def test_unsupported_restriction(self):
        with pytest.raises(CDLSyntaxError, match="Only block, model and package"):
            parse("connector C\nend C;")

    def test_short_class_definition(self):
        with pytest.raises(CDLSyntaxError, match="Short class"):
            parse("block A = B;")

    def test_multi_dimensional_array(self):
        with pytest.raises(CDLSyntaxError, match="one-dimensional"):
            parse(_block("  parameter Real k[2, 2];"))

    def test_discrete_prefix(self):
        with pytest.raises(CDLSyntaxError, match="not permitted in CDL"):
            parse(_block("  discrete Real x;"))

    def test_trailing_content(self):
        with pytest.raises(CDLSyntaxError, match="end of file"):
            parse("block A\nend A;\nblock B\nend B;")

    def test_missing_end(self):
        with pytest.raises(CDLSyntaxError, match="Unexpected end of file"):
            parse("block A\n  parameter Real k = 1;\n")

    def test_duplicate_class_annotation(self):
        with pytest.raises(CDLSyntaxError, match="Duplicate class annotation"):
            parse("block A\nannotation(x=1);\nannotation(y=2);\nend A;")

    def test_error_reports_location_and_kind(self):
        with pytest.raises(CDLSyntaxError) as exc_info:
            parse("block A\n  parameter Real k = ;\nend A;", filename="A.mo")
        err = exc_info.value
        assert err.kind == ErrorKind.SYNTAX
        assert err.location.line == 2
        assert err.location.filename == "A.mo"
        assert "';'" in err.message

    def test_der_in_expression(self):
        with pytest.raises(CDLSyntaxError, match="'der'"):
            parse_expression("der(x)")
