"""
Tests that the CDL PEG grammar is well-formed and matches the lexical and
structural building blocks at the grammar level (before tree building).
"""

import pytest
from parsimonious.exceptions import IncompleteParseError, ParseError

from cdl.errors import CDLSyntaxError
from cdl.ir import Literal
from cdl.parser import CDL_GRAMMAR, KEYWORDS, parse, parse_expression


@pytest.fixture(scope="module")
def grammar():
    return CDL_GRAMMAR


class TestGrammarWellFormed:
    def test_default_rule(self, grammar):
        assert grammar.default_rule.name == "stored_definition"

    def test_key_rules_exist(self, grammar):
        for rule in (
            "class_definition",
            "element",
            "connect_clause",
            "annotation",
            "tag_argument",
            "expression",
            "standalone_expression",
        ):
            assert rule in grammar, f"Rule {rule!r} missing"


class TestLexicalRules:
    def test_identifiers(self, grammar):
        for name in ("x", "u_s", "_priv", "TZon", "endValue", "inputs"):
            assert grammar["plain_ident"].parse(name).text == name

    def test_identifier_rejects_keywords(self, grammar):
        for kw in ("end", "parameter", "connect", "if", "redeclare", "input", "der"):
            assert kw in KEYWORDS
            with pytest.raises(ParseError):
                grammar["plain_ident"].parse(kw)

    def test_quoted_identifier(self, grammar):
        assert grammar["quoted_ident"].parse("'my var'").text == "'my var'"

    def test_clock_names_are_plain_identifiers(self, grammar):
        # Rejection of clocked constructs happens when the tree is built
        for name in ("sample", "hold", "Clock"):
            grammar["plain_ident"].parse(name)

    def test_numbers(self):
        assert parse_expression("1") == Literal(1)
        assert parse_expression("2.5") == Literal(2.5)
        assert parse_expression("3e2") == Literal(300.0)
        assert parse_expression("4.0E-1") == Literal(0.4)
        assert parse_expression("5.") == Literal(5.0)

    def test_string_escapes(self):
        assert parse_expression(r'"say \"hi\"\n"') == Literal('say "hi"\n')

    def test_comments_are_whitespace(self, grammar):
        source = "// line comment\nblock /* block\ncomment */ A\nend A;"
        assert parse(source).name == "A"
        grammar["_"].parse("  /* a */ // b\n")

    def test_relational_operators(self, grammar):
        for op in ("<=", ">=", "==", "<>", "<", ">"):
            assert grammar["relational_operator"].parse(op).text == op


class TestTagPayload:
    """Balanced capture of brick/haystack payloads."""

    def test_nested_parentheses(self, grammar):
        tree = grammar["tag_argument"].parse("brick(a (b) c)")
        assert tree.children[2].text == "a (b) c"

    def test_parenthesis_inside_string(self, grammar):
        tree = grammar["tag_argument"].parse('haystack({"dis": "a)b"})')
        assert tree.children[2].text == '{"dis": "a)b"}'

    def test_unbalanced(self, grammar):
        with pytest.raises(ParseError):
            grammar["tag_argument"].parse("brick(a (b c")

    def test_trailing_text_is_not_payload(self, grammar):
        with pytest.raises(IncompleteParseError):
            grammar["tag_argument"].parse("brick(a) rest")


class TestSyntaxErrors:
    """Grammar failures surface as located CDLSyntaxError."""

    def test_unterminated_string(self):
        with pytest.raises(CDLSyntaxError, match="Unterminated string"):
            parse('block A "open\nend A;')

    def test_unterminated_comment(self):
        with pytest.raises(CDLSyntaxError, match="Unterminated comment"):
            parse("block A /* never closed\nend A;")

    def test_unexpected_character(self):
        with pytest.raises(CDLSyntaxError, match="Unexpected '@'") as exc_info:
            parse("block A @")
        assert exc_info.value.location.line == 1
        assert exc_info.value.location.column == 9

    def test_location_on_later_line(self):
        with pytest.raises(CDLSyntaxError) as exc_info:
            parse("block A\n  Real x;\n  Real y = ;\nend A;", filename="A.mo")
        location = exc_info.value.location
        assert (location.line, location.column) == (3, 12)
        assert str(location) == "A.mo:3:12"

    def test_excluded_keyword_reports_token(self):
        with pytest.raises(CDLSyntaxError) as exc_info:
            parse("block A\n  inner CDL.Reals.Max m;\nend A;")
        assert exc_info.value.details["token"] == "inner"
        assert exc_info.value.location.column == 3
