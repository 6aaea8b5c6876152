"""
Tests for the model builder: parameters, instances and connections.
"""

import pytest

from cdl.errors import (
    ArrayDimensionMismatchError,
    DuplicateDeclarationError,
    DuplicateInstanceNameError,
    ExpressionError,
    FinalModificationError,
    InvalidConnectionDirectionError,
    TypeMismatchError,
    UnknownBlockError,
    UnknownConnectorError,
    UnknownParameterError,
    UnsupportedConstructError,
)
from cdl.ir import Endpoint, EnumValue, PrimitiveType, TagKind

from conftest import SUPERVISOR


def _block(body: str, equations: str = "") -> str:
    eq = f"equation\n{equations}\n" if equations else ""
    return f"within Library;\nblock B\n{body}\n{eq}end B;\n"


class TestParameters:
    """Own parameters of a composite block."""

    def test_values_and_widening(self, build):
        block = build(
            _block(
                "  parameter Real r = 1;\n"
                "  parameter Integer n = 2;\n"
                "  parameter Boolean b = not false;\n"
                '  parameter String s = "a" + "b";'
            )
        )
        assert block.parameter_values == {"r": 1.0, "n": 2, "b": True, "s": "ab"}
        assert isinstance(block.parameter_values["r"], float)

    def test_defaults_may_reference_later_parameters(self, build):
        block = build(_block("  parameter Real a = 2*b;\n  parameter Real b = 3;"))
        assert block.parameter_values["a"] == 6.0

    def test_arrays(self, build):
        block = build(
            _block("  parameter Integer n = 2;\n  parameter Real k[n] = fill(0.5, n);")
        )
        assert block.parameter_values["k"] == (0.5, 0.5)
        assert block.get_parameter("k").is_array

    def test_array_size_mismatch(self, build):
        with pytest.raises(ArrayDimensionMismatchError, match="dimension 2"):
            build(_block("  parameter Real k[2] = {1, 2, 3};"))

    def test_scalar_bound_to_array(self, build):
        with pytest.raises(ArrayDimensionMismatchError, match="Scalar"):
            build(_block("  parameter Real k = {1, 2};"))

    def test_empty_array(self, build):
        block = build(_block("  parameter Real k[0] = fill(1, 0);"))
        assert block.parameter_values["k"] == ()

    @pytest.mark.parametrize(
        "declaration",
        [
            "parameter Integer n = 1.5;",
            "parameter Boolean b = 1;",
            'parameter Real r = "x";',
            "parameter String s = 2;",
        ],
    )
    def test_type_mismatch(self, build, declaration):
        with pytest.raises(TypeMismatchError):
            build(_block(f"  {declaration}"))

    def test_enumeration(self, build):
        block = build(
            _block("  parameter CDL.Types.SimpleController typ = CDL.Types.SimpleController.PI;")
        )
        decl = block.get_parameter("typ")
        assert decl.primitive_type == PrimitiveType.ENUMERATION
        assert decl.enum_type == "CDL.Types.SimpleController"
        assert block.parameter_values["typ"] == EnumValue("CDL.Types.SimpleController", "PI")

    def test_constant_is_final(self, build):
        block = build(_block("  constant Real c = 2;"))
        assert block.get_parameter("c").final

    def test_attributes(self, build):
        block = build(_block('  parameter Real TSet(unit="K", min=273.15) = 293.15;'))
        decl = block.get_parameter("TSet")
        assert decl.attribute("unit") == "K"
        assert decl.attribute("min") == 273.15
        assert decl.attribute("max") is None

    def test_parameter_without_value(self, build):
        block = build(_block("  parameter Real k;\n  parameter Real k2 = 2*k;"))
        assert block.parameter_values == {"k": None, "k2": None}

    def test_circular_definition(self, build):
        with pytest.raises(ExpressionError, match="Circular") as exc_info:
            build(_block("  parameter Real a = b;\n  parameter Real b = a;"))
        assert exc_info.value.details["cycle"] == ["a", "b", "a"]

    def test_power(self, build):
        block = build(
            _block(
                "  parameter Integer n = 2^3;\n"
                "  parameter Real r = 2^(-1);\n"
                "  parameter Real s = 9.0^0.5;"
            )
        )
        assert block.parameter_values == {"n": 8, "r": 0.5, "s": 3.0}

    @pytest.mark.parametrize(
        "binding, message",
        [
            ("0^(-1)", "Zero raised to a negative power"),
            ("0.0^(-2.5)", "Zero raised to a negative power"),
            ("10.0^400", "out of range"),
            ("(-8.0)^0.5", "not a real number"),
        ],
    )
    def test_power_errors(self, build, binding, message):
        with pytest.raises(ExpressionError, match=message):
            build(_block(f"  parameter Real r = {binding};"))

    def test_undeclared_reference(self, build):
        with pytest.raises(UnknownParameterError, match="undeclared parameter 'c'"):
            build(_block("  parameter Real a = c;"))

    def test_primitive_variable_rejected(self, build):
        with pytest.raises(UnsupportedConstructError, match="Variable 'x'"):
            build(_block("  Real x;"))


class TestConnectors:
    def test_units_and_sizes(self, build):
        block = build(
            _block(
                "  parameter Integer n = 3;\n"
                '  CDL.Interfaces.RealInput T(unit="K", quantity="ThermodynamicTemperature")'
                ' "Zone temperature";\n'
                "  CDL.Interfaces.RealInput u[n];\n"
                "  CDL.Interfaces.BooleanOutput y;"
            )
        )
        temp = block.get_connector("T")
        assert temp.unit == "K"
        assert temp.quantity == "ThermodynamicTemperature"
        assert temp.description == "Zone temperature"
        assert block.connector_sizes == {"T": None, "u": 3, "y": None}
        assert block.get_connector("y").primitive_type == PrimitiveType.BOOLEAN
        assert [c.name for c in block.inputs] == ["T", "u"]

    def test_connector_size_needs_known_value(self, build):
        with pytest.raises(ExpressionError, match="without a value"):
            build(_block("  parameter Integer n;\n  CDL.Interfaces.RealInput u[n];"))


class TestInstances:
    def test_supervisor(self, build):
        block = build(SUPERVISOR)
        assert block.name == "Library.Controls.Supervisor"
        assert list(block.instances) == ["gain", "maxValue"]

        gain = block.instances["gain"]
        assert gain.type_name == "CDL.Reals.MultiplyByParameter"
        assert gain.value("k") == 2.0
        assert gain.bindings["k"].modified
        assert str(gain.bindings["k"].expr) == "k"
        assert gain.description == "Gain"

        limiter = block.instances["maxValue"]
        assert limiter.value("uMax") == 10.0
        assert limiter.value("uMin") == -10.0

    def test_defaults_are_evaluated_in_instance_scope(self, build):
        block = build(_block("  CDL.Reals.MultiSum sum(nin=2);"))
        inst = block.instances["sum"]
        assert inst.value("k") == (1.0, 1.0)
        assert not inst.bindings["k"].modified
        assert inst.size("u") == 2

    def test_modification_in_enclosing_scope(self, build):
        block = build(
            _block("  parameter Real k = 2;\n  CDL.Reals.MultiplyByParameter gain(k=2*k);")
        )
        assert block.instances["gain"].value("k") == 4.0

    def test_enumeration_modification(self, build):
        block = build(
            _block(
                "  CDL.Reals.PID pid(controllerType="
                "Buildings.Controls.OBC.CDL.Types.SimpleController.PID);"
            )
        )
        value = block.instances["pid"].value("controllerType")
        assert value.literal == "PID"

    def test_enumeration_default(self, build):
        block = build(_block("  CDL.Reals.PID pid;"))
        pid = block.instances["pid"]
        assert pid.value("controllerType") == EnumValue("CDL.Types.SimpleController", "PI")
        assert pid.value("Nd") == 10.0
        assert pid.modified_bindings == []

    def test_enumeration_type_mismatch(self, build):
        with pytest.raises(TypeMismatchError):
            build(_block("  CDL.Reals.PID pid(controllerType=1);"))

    def test_unknown_parameter(self, build):
        with pytest.raises(UnknownParameterError) as exc_info:
            build(_block("  CDL.Reals.MultiplyByParameter gain(gain=2);"))
        assert exc_info.value.details["instance"] == "gain"
        assert exc_info.value.details["parameter"] == "gain"

    def test_protected_parameter(self, build):
        with pytest.raises(UnknownParameterError):
            build(_block("  CDL.Reals.PID pid(Nd=5);"))

    def test_final_parameter(self, build):
        with pytest.raises(FinalModificationError):
            build(_block("  CDL.Reals.PID pid(yMax=2);"))

    def test_duplicate_modification(self, build):
        with pytest.raises(DuplicateDeclarationError):
            build(_block("  CDL.Reals.MultiplyByParameter gain(k=1, k=2);"))

    def test_nested_modification(self, build):
        with pytest.raises(UnsupportedConstructError):
            build(_block('  CDL.Reals.MultiplyByParameter gain(k(unit="1")=2);'))

    def test_duplicate_instance(self, build):
        with pytest.raises(DuplicateInstanceNameError):
            build(
                _block(
                    "  CDL.Reals.MultiplyByParameter gain(k=1);\n"
                    "  CDL.Reals.MultiplyByParameter gain(k=2);"
                )
            )

    def test_instance_name_collides_with_parameter(self, build):
        with pytest.raises(DuplicateInstanceNameError):
            build(_block("  parameter Real gain = 1;\n  CDL.Reals.MultiplyByParameter gain(k=1);"))

    def test_unknown_block(self, build):
        with pytest.raises(UnknownBlockError) as exc_info:
            build(_block("  CDL.Reals.Unknown x;"))
        assert exc_info.value.details["name"] == "CDL.Reals.Unknown"

    def test_conditional_instance(self, build):
        with pytest.raises(UnsupportedConstructError, match="Conditional"):
            build(_block("  CDL.Reals.MultiplyByParameter gain(k=1) if true;"))

    def test_instance_array(self, build):
        with pytest.raises(UnsupportedConstructError, match="Arrays of block instances"):
            build(_block("  CDL.Reals.MultiplyByParameter gain[2](each k=1);"))

    def test_partial_and_package(self, build):
        with pytest.raises(UnsupportedConstructError, match="Partial"):
            build("partial block B\nend B;")
        with pytest.raises(UnsupportedConstructError, match="package"):
            build("package P\nend P;")

    def test_instance_tags(self, build):
        block = build(
            _block(
                "  CDL.Reals.MultiplyByParameter gain(k=1)\n"
                "    annotation(__cdl(brick(:gain a brick:Command .)));"
            )
        )
        (tag,) = block.instances["gain"].tags
        assert tag.kind == TagKind.BRICK
        assert tag.raw == ":gain a brick:Command ."


class TestConnections:
    BODY = (
        "  CDL.Interfaces.RealInput u;\n"
        "  CDL.Interfaces.RealOutput y;\n"
        "  CDL.Reals.Sources.Constant con(k=1);\n"
        "  CDL.Reals.MultiplyByParameter gain(k=1);\n"
        "  CDL.Reals.MultiSum sum(nin=2);"
    )

    def test_normalized_to_source_sink(self, build):
        block = build(_block(self.BODY, "  connect(gain.u, u);\n  connect(y, gain.y);"))
        first, second = block.connections
        assert first.source == Endpoint(None, "u")
        assert first.sink == Endpoint("gain", "u")
        assert second.source == Endpoint("gain", "y")
        assert second.sink == Endpoint(None, "y")
        assert first.location.line == 9

    def test_input_directly_to_output(self, build):
        block = build(_block(self.BODY, "  connect(u, y);"))
        assert block.connections[0].source == Endpoint(None, "u")

    def test_array_elements(self, build):
        block = build(
            _block(
                "  parameter Integer i = 2;\n" + self.BODY,
                "  connect(con.y, sum.u[1]);\n  connect(gain.y, sum.u[i]);",
            )
        )
        assert [c.sink for c in block.connections] == [
            Endpoint("sum", "u", 1),
            Endpoint("sum", "u", 2),
        ]

    @pytest.mark.parametrize(
        "equation",
        [
            "connect(gain.y, con.y);",
            "connect(u, con.y);",
            "connect(gain.u, sum.u[1]);",
            "connect(y, gain.u);",
        ],
    )
    def test_invalid_direction(self, build, equation):
        with pytest.raises(InvalidConnectionDirectionError):
            build(_block(self.BODY, f"  {equation}"))

    @pytest.mark.parametrize(
        "equation, message",
        [
            ("connect(gain.x, y);", "no connector 'x'"),
            ("connect(foo.y, y);", "Unknown instance 'foo'"),
            ("connect(a.b.c, y);", "does not name a connector"),
            ("connect(gain.y, z);", "no connector 'z'"),
        ],
    )
    def test_unknown_connector(self, build, equation, message):
        with pytest.raises(UnknownConnectorError, match=message):
            build(_block(self.BODY, f"  {equation}"))

    def test_index_out_of_range(self, build):
        with pytest.raises(ArrayDimensionMismatchError, match="out of range"):
            build(_block(self.BODY, "  connect(con.y, sum.u[3]);"))

    def test_indexing_a_scalar(self, build):
        with pytest.raises(ArrayDimensionMismatchError, match="cannot be indexed"):
            build(_block(self.BODY, "  connect(con.y[1], gain.u);"))

    def test_element_count_mismatch(self, build):
        with pytest.raises(ArrayDimensionMismatchError, match="1 element"):
            build(_block(self.BODY, "  connect(con.y, sum.u);"))
