"""
Shared fixtures: a small catalog of elementary CDL blocks and helpers to
build, resolve and compile composite blocks from in-memory sources.
"""

from typing import Optional

import pytest

from cdl.builder import ModelBuilder
from cdl.catalog import Catalog, SymbolTable
from cdl.io import dict_loader
from cdl.ir import BlockKind, BlockType, ConnectorDecl, Direction, ParameterDecl, PrimitiveType
from cdl.parser import parse, parse_expression
from cdl.resolver import CompositeResolver

REAL = PrimitiveType.REAL
INTEGER = PrimitiveType.INTEGER
BOOLEAN = PrimitiveType.BOOLEAN


def param(name, ptype=REAL, default=None, dimension=None, **kwargs) -> ParameterDecl:
    return ParameterDecl(
        name=name,
        primitive_type=ptype,
        default=parse_expression(default) if default is not None else None,
        dimension=parse_expression(dimension) if dimension is not None else None,
        **kwargs,
    )


def inp(name, ptype=REAL, dimension=None, unit="") -> ConnectorDecl:
    dim = parse_expression(dimension) if dimension is not None else None
    return ConnectorDecl(name, Direction.INPUT, ptype, dimension=dim, unit=unit)


def out(name, ptype=REAL, dimension=None, unit="") -> ConnectorDecl:
    dim = parse_expression(dimension) if dimension is not None else None
    return ConnectorDecl(name, Direction.OUTPUT, ptype, dimension=dim, unit=unit)


def elementary(name, parameters=(), connectors=(), feedthrough=()) -> BlockType:
    return BlockType(
        name=name,
        kind=BlockKind.ELEMENTARY,
        parameters=tuple(parameters),
        connectors=tuple(connectors),
        direct_dependencies=frozenset(feedthrough),
    )


ELEMENTARY_BLOCKS = [
    elementary(
        "CDL.Reals.MultiplyByParameter",
        [param("k", description="Factor to be multiplied with input signal")],
        [inp("u"), out("y")],
        [("y", "u")],
    ),
    elementary(
        "CDL.Reals.Limiter",
        [param("uMax"), param("uMin")],
        [inp("u"), out("y")],
        [("y", "u")],
    ),
    elementary(
        "CDL.Reals.MultiSum",
        [
            param("nin", INTEGER, default="0"),
            param("k", REAL, default="fill(1, nin)", dimension="nin"),
        ],
        [inp("u", dimension="nin"), out("y")],
        [("y", "u")],
    ),
    elementary(
        "CDL.Reals.Max",
        [],
        [inp("u1"), inp("u2"), out("y")],
        [("y", "u1"), ("y", "u2")],
    ),
    elementary(
        "CDL.Reals.PID",
        [
            param(
                "controllerType",
                PrimitiveType.ENUMERATION,
                default="CDL.Types.SimpleController.PI",
                enum_type="CDL.Types.SimpleController",
            ),
            param("k", default="1"),
            param("Ti", default="0.5"),
            param("yMax", default="1", final=True),
            param("Nd", default="10", protected=True),
        ],
        [inp("u_s"), inp("u_m"), out("y")],
        [("y", "u_s"), ("y", "u_m")],
    ),
    elementary(
        "CDL.Reals.Hysteresis",
        [param("uLow"), param("uHigh"), param("pre_y_start", BOOLEAN, default="false")],
        [inp("u"), out("y", BOOLEAN)],
    ),
    elementary(
        "CDL.Discrete.UnitDelay",
        [param("samplePeriod"), param("y_start", default="0")],
        [inp("u"), out("y")],
    ),
    elementary("CDL.Reals.Sources.Constant", [param("k")], [out("y")]),
    elementary("CDL.Integers.Sources.Constant", [param("k", INTEGER)], [out("y", INTEGER)]),
    elementary("CDL.Logical.Not", [], [inp("u", BOOLEAN), out("y", BOOLEAN)], [("y", "u")]),
]


SUPERVISOR = """
within Library.Controls;
block Supervisor "Scaled and limited signal"
  parameter Real k = 2 "Gain";
  parameter Real yMax = 10;
  CDL.Interfaces.RealInput u "Measured value";
  CDL.Interfaces.RealOutput y "Control signal";
  CDL.Reals.MultiplyByParameter gain(k=k) "Gain";
  CDL.Reals.Limiter maxValue(uMax=yMax, uMin=-yMax);
equation
  connect(u, gain.u);
  connect(gain.y, maxValue.u);
  connect(maxValue.y, y);
end Supervisor;
"""

PLANT = """
within Library;
block Plant
  parameter Real gain = 4;
  CDL.Interfaces.RealInput u;
  CDL.Interfaces.RealOutput y;
  CDL.Interfaces.RealOutput yDelayed;
  Controls.Supervisor ctl(k=gain, yMax=100);
  CDL.Discrete.UnitDelay delay(samplePeriod=60);
equation
  connect(u, ctl.u);
  connect(ctl.y, y);
  connect(ctl.y, delay.u);
  connect(delay.y, yDelayed);
end Plant;
"""

LOOP = """
within Library;
block Loop
  CDL.Interfaces.RealOutput y;
  CDL.Reals.MultiplyByParameter loop1(k=1);
  CDL.Reals.MultiplyByParameter loop2(k=1);
equation
  connect(loop1.y, loop2.u);
  connect(loop2.y, loop1.u);
  connect(loop2.y, y);
end Loop;
"""

DELAYED_LOOP = """
within Library;
block DelayedLoop
  CDL.Interfaces.RealOutput y;
  CDL.Reals.MultiplyByParameter loop1(k=1);
  CDL.Discrete.UnitDelay delay(samplePeriod=1);
equation
  connect(loop1.y, delay.u);
  connect(delay.y, loop1.u);
  connect(loop1.y, y);
end DelayedLoop;
"""


@pytest.fixture
def catalog() -> Catalog:
    return Catalog(ELEMENTARY_BLOCKS)


@pytest.fixture
def symbols(catalog) -> SymbolTable:
    return SymbolTable(catalog)


@pytest.fixture
def build(symbols):
    """Build (without validating) a block from source text."""

    def build(source: str):
        return ModelBuilder(symbols).build(parse(source))

    return build


@pytest.fixture
def library() -> dict:
    return {
        "Library/Controls/Supervisor.mo": SUPERVISOR,
        "Library/Plant.mo": PLANT,
    }


@pytest.fixture
def make_resolver(catalog, library):
    """Resolver over the in-memory library, optionally with extra files."""

    def make(files: Optional[dict] = None, validate: bool = True) -> CompositeResolver:
        sources = dict(library)
        sources.update(files or {})
        return CompositeResolver(catalog, dict_loader(sources), validate=validate)

    return make
