"""
Tests for the elementary block catalog and the symbol table.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from cdl.catalog import Catalog, SymbolTable, connector_kind
from cdl.errors import CyclicImportError, DuplicateDeclarationError, ErrorKind, UnknownBlockError
from cdl.ir import BlockKind, BlockType, Direction, PrimitiveType

from conftest import ELEMENTARY_BLOCKS, elementary, inp, out


def _composite(name: str, **kwargs) -> BlockType:
    return BlockType(name=name, kind=BlockKind.COMPOSITE, **kwargs)


class TestConnectorKind:
    @pytest.mark.parametrize(
        "type_name",
        [
            "Buildings.Controls.OBC.CDL.Interfaces.RealInput",
            "CDL.Interfaces.RealInput",
            "Interfaces.RealInput",
        ],
    )
    def test_interface_spellings(self, type_name):
        assert connector_kind(type_name) == (Direction.INPUT, PrimitiveType.REAL)

    def test_all_interface_connectors(self):
        assert connector_kind("CDL.Interfaces.BooleanOutput") == (
            Direction.OUTPUT,
            PrimitiveType.BOOLEAN,
        )
        assert connector_kind("CDL.Interfaces.IntegerInput") == (
            Direction.INPUT,
            PrimitiveType.INTEGER,
        )

    @pytest.mark.parametrize(
        "type_name", ["RealInput", "Other.Interfaces2.RealInput", "CDL.Interfaces.Foo", "Real"]
    )
    def test_not_a_connector(self, type_name):
        assert connector_kind(type_name) is None


class TestCatalog:
    def test_mapping_interface(self, catalog):
        assert len(catalog) == len(ELEMENTARY_BLOCKS)
        assert "CDL.Reals.Limiter" in catalog
        assert catalog["CDL.Reals.Limiter"].is_elementary
        assert list(catalog)[0] == "CDL.Reals.MultiplyByParameter"

    def test_duplicate_name(self):
        block = elementary("CDL.Reals.Abs", [], [inp("u"), out("y")])
        with pytest.raises(DuplicateDeclarationError) as exc_info:
            Catalog([block, block])
        assert exc_info.value.kind == ErrorKind.DUPLICATE_DECLARATION

    def test_rejects_composite(self):
        with pytest.raises(ValueError, match="not an elementary block"):
            Catalog([_composite("Library.Controller")])

    def test_feedthrough_must_name_connectors(self):
        with pytest.raises(ValueError, match="not an input connector"):
            elementary("CDL.Reals.Bad", [], [inp("u"), out("y")], [("y", "x")])


class TestSymbolTable:
    def test_catalog_lookup(self, symbols, catalog):
        assert symbols.resolve("CDL.Reals.Limiter") is catalog["CDL.Reals.Limiter"]
        assert "CDL.Reals.Limiter" in symbols
        assert "Library.Missing" not in symbols

    def test_unknown_without_builder(self, symbols):
        with pytest.raises(UnknownBlockError) as exc_info:
            symbols.resolve("Library.Missing")
        assert exc_info.value.details["name"] == "Library.Missing"

    def test_register_is_idempotent(self, symbols):
        block = _composite("Library.A", connectors=(inp("u"),))
        assert symbols.register(block) is block
        again = _composite("Library.A", connectors=(inp("u"),))
        assert symbols.register(again) is block
        assert symbols.composites() == [block]

    def test_register_conflicting_interface(self, symbols):
        symbols.register(_composite("Library.A", connectors=(inp("u"),)))
        with pytest.raises(DuplicateDeclarationError, match="different interface"):
            symbols.register(_composite("Library.A", connectors=(out("y"),)))

    def test_register_cannot_shadow_catalog(self, symbols):
        with pytest.raises(DuplicateDeclarationError):
            symbols.register(_composite("CDL.Reals.Limiter"))

    def test_builder_is_called_once(self, catalog):
        calls = []

        def builder(name):
            calls.append(name)
            return _composite(name)

        table = SymbolTable(catalog, builder=builder)
        first = table.resolve("Library.A")
        second = table.resolve("Library.A")
        assert first is second
        assert calls == ["Library.A"]

    def test_failed_build_is_not_cached(self, catalog):
        attempts = []

        def builder(name):
            attempts.append(name)
            if len(attempts) == 1:
                raise UnknownBlockError("not yet", name="Other")
            return _composite(name)

        table = SymbolTable(catalog, builder=builder)
        with pytest.raises(UnknownBlockError):
            table.resolve("Library.A")
        assert "Library.A" not in table
        assert table.resolving == ()
        assert table.resolve("Library.A").name == "Library.A"

    def test_cyclic_resolution(self, catalog):
        table = SymbolTable(catalog)

        def builder(name):
            # A needs B, B needs A
            other = "Library.B" if name == "Library.A" else "Library.A"
            table.resolve(other)
            return _composite(name)

        table.builder = builder
        with pytest.raises(CyclicImportError) as exc_info:
            table.resolve("Library.A")
        assert exc_info.value.details["chain"] == ["Library.A", "Library.B", "Library.A"]
        assert exc_info.value.kind == ErrorKind.CYCLIC_IMPORT
        assert len(table.composites()) == 0

    def test_resolving_chain(self, catalog):
        seen = []
        table = SymbolTable(catalog)

        def builder(name):
            seen.append(table.resolving)
            return _composite(name)

        table.builder = builder
        table.resolve("Library.A")
        assert seen == [("Library.A",)]

    def test_concurrent_resolution(self, catalog):
        def builder(name):
            return _composite(name, connectors=(inp("u"), out("y")))

        table = SymbolTable(catalog, builder=builder)
        names = [f"Library.Block{i % 4}" for i in range(32)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(table.resolve, names))

        for name, block in zip(names, results):
            assert block is table.lookup(name)
        assert len(table.composites()) == 4
