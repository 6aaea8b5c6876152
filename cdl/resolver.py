"""
Composite block resolution.

A composite block named A.B.C is stored in A/B/C.mo, one class per file,
with the enclosing package in its within clause. The resolver maps
names to sources through a loader callback, then parses, extracts tags,
builds, validates, derives the block's feed-through and registers the
resulting BlockType in the symbol table. Blocks used by the block being
built are resolved recursively on first use and memoized.

Example:
    >>> resolver = CompositeResolver(catalog, library_loader(["/path/to/lib"]))
    >>> block_type = resolver.resolve("Library.Controls.Supervisor")
    >>> block_type.composite.instances.keys()
    dict_keys(['gain', 'maxValue'])
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass
from typing import Callable, Optional

from cdl.annotations import extract_tags
from cdl.builder import ModelBuilder
from cdl.catalog import Catalog, SymbolTable
from cdl.causality import DependencyGraph, derive_direct_dependencies
from cdl.errors import CDLWarning, StorageConventionError, UnknownBlockError
from cdl.ir.model import BlockType, CompositeBlock
from cdl.parser import ClassDefinition, parse
from cdl.validation import ValidationResult, validate_block

MODELICA_EXTENSION = ".mo"


@dataclass(frozen=True)
class SourceFile:
    """Text of one .mo file and the path it was read from."""

    path: str
    text: str


def expected_path(name: str) -> str:
    """Storage path of a qualified class name: A.B.C -> A/B/C.mo."""
    return "/".join(name.split(".")) + MODELICA_EXTENSION


def check_storage_convention(name: str, path: str, tree: ClassDefinition) -> None:
    """
    Check that `tree`, loaded from `path`, is stored where `name` belongs.

    Path separators are normalized, so Windows paths are accepted.

    Raises:
        StorageConventionError: If the path does not end in the expected
            segments, or the file declares a different qualified name
    """
    segments = [s for s in path.replace("\\", "/").replace(os.sep, "/").split("/") if s]
    expected = expected_path(name).split("/")
    if segments[-len(expected) :] != expected:
        raise StorageConventionError(
            f"Block '{name}' must be stored in '{expected_path(name)}', found '{path}'",
            block=name,
            path=path,
            expected=expected_path(name),
        )
    if tree.qualified_name != name:
        raise StorageConventionError(
            f"'{path}' declares '{tree.qualified_name}' but must declare '{name}'",
            location=tree.location,
            block=name,
            path=path,
            declared=tree.qualified_name,
        )


class CompositeResolver:
    """
    Resolves qualified block names to validated block types.

    Args:
        catalog: Elementary blocks
        loader: Callback mapping a qualified name to its SourceFile, or None
            if the name is not stored anywhere
        validate: Validate every composite block before registering it
        check_units: Warn about connections between different units
    """

    def __init__(
        self,
        catalog: Catalog,
        loader: Callable[[str], Optional[SourceFile]],
        validate: bool = True,
        check_units: bool = True,
    ):
        self.loader = loader
        self.validate = validate
        self.check_units = check_units
        self.symbols = SymbolTable(catalog, builder=self.build_block_type)
        self.builder = ModelBuilder(self.symbols)
        self.validation_results: dict[str, ValidationResult] = {}

    @property
    def catalog(self) -> Catalog:
        return self.symbols.catalog

    def load(self, name: str) -> ClassDefinition:
        """Load and parse the source of `name`, checking where it is stored."""
        source = self.loader(name)
        if source is None:
            requester = self.symbols.resolving[:-1]
            raise UnknownBlockError(
                f"Unknown block '{name}': not in the catalog and no source found "
                f"(expected {expected_path(name)})",
                block=requester[-1] if requester else None,
                name=name,
            )
        tree = parse(source.text, source.path)
        check_storage_convention(name, source.path, tree)
        return tree

    def build_block_type(self, name: str) -> BlockType:
        """Symbol table callback: load, build and validate a composite block."""
        return self._compile(self.load(name), name)

    def _compile(self, tree: ClassDefinition, name: str) -> BlockType:
        tags = extract_tags(tree)
        block = self.builder.build(tree, name, tags)
        graph = DependencyGraph.from_block(block)

        if self.validate:
            result = validate_block(block, check_units=self.check_units, graph=graph)
            for issue in result.warnings:
                warnings.warn(str(issue), CDLWarning, stacklevel=3)
            result.raise_for_errors()
            self.validation_results[name] = result

        dependencies = derive_direct_dependencies(block, graph)
        block.freeze()
        return block.to_block_type(dependencies)

    def resolve(self, name: str) -> BlockType:
        """
        Block type of a qualified name, building composite blocks on first use.

        Raises:
            UnknownBlockError: If the block is neither in the catalog nor loadable
            CyclicImportError: If the block contains itself
            CDLError: Any parse, build or validation error of the block or
                of the blocks it uses; nothing is registered in that case
        """
        return self.symbols.resolve(name)

    def compile_source(self, text: str, path: Optional[str] = None) -> CompositeBlock:
        """
        Build, validate and register a block given as source text.

        If `path` is given, the storage convention is checked against it.
        """
        tree = parse(text, path)
        name = tree.qualified_name
        if path is not None:
            check_storage_convention(name, path, tree)
        with self.symbols.building(name):
            block_type = self._compile(tree, name)
        self.symbols.register(block_type)
        return block_type.composite
