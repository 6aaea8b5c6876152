"""
Block catalog and symbol table.

The Catalog holds the elementary blocks supplied by an external library
description. It is built once and read-only afterwards. The SymbolTable
layers a registry of composite blocks on top of it, filled on demand by a
builder callback (normally CompositeResolver.build_block_type).

Example:
    >>> catalog = Catalog([multiply_by_parameter, limiter])
    >>> symbols = SymbolTable(catalog, builder=resolver.build_block_type)
    >>> symbols.resolve("CDL.Reals.Limiter").is_elementary
    True
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from collections.abc import Iterable, Iterator, Mapping
from typing import Callable, Optional

from cdl.errors import CyclicImportError, DuplicateDeclarationError, UnknownBlockError
from cdl.ir.model import BlockType
from cdl.ir.types import Direction, PrimitiveType

# Connector types of CDL.Interfaces
INTERFACE_CONNECTORS: dict[str, tuple[Direction, PrimitiveType]] = {
    "RealInput": (Direction.INPUT, PrimitiveType.REAL),
    "RealOutput": (Direction.OUTPUT, PrimitiveType.REAL),
    "IntegerInput": (Direction.INPUT, PrimitiveType.INTEGER),
    "IntegerOutput": (Direction.OUTPUT, PrimitiveType.INTEGER),
    "BooleanInput": (Direction.INPUT, PrimitiveType.BOOLEAN),
    "BooleanOutput": (Direction.OUTPUT, PrimitiveType.BOOLEAN),
}


def connector_kind(type_name: str) -> Optional[tuple[Direction, PrimitiveType]]:
    """
    Direction and primitive type of an Interfaces connector type.

    Accepts Buildings.Controls.OBC.CDL.Interfaces.RealInput as well as the
    shorter CDL.Interfaces.RealInput and Interfaces.RealInput spellings.
    Returns None for any other type name.
    """
    package, _, short = type_name.rpartition(".")
    if short not in INTERFACE_CONNECTORS:
        return None
    if package in ("Interfaces", "CDL.Interfaces") or package.endswith(".CDL.Interfaces"):
        return INTERFACE_CONNECTORS[short]
    return None


class Catalog(Mapping[str, BlockType]):
    """
    Immutable set of elementary block types, keyed by qualified name.

    Raises:
        DuplicateDeclarationError: If two entries share a qualified name
        ValueError: If an entry is not an elementary block type
    """

    def __init__(self, block_types: Iterable[BlockType] = ()):
        blocks: dict[str, BlockType] = {}
        for block_type in block_types:
            if not block_type.is_elementary:
                raise ValueError(f"Catalog entry '{block_type.name}' is not an elementary block")
            if block_type.name in blocks:
                raise DuplicateDeclarationError(
                    f"Elementary block '{block_type.name}' is declared more than once",
                    block=block_type.name,
                )
            blocks[block_type.name] = block_type
        self._blocks = blocks

    def __getitem__(self, name: str) -> BlockType:
        return self._blocks[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._blocks)

    def __len__(self) -> int:
        return len(self._blocks)

    def __repr__(self) -> str:
        return f"Catalog({len(self._blocks)} elementary blocks)"


class SymbolTable:
    """
    Registry of block types by qualified name.

    Lookups go to the catalog first, then to the registered composites,
    then to the builder callback. The chain of names being built is kept
    per thread, so a block that needs itself is reported as a
    CyclicImportError while independent subtrees may be resolved from
    several threads at once.
    """

    def __init__(
        self,
        catalog: Catalog,
        builder: Optional[Callable[[str], BlockType]] = None,
    ):
        self.catalog = catalog
        self.builder = builder
        self._registered: dict[str, BlockType] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _chain(self) -> list[str]:
        chain = getattr(self._local, "chain", None)
        if chain is None:
            chain = self._local.chain = []
        return chain

    @property
    def resolving(self) -> tuple[str, ...]:
        """Names currently being built by this thread, outermost first."""
        return tuple(self._chain())

    def register(self, block_type: BlockType) -> BlockType:
        """
        Register a block type (insert-if-absent).

        Re-registering an identical interface is a no-op and returns the
        stored block type.

        Raises:
            DuplicateDeclarationError: If the name is taken by a different interface
        """
        with self._lock:
            existing = self.lookup(block_type.name)
            if existing is not None:
                if existing.signature() != block_type.signature():
                    raise DuplicateDeclarationError(
                        f"Block '{block_type.name}' is already declared with a different interface",
                        block=block_type.name,
                    )
                return existing
            self._registered[block_type.name] = block_type
            return block_type

    def lookup(self, name: str) -> Optional[BlockType]:
        """Return a known block type without building anything."""
        found = self.catalog.get(name)
        if found is None:
            found = self._registered.get(name)
        return found

    def resolve(self, name: str) -> BlockType:
        """
        Return the block type for a qualified name, building it if needed.

        Raises:
            UnknownBlockError: If no catalog entry, registration or builder supplies it
            CyclicImportError: If building the block requires the block itself
        """
        found = self.lookup(name)
        if found is not None:
            return found

        if self.builder is None:
            chain = self._chain()
            raise UnknownBlockError(
                f"Unknown block '{name}'",
                block=chain[-1] if chain else None,
                name=name,
            )

        with self.building(name):
            block_type = self.builder(name)
        return self.register(block_type)

    @contextmanager
    def building(self, name: str) -> Iterator[None]:
        """
        Mark `name` as being built by the current thread.

        Raises:
            CyclicImportError: If `name` is already being built, i.e. the
                block contains itself directly or transitively
        """
        chain = self._chain()
        if name in chain:
            cycle = chain[chain.index(name) :] + [name]
            raise CyclicImportError(
                f"Block '{name}' contains itself: {' -> '.join(cycle)}",
                block=name,
                chain=cycle,
            )
        chain.append(name)
        try:
            yield
        finally:
            chain.pop()

    def composites(self) -> list[BlockType]:
        """Registered composite block types, in registration order."""
        with self._lock:
            return [b for b in self._registered.values() if b.is_composite]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.lookup(name) is not None

    def __len__(self) -> int:
        return len(self.catalog) + len(self._registered)
