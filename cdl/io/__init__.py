"""
IO module: catalog loading, library access and JSON export of blocks.
"""

from pathlib import Path
from typing import Optional, Union

from cdl.catalog import Catalog
from cdl.ir import BlockType, CompositeBlock
from cdl.io.catalog_json import load_catalog, loads_catalog
from cdl.io.json_ir import FORMAT_VERSION, dumps_block, export_block, export_block_json
from cdl.io.loader import Loader, dict_loader, library_loader, modelica_path
from cdl.io.validation import (
    BLOCK_SCHEMA,
    CATALOG_SCHEMA,
    get_schema_path,
    validate_block_json,
    validate_block_json_file,
    validate_catalog,
)
from cdl.resolver import CompositeResolver

CatalogSource = Union[Catalog, dict, str, Path]


def _catalog(catalog: CatalogSource) -> Catalog:
    if isinstance(catalog, Catalog):
        return catalog
    return load_catalog(catalog)


def compile_cdl(
    source: str,
    catalog: CatalogSource,
    library_paths: Optional[list[Union[str, Path]]] = None,
    use_modelica_path: bool = True,
    validate: bool = True,
    path: Optional[str] = None,
) -> CompositeBlock:
    """
    Compile CDL source code directly to a validated CompositeBlock.

    This is a convenience function that loads the catalog, sets up a
    resolver over the library directories and compiles the source in one
    step. Composite blocks the source instantiates are loaded from the
    libraries on demand.

    Args:
        source: CDL source code of one block, as a string
        catalog: Catalog, catalog JSON data, or path to a catalog JSON file
        library_paths: Optional list of library root directories
        use_modelica_path: If True, also search MODELICAPATH env var for libraries (default: True)
        validate: Validate the block and every block it uses (default: True)
        path: File the source was read from; enables the storage convention check

    Returns:
        CompositeBlock with evaluated parameters and validated connections

    Example:
        >>> from cdl.io import compile_cdl
        >>>
        >>> block = compile_cdl('''
        ...     block Gain
        ...       parameter Real k = 2;
        ...       CDL.Interfaces.RealInput u;
        ...       CDL.Interfaces.RealOutput y;
        ...       CDL.Reals.MultiplyByParameter gai(k=k);
        ...     equation
        ...       connect(u, gai.u);
        ...       connect(gai.y, y);
        ...     end Gain;
        ... ''', "cdl_catalog.json")
        >>> block.instances["gai"].value("k")
        2.0
    """
    resolver = CompositeResolver(
        _catalog(catalog),
        library_loader(library_paths, use_modelica_path=use_modelica_path),
        validate=validate,
    )
    return resolver.compile_source(source, path)


def resolve_block(
    name: str,
    catalog: CatalogSource,
    library_paths: Optional[list[Union[str, Path]]] = None,
    use_modelica_path: bool = True,
    validate: bool = True,
) -> BlockType:
    """
    Load, build and validate a block stored in a library by qualified name.

    Example:
        >>> block_type = resolve_block("Library.Controls.Supervisor", catalog, ["lib"])
        >>> block_type.feeds_through("y")
        ['u']
    """
    resolver = CompositeResolver(
        _catalog(catalog),
        library_loader(library_paths, use_modelica_path=use_modelica_path),
        validate=validate,
    )
    return resolver.resolve(name)


__all__ = [
    # Compilation
    "compile_cdl",
    "resolve_block",
    # Catalog
    "load_catalog",
    "loads_catalog",
    # Export
    "FORMAT_VERSION",
    "export_block",
    "export_block_json",
    "dumps_block",
    # Loaders
    "Loader",
    "library_loader",
    "dict_loader",
    "modelica_path",
    # Validation
    "BLOCK_SCHEMA",
    "CATALOG_SCHEMA",
    "get_schema_path",
    "validate_catalog",
    "validate_block_json",
    "validate_block_json_file",
]
