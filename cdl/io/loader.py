"""
Source loaders for CompositeResolver.

A loader maps a qualified block name to the SourceFile storing it, or None
when no library contains it. Blocks are looked up at <root>/A/B/C.mo for
every library root, in order.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Callable, Optional, Union

from cdl.resolver import SourceFile, expected_path

Loader = Callable[[str], Optional[SourceFile]]


def modelica_path() -> list[Path]:
    """Library roots listed in the MODELICAPATH environment variable."""
    value = os.environ.get("MODELICAPATH", "")
    return [Path(p) for p in value.split(os.pathsep) if p]


def library_loader(
    library_paths: Optional[list[Union[str, Path]]] = None,
    use_modelica_path: bool = True,
) -> Loader:
    """
    Loader that reads blocks from library directories on disk.

    Args:
        library_paths: Library root directories, searched first
        use_modelica_path: If True, also search MODELICAPATH directories

    Example:
        >>> loader = library_loader(["/path/to/lib"])
        >>> loader("Library.Controls.Supervisor").path
        '/path/to/lib/Library/Controls/Supervisor.mo'
    """
    roots = [Path(p) for p in library_paths or []]
    if use_modelica_path:
        roots.extend(modelica_path())

    def load(name: str) -> Optional[SourceFile]:
        relative = expected_path(name)
        for root in roots:
            path = root / relative
            if path.is_file():
                return SourceFile(path=str(path), text=path.read_text(encoding="utf-8"))
        return None

    return load


def dict_loader(files: Mapping[str, str]) -> Loader:
    """
    Loader over in-memory sources keyed by relative path (A/B/C.mo).

    Backslash separators in keys are accepted.
    """
    sources = {key.replace("\\", "/"): text for key, text in files.items()}

    def load(name: str) -> Optional[SourceFile]:
        relative = expected_path(name)
        text = sources.get(relative)
        if text is None:
            return None
        return SourceFile(path=relative, text=text)

    return load
