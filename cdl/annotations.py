"""
Annotation and tag extraction.

Vendor tags are written as

    annotation(__cdl(brick(<Turtle text>)))
    annotation(__cdl(haystack(<JSON text>)))

The parser captures the payload verbatim; this module collects the
payloads per owner and enforces where each kind may appear:

=================  =======  ========
owner              brick    haystack
=================  =======  ========
block (class)      yes      yes
block instance     yes      yes
connector          no       yes
parameter          no       no
connect equation   no       no
=================  =======  ========

Payloads are never interpreted. The extractor also collects the
Documentation(info, revisions) strings, the version and any other __cdl
entries as opaque text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from cdl.catalog import connector_kind
from cdl.errors import SourceLocation, TagPlacementError
from cdl.ir.declarations import TagPayload
from cdl.ir.expr import BinaryOp, Expr, Literal
from cdl.ir.types import PRIMITIVE_TYPE_NAMES, TagKind
from cdl.parser.syntax import Annotation, Argument, ClassDefinition, ComponentDeclaration

TAG_ANNOTATION = "__cdl"


@dataclass
class TagIndex:
    """Tags and documentation metadata of one class definition."""

    block: tuple[TagPayload, ...] = ()
    instances: dict[str, tuple[TagPayload, ...]] = field(default_factory=dict)
    connectors: dict[str, tuple[TagPayload, ...]] = field(default_factory=dict)
    documentation: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def for_instance(self, name: str) -> tuple[TagPayload, ...]:
        return self.instances.get(name, ())

    def for_connector(self, name: str) -> tuple[TagPayload, ...]:
        return self.connectors.get(name, ())

    def all(self) -> list[tuple[Optional[str], TagPayload]]:
        """Every payload with its owner (None for the block itself)."""
        result: list[tuple[Optional[str], TagPayload]] = [(None, t) for t in self.block]
        for owners in (self.instances, self.connectors):
            for name, tags in owners.items():
                result.extend((name, t) for t in tags)
        return result

    def __len__(self) -> int:
        return len(self.all())


def render_argument(arg: Argument) -> str:
    """Source-like text of an annotation argument."""
    if arg.raw is not None:
        return f"{arg.name}({arg.raw})"
    text = arg.name
    if arg.arguments:
        text += "(" + ", ".join(render_argument(a) for a in arg.arguments) + ")"
    if arg.value is not None:
        text += f"={arg.value}"
    return text


def _cdl_entries(annotation: Optional[Annotation]) -> list[Argument]:
    if annotation is None:
        return []
    entries: list[Argument] = []
    for arg in annotation.arguments:
        if arg.name == TAG_ANNOTATION:
            entries.extend(arg.arguments)
    return entries


def tag_payloads(annotation: Optional[Annotation]) -> list[TagPayload]:
    """Brick/Haystack payloads in an annotation, in source order."""
    return [
        TagPayload(kind=TagKind(entry.name), raw=entry.raw)
        for entry in _cdl_entries(annotation)
        if entry.raw is not None and entry.name in ("brick", "haystack")
    ]


def _text(expr: Optional[Expr]) -> Optional[str]:
    # String literals, possibly concatenated with +
    if isinstance(expr, Literal) and isinstance(expr.value, str):
        return expr.value
    if isinstance(expr, BinaryOp) and expr.op == "+":
        left, right = _text(expr.left), _text(expr.right)
        if left is not None and right is not None:
            return left + right
    return None


def _string(arg: Argument) -> str:
    text = _text(arg.value)
    return text if text is not None else render_argument(arg)


def _is_parameter(decl: ComponentDeclaration) -> bool:
    return decl.parameter or decl.constant or decl.type_name in PRIMITIVE_TYPE_NAMES


def _placement_error(
    message: str, block: str, location: Optional[SourceLocation], **details: Any
) -> TagPlacementError:
    return TagPlacementError(message, location=location, block=block, **details)


def extract_tags(tree: ClassDefinition) -> TagIndex:
    """
    Collect the tags and documentation of a class definition.

    Raises:
        TagPlacementError: If a tag is attached where its kind is not permitted
    """
    block = tree.qualified_name
    index = TagIndex(block=tuple(tag_payloads(tree.annotation)))

    if tree.annotation is not None:
        documentation = tree.annotation.get("Documentation")
        if documentation is not None:
            for arg in documentation.arguments:
                index.documentation[arg.name] = _string(arg)
        version = tree.annotation.get("version")
        if version is not None:
            index.metadata["version"] = _string(version)
        component_name = tree.annotation.get("defaultComponentName")
        if component_name is not None:
            index.metadata["defaultComponentName"] = _string(component_name)
        extras = {
            entry.name: render_argument(entry)
            for entry in _cdl_entries(tree.annotation)
            if entry.name not in ("brick", "haystack")
        }
        if extras:
            index.metadata["cdl"] = extras

    for decl in tree.components:
        tags = tag_payloads(decl.annotation)
        if not tags:
            continue
        if _is_parameter(decl):
            raise _placement_error(
                f"Tags are not permitted on parameter '{decl.name}'",
                block,
                decl.location,
                owner=decl.name,
                tag=tags[0].kind.value,
            )
        if connector_kind(decl.type_name) is not None:
            bricks = [t for t in tags if t.kind == TagKind.BRICK]
            if bricks:
                raise _placement_error(
                    f"Brick tags are only permitted on blocks and instances, "
                    f"not on connector '{decl.name}'",
                    block,
                    decl.location,
                    owner=decl.name,
                    tag=TagKind.BRICK.value,
                )
            index.connectors[decl.name] = tuple(tags)
        else:
            index.instances[decl.name] = tuple(tags)

    for clause in tree.connects:
        tags = tag_payloads(clause.annotation)
        if tags:
            raise _placement_error(
                f"Tags are not permitted on connect equations: {clause}",
                block,
                clause.location,
                owner=str(clause),
                tag=tags[0].kind.value,
            )

    return index
