"""
Type definitions for the IR.
"""

from enum import Enum, auto


class PrimitiveType(Enum):
    """Primitive data types permitted for CDL parameters and connectors."""

    REAL = "Real"
    INTEGER = "Integer"
    BOOLEAN = "Boolean"
    STRING = "String"
    ENUMERATION = "Enumeration"

    @classmethod
    def from_name(cls, name: str) -> "PrimitiveType":
        """Map a type name as written in the source ("Real", ...) to a PrimitiveType."""
        for member in cls:
            if member.value == name:
                return member
        raise ValueError(f"Not a primitive type: {name}")


class Direction(Enum):
    """Causality of a connector."""

    INPUT = "input"
    OUTPUT = "output"

    @property
    def flipped(self) -> "Direction":
        return Direction.OUTPUT if self is Direction.INPUT else Direction.INPUT


class BlockKind(Enum):
    """Elementary blocks come from the catalog, composite blocks from source."""

    ELEMENTARY = auto()
    COMPOSITE = auto()


class TagKind(Enum):
    """Vendor vocabulary of a tag payload."""

    BRICK = "brick"
    HAYSTACK = "haystack"


PRIMITIVE_TYPE_NAMES = ("Real", "Integer", "Boolean", "String")
