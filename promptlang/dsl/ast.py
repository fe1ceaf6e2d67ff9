"""Abstract syntax tree for the prompt DSL.

The node set is closed: literals, identifiers, lambdas, applications, ``let``
expressions, templates, pipelines, and type annotations.  Nodes are frozen
dataclasses so a parsed tree can be shared freely between checker passes; the
tree never contains cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Iterable, Iterator, Optional, Sequence, Union

from .types import Type

# ---------------------------------------------------------------------------
# Shared utilities


@dataclass(slots=True, frozen=True)
class Location:
    """Line/column of the first token of a node."""

    line: int
    column: int
    filename: str = "<prompt>"

    def to_tuple(self) -> tuple[int, int]:
        return (self.line, self.column)


UNKNOWN_LOCATION = Location(0, 0)


@dataclass(slots=True, frozen=True, kw_only=True)
class Node:
    """Base class for all AST nodes.

    ``location`` defaults to :data:`UNKNOWN_LOCATION` so tests and tooling can
    synthesise nodes without inventing positions.  It is excluded from
    equality: two trees are equal when their structure is.
    """

    location: Location = field(default=UNKNOWN_LOCATION, compare=False)

    @property
    def node_type(self) -> str:
        return self.__class__.__name__

    def children(self) -> Iterator[Node]:
        """Yield child nodes in declaration order."""

        for entry in fields(self):
            if entry.name == "location":
                continue
            yield from _iter_possible_children(getattr(self, entry.name))

    def walk(self) -> Iterator[Node]:
        """Depth-first traversal starting at this node."""

        yield self
        for child in self.children():
            yield from child.walk()


# ---------------------------------------------------------------------------
# Supporting records


@dataclass(slots=True, frozen=True)
class Parameter:
    """Lambda parameter with optional annotation and default value."""

    name: str
    type: Optional[Type] = None
    default: Optional[Node] = None


@dataclass(slots=True, frozen=True)
class Binding:
    """Single ``name [: type] = value`` entry of a ``let`` expression."""

    name: str
    value: Node
    type: Optional[Type] = None


@dataclass(slots=True, frozen=True)
class TextPart:
    value: str


@dataclass(slots=True, frozen=True)
class InterpolationPart:
    expression: Node


TemplatePart = Union[TextPart, InterpolationPart]


# ---------------------------------------------------------------------------
# Expression nodes


@dataclass(slots=True, frozen=True)
class Literal(Node):
    """String, number, boolean or null constant."""

    value: str | int | float | bool | None


@dataclass(slots=True, frozen=True)
class Identifier(Node):
    name: str


@dataclass(slots=True, frozen=True)
class Lambda(Node):
    """``(params) [: type] -> body``."""

    parameters: tuple[Parameter, ...]
    body: Node
    return_type: Optional[Type] = None


@dataclass(slots=True, frozen=True)
class Application(Node):
    """Function applied to one or more juxtaposed arguments."""

    function: Node
    arguments: tuple[Node, ...]


@dataclass(slots=True, frozen=True)
class Let(Node):
    bindings: tuple[Binding, ...]
    body: Node


@dataclass(slots=True, frozen=True)
class Template(Node):
    """Alternating text and interpolation parts of a template literal."""

    parts: tuple[TemplatePart, ...]


@dataclass(slots=True, frozen=True)
class Pipeline(Node):
    """Left-to-right ``|>`` chain, stored flat in source order."""

    stages: tuple[Node, ...]


@dataclass(slots=True, frozen=True)
class TypeAnnotation(Node):
    """``expression :: type`` assertion."""

    expression: Node
    type: Type


# ---------------------------------------------------------------------------
# Helper functions


def is_node(value: object) -> bool:
    """Return True when ``value`` is an AST node instance."""

    return isinstance(value, Node)


def iter_nodes(root: Node) -> Iterable[Node]:
    """Convenience wrapper to iterate depth-first over a subtree."""

    return root.walk()


def _iter_possible_children(value: object) -> Iterator[Node]:
    if isinstance(value, Node):
        yield value
        return
    if isinstance(value, Parameter):
        if value.default is not None:
            yield value.default
        return
    if isinstance(value, Binding):
        yield value.value
        return
    if isinstance(value, InterpolationPart):
        yield value.expression
        return
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        for item in value:
            yield from _iter_possible_children(item)


__all__ = [
    "Application",
    "Binding",
    "Identifier",
    "InterpolationPart",
    "Lambda",
    "Let",
    "Literal",
    "Location",
    "Node",
    "Parameter",
    "Pipeline",
    "Template",
    "TemplatePart",
    "TextPart",
    "TypeAnnotation",
    "UNKNOWN_LOCATION",
    "is_node",
    "iter_nodes",
]
