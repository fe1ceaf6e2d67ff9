"""Set-theoretic type model for the prompt DSL.

The model is a closed family of immutable dataclasses:

* ``PrimitiveType`` for ``string``, ``number``, ``boolean`` and ``null``.
* ``FunctionType`` with named, optionally-optional parameters.
* ``UnionType`` / ``IntersectionType`` built through :func:`union_type` and
  :func:`intersection_type`, which keep them flat and normalised.
* ``ListType`` with optional length bounds and ``RecordType`` with an
  ``open`` flag.
* ``DynamicType`` (gradual escape hatch), ``AnyType`` (top), ``NeverType``
  (bottom), and ``PromptType`` used by annotation syntax.

:func:`is_subtype` implements the subtyping partial order and
:func:`format_type` renders types for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Union

__all__ = [
    "ANY",
    "AnyType",
    "BOOLEAN",
    "DYNAMIC",
    "DynamicType",
    "FunctionType",
    "IntersectionType",
    "ListType",
    "NEVER",
    "NULL",
    "NUMBER",
    "NeverType",
    "ParameterType",
    "PRIMITIVE_NAMES",
    "PrimitiveType",
    "PromptType",
    "RecordField",
    "RecordType",
    "STRING",
    "Type",
    "UnionType",
    "format_type",
    "function_type",
    "intersection_type",
    "is_subtype",
    "list_type",
    "record_type",
    "union_type",
]

PRIMITIVE_NAMES = ("string", "number", "boolean", "null")


# ---------------------------------------------------------------------------
# Type representation


@dataclass(slots=True, frozen=True)
class PrimitiveType:
    name: str

    def __post_init__(self) -> None:
        if self.name not in PRIMITIVE_NAMES:
            raise ValueError(f"unknown primitive type {self.name!r}")


@dataclass(slots=True, frozen=True)
class ParameterType:
    name: str
    type: "Type"
    optional: bool = False


@dataclass(slots=True, frozen=True)
class FunctionType:
    parameters: tuple[ParameterType, ...]
    returns: "Type"

    @property
    def required_count(self) -> int:
        return sum(1 for param in self.parameters if not param.optional)


@dataclass(slots=True, frozen=True)
class UnionType:
    types: tuple["Type", ...]


@dataclass(slots=True, frozen=True)
class IntersectionType:
    types: tuple["Type", ...]


@dataclass(slots=True, frozen=True)
class ListType:
    element: "Type"
    min_length: Optional[int] = None
    max_length: Optional[int] = None


@dataclass(slots=True, frozen=True)
class RecordField:
    name: str
    type: "Type"
    optional: bool = False
    description: Optional[str] = None


@dataclass(slots=True, frozen=True)
class RecordType:
    """Structural record.  ``open`` records tolerate undeclared keys."""

    fields: tuple[RecordField, ...]
    open: bool = True

    def field(self, name: str) -> Optional[RecordField]:
        for entry in self.fields:
            if entry.name == name:
                return entry
        return None


@dataclass(slots=True, frozen=True)
class DynamicType:
    constraint: Optional["Type"] = None


@dataclass(slots=True, frozen=True)
class AnyType:
    pass


@dataclass(slots=True, frozen=True)
class NeverType:
    pass


@dataclass(slots=True, frozen=True)
class PromptType:
    input: "Type"
    output: "Type"
    model: Optional[str] = None
    temperature: Optional[float] = None


Type = Union[
    PrimitiveType,
    FunctionType,
    UnionType,
    IntersectionType,
    ListType,
    RecordType,
    DynamicType,
    AnyType,
    NeverType,
    PromptType,
]


STRING = PrimitiveType("string")
NUMBER = PrimitiveType("number")
BOOLEAN = PrimitiveType("boolean")
NULL = PrimitiveType("null")
ANY = AnyType()
NEVER = NeverType()
DYNAMIC = DynamicType()


# ---------------------------------------------------------------------------
# Constructors


def function_type(
    parameters: Iterable[tuple[str, Type] | ParameterType], returns: Type
) -> FunctionType:
    """Build a :class:`FunctionType` from ``(name, type)`` pairs or parameters."""

    normalised: list[ParameterType] = []
    for item in parameters:
        if isinstance(item, ParameterType):
            normalised.append(item)
        else:
            name, typ = item
            normalised.append(ParameterType(name, typ))
    return FunctionType(tuple(normalised), returns)


def list_type(
    element: Type, *, min_length: Optional[int] = None, max_length: Optional[int] = None
) -> ListType:
    return ListType(element, min_length, max_length)


def record_type(
    fields: Iterable[tuple[str, Type] | RecordField], *, open: bool = True
) -> RecordType:
    normalised: list[RecordField] = []
    for item in fields:
        if isinstance(item, RecordField):
            normalised.append(item)
        else:
            name, typ = item
            normalised.append(RecordField(name, typ))
    return RecordType(tuple(normalised), open)


def union_type(*types: Type) -> Type:
    """Return the normalised union of ``types``.

    Nested unions are flattened, ``never`` members and structural duplicates
    are dropped, an empty union is ``never`` and a singleton collapses to its
    sole member.
    """

    members: list[Type] = []
    for typ in types:
        candidates = typ.types if isinstance(typ, UnionType) else (typ,)
        for candidate in candidates:
            if isinstance(candidate, NeverType) or candidate in members:
                continue
            members.append(candidate)
    if not members:
        return NEVER
    if len(members) == 1:
        return members[0]
    return UnionType(tuple(members))


def intersection_type(*types: Type) -> Type:
    """Return the normalised intersection of ``types``.

    Nested intersections are flattened; any ``never`` member makes the whole
    intersection ``never``; ``any`` members and duplicates are dropped; an
    empty intersection is ``any`` and a singleton collapses to its member.
    """

    members: list[Type] = []
    for typ in types:
        candidates = typ.types if isinstance(typ, IntersectionType) else (typ,)
        for candidate in candidates:
            if isinstance(candidate, NeverType):
                return NEVER
            if isinstance(candidate, AnyType) or candidate in members:
                continue
            members.append(candidate)
    if not members:
        return ANY
    if len(members) == 1:
        return members[0]
    return IntersectionType(tuple(members))


# ---------------------------------------------------------------------------
# Subtyping


def is_subtype(sub: Type, sup: Type) -> bool:
    """Return True when a value of type ``sub`` may be used where ``sup`` is expected."""

    if isinstance(sup, AnyType):
        return True
    if isinstance(sub, NeverType):
        return True
    if isinstance(sub, DynamicType):
        return True
    if isinstance(sup, DynamicType):
        return sup.constraint is None or is_subtype(sub, sup.constraint)

    if type(sub) is type(sup):
        if isinstance(sub, PrimitiveType):
            return sub.name == sup.name
        if isinstance(sub, ListType):
            return is_subtype(sub.element, sup.element)
        if isinstance(sub, UnionType):
            return all(
                any(is_subtype(member, target) for target in sup.types) for member in sub.types
            )
        if isinstance(sub, RecordType):
            return _record_subtype(sub, sup)
        if isinstance(sub, FunctionType):
            return _function_subtype(sub, sup)
        if isinstance(sub, IntersectionType):
            return all(is_subtype(sub, member) for member in sup.types)
        if isinstance(sub, PromptType):
            return is_subtype(sup.input, sub.input) and is_subtype(sub.output, sup.output)
        return False

    if isinstance(sup, UnionType):
        return any(is_subtype(sub, member) for member in sup.types)
    if isinstance(sup, IntersectionType):
        return all(is_subtype(sub, member) for member in sup.types)
    if isinstance(sub, IntersectionType):
        return any(is_subtype(member, sup) for member in sub.types)
    if isinstance(sub, UnionType):
        return all(is_subtype(member, sup) for member in sub.types)
    return False


def _record_subtype(sub: RecordType, sup: RecordType) -> bool:
    # Width subtyping: fields only present on ``sub`` are ignored.
    for expected in sup.fields:
        actual = sub.field(expected.name)
        if actual is None:
            if not expected.optional:
                return False
            continue
        if not is_subtype(actual.type, expected.type):
            return False
    return True


def _function_subtype(sub: FunctionType, sup: FunctionType) -> bool:
    # ``sub`` must accept every call ``sup`` accepts: it may not demand more
    # arguments than ``sup`` guarantees, and must take at least as many.
    if sub.required_count > sup.required_count:
        return False
    if len(sub.parameters) < len(sup.parameters):
        return False
    for sub_param, sup_param in zip(sub.parameters, sup.parameters):
        if not is_subtype(sup_param.type, sub_param.type):
            return False
    return is_subtype(sub.returns, sup.returns)


# ---------------------------------------------------------------------------
# Pretty-printing


def format_type(typ: Type) -> str:
    """Return a human-readable representation used in diagnostics."""

    if isinstance(typ, PrimitiveType):
        return typ.name
    if isinstance(typ, AnyType):
        return "any"
    if isinstance(typ, NeverType):
        return "never"
    if isinstance(typ, DynamicType):
        if typ.constraint is None:
            return "dynamic"
        return f"dynamic[{format_type(typ.constraint)}]"
    if isinstance(typ, ListType):
        bounds = ""
        if typ.min_length is not None or typ.max_length is not None:
            low = "" if typ.min_length is None else str(typ.min_length)
            high = "" if typ.max_length is None else str(typ.max_length)
            bounds = f", {low}..{high}"
        return f"list[{format_type(typ.element)}{bounds}]"
    if isinstance(typ, RecordType):
        entries = [
            f"{entry.name}{'?' if entry.optional else ''}: {format_type(entry.type)}"
            for entry in typ.fields
        ]
        return "record{" + ", ".join(entries) + "}"
    if isinstance(typ, FunctionType):
        params = ", ".join(
            f"{param.name}{'?' if param.optional else ''}: {format_type(param.type)}"
            for param in typ.parameters
        )
        return f"({params}) -> {format_type(typ.returns)}"
    if isinstance(typ, UnionType):
        return " | ".join(_format_member(member) for member in typ.types)
    if isinstance(typ, IntersectionType):
        return " & ".join(_format_member(member) for member in typ.types)
    if isinstance(typ, PromptType):
        extras = ""
        if typ.model is not None:
            extras += f", {typ.model!r}"
        if typ.temperature is not None:
            extras += f", {typ.temperature:g}"
        return f"prompt[{format_type(typ.input)}, {format_type(typ.output)}{extras}]"
    raise AssertionError(f"Unknown type node: {typ!r}")


def _format_member(typ: Type) -> str:
    text = format_type(typ)
    if isinstance(typ, (FunctionType, UnionType, IntersectionType)):
        return f"({text})"
    return text
