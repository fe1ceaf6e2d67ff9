"""Named structural contracts over the DSL type vocabulary.

A :class:`Schema` wraps an immutable :class:`SchemaDefinition` and offers three
views of it: runtime validation of decoded values, a JSON-Schema projection for
constrained model output, and a plain-text description for prompts.  Decoding
of loosely formatted text lives in :mod:`promptlang.schema.decoder`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, MutableSequence, Optional

from promptlang.dsl import grammar
from promptlang.dsl.types import (
    AnyType,
    DynamicType,
    FunctionType,
    IntersectionType,
    ListType,
    NeverType,
    PrimitiveType,
    PromptType,
    RecordField,
    RecordType,
    Type,
    UnionType,
    format_type,
)
from promptlang.utils import config

if TYPE_CHECKING:
    from .decoder import ParseResult

__all__ = [
    "MISSING",
    "Schema",
    "SchemaDefinition",
    "SchemaField",
    "SchemaProjectionError",
    "SchemaValidationError",
    "ValidationError",
    "ValidationResult",
    "type_to_json_schema",
]


class _Missing:
    """Sentinel for "no default"; ``None`` is a legitimate JSON default."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class SchemaProjectionError(ValueError):
    """Raised when a type has no JSON-Schema counterpart."""


class SchemaValidationError(ValueError):
    """Raised by :meth:`ValidationResult.raise_for_errors`."""

    def __init__(self, errors: Iterable["ValidationError"]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(str(error) for error in self.errors))


@dataclass(slots=True, frozen=True)
class ValidationError:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


@dataclass(slots=True)
class ValidationResult:
    """Validation outcome returned by :meth:`Schema.validate`."""

    valid: bool
    errors: list[ValidationError] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        if not self.valid:
            raise SchemaValidationError(self.errors)


@dataclass(slots=True, frozen=True)
class SchemaField:
    """One declared field.

    ``type`` may be given as annotation text (``"list[string]"``); it is parsed
    with the DSL type grammar on construction.
    """

    name: str
    type: Type
    required: bool = True
    description: Optional[str] = None
    validator: Optional[Callable[[Any], bool]] = None
    default: Any = MISSING

    def __post_init__(self) -> None:
        if isinstance(self.type, str):
            object.__setattr__(self, "type", grammar.parse_type(self.type))

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING


@dataclass(slots=True, frozen=True)
class SchemaDefinition:
    name: str
    fields: tuple[SchemaField, ...]
    description: Optional[str] = None
    examples: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "examples", tuple(self.examples))
        seen: set[str] = set()
        for entry in self.fields:
            if entry.name in seen:
                raise ValueError(f"duplicate schema field {entry.name!r} in {self.name!r}")
            seen.add(entry.name)


class _DepthExceeded(Exception):
    pass


class Schema:
    """Immutable contract; safe to reuse across many validate/parse calls."""

    def __init__(
        self, definition: SchemaDefinition, *, max_value_depth: Optional[int] = None
    ) -> None:
        if max_value_depth is None:
            max_value_depth = config.default_limits().max_value_depth
        self.definition = definition
        self.max_value_depth = max_value_depth

    @classmethod
    def from_fields(
        cls,
        name: str,
        fields: Iterable[SchemaField],
        *,
        description: Optional[str] = None,
        examples: Iterable[Any] = (),
        max_value_depth: Optional[int] = None,
    ) -> "Schema":
        definition = SchemaDefinition(name, tuple(fields), description, tuple(examples))
        return cls(definition, max_value_depth=max_value_depth)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def fields(self) -> tuple[SchemaField, ...]:
        return self.definition.fields

    def __repr__(self) -> str:
        return f"Schema({self.name!r}, fields={[entry.name for entry in self.fields]!r})"

    # ------------------------------------------------------------------
    # Validation

    def validate(self, value: Any) -> ValidationResult:
        """Check ``value`` field by field, collecting every error."""

        errors: MutableSequence[ValidationError] = []
        if not isinstance(value, Mapping):
            errors.append(ValidationError("", "Value must be an object"))
            return ValidationResult(valid=False, errors=list(errors))

        for entry in self.fields:
            if entry.name not in value:
                if entry.required and not entry.has_default:
                    errors.append(
                        ValidationError(entry.name, f"Required field '{entry.name}' is missing")
                    )
                continue
            errors.extend(self._validate_field(entry, value[entry.name]))

        return ValidationResult(valid=not errors, errors=list(errors))

    def _validate_field(self, entry: SchemaField, value: Any) -> list[ValidationError]:
        try:
            matches = self._matches(value, entry.type, 0)
        except _DepthExceeded:
            return [
                ValidationError(
                    entry.name, f"Value nested deeper than {self.max_value_depth} levels"
                )
            ]
        if not matches:
            message = f"Expected type {format_type(entry.type)}, got {_json_kind(value)}"
            return [ValidationError(entry.name, message)]
        if entry.validator is not None and not entry.validator(value):
            return [
                ValidationError(entry.name, f"Custom validation failed for field '{entry.name}'")
            ]
        return []

    def _matches(self, value: Any, typ: Type, depth: int) -> bool:
        if depth > self.max_value_depth:
            raise _DepthExceeded()
        if isinstance(typ, PrimitiveType):
            return _matches_primitive(value, typ.name)
        if isinstance(typ, AnyType):
            return True
        if isinstance(typ, DynamicType):
            return typ.constraint is None or self._matches(value, typ.constraint, depth + 1)
        if isinstance(typ, ListType):
            if not _is_array(value):
                return False
            if typ.min_length is not None and len(value) < typ.min_length:
                return False
            if typ.max_length is not None and len(value) > typ.max_length:
                return False
            return all(self._matches(item, typ.element, depth + 1) for item in value)
        if isinstance(typ, UnionType):
            return any(self._matches(value, member, depth + 1) for member in typ.types)
        if isinstance(typ, IntersectionType):
            return all(self._matches(value, member, depth + 1) for member in typ.types)
        if isinstance(typ, RecordType):
            if not isinstance(value, Mapping):
                return False
            for entry in typ.fields:
                if entry.name not in value:
                    if entry.optional:
                        continue
                    return False
                if not self._matches(value[entry.name], entry.type, depth + 1):
                    return False
            if not typ.open:
                declared = {entry.name for entry in typ.fields}
                if any(key not in declared for key in value):
                    return False
            return True
        # never, function and prompt types describe no JSON value
        return False

    def apply_defaults(self, value: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of ``value`` with defaults filled in for absent fields."""

        result = dict(value)
        for entry in self.fields:
            if entry.name not in result and entry.has_default:
                result[entry.name] = copy.deepcopy(entry.default)
        return result

    # ------------------------------------------------------------------
    # Decoding

    def parse(self, text: str) -> "ParseResult":
        """Decode ``text`` into a value matching this schema.

        See :func:`promptlang.schema.decoder.decode`.
        """

        from .decoder import decode

        return decode(self, text)

    # ------------------------------------------------------------------
    # Projections

    def to_type(self) -> RecordType:
        return RecordType(
            tuple(
                RecordField(entry.name, entry.type, not entry.required, entry.description)
                for entry in self.fields
            )
        )

    def to_openai_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for entry in self.fields:
            properties[entry.name] = _with_description(
                type_to_json_schema(entry.type), entry.description
            )
        return {
            "type": "object",
            "properties": properties,
            "required": [entry.name for entry in self.fields if entry.required],
        }

    def describe(self) -> str:
        """Plain-text rendering suitable for embedding in a prompt."""

        lines = [f"Schema: {self.name}"]
        if self.definition.description:
            lines.append(self.definition.description)
        lines.append("Fields:")
        for entry in self.fields:
            flags = ["required" if entry.required else "optional"]
            if entry.has_default:
                flags.append(f"default: {entry.default!r}")
            line = f"- {entry.name} ({format_type(entry.type)}, {', '.join(flags)})"
            if entry.description:
                line += f": {entry.description}"
            lines.append(line)
        return "\n".join(lines)


def type_to_json_schema(typ: Type) -> dict[str, Any]:
    """Project ``typ`` onto a JSON-Schema descriptor."""

    if isinstance(typ, PrimitiveType):
        return {"type": typ.name}
    if isinstance(typ, ListType):
        projected: dict[str, Any] = {"type": "array", "items": type_to_json_schema(typ.element)}
        if typ.min_length is not None:
            projected["minItems"] = typ.min_length
        if typ.max_length is not None:
            projected["maxItems"] = typ.max_length
        return projected
    if isinstance(typ, UnionType):
        return {"oneOf": [type_to_json_schema(member) for member in typ.types]}
    if isinstance(typ, IntersectionType):
        return {"allOf": [type_to_json_schema(member) for member in typ.types]}
    if isinstance(typ, RecordType):
        projected = {
            "type": "object",
            "properties": {
                entry.name: _with_description(type_to_json_schema(entry.type), entry.description)
                for entry in typ.fields
            },
            "required": [entry.name for entry in typ.fields if not entry.optional],
        }
        if not typ.open:
            projected["additionalProperties"] = False
        return projected
    if isinstance(typ, AnyType):
        return {}
    if isinstance(typ, DynamicType):
        return {} if typ.constraint is None else type_to_json_schema(typ.constraint)
    if isinstance(typ, NeverType):
        return {"not": {}}
    if isinstance(typ, (FunctionType, PromptType)):
        raise SchemaProjectionError(f"type {format_type(typ)} has no JSON Schema projection")
    raise SchemaProjectionError(f"unknown type {typ!r}")


# ---------------------------------------------------------------------------
# Helpers


def _with_description(projected: dict[str, Any], description: Optional[str]) -> dict[str, Any]:
    if description:
        return {**projected, "description": description}
    return projected


def _is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _matches_primitive(value: Any, name: str) -> bool:
    if name == "string":
        return isinstance(value, str)
    if name == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if name == "boolean":
        return isinstance(value, bool)
    return value is None


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, Mapping):
        return "object"
    if _is_array(value):
        return "array"
    return type(value).__name__
