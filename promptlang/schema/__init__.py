"""Schema validation, decoding and JSON-Schema projection."""

from .decoder import ParseResult, auto_correct, coerce_primitive, decode, extract_fenced_block
from .validator import (
    MISSING,
    Schema,
    SchemaDefinition,
    SchemaField,
    SchemaProjectionError,
    SchemaValidationError,
    ValidationError,
    ValidationResult,
    type_to_json_schema,
)

__all__ = [
    "MISSING",
    "ParseResult",
    "Schema",
    "SchemaDefinition",
    "SchemaField",
    "SchemaProjectionError",
    "SchemaValidationError",
    "ValidationError",
    "ValidationResult",
    "auto_correct",
    "coerce_primitive",
    "decode",
    "extract_fenced_block",
    "type_to_json_schema",
]
