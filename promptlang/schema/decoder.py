"""Schema-aligned decoding of loosely formatted model output.

Strategies are tried in order until one yields a valid value:

``direct``
    the text is JSON and already matches the schema.
``corrected``
    the JSON decodes but needed field-name remapping, primitive coercion or
    default filling.
``fenced``
    the text is not JSON but contains a fenced code block whose payload
    decodes; extraction is attempted once, never recursively.

Anything else is ``failed``.  Failures are returned, not raised: malformed
model output is an expected condition.
"""

from __future__ import annotations

import copy
import json
import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

from promptlang.dsl.types import PrimitiveType, Type
from promptlang.telemetry import hooks, logger

from .validator import Schema, ValidationError

__all__ = [
    "ParseResult",
    "auto_correct",
    "coerce_primitive",
    "decode",
    "extract_fenced_block",
]

_LOGGER = logger.get_logger("promptlang.schema.decoder")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_JSON_NUMBER_RE = re.compile(r"-?(?:0|[1-9][0-9]*)(\.[0-9]+)?([eE][+-]?[0-9]+)?")


@dataclass(slots=True)
class ParseResult:
    success: bool
    value: Any = None
    errors: list[ValidationError] = field(default_factory=list)
    strategy: str = "failed"


def decode(schema: Schema, text: str) -> ParseResult:
    """Decode ``text`` against ``schema`` and report which strategy succeeded."""

    result = _decode(schema, text, allow_fenced=True)
    _LOGGER.debug(
        "schema %s parse %s via %s (%d error(s))",
        schema.name,
        "succeeded" if result.success else "failed",
        result.strategy,
        len(result.errors),
    )
    hooks.dispatch(
        hooks.SCHEMA_PARSE_COMPLETED,
        {
            "schema": schema.name,
            "success": result.success,
            "strategy": result.strategy,
            "error_count": len(result.errors),
        },
    )
    return result


def _decode(schema: Schema, text: str, *, allow_fenced: bool) -> ParseResult:
    try:
        payload = json.loads(text)
    except (json.JSONDecodeError, RecursionError) as exc:
        block = extract_fenced_block(text) if allow_fenced else None
        if block is None:
            return ParseResult(
                success=False,
                errors=[ValidationError("", f"Failed to parse JSON: {exc}")],
            )
        _LOGGER.debug("extracted fenced block for schema %s", schema.name)
        inner = _decode(schema, block, allow_fenced=False)
        if inner.success:
            return replace(inner, strategy="fenced")
        return inner

    if _nested_deeper_than(payload, schema.max_value_depth + 1):
        message = f"Value nested deeper than {schema.max_value_depth} levels"
        return ParseResult(False, None, [ValidationError("", message)], "failed")

    validation = schema.validate(payload)
    if validation.valid:
        return ParseResult(True, schema.apply_defaults(payload), [], "direct")

    corrected = auto_correct(schema, payload)
    revalidation = schema.validate(corrected)
    if revalidation.valid:
        _LOGGER.debug(
            "auto-corrected payload for schema %s: %s",
            schema.name,
            "; ".join(str(error) for error in validation.errors),
        )
        return ParseResult(True, schema.apply_defaults(corrected), [], "corrected")
    return ParseResult(False, None, list(revalidation.errors), "failed")


def extract_fenced_block(text: str) -> Optional[str]:
    """Return the payload of the first ```` ``` ```` fenced block, if any."""

    match = _FENCE_RE.search(text)
    if match is None:
        return None
    return match.group(1)


def auto_correct(schema: Schema, value: Any) -> Any:
    """Remap keys case-insensitively, coerce primitives and fill defaults.

    Keys that match no declared field are dropped.  Non-object values are
    returned unchanged.
    """

    if not isinstance(value, Mapping):
        return value
    fixed: dict[str, Any] = {}
    for entry in schema.fields:
        key = _find_key(value, entry.name)
        if key is not None:
            fixed[entry.name] = coerce_primitive(value[key], entry.type)
        elif entry.has_default:
            fixed[entry.name] = copy.deepcopy(entry.default)
    return fixed


def coerce_primitive(value: Any, typ: Type) -> Any:
    """Best-effort conversion of ``value`` towards primitive ``typ``."""

    if not isinstance(typ, PrimitiveType):
        return value
    if typ.name == "number" and isinstance(value, str):
        return _to_number(value)
    if typ.name == "boolean" and isinstance(value, str):
        return value.strip().lower() == "true"
    if typ.name == "string" and not isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return value


def _to_number(text: str) -> Any:
    match = _JSON_NUMBER_RE.fullmatch(text.strip())
    if match is None:
        return text
    if match.group(1) is None and match.group(2) is None:
        return int(match.group(0))
    number = float(match.group(0))
    if not math.isfinite(number):
        return text
    return number


def _nested_deeper_than(value: Any, limit: int) -> bool:
    # Iterative: payload depth is unbounded.
    pending = [(value, 1)]
    while pending:
        item, depth = pending.pop()
        if isinstance(item, Mapping):
            children: Any = item.values()
        elif isinstance(item, list):
            children = item
        else:
            continue
        if depth > limit:
            return True
        pending.extend((child, depth + 1) for child in children)
    return False


def _find_key(value: Mapping[str, Any], name: str) -> Optional[str]:
    if name in value:
        return name
    folded = name.casefold()
    for key in value:
        if isinstance(key, str) and key.casefold() == folded:
            return key
    return None
