"""Tests for schema-aligned decoding of model output."""

from __future__ import annotations

import logging

import pytest

from promptlang.dsl.types import BOOLEAN, NUMBER, STRING
from promptlang.schema import (
    ParseResult,
    Schema,
    SchemaField,
    coerce_primitive,
    extract_fenced_block,
)
from promptlang.telemetry import hooks


@pytest.fixture()
def age_schema() -> Schema:
    return Schema.from_fields("Person", [SchemaField("age", NUMBER)])


def test_direct_decode(age_schema: Schema) -> None:
    result = age_schema.parse('{"age": 30}')
    assert isinstance(result, ParseResult)
    assert result.success
    assert result.strategy == "direct"
    assert result.value == {"age": 30}
    assert result.errors == []


def test_string_number_is_corrected(age_schema: Schema) -> None:
    assert not age_schema.validate({"age": "30"}).valid
    result = age_schema.parse('{"age":"30"}')
    assert result.success
    assert result.strategy == "corrected"
    assert result.value == {"age": 30}


@pytest.mark.parametrize(
    "text",
    [
        '```json\n{"age":30}\n```',
        'Here you go:\n```\n{"age": 30}\n```\nThanks!',
    ],
)
def test_fenced_payload_is_extracted(age_schema: Schema, text: str) -> None:
    result = age_schema.parse(text)
    assert result.success
    assert result.strategy == "fenced"
    assert result.value == {"age": 30}


def test_fenced_extraction_happens_once(age_schema: Schema) -> None:
    result = age_schema.parse("before ```not json``` after")
    assert not result.success
    assert result.strategy == "failed"
    assert result.errors[0].path == ""
    assert result.errors[0].message.startswith("Failed to parse JSON")


def test_plain_garbage_fails(age_schema: Schema) -> None:
    result = age_schema.parse("I think the age is thirty")
    assert not result.success
    assert result.value is None
    assert result.errors[0].message.startswith("Failed to parse JSON")


def test_deeply_nested_json_fails_without_raising(age_schema: Schema) -> None:
    result = age_schema.parse("[" * 200000)
    assert not result.success
    assert result.strategy == "failed"
    assert result.errors[0].message.startswith("Failed to parse JSON")

    fenced = age_schema.parse("```\n" + "[" * 200000 + "\n```")
    assert not fenced.success
    assert fenced.strategy == "failed"


def test_payload_depth_is_bounded() -> None:
    schema = Schema.from_fields("Blob", [SchemaField("data", "any")], max_value_depth=2)
    assert schema.parse('{"data": [[1]]}').success
    result = schema.parse('{"data": [[[1]]]}')
    assert not result.success
    assert [error.message for error in result.errors] == ["Value nested deeper than 2 levels"]


def test_valid_json_with_wrong_shape_reports_validation_errors(age_schema: Schema) -> None:
    result = age_schema.parse('{"age": "thirty"}')
    assert not result.success
    assert [error.message for error in result.errors] == ["Expected type number, got string"]

    array = age_schema.parse("[1, 2]")
    assert [error.message for error in array.errors] == ["Value must be an object"]


def test_case_insensitive_keys_and_dropped_extras(age_schema: Schema) -> None:
    result = age_schema.parse('{"AGE": "42", "extra": true}')
    assert result.strategy == "corrected"
    assert result.value == {"age": 42}


def test_direct_decode_keeps_extra_keys(age_schema: Schema) -> None:
    result = age_schema.parse('{"age": 1, "extra": true}')
    assert result.strategy == "direct"
    assert result.value == {"age": 1, "extra": True}


@pytest.mark.parametrize(
    ("raw", "expected"),
    [('"TRUE"', True), ('"true "', True), ('"no"', False)],
)
def test_boolean_coercion(raw: str, expected: bool) -> None:
    schema = Schema.from_fields("Flag", [SchemaField("active", BOOLEAN)])
    result = schema.parse('{"active": %s}' % raw)
    assert result.success
    assert result.value == {"active": expected}


def test_string_coercion_stringifies() -> None:
    schema = Schema.from_fields("Label", [SchemaField("name", STRING), SchemaField("n", NUMBER)])
    result = schema.parse('{"name": 123, "n": "2.5"}')
    assert result.value == {"name": "123", "n": 2.5}


def test_defaults_fill_missing_fields() -> None:
    schema = Schema.from_fields(
        "Review",
        [SchemaField("rating", NUMBER), SchemaField("tags", "list[string]", default=[])],
    )
    first = schema.parse('{"rating": 4}')
    second = schema.parse('{"Rating": "5"}')
    assert first.value == {"rating": 4, "tags": []}
    assert second.strategy == "corrected"
    assert second.value == {"rating": 5, "tags": []}
    first.value["tags"].append("mutated")
    assert schema.parse('{"rating": 1}').value["tags"] == []


@pytest.mark.parametrize(
    ("value", "typ", "expected"),
    [
        (" 7 ", NUMBER, 7),
        ("1e3", NUMBER, 1000.0),
        ("nan", NUMBER, "nan"),
        ("seven", NUMBER, "seven"),
        ("1_000", NUMBER, "1_000"),
        ("+5", NUMBER, "+5"),
        ("0x10", NUMBER, "0x10"),
        ("-0.5", NUMBER, -0.5),
        ("1e999", NUMBER, "1e999"),
        (True, STRING, "true"),
        (None, STRING, "null"),
        ([1, "a"], STRING, '[1, "a"]'),
        ("kept", STRING, "kept"),
        (5, BOOLEAN, 5),
    ],
)
def test_coerce_primitive(value, typ, expected) -> None:
    assert coerce_primitive(value, typ) == expected


def test_extract_fenced_block() -> None:
    assert extract_fenced_block("x ```json\n[1]\n``` y") == "[1]"
    assert extract_fenced_block("no fences") is None


def test_parse_dispatches_hook(age_schema: Schema) -> None:
    events: list[hooks.HookEvent] = []
    with hooks.register_hook(hooks.SCHEMA_PARSE_COMPLETED, events.append):
        age_schema.parse('{"age": "3"}')
    assert [event.payload["strategy"] for event in events] == ["corrected"]
    assert events[0].payload["schema"] == "Person"
    assert events[0].payload["success"] is True


def test_auto_correction_is_logged(age_schema: Schema, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="promptlang.schema.decoder")
    age_schema.parse('{"age": "3"}')
    assert "auto-corrected payload for schema Person" in caplog.text
