"""Tests for the set-theoretic type model."""

from __future__ import annotations

import pytest

from promptlang.dsl.types import (
    ANY,
    BOOLEAN,
    DYNAMIC,
    NEVER,
    NULL,
    NUMBER,
    STRING,
    DynamicType,
    FunctionType,
    IntersectionType,
    ListType,
    ParameterType,
    PrimitiveType,
    PromptType,
    RecordField,
    RecordType,
    UnionType,
    format_type,
    function_type,
    intersection_type,
    is_subtype,
    list_type,
    record_type,
    union_type,
)

PRIMITIVES = [STRING, NUMBER, BOOLEAN, NULL]


@pytest.mark.parametrize("prim", PRIMITIVES, ids=lambda t: t.name)
def test_primitive_lattice_extremes(prim: PrimitiveType) -> None:
    assert is_subtype(prim, prim)
    assert is_subtype(NEVER, prim)
    assert is_subtype(prim, ANY)
    assert is_subtype(DYNAMIC, prim)


def test_distinct_primitives_are_unrelated() -> None:
    assert not is_subtype(STRING, NUMBER)
    assert not is_subtype(NULL, BOOLEAN)


@pytest.mark.parametrize(
    "target",
    [
        function_type([("x", STRING)], NUMBER),
        record_type([("a", STRING)]),
        list_type(NUMBER),
        union_type(STRING, NULL),
        NEVER,
    ],
    ids=format_type,
)
def test_dynamic_is_trusted_everywhere(target) -> None:
    assert is_subtype(DYNAMIC, target)
    assert is_subtype(DynamicType(STRING), target)


def test_dynamic_accepts_values_within_its_constraint() -> None:
    assert is_subtype(STRING, DYNAMIC)
    assert is_subtype(record_type([("a", STRING)]), DYNAMIC)
    assert is_subtype(NUMBER, DynamicType(union_type(NUMBER, NULL)))
    assert not is_subtype(STRING, DynamicType(NUMBER))


def test_unknown_primitive_name_is_rejected() -> None:
    with pytest.raises(ValueError):
        PrimitiveType("int")


def test_union_flattens_and_drops_never() -> None:
    nested = union_type(union_type(STRING, NUMBER), BOOLEAN)
    assert nested == union_type(STRING, NUMBER, BOOLEAN)
    assert isinstance(nested, UnionType)
    assert not any(isinstance(member, UnionType) for member in nested.types)
    assert union_type(STRING, NEVER) == STRING
    assert union_type() == NEVER
    assert union_type(STRING, STRING) == STRING


def test_intersection_normalisation() -> None:
    nested = intersection_type(intersection_type(STRING, NUMBER), BOOLEAN)
    assert nested == IntersectionType((STRING, NUMBER, BOOLEAN))
    assert intersection_type(STRING, NEVER) == NEVER
    assert intersection_type(STRING, ANY) == STRING
    assert intersection_type() == ANY


def test_union_subtyping() -> None:
    assert is_subtype(STRING, union_type(STRING, NUMBER))
    assert is_subtype(union_type(STRING, NUMBER), union_type(NUMBER, BOOLEAN, STRING))
    assert not is_subtype(union_type(STRING, NULL), union_type(STRING, NUMBER))
    assert not is_subtype(union_type(STRING, NUMBER), STRING)
    assert is_subtype(union_type(STRING, NUMBER), ANY)


def test_lists_are_covariant() -> None:
    assert is_subtype(list_type(STRING), list_type(union_type(STRING, NUMBER)))
    assert not is_subtype(list_type(union_type(STRING, NUMBER)), list_type(STRING))


def test_record_width_subtyping() -> None:
    wide = record_type([("name", STRING), ("age", NUMBER)])
    narrow = record_type([("name", STRING)])
    assert is_subtype(wide, narrow)
    assert not is_subtype(narrow, wide)


def test_record_optional_fields_may_be_absent() -> None:
    optional_age = record_type([RecordField("name", STRING), RecordField("age", NUMBER, True)])
    assert is_subtype(record_type([("name", STRING)]), optional_age)
    assert not is_subtype(record_type([("name", STRING), ("age", STRING)]), optional_age)


def test_function_subtyping_is_contravariant_in_parameters() -> None:
    general = function_type([("x", union_type(STRING, NUMBER))], STRING)
    specific = function_type([("x", STRING)], union_type(STRING, NUMBER))
    assert is_subtype(general, specific)
    assert not is_subtype(specific, general)


def test_function_arity_rules() -> None:
    unary = function_type([("x", STRING)], STRING)
    binary = function_type([("x", STRING), ("y", STRING)], STRING)
    optional_second = FunctionType(
        (ParameterType("x", STRING), ParameterType("y", STRING, optional=True)), STRING
    )
    assert not is_subtype(binary, unary)
    assert is_subtype(optional_second, unary)


def test_intersection_subtyping() -> None:
    both = intersection_type(STRING, NUMBER)
    assert is_subtype(both, STRING)
    assert not is_subtype(STRING, both)
    record = record_type([("a", STRING), ("b", NUMBER)])
    halves = intersection_type(record_type([("a", STRING)]), record_type([("b", NUMBER)]))
    assert is_subtype(record, halves)


def test_prompt_subtyping_ignores_metadata() -> None:
    broad_input = PromptType(union_type(STRING, NUMBER), STRING, model="gpt-4")
    narrow_input = PromptType(STRING, union_type(STRING, NULL), temperature=0.2)
    assert is_subtype(broad_input, narrow_input)
    assert not is_subtype(narrow_input, broad_input)


@pytest.mark.parametrize(
    ("typ", "expected"),
    [
        (STRING, "string"),
        (ANY, "any"),
        (NEVER, "never"),
        (DYNAMIC, "dynamic"),
        (DynamicType(NUMBER), "dynamic[number]"),
        (ListType(STRING), "list[string]"),
        (ListType(STRING, 1, None), "list[string, 1..]"),
        (
            RecordType((RecordField("a", STRING), RecordField("b", NUMBER, True))),
            "record{a: string, b?: number}",
        ),
        (function_type([("x", STRING)], NUMBER), "(x: string) -> number"),
        (
            union_type(STRING, function_type([("x", STRING)], NUMBER)),
            "string | ((x: string) -> number)",
        ),
        (intersection_type(STRING, NUMBER), "string & number"),
        (PromptType(STRING, NUMBER, "gpt-4", 0.7), "prompt[string, number, 'gpt-4', 0.7]"),
    ],
)
def test_format_type(typ, expected: str) -> None:
    assert format_type(typ) == expected
