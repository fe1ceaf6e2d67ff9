"""Tests for the scope-aware type checker."""

from __future__ import annotations

import pytest

from promptlang.dsl import ast, grammar
from promptlang.dsl.checker import (
    CheckerInvariantError,
    TypeChecker,
    TypeEnv,
    check_source,
)
from promptlang.dsl.types import (
    ANY,
    BOOLEAN,
    DYNAMIC,
    NULL,
    NUMBER,
    STRING,
    FunctionType,
    ParameterType,
    function_type,
)
from promptlang.telemetry import hooks

BUILTINS = {
    "greet": function_type([("name", STRING)], STRING),
    "pair": function_type([("left", STRING), ("right", STRING)], STRING),
    "sanitize": function_type([("text", STRING)], STRING),
    "count": function_type([("text", STRING)], NUMBER),
    "now": function_type([], STRING),
}


def _codes(result) -> list[str]:
    return [error.code for error in result.errors]


def test_let_bindings_type_check_cleanly() -> None:
    result = check_source('let name = "Alice", age = 30 in name')
    assert result.type == STRING
    assert result.errors == ()
    assert result.ok


def test_annotated_lambda_type() -> None:
    result = check_source("(x: string) -> x")
    assert result.type == FunctionType((ParameterType("x", STRING),), STRING)


def test_unannotated_parameters_are_dynamic() -> None:
    result = check_source("(x) -> x")
    assert result.type == FunctionType((ParameterType("x", DYNAMIC),), DYNAMIC)


def test_defaulted_parameter_is_optional() -> None:
    result = check_source("(x: string, y: number = 1) -> x")
    assert result.type == FunctionType(
        (ParameterType("x", STRING), ParameterType("y", NUMBER, optional=True)), STRING
    )
    assert result.ok


def test_default_must_match_annotation() -> None:
    result = check_source('(y: number = "a") -> y')
    assert _codes(result) == ["binding_mismatch"]


def test_declared_return_type_wins() -> None:
    result = check_source('(x): string -> 1')
    assert isinstance(result.type, FunctionType)
    assert result.type.returns == STRING
    assert _codes(result) == ["annotation_mismatch"]


@pytest.mark.parametrize(
    ("value", "expected"),
    [("text", STRING), (3, NUMBER), (2.5, NUMBER), (True, BOOLEAN), (None, NULL)],
)
def test_literal_types(value, expected) -> None:
    assert TypeChecker().check(ast.Literal(value)) == expected


def test_undefined_identifier_is_reported_and_tolerated() -> None:
    result = check_source("missing")
    assert result.type == ANY
    assert _codes(result) == ["undefined_identifier"]
    error = result.errors[0]
    assert error.location == ast.Location(1, 1)
    assert "missing" in error.message
    assert str(error).startswith("<prompt>:1:1:")


def test_checking_continues_after_errors() -> None:
    result = check_source("let a = nope, b = alsonope in a")
    assert _codes(result) == ["undefined_identifier", "undefined_identifier"]


def test_application_returns_declared_type() -> None:
    result = check_source('greet "Ada"', builtins=BUILTINS)
    assert result.type == STRING
    assert result.ok


def test_argument_mismatch_is_reported_per_argument() -> None:
    result = check_source("pair 1 true", builtins=BUILTINS)
    assert result.type == STRING
    assert _codes(result) == ["argument_mismatch", "argument_mismatch"]
    assert "'left'" in result.errors[0].message


def test_arity_diagnostics() -> None:
    too_few = check_source('pair "x"', builtins=BUILTINS)
    assert _codes(too_few) == ["too_few_arguments"]
    assert too_few.type == STRING

    too_many = check_source('greet "a" "b"', builtins=BUILTINS)
    assert _codes(too_many) == ["too_many_arguments"]


def test_applying_non_function_is_reported() -> None:
    result = check_source('"text" 1')
    assert result.type == ANY
    assert _codes(result) == ["not_callable"]


def test_applying_dynamic_is_trusted() -> None:
    result = check_source("(f) -> f 1")
    assert result.type == FunctionType((ParameterType("f", DYNAMIC),), DYNAMIC)
    assert result.ok


def test_unannotated_lambda_accepts_any_argument() -> None:
    applied = check_source('((x) -> x) "hi"')
    assert applied.ok
    assert applied.type == DYNAMIC

    piped = check_source('"x" |> (s) -> s')
    assert piped.ok
    assert piped.type == DYNAMIC


def test_constrained_dynamic_parameter_still_checks() -> None:
    result = check_source('((x: dynamic[number]) -> x) "hi"')
    assert _codes(result) == ["argument_mismatch"]


def test_let_bindings_do_not_see_siblings() -> None:
    result = check_source("let a = 1, b = a in b")
    assert _codes(result) == ["undefined_identifier"]
    assert result.type == ANY


def test_let_annotation_is_enforced_and_used() -> None:
    result = check_source('let n: number = "x" in n')
    assert result.type == NUMBER
    assert _codes(result) == ["binding_mismatch"]


def test_scopes_do_not_leak_into_globals() -> None:
    checker = TypeChecker()
    checker.check(grammar.parse("let a = 1 in (b) -> a"))
    assert "a" not in checker.globals
    assert "b" not in checker.globals
    assert "string" in checker.globals


def test_pipeline_threads_return_types() -> None:
    result = check_source('"raw" |> sanitize |> count', builtins=BUILTINS)
    assert result.type == NUMBER
    assert result.ok


def test_pipeline_stage_mismatch() -> None:
    result = check_source("1 |> sanitize", builtins=BUILTINS)
    assert result.type == STRING
    assert _codes(result) == ["pipeline_stage"]


def test_pipeline_collapses_after_non_function_stage() -> None:
    result = check_source('"raw" |> 42 |> count', builtins=BUILTINS)
    assert result.type == ANY
    assert _codes(result) == ["pipeline_stage"]


def test_collapsed_pipeline_still_checks_later_stages() -> None:
    result = check_source('"raw" |> 42 |> missing', builtins=BUILTINS)
    assert _codes(result) == ["pipeline_stage", "undefined_identifier"]


def test_zero_parameter_stage_is_rejected() -> None:
    result = check_source('"raw" |> now', builtins=BUILTINS)
    assert result.type == ANY
    assert _codes(result) == ["pipeline_stage"]


def test_template_is_string_and_checks_interpolations() -> None:
    result = check_source('"""Hi {{ who }}, {{ greet "x" }}"""', builtins=BUILTINS)
    assert result.type == STRING
    assert _codes(result) == ["undefined_identifier"]


def test_type_annotation_returns_declared_type() -> None:
    result = check_source("1 :: string")
    assert result.type == STRING
    assert _codes(result) == ["annotation_mismatch"]

    assert check_source('"a" :: string | null').ok


def test_unknown_node_is_an_invariant_violation() -> None:
    with pytest.raises(CheckerInvariantError):
        TypeChecker().check(ast.Parameter("x"))  # type: ignore[arg-type]


def test_clear_resets_error_log() -> None:
    checker = TypeChecker()
    checker.check(grammar.parse("missing"))
    assert len(checker.get_errors()) == 1
    checker.clear()
    assert checker.errors == ()


def test_explicit_environment() -> None:
    env = TypeEnv({"user": STRING}, parent=TypeChecker().globals)
    checker = TypeChecker()
    assert checker.check(grammar.parse("user"), env) == STRING
    assert checker.check(grammar.parse("number"), env) == NUMBER


def test_type_env_chain() -> None:
    root = TypeEnv({"a": STRING})
    child = root.child()
    child.define("b", NUMBER)
    assert child.lookup("a") == STRING
    assert "b" in child and "b" not in root
    with pytest.raises(KeyError):
        root.lookup("b")


def test_check_source_dispatches_hook() -> None:
    events: list[hooks.HookEvent] = []
    with hooks.register_hook(hooks.TYPECHECK_COMPLETED, events.append):
        check_source("missing")
    assert len(events) == 1
    payload = events[0].payload
    assert payload["error_count"] == 1
    assert payload["codes"] == ["undefined_identifier"]
    assert payload["type"] == "any"


def test_check_source_propagates_syntax_errors() -> None:
    with pytest.raises(grammar.ParseError):
        check_source("let x = in x")
