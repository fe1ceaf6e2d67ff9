"""Scope-aware type checker for the prompt DSL.

The checker walks a parsed tree once, threading a chain of :class:`TypeEnv`
frames (one per lambda body and per ``let`` body).  Semantic problems are not
raised: each one is appended to an ordered log of :class:`TypeCheckError`
records and checking continues with a best-effort type, so a single pass
surfaces as many diagnostics as possible.  Only a node kind the checker does
not know about is fatal (:class:`CheckerInvariantError`), since that means the
parser and checker disagree about the tree shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from promptlang.telemetry import hooks, logger

from . import ast, grammar
from .types import (
    ANY,
    BOOLEAN,
    DYNAMIC,
    NULL,
    NUMBER,
    STRING,
    DynamicType,
    FunctionType,
    ParameterType,
    Type,
    format_type,
    is_subtype,
)

__all__ = [
    "CheckResult",
    "CheckerInvariantError",
    "TypeCheckError",
    "TypeChecker",
    "TypeEnv",
    "check_source",
]

_LOGGER = logger.get_logger("promptlang.dsl.checker")


class CheckerInvariantError(RuntimeError):
    """Raised when the checker meets a node kind it cannot dispatch."""


@dataclass(slots=True, frozen=True)
class TypeCheckError:
    """Single semantic diagnostic."""

    message: str
    location: ast.Location
    code: str

    def __str__(self) -> str:
        loc = self.location
        return f"{loc.filename}:{loc.line}:{loc.column}: {self.message}"


@dataclass(slots=True)
class TypeEnv:
    """Lexical scope frame; lookups walk the ``parent`` chain outward."""

    bindings: Dict[str, Type] = field(default_factory=dict)
    parent: Optional[TypeEnv] = None

    def child(self) -> "TypeEnv":
        return TypeEnv(parent=self)

    def define(self, name: str, typ: Type) -> None:
        self.bindings[name] = typ

    def lookup(self, name: str) -> Type:
        env: Optional[TypeEnv] = self
        while env is not None:
            if name in env.bindings:
                return env.bindings[name]
            env = env.parent
        raise KeyError(name)

    def __contains__(self, name: object) -> bool:
        env: Optional[TypeEnv] = self
        while env is not None:
            if name in env.bindings:
                return True
            env = env.parent
        return False


@dataclass(slots=True, frozen=True)
class CheckResult:
    """Outcome of :func:`check_source`."""

    node: ast.Node
    type: Type
    errors: tuple[TypeCheckError, ...]

    @property
    def ok(self) -> bool:
        return not self.errors


class TypeChecker:
    """Infers a type for each expression and records diagnostics."""

    def __init__(self, builtins: Mapping[str, Type] | None = None) -> None:
        self.globals = TypeEnv({"string": STRING, "number": NUMBER, "boolean": BOOLEAN})
        for name, typ in (builtins or {}).items():
            self.globals.define(name, typ)
        self._errors: list[TypeCheckError] = []

    @property
    def errors(self) -> tuple[TypeCheckError, ...]:
        return tuple(self._errors)

    def get_errors(self) -> list[TypeCheckError]:
        return list(self._errors)

    def clear(self) -> None:
        self._errors.clear()

    def check(self, node: ast.Node, env: Optional[TypeEnv] = None) -> Type:
        """Return the type of ``node`` in ``env`` (the global scope by default)."""

        if env is None:
            env = self.globals
        if isinstance(node, ast.Literal):
            return _literal_type(node.value)
        if isinstance(node, ast.Identifier):
            return self._check_identifier(node, env)
        if isinstance(node, ast.Lambda):
            return self._check_lambda(node, env)
        if isinstance(node, ast.Application):
            return self._check_application(node, env)
        if isinstance(node, ast.Let):
            return self._check_let(node, env)
        if isinstance(node, ast.Pipeline):
            return self._check_pipeline(node, env)
        if isinstance(node, ast.Template):
            for part in node.parts:
                if isinstance(part, ast.InterpolationPart):
                    self.check(part.expression, env)
            return STRING
        if isinstance(node, ast.TypeAnnotation):
            actual = self.check(node.expression, env)
            if not is_subtype(actual, node.type):
                self._report(
                    node,
                    "annotation_mismatch",
                    f"Type annotation mismatch: expected {format_type(node.type)}, "
                    f"got {format_type(actual)}",
                )
            return node.type
        raise CheckerInvariantError(f"Unknown node kind: {type(node).__name__}")

    # ------------------------------------------------------------------
    # Node rules

    def _check_identifier(self, node: ast.Identifier, env: TypeEnv) -> Type:
        try:
            return env.lookup(node.name)
        except KeyError:
            self._report(node, "undefined_identifier", f"Undefined identifier '{node.name}'")
            return ANY

    def _check_lambda(self, node: ast.Lambda, env: TypeEnv) -> Type:
        scope = env.child()
        parameters: list[ParameterType] = []
        for param in node.parameters:
            declared = param.type if param.type is not None else DYNAMIC
            if param.default is not None:
                default_type = self.check(param.default, env)
                if not is_subtype(default_type, declared):
                    self._report(
                        param.default,
                        "binding_mismatch",
                        f"Default for parameter '{param.name}': expected "
                        f"{format_type(declared)}, got {format_type(default_type)}",
                    )
            scope.define(param.name, declared)
            parameters.append(ParameterType(param.name, declared, param.default is not None))
        body_type = self.check(node.body, scope)
        returns = body_type
        if node.return_type is not None:
            if not is_subtype(body_type, node.return_type):
                self._report(
                    node.body,
                    "annotation_mismatch",
                    f"Lambda body: expected {format_type(node.return_type)}, "
                    f"got {format_type(body_type)}",
                )
            returns = node.return_type
        return FunctionType(tuple(parameters), returns)

    def _check_application(self, node: ast.Application, env: TypeEnv) -> Type:
        callee = self.check(node.function, env)
        argument_types = [self.check(argument, env) for argument in node.arguments]
        if isinstance(callee, DynamicType):
            return DYNAMIC
        if not isinstance(callee, FunctionType):
            self._report(
                node.function,
                "not_callable",
                f"Cannot apply non-function type {format_type(callee)}",
            )
            return ANY

        count = len(argument_types)
        if count < callee.required_count:
            self._report(
                node,
                "too_few_arguments",
                f"Too few arguments: expected at least {callee.required_count}, got {count}",
            )
        if count > len(callee.parameters):
            self._report(
                node,
                "too_many_arguments",
                f"Too many arguments: expected at most {len(callee.parameters)}, got {count}",
            )
        for index, (param, actual) in enumerate(zip(callee.parameters, argument_types)):
            if not is_subtype(actual, param.type):
                self._report(
                    node.arguments[index],
                    "argument_mismatch",
                    f"Argument {index + 1} ('{param.name}'): expected "
                    f"{format_type(param.type)}, got {format_type(actual)}",
                )
        return callee.returns

    def _check_let(self, node: ast.Let, env: TypeEnv) -> Type:
        # Bindings see the enclosing scope only, never their siblings.
        scope = env.child()
        for binding in node.bindings:
            value_type = self.check(binding.value, env)
            if binding.type is not None:
                if not is_subtype(value_type, binding.type):
                    self._report(
                        binding.value,
                        "binding_mismatch",
                        f"Binding '{binding.name}': expected {format_type(binding.type)}, "
                        f"got {format_type(value_type)}",
                    )
                value_type = binding.type
            scope.define(binding.name, value_type)
        return self.check(node.body, scope)

    def _check_pipeline(self, node: ast.Pipeline, env: TypeEnv) -> Type:
        current = self.check(node.stages[0], env)
        collapsed = False
        for position, stage in enumerate(node.stages[1:], start=2):
            stage_type = self.check(stage, env)
            if collapsed:
                continue
            if isinstance(stage_type, DynamicType):
                current = DYNAMIC
                continue
            if not isinstance(stage_type, FunctionType) or not stage_type.parameters:
                self._report(
                    stage,
                    "pipeline_stage",
                    f"Pipeline stage {position} must be a function of at least one "
                    f"argument, got {format_type(stage_type)}",
                )
                current = ANY
                collapsed = True
                continue
            expected = stage_type.parameters[0].type
            if not is_subtype(current, expected):
                self._report(
                    stage,
                    "pipeline_stage",
                    f"Pipeline stage {position} expects {format_type(expected)}, "
                    f"got {format_type(current)}",
                )
            current = stage_type.returns
        return current

    # ------------------------------------------------------------------

    def _report(self, node: ast.Node, code: str, message: str) -> None:
        self._errors.append(TypeCheckError(message, node.location, code))


def _literal_type(value: object) -> Type:
    # bool is an int subclass, so it must be tested first.
    if isinstance(value, bool):
        return BOOLEAN
    if value is None:
        return NULL
    if isinstance(value, str):
        return STRING
    if isinstance(value, (int, float)):
        return NUMBER
    raise CheckerInvariantError(f"Unsupported literal value: {value!r}")


def check_source(
    source: str,
    *,
    builtins: Mapping[str, Type] | None = None,
    filename: str = "<prompt>",
) -> CheckResult:
    """Parse and type-check ``source`` in one step.

    Syntax errors propagate as :class:`~promptlang.dsl.lexer.ParseError`;
    semantic problems are returned in :attr:`CheckResult.errors`.
    """

    node = grammar.parse(source, filename=filename)
    checker = TypeChecker(builtins)
    result_type = checker.check(node)
    result = CheckResult(node=node, type=result_type, errors=checker.errors)
    _LOGGER.debug(
        "checked %s: %s with %d diagnostic(s)",
        filename,
        format_type(result_type),
        len(result.errors),
    )
    hooks.dispatch(
        hooks.TYPECHECK_COMPLETED,
        {
            "filename": filename,
            "type": format_type(result_type),
            "error_count": len(result.errors),
            "codes": [error.code for error in result.errors],
        },
    )
    return result
