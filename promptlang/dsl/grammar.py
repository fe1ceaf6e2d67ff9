"""Recursive-descent parser for the prompt DSL.

Precedence, tightest first: primary, application (juxtaposition), pipeline
(``|>``), and finally the ``::`` type assertion.  Two techniques deserve a
mention:

* Lambdas and grouped expressions both start with ``(``.  The parser takes a
  :class:`_Checkpoint` of the lexer cursor plus the buffered token, scans the
  candidate parameter list, and restores the checkpoint exactly before
  committing to either reading.
* Template literals are split on ``{{ ... }}`` markers and every interpolation
  body is handed to a fresh :class:`Parser`.  Template nesting is bounded by
  ``max_depth``; every other nested expression or type shares the
  ``max_nesting`` budget, so adversarial input cannot exhaust the stack.

There is no error recovery: the first syntax fault raises :class:`ParseError`.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from promptlang.telemetry import logger
from promptlang.utils import config

from . import ast, types
from .lexer import LexError, Lexer, LexerState, ParseError, Token

__all__ = ["LexError", "ParseError", "Parser", "parse", "parse_type"]

_LOGGER = logger.get_logger("promptlang.dsl.grammar")

_PRIMARY_START = {"STRING", "TEMPLATE", "NUMBER", "BOOLEAN", "IDENT", "LPAREN", "let"}
_OPENERS = {"LPAREN", "LBRACKET", "LBRACE"}
_CLOSERS = {"RPAREN", "RBRACKET", "RBRACE"}

_INTERPOLATION_OPEN = "{{"
_INTERPOLATION_CLOSE = "}}"
_QUOTE_WIDTH = {"STRING": 1, "TEMPLATE": 3}


@dataclass(slots=True, frozen=True)
class _Checkpoint:
    lexer: LexerState
    current: Token


class Parser:
    """Single-use parser over one source string."""

    def __init__(
        self,
        source: str,
        *,
        filename: str = "<prompt>",
        depth: int = 0,
        max_depth: Optional[int] = None,
        nesting: int = 0,
        max_nesting: Optional[int] = None,
        line: int = 1,
        column: int = 1,
    ) -> None:
        if max_depth is None or max_nesting is None:
            limits = config.default_limits()
            if max_depth is None:
                max_depth = limits.max_interpolation_depth
            if max_nesting is None:
                max_nesting = limits.max_nesting_depth
        self.filename = filename
        self.depth = depth
        self.max_depth = max_depth
        self.nesting = nesting
        self.max_nesting = max_nesting
        self.lexer = Lexer(source, filename=filename, line=line, column=column)
        self.current = self.lexer.next_token()

    # ------------------------------------------------------------------
    # Entry points

    def parse(self) -> ast.Node:
        expr = self._parse_expression()
        self._expect("EOF", "Expected end of input")
        return expr

    def parse_type_annotation(self) -> types.Type:
        annotation = self._parse_type()
        self._expect("EOF", "Expected end of type annotation")
        return annotation

    # ------------------------------------------------------------------
    # Token helpers

    def _advance(self) -> Token:
        token = self.current
        if token.kind != "EOF":
            self.current = self.lexer.next_token()
        return token

    def _check(self, *kinds: str) -> bool:
        return self.current.kind in kinds

    def _match(self, *kinds: str) -> Optional[Token]:
        if self.current.kind in kinds:
            return self._advance()
        return None

    def _expect(self, kind: str, message: str) -> Token:
        if self.current.kind != kind:
            raise self._error(f"{message}, found {_describe(self.current)}")
        return self._advance()

    def _error(self, message: str, token: Optional[Token] = None) -> ParseError:
        token = token or self.current
        return ParseError(message, token.line, token.column, self.filename)

    def _location(self, token: Token) -> ast.Location:
        return ast.Location(token.line, token.column, self.filename)

    def _checkpoint(self) -> _Checkpoint:
        return _Checkpoint(self.lexer.snapshot(), self.current)

    def _rewind(self, checkpoint: _Checkpoint) -> None:
        self.lexer.restore(checkpoint.lexer)
        self.current = checkpoint.current

    @contextmanager
    def _nested(self) -> Iterator[None]:
        if self.nesting >= self.max_nesting:
            raise self._error(f"Expression nested deeper than {self.max_nesting} levels")
        self.nesting += 1
        try:
            yield
        finally:
            self.nesting -= 1

    # ------------------------------------------------------------------
    # Expressions

    def _parse_expression(self) -> ast.Node:
        with self._nested():
            expr = self._parse_pipeline()
            if self._match("DOUBLE_COLON"):
                declared = self._parse_type()
                return ast.TypeAnnotation(expr, declared, location=expr.location)
            return expr

    def _parse_pipeline(self) -> ast.Node:
        stages = [self._parse_application()]
        while self._match("PIPE"):
            stages.append(self._parse_application())
        if len(stages) == 1:
            return stages[0]
        return ast.Pipeline(tuple(stages), location=stages[0].location)

    def _parse_application(self) -> ast.Node:
        function = self._parse_primary()
        arguments: list[ast.Node] = []
        while self._check(*_PRIMARY_START):
            arguments.append(self._parse_primary())
        if not arguments:
            return function
        return ast.Application(function, tuple(arguments), location=function.location)

    def _parse_primary(self) -> ast.Node:
        token = self.current
        if token.kind in {"STRING", "TEMPLATE"}:
            if _INTERPOLATION_OPEN in token.value:
                return self._parse_template()
            self._advance()
            return ast.Literal(token.value, location=self._location(token))
        if token.kind == "NUMBER":
            self._advance()
            return ast.Literal(_number(token.value), location=self._location(token))
        if token.kind == "BOOLEAN":
            self._advance()
            return ast.Literal(token.value == "true", location=self._location(token))
        if token.kind == "LPAREN":
            if self._looks_like_lambda():
                return self._parse_lambda()
            self._advance()
            expr = self._parse_expression()
            self._expect("RPAREN", "Expected ')' after expression")
            return expr
        if token.kind == "let":
            return self._parse_let()
        if token.kind == "IDENT":
            self._advance()
            return ast.Identifier(token.value, location=self._location(token))
        raise self._error(f"Unexpected {_describe(token)}")

    # ------------------------------------------------------------------
    # Lambdas

    def _looks_like_lambda(self) -> bool:
        checkpoint = self._checkpoint()
        try:
            self._advance()  # '('
            result = self._scan_parameter_list()
        finally:
            self._rewind(checkpoint)
        _LOGGER.debug(
            "lookahead at %d:%d resolved to %s",
            checkpoint.current.line,
            checkpoint.current.column,
            "lambda" if result else "group",
        )
        return result

    def _scan_parameter_list(self) -> bool:
        if self._match("RPAREN"):
            return self._check("ARROW", "COLON")
        if not self._check("IDENT"):
            return False
        depth = 0
        while True:
            token = self._advance()
            if token.kind == "EOF":
                return False
            if token.kind in _OPENERS:
                depth += 1
            elif token.kind in _CLOSERS:
                if depth == 0:
                    return token.kind == "RPAREN" and self._check("ARROW", "COLON")
                depth -= 1

    def _parse_lambda(self) -> ast.Lambda:
        start = self._expect("LPAREN", "Expected '('")
        parameters: list[ast.Parameter] = []
        seen: set[str] = set()
        if not self._check("RPAREN"):
            parameters.append(self._parse_parameter(seen))
            while self._match("COMMA"):
                parameters.append(self._parse_parameter(seen))
        self._expect("RPAREN", "Expected ')' after parameters")
        return_type: Optional[types.Type] = None
        if self._match("COLON"):
            return_type = self._parse_type()
        self._expect("ARROW", "Expected '->' after parameters")
        body = self._parse_expression()
        return ast.Lambda(
            tuple(parameters), body, return_type, location=self._location(start)
        )

    def _parse_parameter(self, seen: set[str]) -> ast.Parameter:
        name_token = self._expect("IDENT", "Expected parameter name")
        if name_token.value in seen:
            raise self._error(f"Duplicate parameter '{name_token.value}'", name_token)
        seen.add(name_token.value)
        annotation: Optional[types.Type] = None
        if self._match("COLON"):
            annotation = self._parse_type()
        default: Optional[ast.Node] = None
        if self._match("EQUALS"):
            default = self._parse_expression()
        return ast.Parameter(name_token.value, annotation, default)

    # ------------------------------------------------------------------
    # Let expressions

    def _parse_let(self) -> ast.Let:
        start = self._expect("let", "Expected 'let'")
        bindings: list[ast.Binding] = []
        seen: set[str] = set()
        while True:
            name_token = self._expect("IDENT", "Expected binding name")
            if name_token.value in seen:
                raise self._error(f"Duplicate binding '{name_token.value}'", name_token)
            seen.add(name_token.value)
            annotation: Optional[types.Type] = None
            if self._match("COLON"):
                annotation = self._parse_type()
            self._expect("EQUALS", "Expected '=' after binding name")
            value = self._parse_expression()
            bindings.append(ast.Binding(name_token.value, value, annotation))
            if not self._match("COMMA"):
                break
        self._expect("in", "Expected 'in' after bindings")
        body = self._parse_expression()
        return ast.Let(tuple(bindings), body, location=self._location(start))

    # ------------------------------------------------------------------
    # Templates

    def _parse_template(self) -> ast.Template:
        token = self._advance()
        text = token.value
        parts: list[ast.TemplatePart] = []
        buffer: list[str] = []
        index = 0
        while index < len(text):
            if not text.startswith(_INTERPOLATION_OPEN, index):
                buffer.append(text[index])
                index += 1
                continue
            if buffer:
                parts.append(ast.TextPart("".join(buffer)))
                buffer = []
            close = _matching_close(text, index)
            if close < 0:
                raise self._error("Unterminated interpolation in template", token)
            start = index + len(_INTERPOLATION_OPEN)
            parts.append(
                ast.InterpolationPart(self._parse_interpolation(text[start:close], token, start))
            )
            index = close + len(_INTERPOLATION_CLOSE)
        if buffer:
            parts.append(ast.TextPart("".join(buffer)))
        return ast.Template(tuple(parts), location=self._location(token))

    def _parse_interpolation(self, inner: str, token: Token, offset: int) -> ast.Node:
        if not inner.strip():
            raise self._error("Empty interpolation in template", token)
        if self.depth >= self.max_depth:
            raise self._error(
                f"Template interpolation nested deeper than {self.max_depth} levels", token
            )
        line, column = _source_position(token, offset)
        child = Parser(
            inner,
            filename=self.filename,
            depth=self.depth + 1,
            max_depth=self.max_depth,
            nesting=self.nesting,
            max_nesting=self.max_nesting,
            line=line,
            column=column,
        )
        return child.parse()

    # ------------------------------------------------------------------
    # Type annotations

    def _parse_type(self) -> types.Type:
        with self._nested():
            members = [self._parse_intersection_type()]
            while self._match("BAR"):
                members.append(self._parse_intersection_type())
        if len(members) == 1:
            return members[0]
        return types.union_type(*members)

    def _parse_intersection_type(self) -> types.Type:
        members = [self._parse_type_atom()]
        while self._match("AMPERSAND"):
            members.append(self._parse_type_atom())
        if len(members) == 1:
            return members[0]
        return types.intersection_type(*members)

    def _parse_type_atom(self) -> types.Type:
        if self._check("LPAREN"):
            if self._looks_like_function_type():
                return self._parse_function_type()
            self._advance()
            inner = self._parse_type()
            self._expect("RPAREN", "Expected ')' after type")
            return inner
        name_token = self._expect("IDENT", "Expected type")
        name = name_token.value
        if name in types.PRIMITIVE_NAMES:
            return types.PrimitiveType(name)
        if name == "any":
            return types.ANY
        if name == "never":
            return types.NEVER
        if name == "list":
            return self._parse_list_type()
        if name == "record":
            return self._parse_record_type()
        if name == "dynamic":
            if self._match("LBRACKET"):
                constraint = self._parse_type()
                self._expect("RBRACKET", "Expected ']' after dynamic constraint")
                return types.DynamicType(constraint)
            return types.DYNAMIC
        if name == "prompt":
            return self._parse_prompt_type()
        _LOGGER.debug("unknown type name %r treated as any", name)
        return types.ANY

    def _looks_like_function_type(self) -> bool:
        checkpoint = self._checkpoint()
        try:
            self._advance()  # '('
            if self._check("RPAREN"):
                return True
            if not self._match("IDENT"):
                return False
            return self._check("COLON", "QUESTION")
        finally:
            self._rewind(checkpoint)

    def _parse_function_type(self) -> types.FunctionType:
        self._expect("LPAREN", "Expected '('")
        parameters: list[types.ParameterType] = []
        if not self._check("RPAREN"):
            while True:
                name, annotation, optional = self._parse_named_type()
                parameters.append(types.ParameterType(name, annotation, optional))
                if not self._match("COMMA"):
                    break
        self._expect("RPAREN", "Expected ')' after parameter types")
        self._expect("ARROW", "Expected '->' in function type")
        return types.FunctionType(tuple(parameters), self._parse_type())

    def _parse_named_type(self) -> tuple[str, types.Type, bool]:
        name_token = self._expect("IDENT", "Expected field name")
        optional = bool(self._match("QUESTION"))
        self._expect("COLON", f"Expected ':' after '{name_token.value}'")
        annotation = self._parse_type()
        if self._match("QUESTION"):
            optional = True
        return name_token.value, annotation, optional

    def _parse_list_type(self) -> types.ListType:
        if not self._match("LBRACKET"):
            return types.ListType(types.ANY)
        element = self._parse_type()
        min_length: Optional[int] = None
        max_length: Optional[int] = None
        if self._match("COMMA"):
            min_length = self._expect_length()
            if self._match("COMMA"):
                max_length = self._expect_length()
        self._expect("RBRACKET", "Expected ']' after list element type")
        return types.ListType(element, min_length, max_length)

    def _expect_length(self) -> int:
        token = self._expect("NUMBER", "Expected list length bound")
        if "." in token.value:
            raise self._error("List length bounds must be integers", token)
        return int(token.value)

    def _parse_record_type(self) -> types.RecordType:
        if not self._match("LBRACE"):
            return types.RecordType(())
        fields: list[types.RecordField] = []
        seen: set[str] = set()
        if not self._check("RBRACE"):
            while True:
                name, annotation, optional = self._parse_named_type()
                if name in seen:
                    raise self._error(f"Duplicate record field '{name}'")
                seen.add(name)
                fields.append(types.RecordField(name, annotation, optional))
                if not self._match("COMMA"):
                    break
        self._expect("RBRACE", "Expected '}' after record fields")
        return types.RecordType(tuple(fields))

    def _parse_prompt_type(self) -> types.PromptType:
        if not self._match("LBRACKET"):
            return types.PromptType(types.ANY, types.ANY)
        input_type = self._parse_type()
        self._expect("COMMA", "Expected ',' after prompt input type")
        output_type = self._parse_type()
        model: Optional[str] = None
        temperature: Optional[float] = None
        if self._match("COMMA"):
            if self._check("STRING"):
                model = self._advance().value
                if self._match("COMMA"):
                    temperature = float(self._expect("NUMBER", "Expected temperature").value)
            else:
                temperature = float(self._expect("NUMBER", "Expected model or temperature").value)
        self._expect("RBRACKET", "Expected ']' after prompt parameters")
        return types.PromptType(input_type, output_type, model, temperature)


# ---------------------------------------------------------------------------
# Helpers


def _describe(token: Token) -> str:
    if token.kind == "EOF":
        return "end of input"
    return f"{token.kind} {token.value!r}"


def _number(text: str) -> int | float:
    if "." in text:
        return float(text)
    return int(text)


def _source_position(token: Token, offset: int) -> tuple[int, int]:
    """Map an offset into a literal token's text back to a source line and column."""

    prefix = token.value[:offset]
    newlines = prefix.count("\n")
    if newlines:
        return token.line + newlines, offset - prefix.rfind("\n")
    return token.line, token.column + _QUOTE_WIDTH.get(token.kind, 0) + offset


def _matching_close(text: str, start: int) -> int:
    """Return the index of the ``}}`` balancing the ``{{`` at ``start``, or -1."""

    depth = 0
    index = start
    while index < len(text):
        if text.startswith(_INTERPOLATION_OPEN, index):
            depth += 1
            index += len(_INTERPOLATION_OPEN)
        elif text.startswith(_INTERPOLATION_CLOSE, index):
            depth -= 1
            if depth == 0:
                return index
            index += len(_INTERPOLATION_CLOSE)
        else:
            index += 1
    return -1


def parse(
    source: str,
    *,
    filename: str = "<prompt>",
    max_depth: Optional[int] = None,
    max_nesting: Optional[int] = None,
) -> ast.Node:
    """Parse DSL ``source`` text into an AST root."""

    return Parser(
        source, filename=filename, max_depth=max_depth, max_nesting=max_nesting
    ).parse()


def parse_type(source: str, *, filename: str = "<type>") -> types.Type:
    """Parse a standalone type annotation such as ``list[string] | null``."""

    return Parser(source, filename=filename).parse_type_annotation()
