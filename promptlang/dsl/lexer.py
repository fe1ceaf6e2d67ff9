"""Pull-based tokenizer for the prompt DSL.

Tokens are produced one at a time by :meth:`Lexer.next_token`.  The stream is
not restartable: the parser performs lookahead by taking an explicit
:class:`LexerState` snapshot and restoring it afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

__all__ = [
    "KEYWORDS",
    "LexError",
    "Lexer",
    "LexerState",
    "ParseError",
    "Token",
]


class ParseError(RuntimeError):
    """Structured syntax error that includes source location information."""

    def __init__(self, message: str, line: int, column: int, filename: str = "<prompt>"):
        super().__init__(f"{filename}:{line}:{column}: {message}")
        self.message = message
        self.line = line
        self.column = column
        self.filename = filename


class LexError(ParseError):
    """Raised when the source contains a character no token can start with."""

    def __init__(
        self,
        message: str,
        line: int,
        column: int,
        character: str,
        filename: str = "<prompt>",
    ) -> None:
        super().__init__(message, line, column, filename)
        self.character = character


@dataclass(slots=True)
class Token:
    """Single lexical token."""

    kind: str
    value: str
    line: int
    column: int
    end_line: int
    end_column: int


@dataclass(slots=True, frozen=True)
class LexerState:
    """Cursor snapshot used to rewind the lexer after speculative scanning."""

    position: int
    line: int
    column: int


KEYWORDS = {"defprompt", "let", "in", "case", "when", "end"}

BOOLEANS = {"true", "false"}

# Longest operators first; the template delimiter shares a prefix with strings.
_MULTI_CHAR = (
    ("|>", "PIPE"),
    ("->", "ARROW"),
    ("=>", "FATARROW"),
    ("::", "DOUBLE_COLON"),
)

_PUNCTUATION = {
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    "[": "LBRACKET",
    "]": "RBRACKET",
    ",": "COMMA",
    ":": "COLON",
    ".": "DOT",
    "@": "AT",
    "=": "EQUALS",
    "?": "QUESTION",
    "|": "BAR",
    "&": "AMPERSAND",
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", '"': '"'}

_TEMPLATE_DELIMITER = '"""'


class Lexer:
    """Hand-written scanner producing :class:`Token` values on demand."""

    def __init__(
        self,
        source: str,
        *,
        filename: str = "<prompt>",
        line: int = 1,
        column: int = 1,
    ) -> None:
        self.source = source
        self.filename = filename
        self.length = len(source)
        self.index = 0
        self.line = line
        self.column = column

    # ------------------------------------------------------------------
    # Public API

    def next_token(self) -> Token:
        """Return the next token, or an ``EOF`` token once input is exhausted."""

        self._skip_trivia()
        if self._eof:
            return Token("EOF", "", self.line, self.column, self.line, self.column)

        start_line, start_column = self.line, self.column
        if self._startswith(_TEMPLATE_DELIMITER):
            return self._consume_template()
        for text, kind in _MULTI_CHAR:
            if self._startswith(text):
                self._advance(len(text))
                return Token(kind, text, start_line, start_column, self.line, self.column)

        ch = self._peek()
        if ch == '"':
            return self._consume_string()
        if _is_digit(ch):
            return self._consume_number()
        if ch.isalpha() or ch == "_":
            return self._consume_identifier()
        if ch in _PUNCTUATION:
            self._advance()
            return Token(_PUNCTUATION[ch], ch, start_line, start_column, self.line, self.column)
        raise LexError(
            f"Unexpected character {ch!r}", start_line, start_column, ch, self.filename
        )

    def tokenize(self) -> list[Token]:
        """Drain the stream into a list terminated by a single ``EOF`` token."""

        return list(self)

    def snapshot(self) -> LexerState:
        return LexerState(self.index, self.line, self.column)

    def restore(self, state: LexerState) -> None:
        self.index = state.position
        self.line = state.line
        self.column = state.column

    def __iter__(self) -> Iterator[Token]:
        while True:
            token = self.next_token()
            yield token
            if token.kind == "EOF":
                return

    # ------------------------------------------------------------------
    # Cursor helpers

    @property
    def _eof(self) -> bool:
        return self.index >= self.length

    def _peek(self, offset: int = 0) -> str:
        if self.index + offset >= self.length:
            return "\0"
        return self.source[self.index + offset]

    def _startswith(self, text: str) -> bool:
        return self.source.startswith(text, self.index)

    def _advance(self, count: int = 1) -> str:
        value = ""
        for _ in range(count):
            if self._eof:
                break
            ch = self.source[self.index]
            value += ch
            self.index += 1
            if ch == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        return value

    # ------------------------------------------------------------------
    # Scanners

    def _skip_trivia(self) -> None:
        while not self._eof:
            ch = self._peek()
            if ch.isspace():
                self._advance()
            elif ch == "#":
                while not self._eof and self._peek() != "\n":
                    self._advance()
            else:
                return

    def _consume_identifier(self) -> Token:
        start_line, start_column = self.line, self.column
        value = self._advance()
        while self._peek().isalnum() or self._peek() == "_":
            value += self._advance()
        if value in KEYWORDS:
            kind = value
        elif value in BOOLEANS:
            kind = "BOOLEAN"
        else:
            kind = "IDENT"
        return Token(kind, value, start_line, start_column, self.line, self.column)

    def _consume_number(self) -> Token:
        start_line, start_column = self.line, self.column
        value = self._advance()
        while _is_digit(self._peek()):
            value += self._advance()
        if self._peek() == "." and _is_digit(self._peek(1)):
            value += self._advance()
            while _is_digit(self._peek()):
                value += self._advance()
        return Token("NUMBER", value, start_line, start_column, self.line, self.column)

    def _consume_string(self) -> Token:
        start_line, start_column = self.line, self.column
        self._advance()  # opening quote
        value_chars: list[str] = []
        while not self._eof:
            ch = self._advance()
            if ch == '"':
                break
            if ch == "\\":
                escaped = self._advance()
                value_chars.append(_ESCAPES.get(escaped, escaped))
            else:
                value_chars.append(ch)
        else:
            raise LexError(
                "Unterminated string literal", start_line, start_column, '"', self.filename
            )
        literal = "".join(value_chars)
        return Token("STRING", literal, start_line, start_column, self.line, self.column)

    def _consume_template(self) -> Token:
        # Interpolation markers are kept verbatim; the parser splits them later.
        start_line, start_column = self.line, self.column
        self._advance(len(_TEMPLATE_DELIMITER))
        begin = self.index
        while not self._eof:
            if self._startswith(_TEMPLATE_DELIMITER):
                literal = self.source[begin : self.index]
                self._advance(len(_TEMPLATE_DELIMITER))
                return Token(
                    "TEMPLATE", literal, start_line, start_column, self.line, self.column
                )
            self._advance()
        raise LexError(
            "Unterminated template literal", start_line, start_column, '"', self.filename
        )


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"
