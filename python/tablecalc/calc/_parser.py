"""Formula tokenizer and recursive-descent parser.

Formulas are function calls such as ``ROUND(DIVIDE(SUM(Price, Tax), Qty), 2)``.
Arguments are double-quoted strings, numbers, nested calls, or bare column
references. Column references may contain spaces and punctuation, so a bare
reference runs until the next top-level ``,`` ``)`` or comparison operator.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Union

# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: str | float | int


@dataclass(frozen=True)
class ColumnRef:
    name: str


@dataclass(frozen=True)
class FunctionCall:
    name: str  # upper-cased
    args: tuple[Node, ...]


@dataclass(frozen=True)
class Comparison:
    left: Node
    op: str
    right: Node


Node = Union[Literal, ColumnRef, FunctionCall, Comparison]


class FormulaSyntaxError(ValueError):
    """The formula text cannot be parsed."""


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

STRING = "STRING"
TEXT = "TEXT"
LPAREN = "("
RPAREN = ")"
COMMA = ","
OP = "OP"
EOF = "EOF"

COMPARISON_OPS = (">=", "<=", "==", "!=", "<>", ">", "<", "=")

# Deepest function-call nesting a formula may use
MAX_NESTING = 100

_FUNC_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_NUMBER_RE = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?$")
_INT_RE = re.compile(r"^[-+]?\d+$")


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int


def _op_at(formula: str, i: int) -> str | None:
    for op in COMPARISON_OPS:
        if formula.startswith(op, i):
            return op
    return None


def tokenize(formula: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0
    length = len(formula)
    while i < length:
        ch = formula[i]
        if ch.isspace():
            i += 1
            continue
        if ch in "(),":
            tokens.append(Token(ch, ch, i))
            i += 1
            continue
        if ch == '"':
            start = i
            i += 1
            chars: list[str] = []
            while True:
                if i >= length:
                    raise FormulaSyntaxError(f"Unterminated string at position {start}")
                if formula[i] == '"':
                    # "" inside a string is an escaped quote
                    if i + 1 < length and formula[i + 1] == '"':
                        chars.append('"')
                        i += 2
                        continue
                    i += 1
                    break
                chars.append(formula[i])
                i += 1
            tokens.append(Token(STRING, "".join(chars), start))
            continue
        op = _op_at(formula, i)
        if op is not None:
            tokens.append(Token(OP, op, i))
            i += len(op)
            continue
        # Bare text: column reference, number, or function name
        start = i
        while i < length:
            ch = formula[i]
            if ch in '(),"' or _op_at(formula, i) is not None:
                break
            i += 1
        tokens.append(Token(TEXT, formula[start:i].strip(), start))
    tokens.append(Token(EOF, "", length))
    return tokens


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0
        self._depth = 0

    def _peek(self, offset: int = 0) -> Token:
        idx = min(self._pos + offset, len(self._tokens) - 1)
        return self._tokens[idx]

    def _next(self) -> Token:
        tok = self._peek()
        self._pos += 1
        return tok

    def _expect(self, kind: str) -> Token:
        tok = self._next()
        if tok.kind != kind:
            found = tok.text or tok.kind
            raise FormulaSyntaxError(f"Expected {kind!r} at position {tok.pos}, found {found!r}")
        return tok

    def parse_formula(self) -> Node:
        node = self._argument()
        tok = self._peek()
        if tok.kind != EOF:
            raise FormulaSyntaxError(f"Unexpected {tok.text!r} at position {tok.pos}")
        return node

    def _argument(self) -> Node:
        left = self._operand()
        if self._peek().kind == OP:
            op = self._next().text
            right = self._operand()
            return Comparison(left, op, right)
        return left

    def _operand(self) -> Node:
        tok = self._next()
        if tok.kind == STRING:
            return Literal(tok.text)
        if tok.kind != TEXT:
            raise FormulaSyntaxError(f"Unexpected {tok.text or tok.kind!r} at position {tok.pos}")

        if self._peek().kind == LPAREN:
            if not _FUNC_NAME_RE.match(tok.text):
                raise FormulaSyntaxError(f"Invalid function name {tok.text!r}")
            return self._call(tok.text.upper())

        if _NUMBER_RE.match(tok.text):
            if _INT_RE.match(tok.text):
                return Literal(int(tok.text))
            return Literal(float(tok.text))
        return ColumnRef(tok.text)

    def _call(self, name: str) -> FunctionCall:
        self._depth += 1
        if self._depth > MAX_NESTING:
            raise FormulaSyntaxError(f"Formula nests deeper than {MAX_NESTING} calls")
        try:
            return self._call_body(name)
        finally:
            self._depth -= 1

    def _call_body(self, name: str) -> FunctionCall:
        self._expect(LPAREN)
        args: list[Node] = []
        if self._peek().kind == RPAREN:
            self._next()
            return FunctionCall(name, ())
        while True:
            args.append(self._argument())
            tok = self._next()
            if tok.kind == RPAREN:
                break
            if tok.kind != COMMA:
                raise FormulaSyntaxError(
                    f"Expected ',' or ')' in {name}() at position {tok.pos}"
                )
        return FunctionCall(name, tuple(args))


@lru_cache(maxsize=1024)
def parse_formula(formula: str) -> Node:
    """Parse *formula* into an expression tree.

    A single leading ``=`` is accepted and ignored. Raises
    :class:`FormulaSyntaxError` on malformed input.
    """
    body = formula.strip()
    if body.startswith("=") and not body.startswith("=="):
        body = body[1:]
    if not body.strip():
        raise FormulaSyntaxError("Empty formula")
    return _Parser(tokenize(body)).parse_formula()


# ---------------------------------------------------------------------------
# Tree inspection
# ---------------------------------------------------------------------------


def walk(node: Node):
    """Yield every node of the tree, parents before children."""
    yield node
    if isinstance(node, FunctionCall):
        for arg in node.args:
            yield from walk(arg)
    elif isinstance(node, Comparison):
        yield from walk(node.left)
        yield from walk(node.right)


def parse_functions(formula: str) -> list[str]:
    """Function names used in a formula, in first-use order."""
    funcs: list[str] = []
    for node in walk(parse_formula(formula)):
        if isinstance(node, FunctionCall) and node.name not in funcs:
            funcs.append(node.name)
    return funcs


def referenced_columns(formula: str) -> list[str]:
    """Column references in a formula as written, without duplicates."""
    refs: list[str] = []
    for node in walk(parse_formula(formula)):
        if isinstance(node, ColumnRef) and node.name not in refs:
            refs.append(node.name)
    return refs
