from __future__ import annotations

"""Guard expression language: ``<dotted.path> <operator> <literal>``.

Expressions are tokenized into a path, an operator and a literal, parsed into
a :class:`Comparison`, and evaluated against a working-state dict. Symbolic
operators are matched longest first so ``===`` never reads as ``==``; the word
operators (``contains``, ``startsWith``) must be surrounded by whitespace.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Literal, Union

from rulesflow.conditions import format_value, to_number, values_equal
from rulesflow.errors import MalformedExpression
from rulesflow.state import MISSING, resolve_path

ExpressionOperator = Literal["===", "!==", "==", "!=", ">=", "<=", ">", "<", "contains", "startsWith"]

SYMBOL_OPERATORS: tuple[str, ...] = ("===", "!==", "==", "!=", ">=", "<=", ">", "<")
WORD_OPERATORS: tuple[str, ...] = ("contains", "startsWith")

TokenKind = Literal["path", "operator", "literal"]

_PATH_RE = re.compile(r"[^\s=!<>]+")
_SYMBOL_RE = re.compile("|".join(re.escape(op) for op in SYMBOL_OPERATORS))
_WORD_RE = re.compile(r"(%s)(?=\s)" % "|".join(WORD_OPERATORS))
_EMBEDDED_OP_RE = re.compile(
    r"(?:^|\s)(?:%s)(?:\s|$)"
    % "|".join(re.escape(op) for op in SYMBOL_OPERATORS + WORD_OPERATORS)
)
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: int


@dataclass(frozen=True)
class Comparison:
    """Parsed guard: compare the value at ``path`` with ``literal``."""

    path: str
    operator: ExpressionOperator
    literal: Any

    def evaluate(self, state: Dict[str, Any]) -> bool:
        """Evaluate against ``state``; never mutates it."""

        actual = resolve_path(state, self.path, MISSING)
        return compare(actual, self.operator, self.literal)


def tokenize(expression: str) -> list[Token]:
    """Split an expression into path, operator and literal tokens."""

    text = expression.strip()
    path_match = _PATH_RE.match(text)
    if not path_match:
        raise MalformedExpression(expression, "missing field path")
    tokens = [Token("path", path_match.group(0), 0)]

    position = path_match.end()
    gap = len(text[position:]) - len(text[position:].lstrip())
    position += gap

    op_match = _SYMBOL_RE.match(text, position)
    if op_match is None and gap:
        op_match = _WORD_RE.match(text, position)
    if op_match is None:
        raise MalformedExpression(expression, "no comparison operator found")
    tokens.append(Token("operator", op_match.group(0), position))

    literal = text[op_match.end():].strip()
    if not literal:
        raise MalformedExpression(expression, "missing comparison value")
    tokens.append(Token("literal", literal, text.index(literal, op_match.end())))
    return tokens


def parse_literal(text: str) -> Any:
    """Convert literal text: booleans, null, numbers, quoted strings, raw text."""

    if text == "true":
        return True
    if text == "false":
        return False
    if text == "null":
        return None
    if _NUMBER_RE.fullmatch(text):
        number = float(text)
        if number.is_integer() and not any(ch in text for ch in ".eE"):
            return int(text)
        return number
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


def _is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"')


@lru_cache(maxsize=512)
def parse_expression(expression: str) -> Comparison:
    """Parse an expression string into a :class:`Comparison`."""

    path, operator, literal = tokenize(expression)
    if not _is_quoted(literal.text) and _EMBEDDED_OP_RE.search(literal.text):
        raise MalformedExpression(expression, "more than one comparison operator")
    return Comparison(path=path.text, operator=operator.text, literal=parse_literal(literal.text))  # type: ignore[arg-type]


def _as_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return format_value(value)


def compare(actual: Any, operator: str, expected: Any) -> bool:
    """Apply an expression operator to a resolved value and a literal."""

    if operator in ("==", "==="):
        return values_equal(actual, expected)
    if operator in ("!=", "!=="):
        return not values_equal(actual, expected)
    if operator in (">", ">=", "<", "<="):
        left, right = to_number(actual), to_number(expected)
        if left is None or right is None:
            return False
        if operator == ">":
            return left > right
        if operator == ">=":
            return left >= right
        if operator == "<":
            return left < right
        return left <= right
    if actual is MISSING:
        return False
    if operator == "contains":
        if isinstance(actual, list):
            return any(values_equal(item, expected) for item in actual)
        return _as_text(expected) in _as_text(actual)
    if operator == "startsWith":
        return _as_text(actual).startswith(_as_text(expected))
    raise MalformedExpression(f"{operator}", "unsupported operator")


def evaluate(state: Dict[str, Any], expression: Union[str, Comparison]) -> bool:
    """Evaluate a guard expression against ``state``."""

    comparison = parse_expression(expression) if isinstance(expression, str) else expression
    return comparison.evaluate(state)


__all__ = [
    "Comparison",
    "ExpressionOperator",
    "SYMBOL_OPERATORS",
    "Token",
    "WORD_OPERATORS",
    "compare",
    "evaluate",
    "parse_expression",
    "parse_literal",
    "tokenize",
]
