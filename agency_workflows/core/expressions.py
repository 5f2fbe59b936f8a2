"""Closed-grammar boolean expressions for ``custom`` conditions.

Expressions compare named fields against literals and combine the
comparisons with boolean connectives::

    budget > 30000 and (status == "active" || tags contains "vip")
    not student.address.city in ["Leeds", "York"]

Grammar::

    expr       := or_expr
    or_expr    := and_expr (("or" | "||") and_expr)*
    and_expr   := not_expr (("and" | "&&") not_expr)*
    not_expr   := ("not" | "!") not_expr | comparison
    comparison := operand (COMPARATOR operand)?
    operand    := literal | list | field | "(" expr ")"

Nothing is ever handed to ``eval``; evaluation walks the parsed tree.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ConditionEvaluationError


_TOKEN_PATTERN = re.compile(r"""
    (?P<ws>\s+)
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<op>==|!=|>=|<=|&&|\|\||>|<|!)
  | (?P<punct>[()\[\],])
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
""", re.VERBOSE)

_KEYWORDS = {"and", "or", "not", "in", "contains", "true", "false", "null", "none"}
_COMPARATORS = {"==", "!=", ">", ">=", "<", "<=", "in", "contains"}

MAX_EXPRESSION_LENGTH = 2000
MAX_NESTING_DEPTH = 64


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    position: int


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class ListLiteral:
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class FieldRef:
    path: str


@dataclass(frozen=True)
class Compare:
    operator: str
    left: Any
    right: Any


@dataclass(frozen=True)
class BoolOp:
    operator: str
    operands: Tuple[Any, ...]


@dataclass(frozen=True)
class Not:
    operand: Any


def tokenize(text: str) -> List[Token]:
    """Split an expression into tokens, rejecting anything outside the grammar."""
    tokens = []
    position = 0
    while position < len(text):
        match = _TOKEN_PATTERN.match(text, position)
        if not match:
            raise ConditionEvaluationError(
                f"Unexpected character {text[position]!r} at position {position}",
                condition_type="custom"
            )
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "name" and value.lower() in _KEYWORDS:
            kind = "keyword"
            value = value.lower()
        if kind != "ws":
            tokens.append(Token(kind, value, position))
        position = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over a token list."""

    def __init__(self, tokens: List[Token], text: str):
        self.tokens = tokens
        self.text = text
        self.index = 0
        self.depth = 0

    def peek(self) -> Optional[Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def advance(self) -> Token:
        token = self.peek()
        if token is None:
            raise self.error("Unexpected end of expression")
        self.index += 1
        return token

    def accept(self, *values: str) -> Optional[Token]:
        token = self.peek()
        if token is not None and token.kind in ("op", "keyword", "punct") and token.value in values:
            self.index += 1
            return token
        return None

    def expect(self, value: str) -> Token:
        token = self.accept(value)
        if token is None:
            found = self.peek()
            raise self.error(f"Expected {value!r} but found {found.value if found else 'end of expression'!r}")
        return token

    def enter(self):
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise self.error(f"Expression nested too deeply (more than {MAX_NESTING_DEPTH} levels)")

    def leave(self):
        self.depth -= 1

    def error(self, message: str) -> ConditionEvaluationError:
        return ConditionEvaluationError(
            f"Invalid expression {self.text!r}: {message}",
            condition_type="custom"
        )

    def parse(self):
        if not self.tokens:
            raise self.error("Expression is empty")
        node = self.parse_or()
        if self.peek() is not None:
            raise self.error(f"Unexpected token {self.peek().value!r}")
        return node

    def parse_or(self):
        operands = [self.parse_and()]
        while self.accept("or", "||"):
            operands.append(self.parse_and())
        return operands[0] if len(operands) == 1 else BoolOp("or", tuple(operands))

    def parse_and(self):
        operands = [self.parse_not()]
        while self.accept("and", "&&"):
            operands.append(self.parse_not())
        return operands[0] if len(operands) == 1 else BoolOp("and", tuple(operands))

    def parse_not(self):
        if self.accept("not", "!"):
            self.enter()
            operand = self.parse_not()
            self.leave()
            return Not(operand)
        return self.parse_comparison()

    def parse_comparison(self):
        left = self.parse_operand()
        token = self.peek()
        if token is not None and token.value in _COMPARATORS and token.kind in ("op", "keyword"):
            self.advance()
            return Compare(token.value, left, self.parse_operand())
        return left

    def parse_operand(self):
        token = self.advance()
        if token.kind == "number":
            return Literal(float(token.value) if "." in token.value else int(token.value))
        if token.kind == "string":
            return Literal(_unquote(token.value))
        if token.kind == "name":
            return FieldRef(token.value)
        if token.kind == "keyword" and token.value in ("true", "false"):
            return Literal(token.value == "true")
        if token.kind == "keyword" and token.value in ("null", "none"):
            return Literal(None)
        if token.value == "(":
            self.enter()
            node = self.parse_or()
            self.expect(")")
            self.leave()
            return node
        if token.value == "[":
            self.enter()
            items = []
            if not self.accept("]"):
                while True:
                    item = self.parse_operand()
                    if not isinstance(item, Literal):
                        raise self.error("List items must be literals")
                    items.append(item.value)
                    if self.accept("]"):
                        break
                    self.expect(",")
            self.leave()
            return ListLiteral(tuple(items))
        raise self.error(f"Unexpected token {token.value!r} at position {token.position}")


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def parse_expression(text: str):
    """Parse an expression into an immutable tree, raising ConditionEvaluationError on bad syntax."""
    if not isinstance(text, str):
        raise ConditionEvaluationError("Custom condition expression must be a string", condition_type="custom")
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise ConditionEvaluationError(
            f"Custom condition expression is longer than {MAX_EXPRESSION_LENGTH} characters",
            condition_type="custom"
        )
    return _parse_cached(text)


@lru_cache(maxsize=256)
def _parse_cached(text: str):
    return _Parser(tokenize(text), text).parse()


def resolve_field(data: Any, path: str) -> Any:
    """Read a dotted path from nested dicts/lists, returning None when absent."""
    current = data
    for key in path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, (list, tuple)) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _value(node, data: Dict[str, Any]) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, ListLiteral):
        return list(node.items)
    if isinstance(node, FieldRef):
        return resolve_field(data, node.path)
    return _evaluate(node, data)


def _compare(operator: str, left: Any, right: Any) -> bool:
    if operator == "==":
        return left == right
    if operator == "!=":
        return left != right
    if operator == "in":
        return right is not None and left in right
    if operator == "contains":
        return left is not None and right in left
    if left is None or right is None:
        return False
    if operator == ">":
        return left > right
    if operator == ">=":
        return left >= right
    if operator == "<":
        return left < right
    return left <= right


def _evaluate(node, data: Dict[str, Any]) -> Any:
    if isinstance(node, BoolOp):
        if node.operator == "and":
            return all(bool(_evaluate(operand, data)) for operand in node.operands)
        return any(bool(_evaluate(operand, data)) for operand in node.operands)
    if isinstance(node, Not):
        return not bool(_evaluate(node.operand, data))
    if isinstance(node, Compare):
        left = _value(node.left, data)
        right = _value(node.right, data)
        try:
            return _compare(node.operator, left, right)
        except TypeError as e:
            raise ConditionEvaluationError(
                f"Cannot apply {node.operator!r} to {type(left).__name__} and {type(right).__name__}",
                condition_type="custom"
            ) from e
    return _value(node, data)


def evaluate_expression(text: str, data: Dict[str, Any]) -> bool:
    """Evaluate a boolean expression against a mapping of named values."""
    return bool(_evaluate(parse_expression(text), data or {}))
