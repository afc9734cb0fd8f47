"""Boolean condition expressions gating files and dependencies.

Conditions are deliberately not Jinja expressions: they have their own small
grammar so they can be parsed (and rejected) when a blueprint is loaded and
evaluated against resolved variables without a template engine.

Grammar::

    expr       := or_expr
    or_expr    := and_expr (("or" | "||") and_expr)*
    and_expr   := not_expr (("and" | "&&") not_expr)*
    not_expr   := ("not" | "!") not_expr | comparison
    comparison := operand (("==" | "!=") operand)?
    operand    := IDENT | STRING | NUMBER | "true" | "false" | "(" expr ")"
                | ("eq" | "ne") operand operand
                | ("and" | "or") operand operand+
                | "not" operand

Identifiers may start with a ``.`` and the whole expression may be wrapped
in ``{{ ... }}``, so both ``UseAuth and Driver != "none"`` and the prefix
form ``{{and .UseAuth (ne .Driver "none")}}`` are accepted.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Union

from forge.blueprints.variables import ResolvedVariables
from forge.errors import ConditionSyntaxError

_UNSET = object()

RESERVED_WORDS = frozenset({"and", "or", "not", "eq", "ne", "true", "false"})

_TOKEN_RE = re.compile(
    r"""
    (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    |(?P<number>-?\d+(?:\.\d+)?)
    |(?P<op>==|!=|&&|\|\||!|\(|\))
    |(?P<ident>\.?[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Var:
    name: str


@dataclass(frozen=True)
class Not:
    operand: "Node"


@dataclass(frozen=True)
class And:
    operands: tuple["Node", ...]


@dataclass(frozen=True)
class Or:
    operands: tuple["Node", ...]


@dataclass(frozen=True)
class Compare:
    op: str  # "==" or "!="
    left: "Node"
    right: "Node"


Node = Union[Literal, Var, Not, And, Or, Compare]


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    pos: int


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(source):
        if source[pos].isspace():
            pos += 1
            continue
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise ConditionSyntaxError(source, f"unexpected character {source[pos]!r}", pos)
        kind = match.lastgroup or ""
        tokens.append(_Token(kind, match.group(kind), pos))
        pos = match.end()
    return tokens


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


class _Parser:
    def __init__(self, source: str, tokens: list[_Token]) -> None:
        self.source = source
        self.tokens = tokens
        self.index = 0

    # -- token helpers -----------------------------------------------------

    def _peek(self) -> _Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise ConditionSyntaxError(self.source, "unexpected end of expression", len(self.source))
        self.index += 1
        return token

    def _at(self, kind: str, *texts: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == kind and token.text in texts

    def _starts_operand(self) -> bool:
        token = self._peek()
        if token is None:
            return False
        if token.kind in ("string", "number"):
            return True
        if token.kind == "op":
            return token.text == "("
        return token.text not in ("and", "or")

    # -- grammar -----------------------------------------------------------

    def parse(self) -> Node:
        if not self.tokens:
            raise ConditionSyntaxError(self.source, "empty expression")
        node = self._or()
        token = self._peek()
        if token is not None:
            raise ConditionSyntaxError(self.source, f"unexpected {token.text!r}", token.pos)
        return node

    def _or(self) -> Node:
        operands = [self._and()]
        while self._at("ident", "or") or self._at("op", "||"):
            self._next()
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else Or(tuple(operands))

    def _and(self) -> Node:
        operands = [self._not()]
        while self._at("ident", "and") or self._at("op", "&&"):
            self._next()
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else And(tuple(operands))

    def _not(self) -> Node:
        if self._at("ident", "not") or self._at("op", "!"):
            self._next()
            return Not(self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._operand()
        if self._at("op", "==", "!="):
            op = self._next().text
            return Compare(op, left, self._operand())
        return left

    def _operand(self) -> Node:
        token = self._next()
        if token.kind == "string":
            return Literal(_unquote(token.text))
        if token.kind == "number":
            text = token.text
            return Literal(float(text) if "." in text else int(text))
        if token.kind == "op":
            if token.text == "(":
                node = self._or()
                closing = self._peek()
                if closing is None or closing.text != ")":
                    pos = closing.pos if closing else len(self.source)
                    raise ConditionSyntaxError(self.source, "expected ')'", pos)
                self._next()
                return node
            raise ConditionSyntaxError(self.source, f"unexpected {token.text!r}", token.pos)

        name = token.text
        if name.startswith("."):
            return Var(name[1:])
        if name == "true":
            return Literal(True)
        if name == "false":
            return Literal(False)
        if name in ("eq", "ne"):
            left = self._operand()
            right = self._operand()
            return Compare("==" if name == "eq" else "!=", left, right)
        if name in ("and", "or"):
            operands = [self._operand(), self._operand()]
            while self._starts_operand():
                operands.append(self._operand())
            return And(tuple(operands)) if name == "and" else Or(tuple(operands))
        if name == "not":
            return Not(self._operand())
        return Var(name)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _truthy(value: Any) -> bool:
    if value is _UNSET or value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return bool(value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _equal(left: Any, right: Any) -> bool:
    if left is _UNSET or right is _UNSET:
        other = right if left is _UNSET else left
        return other is _UNSET or other == "" or other is False
    if isinstance(left, bool) and isinstance(right, bool):
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return _as_text(left).lower() == _as_text(right).lower()
    if isinstance(left, (int, float)) or isinstance(right, (int, float)):
        a, b = _as_number(left), _as_number(right)
        if a is not None and b is not None:
            return a == b
    return _as_text(left) == _as_text(right)


def _value(node: Node, values: Mapping[str, Any]) -> Any:
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Var):
        value = values.get(node.name, _UNSET)
        return _UNSET if value is None else value
    return _eval(node, values)


def _eval(node: Node, values: Mapping[str, Any]) -> bool:
    if isinstance(node, (Literal, Var)):
        return _truthy(_value(node, values))
    if isinstance(node, Not):
        return not _eval(node.operand, values)
    if isinstance(node, And):
        return all(_eval(op, values) for op in node.operands)
    if isinstance(node, Or):
        return any(_eval(op, values) for op in node.operands)
    equal = _equal(_value(node.left, values), _value(node.right, values))
    return equal if node.op == "==" else not equal


def _collect_variables(node: Node, into: set[str]) -> None:
    if isinstance(node, Var):
        into.add(node.name)
    elif isinstance(node, Not):
        _collect_variables(node.operand, into)
    elif isinstance(node, (And, Or)):
        for op in node.operands:
            _collect_variables(op, into)
    elif isinstance(node, Compare):
        _collect_variables(node.left, into)
        _collect_variables(node.right, into)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Condition:
    """A parsed condition expression."""

    source: str
    node: Node

    @property
    def variables(self) -> frozenset[str]:
        """Names of all variables the expression references."""
        names: set[str] = set()
        _collect_variables(self.node, names)
        return frozenset(names)

    def evaluate(self, variables: ResolvedVariables | Mapping[str, Any]) -> bool:
        """Evaluate against resolved variables (or a plain value mapping)."""
        if isinstance(variables, ResolvedVariables):
            values: Mapping[str, Any] = variables.as_context()
        else:
            values = variables
        return _eval(self.node, values)


def _strip_delimiters(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("{{") and stripped.endswith("}}"):
        stripped = stripped[2:-2].strip()
        # Go-template trim markers: {{- ... -}}
        if stripped.startswith("-"):
            stripped = stripped[1:]
        if stripped.endswith("-"):
            stripped = stripped[:-1]
    return stripped.strip()


@lru_cache(maxsize=2048)
def parse_condition(text: str) -> Condition:
    """Parse *text* into a ``Condition`` or raise ``ConditionSyntaxError``."""
    body = _strip_delimiters(text)
    node = _Parser(body, _tokenize(body)).parse()
    return Condition(source=text, node=node)


def evaluate_condition(
    text: str | None, variables: ResolvedVariables | Mapping[str, Any]
) -> bool:
    """Evaluate an optional condition; an absent or blank one is always true."""
    if text is None or not text.strip():
        return True
    return parse_condition(text).evaluate(variables)
