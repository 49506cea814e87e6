"""Boolean condition language for file selection and feature flags.

Conditions are small boolean expressions over a generation context::

    database != ""
    framework == "gin" and not minimal
    (auth == "jwt" || auth == "oauth2") && has_database

Supported forms:

* ``name == literal`` / ``name != literal`` (either operand order), where a
  literal is a quoted string, an integer, ``true`` or ``false``;
* a bare ``name``, tested for truthiness (non-empty string or list,
  non-zero int, ``True``);
* ``and`` / ``&&``, ``or`` / ``||``, ``not`` / ``!`` and parentheses.

An empty condition is always true. Expressions are parsed once into an
immutable tree and evaluated many times; evaluation never has side effects
and only reads the mapping it is given.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Union

from stencil.errors import ConditionEvaluationError, UnknownVariableReference


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Always:
    """The empty condition."""

    def names(self) -> Iterator[str]:
        return iter(())


@dataclass(frozen=True)
class Const:
    """A bare ``true`` or ``false``."""

    value: bool

    def names(self) -> Iterator[str]:
        return iter(())


@dataclass(frozen=True)
class Name:
    name: str

    def names(self) -> Iterator[str]:
        yield self.name


@dataclass(frozen=True)
class Compare:
    name: str
    op: str  # "==" or "!="
    value: Any

    def names(self) -> Iterator[str]:
        yield self.name


@dataclass(frozen=True)
class Not:
    operand: "Expression"

    def names(self) -> Iterator[str]:
        yield from self.operand.names()


@dataclass(frozen=True)
class And:
    left: "Expression"
    right: "Expression"

    def names(self) -> Iterator[str]:
        yield from self.left.names()
        yield from self.right.names()


@dataclass(frozen=True)
class Or:
    left: "Expression"
    right: "Expression"

    def names(self) -> Iterator[str]:
        yield from self.left.names()
        yield from self.right.names()


Expression = Union[Always, Const, Name, Compare, Not, And, Or]

ALWAYS = Always()


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
      | (?P<int>-?\d+)
      | (?P<op>==|!=|&&|\|\||!|\(|\))
      | (?P<word>[A-Za-z_][A-Za-z0-9_]*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and": "&&", "or": "||", "not": "!"}
_BOOL_WORDS = {"true": True, "false": False, "True": True, "False": False}


@dataclass(frozen=True)
class _Token:
    kind: str  # "string", "int", "bool", "op", "name", "end"
    value: Any
    pos: int


def _tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(text):
        if text[pos:].strip() == "":
            break
        match = _TOKEN_RE.match(text, pos)
        if match is None or match.end() == pos:
            stripped = len(text[pos:]) - len(text[pos:].lstrip())
            raise ConditionEvaluationError(
                text, f"unexpected character {text[pos + stripped]!r} at offset {pos + stripped}"
            )
        kind = match.lastgroup
        raw = match.group(kind)
        start = match.start(kind)
        if kind == "string":
            tokens.append(_Token("string", _unquote(raw), start))
        elif kind == "int":
            tokens.append(_Token("int", int(raw), start))
        elif kind == "op":
            tokens.append(_Token("op", raw, start))
        elif raw in _KEYWORDS:
            tokens.append(_Token("op", _KEYWORDS[raw], start))
        elif raw in _BOOL_WORDS:
            tokens.append(_Token("bool", _BOOL_WORDS[raw], start))
        else:
            tokens.append(_Token("name", raw, start))
        pos = match.end()
    tokens.append(_Token("end", None, len(text)))
    return tokens


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


# ---------------------------------------------------------------------------
# Parser (recursive descent)
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.index = 0

    @property
    def current(self) -> _Token:
        return self.tokens[self.index]

    def _advance(self) -> _Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _accept(self, op: str) -> bool:
        token = self.current
        if token.kind == "op" and token.value == op:
            self.index += 1
            return True
        return False

    def _fail(self, reason: str) -> ConditionEvaluationError:
        return ConditionEvaluationError(self.text, f"{reason} at offset {self.current.pos}")

    def parse(self) -> Expression:
        expr = self._or()
        if self.current.kind != "end":
            raise self._fail(f"unexpected {self.current.value!r}")
        return expr

    def _or(self) -> Expression:
        expr = self._and()
        while self._accept("||"):
            expr = Or(expr, self._and())
        return expr

    def _and(self) -> Expression:
        expr = self._not()
        while self._accept("&&"):
            expr = And(expr, self._not())
        return expr

    def _not(self) -> Expression:
        if self._accept("!"):
            return Not(self._not())
        return self._primary()

    def _primary(self) -> Expression:
        if self._accept("("):
            expr = self._or()
            if not self._accept(")"):
                raise self._fail("expected ')'")
            return expr

        token = self.current
        if token.kind == "name":
            self._advance()
            op = self._comparison_op()
            if op is None:
                return Name(token.value)
            return Compare(token.value, op, self._literal())

        if token.kind in ("string", "int", "bool"):
            value = self._literal()
            op = self._comparison_op()
            if op is None:
                if isinstance(value, bool):
                    return Const(value)
                raise self._fail("a literal must be compared with a variable")
            name = self.current
            if name.kind != "name":
                raise self._fail("expected a variable name")
            self._advance()
            return Compare(name.value, op, value)

        if token.kind == "end":
            raise self._fail("unexpected end of expression")
        raise self._fail(f"unexpected {token.value!r}")

    def _comparison_op(self) -> str | None:
        token = self.current
        if token.kind == "op" and token.value in ("==", "!="):
            self._advance()
            return token.value
        return None

    def _literal(self) -> Any:
        token = self.current
        if token.kind not in ("string", "int", "bool"):
            raise self._fail("expected a literal")
        self._advance()
        return token.value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_condition(text: str | None, known_names: Iterable[str] | None = None) -> Expression:
    """Parse *text* into an expression tree.

    Args:
        text: The condition source. ``None`` or blank means "always".
        known_names: When given, every referenced name must be in this set,
            otherwise :class:`UnknownVariableReference` is raised.

    Raises:
        ConditionEvaluationError: On a syntax error.
        UnknownVariableReference: On a reference outside *known_names*.
    """
    if text is None or not text.strip():
        return ALWAYS
    expr = _Parser(text).parse()
    if known_names is not None:
        known = set(known_names)
        for name in expr.names():
            if name not in known:
                raise UnknownVariableReference(name, text)
    return expr


def evaluate(expr: Expression, ctx: Mapping[str, Any]) -> bool:
    """Evaluate a parsed expression against *ctx*."""
    if isinstance(expr, Always):
        return True
    if isinstance(expr, Const):
        return expr.value
    if isinstance(expr, Name):
        return _truthy(expr.name, _lookup(ctx, expr.name))
    if isinstance(expr, Compare):
        equal = _equals(expr.name, _lookup(ctx, expr.name), expr.value)
        return equal if expr.op == "==" else not equal
    if isinstance(expr, Not):
        return not evaluate(expr.operand, ctx)
    if isinstance(expr, And):
        return evaluate(expr.left, ctx) and evaluate(expr.right, ctx)
    if isinstance(expr, Or):
        return evaluate(expr.left, ctx) or evaluate(expr.right, ctx)
    raise TypeError(f"Not an expression: {expr!r}")


def evaluate_condition(text: str | None, ctx: Mapping[str, Any]) -> bool:
    """Parse and evaluate *text* in one step, checking names against *ctx*."""
    return evaluate(parse_condition(text, known_names=ctx.keys()), ctx)


def render(expr: Expression) -> str:
    """Render an expression back to canonical source text."""
    if isinstance(expr, Always):
        return ""
    if isinstance(expr, Const):
        return "true" if expr.value else "false"
    if isinstance(expr, Name):
        return expr.name
    if isinstance(expr, Compare):
        return f"{expr.name} {expr.op} {_render_literal(expr.value)}"
    if isinstance(expr, Not):
        return f"not {_render_operand(expr.operand)}"
    if isinstance(expr, And):
        return f"{_render_operand(expr.left)} and {_render_operand(expr.right)}"
    if isinstance(expr, Or):
        return f"{_render_operand(expr.left)} or {_render_operand(expr.right)}"
    raise TypeError(f"Not an expression: {expr!r}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _lookup(ctx: Mapping[str, Any], name: str) -> Any:
    try:
        return ctx[name]
    except KeyError:
        raise UnknownVariableReference(name) from None


def _truthy(name: str, value: Any) -> bool:
    if isinstance(value, (bool, int, str, list, tuple)):
        return bool(value)
    if value is None:
        return False
    raise ConditionEvaluationError(name, f"cannot test a {type(value).__name__} value for truth")


def _equals(name: str, value: Any, literal: Any) -> bool:
    if isinstance(value, (list, tuple)):
        raise ConditionEvaluationError(
            name, "list variables can only be tested for emptiness, not compared"
        )
    # bool is a subclass of int, so check it first.
    if isinstance(literal, bool) or isinstance(value, bool):
        if not (isinstance(literal, bool) and isinstance(value, bool)):
            raise ConditionEvaluationError(
                name, f"cannot compare {type(value).__name__} with {_render_literal(literal)}"
            )
        return value is literal
    if isinstance(literal, int) and not isinstance(value, int):
        raise ConditionEvaluationError(
            name, f"cannot compare {type(value).__name__} with integer {literal}"
        )
    if isinstance(literal, str) and value is not None and not isinstance(value, str):
        raise ConditionEvaluationError(
            name, f"cannot compare {type(value).__name__} with string {literal!r}"
        )
    if value is None:
        return literal == ""
    return value == literal


def _render_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _render_operand(expr: Expression) -> str:
    if isinstance(expr, (And, Or)):
        return f"({render(expr)})"
    return render(expr)
