"""Parser for one-sided conditional formulas (``show_when`` and static chart filters).

Surface syntax::

    ~ time_period == "Over Time" & (region %in% c("North", "South") | !(show_all == TRUE))

Precedence, lowest first: ``or`` (``|``, ``||``), ``and`` (``&``, ``&&``),
``not`` (``!``), comparison.  The left side of every comparison is a variable
name and the right side a literal; ``%in%`` / ``in`` take a literal set.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

from dashcore.errors import ParseError


Literal = Union[str, int, float, bool]

COMPARISON_OPS = ("==", "!=", ">", "<", ">=", "<=", "in")
ORDERED_OPS = frozenset({">", "<", ">=", "<="})


@dataclass(frozen=True)
class Comparison:
    variable: str
    op: str
    value: Union[Literal, Tuple[Literal, ...]]


@dataclass(frozen=True)
class And:
    left: "ConditionExpr"
    right: "ConditionExpr"


@dataclass(frozen=True)
class Or:
    left: "ConditionExpr"
    right: "ConditionExpr"


@dataclass(frozen=True)
class Not:
    expr: "ConditionExpr"


ConditionExpr = Union[Comparison, And, Or, Not]


@dataclass(frozen=True)
class Token:
    kind: str
    value: object
    pos: int


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<op>%in%|==|!=|>=|<=|&&|\|\||[<>&|!~(),\[\]])
  | (?P<name>[A-Za-z_.][A-Za-z0-9_.]*)
    """,
    re.VERBOSE,
)

_BOOL_WORDS = {"TRUE": True, "True": True, "true": True, "FALSE": False, "False": False, "false": False}
_KEYWORD_OPS = {"and": "&", "or": "|", "not": "!", "in": "%in%"}
_ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"', "'": "'"}


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise ParseError(
                f"Unexpected character {text[pos]!r} at position {pos}",
                position=pos,
                expected="operator, name or literal",
                text=text,
            )
        kind = match.lastgroup
        raw = match.group()
        if kind == "number":
            # "a-1" style input: a sign directly after an operand is not part of the number.
            if raw[0] in "+-" and tokens and tokens[-1].kind in {"name", "number", "string", "bool", ")"}:
                raise ParseError(
                    f"Arithmetic is not supported (found {raw[0]!r} at position {pos})",
                    position=pos,
                    expected="comparison operator",
                    text=text,
                )
            value: object = float(raw) if any(c in raw for c in ".eE") else int(raw)
            tokens.append(Token("number", value, pos))
        elif kind == "string":
            tokens.append(Token("string", _unquote(raw), pos))
        elif kind == "op":
            tokens.append(Token(raw, raw, pos))
        elif kind == "name":
            if raw in _BOOL_WORDS:
                tokens.append(Token("bool", _BOOL_WORDS[raw], pos))
            elif raw in _KEYWORD_OPS:
                op = _KEYWORD_OPS[raw]
                tokens.append(Token(op, op, pos))
            else:
                tokens.append(Token("name", raw, pos))
        pos = match.end()
    tokens.append(Token("eof", None, len(text)))
    return tokens


_OP_ALIASES = {"&&": "&", "||": "|", "%in%": "in"}


class _Parser:
    def __init__(self, text: str, tokens: List[Token]):
        self.text = text
        self.tokens = tokens
        self.i = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.i]

    def _kind(self, token: Token) -> str:
        return _OP_ALIASES.get(token.kind, token.kind)

    def accept(self, *kinds: str) -> Optional[Token]:
        tok = self.current
        if self._kind(tok) in kinds:
            self.i += 1
            return tok
        return None

    def expect(self, kind: str, expected: str) -> Token:
        tok = self.accept(kind)
        if tok is None:
            self.fail(expected)
        return tok  # type: ignore[return-value]

    def fail(self, expected: str) -> None:
        tok = self.current
        found = "end of formula" if tok.kind == "eof" else repr(tok.value)
        raise ParseError(
            f"Expected {expected} at position {tok.pos}, found {found}",
            position=tok.pos,
            expected=expected,
            text=self.text,
        )

    def parse(self) -> ConditionExpr:
        expr = self.parse_or()
        if self.current.kind != "eof":
            if self.current.kind == "~":
                raise ParseError(
                    "Formula must be one-sided (use '~ condition')",
                    position=self.current.pos,
                    reason="must be one-sided",
                    text=self.text,
                )
            self.fail("'&', '|' or end of formula")
        return expr

    def parse_or(self) -> ConditionExpr:
        left = self.parse_and()
        while self.accept("|"):
            left = Or(left, self.parse_and())
        return left

    def parse_and(self) -> ConditionExpr:
        left = self.parse_not()
        while self.accept("&"):
            left = And(left, self.parse_not())
        return left

    def parse_not(self) -> ConditionExpr:
        if self.accept("!"):
            return Not(self.parse_not())
        return self.parse_primary()

    def parse_primary(self) -> ConditionExpr:
        if self.accept("("):
            expr = self.parse_or()
            self.expect(")", "')'")
            return expr
        return self.parse_comparison()

    def parse_comparison(self) -> Comparison:
        name = self.current
        if name.kind != "name":
            self.fail("input name")
        self.i += 1
        op_tok = self.current
        op = self._kind(op_tok)
        if op not in COMPARISON_OPS:
            self.fail("comparison operator (==, !=, >, <, >=, <=, %in%)")
        self.i += 1
        if op == "in":
            return Comparison(str(name.value), "in", self.parse_set())
        return Comparison(str(name.value), op, self.parse_literal())

    def parse_literal(self) -> Literal:
        tok = self.current
        if tok.kind in {"string", "number", "bool"}:
            self.i += 1
            return tok.value  # type: ignore[return-value]
        if tok.kind == "name":
            raise ParseError(
                f"Right-hand side must be a literal, found name {tok.value!r} at position {tok.pos}",
                position=tok.pos,
                expected="string, number or boolean literal",
                text=self.text,
            )
        self.fail("string, number or boolean literal")
        raise AssertionError("unreachable")

    def parse_set(self) -> Tuple[Literal, ...]:
        tok = self.current
        if tok.kind == "name" and tok.value == "c" and self.tokens[self.i + 1].kind == "(":
            self.i += 1
        if self.accept("("):
            closer = ")"
        elif self.accept("["):
            closer = "]"
        else:
            # A bare literal is a one-element set.
            return (self.parse_literal(),)
        items: List[Literal] = []
        if not self.accept(closer):
            items.append(self.parse_literal())
            while self.accept(","):
                items.append(self.parse_literal())
            self.expect(closer, f"',' or '{closer}'")
        return tuple(items)


def parse_formula(text: str) -> ConditionExpr:
    """Parse ``~ <expr>`` (the tilde is optional) into a ConditionExpr."""
    if not isinstance(text, str):
        raise ParseError("Formula must be a string", position=0, expected="formula text")
    tokens = tokenize(text)
    tilde_at = next((i for i, t in enumerate(tokens) if t.kind == "~"), None)
    if tilde_at is not None and tilde_at > 0:
        raise ParseError(
            "Formula must be one-sided (use '~ condition', not 'target ~ condition')",
            position=tokens[tilde_at].pos,
            reason="must be one-sided",
            text=text,
        )
    if tilde_at == 0:
        tokens = tokens[1:]
    if tokens[0].kind == "eof":
        raise ParseError("Empty formula", position=len(text), expected="condition", text=text)
    return _Parser(text, tokens).parse()


def walk(expr: ConditionExpr) -> Iterator[Comparison]:
    if isinstance(expr, Comparison):
        yield expr
    elif isinstance(expr, (And, Or)):
        yield from walk(expr.left)
        yield from walk(expr.right)
    elif isinstance(expr, Not):
        yield from walk(expr.expr)
    else:
        raise TypeError(f"Not a condition expression: {expr!r}")


def variables(expr: ConditionExpr) -> List[str]:
    seen: List[str] = []
    for cmp in walk(expr):
        if cmp.variable not in seen:
            seen.append(cmp.variable)
    return seen


def _format_literal(value: Literal) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, str):
        return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return repr(value)


def format_condition(expr: ConditionExpr, *, _parent: int = 0) -> str:
    """Canonical surface text; ``parse_formula(format_condition(e)) == e``."""
    if isinstance(expr, Comparison):
        if expr.op == "in":
            items = ", ".join(_format_literal(v) for v in expr.value)  # type: ignore[union-attr]
            return f"{expr.variable} %in% c({items})"
        return f"{expr.variable} {expr.op} {_format_literal(expr.value)}"  # type: ignore[arg-type]
    if isinstance(expr, Not):
        return "!" + format_condition(expr.expr, _parent=3)
    level, sym = (1, "|") if isinstance(expr, Or) else (2, "&")
    # Left-associative: the right operand needs parentheses at equal precedence.
    text = f"{format_condition(expr.left, _parent=level)} {sym} {format_condition(expr.right, _parent=level + 1)}"
    return f"({text})" if _parent > level else text
