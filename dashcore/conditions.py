from __future__ import annotations

import math
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from dashcore.config import CompilerOptions
from dashcore.errors import CompilationError, DashboardError, TypeMismatchError, UnknownVariableError, suggest_names
from dashcore.formula import ORDERED_OPS, And, Comparison, ConditionExpr, Not, Or, walk
from dashcore.inputs import InputRegistry


FilterState = Dict[str, Any]

_JSON_OPS = {"==": "eq", "!=": "neq", ">": "gt", "<": "lt", ">=": "gte", "<=": "lte", "in": "in"}


# ---------- value semantics shared by the evaluator and compiled predicates ----------

def as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(out) else out


def literal_key(value: Any) -> Tuple[str, Any]:
    """Comparable key so that 2020, 2020.0 and "2020" match while "a" and True stay distinct."""
    if isinstance(value, bool):
        return ("bool", value)
    num = as_number(value)
    if num is not None:
        return ("num", num)
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return ("bool", value.strip().lower() == "true")
    return ("str", str(value))


def _values_of(actual: Any) -> Optional[List[Any]]:
    if actual is None:
        return None
    if isinstance(actual, (list, tuple, set, frozenset)):
        return list(actual)
    return [actual]


def _ordered(op: str, left: float, right: float) -> bool:
    if op == ">":
        return left > right
    if op == "<":
        return left < right
    if op == ">=":
        return left >= right
    return left <= right


def evaluate(expr: ConditionExpr, state: Mapping[str, Any], keys: Optional[Mapping[str, str]] = None) -> bool:
    """Reference tree-walking evaluator.

    ``keys`` maps formula variables to FilterState keys (bound-variable aliases to
    input ids); unmapped variables are looked up by name.
    """
    if isinstance(expr, And):
        return evaluate(expr.left, state, keys) and evaluate(expr.right, state, keys)
    if isinstance(expr, Or):
        return evaluate(expr.left, state, keys) or evaluate(expr.right, state, keys)
    if isinstance(expr, Not):
        return not evaluate(expr.expr, state, keys)

    key = keys.get(expr.variable, expr.variable) if keys else expr.variable
    values = _values_of(state.get(key))
    if expr.op == "!=":
        if values is None:
            return True
        return literal_key(expr.value) not in {literal_key(v) for v in values}
    if values is None:
        return False
    if expr.op == "==":
        return literal_key(expr.value) in {literal_key(v) for v in values}
    if expr.op == "in":
        wanted = {literal_key(v) for v in expr.value}  # type: ignore[union-attr]
        return any(literal_key(v) in wanted for v in values)
    right = as_number(expr.value)
    if right is None:
        return False
    for v in values:
        left = as_number(v)
        if left is not None and _ordered(expr.op, left, right):
            return True
    return False


# ---------- compiled predicates ----------

Check = Callable[[Mapping[str, Any]], bool]


def _compile_comparison(cmp: Comparison, key: str) -> Check:
    op = cmp.op
    if op in ("==", "!="):
        target = literal_key(cmp.value)
        negate = op == "!="

        def check_eq(state: Mapping[str, Any]) -> bool:
            values = _values_of(state.get(key))
            if values is None:
                return negate
            hit = any(literal_key(v) == target for v in values)
            return (not hit) if negate else hit

        return check_eq

    if op == "in":
        wanted: FrozenSet[Tuple[str, Any]] = frozenset(literal_key(v) for v in cmp.value)  # type: ignore[union-attr]

        def check_in(state: Mapping[str, Any]) -> bool:
            values = _values_of(state.get(key))
            return values is not None and any(literal_key(v) in wanted for v in values)

        return check_in

    right = as_number(cmp.value)

    def check_ordered(state: Mapping[str, Any]) -> bool:
        if right is None:
            return False
        values = _values_of(state.get(key))
        if values is None:
            return False
        for v in values:
            left = as_number(v)
            if left is not None and _ordered(op, left, right):
                return True
        return False

    return check_ordered


def _compile_node(expr: ConditionExpr, keys: Mapping[str, str]) -> Check:
    if isinstance(expr, Comparison):
        return _compile_comparison(expr, keys[expr.variable])
    if isinstance(expr, Not):
        inner = _compile_node(expr.expr, keys)
        return lambda state: not inner(state)
    left = _compile_node(expr.left, keys)
    right = _compile_node(expr.right, keys)
    if isinstance(expr, And):
        return lambda state: left(state) and right(state)
    if isinstance(expr, Or):
        return lambda state: left(state) or right(state)
    raise TypeError(f"Not a condition expression: {expr!r}")


class Predicate:
    """Compiled ``FilterState -> bool`` function for one condition."""

    def __init__(self, expr: ConditionExpr, keys: Mapping[str, str]):
        self.expr = expr
        self.keys = dict(keys)
        self._check = _compile_node(expr, self.keys)

    @property
    def inputs(self) -> List[str]:
        out: List[str] = []
        for name in self.keys.values():
            if name not in out:
                out.append(name)
        return out

    def __call__(self, state: Mapping[str, Any]) -> bool:
        return bool(self._check(state))

    def as_dict(self) -> Dict[str, Any]:
        return to_condition(self.expr, self.keys)

    def __repr__(self) -> str:
        return f"Predicate({self.expr!r})"


def check_condition(
    expr: ConditionExpr,
    registry: InputRegistry,
    *,
    options: Optional[CompilerOptions] = None,
    context: str = "",
) -> Tuple[Dict[str, str], List[DashboardError]]:
    """Resolve variables to input ids, collecting every problem instead of stopping at the first."""
    options = options or CompilerOptions()
    keys: Dict[str, str] = {}
    errors: List[DashboardError] = []
    for cmp in walk(expr):
        input_id = registry.resolve(cmp.variable)
        if input_id is None:
            if cmp.variable not in keys and not any(getattr(e, "name", None) == cmp.variable for e in errors):
                suggestions = suggest_names(
                    cmp.variable,
                    registry.ids,
                    limit=options.max_suggestions,
                    max_distance=options.max_suggestion_distance,
                )
                errors.append(UnknownVariableError(cmp.variable, suggestions, context=context))
            continue
        keys[cmp.variable] = input_id
        spec = registry[input_id]
        if cmp.op in ORDERED_OPS:
            if as_number(cmp.value) is None:
                errors.append(
                    TypeMismatchError(f"'{cmp.variable} {cmp.op} {cmp.value!r}' compares against a non-numeric literal{_where(context)}")
                )
            elif not spec.is_numeric_domain:
                errors.append(
                    TypeMismatchError(
                        f"'{cmp.variable} {cmp.op} ...' needs a numeric input but '{input_id}' "
                        f"({spec.kind.value}) is not numeric{_where(context)}"
                    )
                )
    return keys, errors


def _where(context: str) -> str:
    return f" in {context}" if context else ""


def compile_condition(
    expr: ConditionExpr,
    registry: InputRegistry,
    *,
    options: Optional[CompilerOptions] = None,
    context: str = "",
) -> Predicate:
    keys, errors = check_condition(expr, registry, options=options, context=context)
    if len(errors) == 1:
        raise errors[0]
    if errors:
        raise CompilationError(errors)
    return Predicate(expr, keys)


def to_condition(expr: ConditionExpr, keys: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Lower an AST into the JSON condition document carried by the bundle."""
    keys = keys or {}
    if isinstance(expr, And):
        return {"op": "and", "conditions": [to_condition(expr.left, keys), to_condition(expr.right, keys)]}
    if isinstance(expr, Or):
        return {"op": "or", "conditions": [to_condition(expr.left, keys), to_condition(expr.right, keys)]}
    if isinstance(expr, Not):
        return {"op": "not", "condition": to_condition(expr.expr, keys)}
    val = list(expr.value) if expr.op == "in" else expr.value  # type: ignore[arg-type]
    return {"var": keys.get(expr.variable, expr.variable), "op": _JSON_OPS[expr.op], "val": val}
