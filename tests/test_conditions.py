"""Tests for the condition compiler and the reference evaluator."""

import itertools
import random

import pytest

from dashcore.conditions import compile_condition, evaluate, literal_key, to_condition
from dashcore.errors import CompilationError, TypeMismatchError, UnknownVariableError
from dashcore.formula import And, Comparison, Not, Or, parse_formula
from dashcore.inputs import InputRegistry, make_input


@pytest.fixture
def registry():
    return InputRegistry.from_specs(
        [
            make_input("region", "select_single", bound_variable="region", options=["North", "South"]),
            make_input("cities", "select_multiple", bound_variable="city", options=["Oslo", "Bergen", "Arendal"]),
            make_input("year_slider", "slider", bound_variable="year", min=2000, max=2030, step=1),
            make_input("wave", "radio", bound_variable="wave", options=[1, 2, 3]),
            make_input("details", "switch", is_virtual=True),
        ]
    )


def compiled(text, registry):
    return compile_condition(parse_formula(text), registry)


class TestCompileErrors:
    def test_unknown_variable_suggests_nearest(self, registry):
        with pytest.raises(UnknownVariableError) as exc:
            compiled("~ regoin == 'North'", registry)
        assert exc.value.name == "regoin"
        assert exc.value.suggestions[0] == "region"
        assert "Did you mean 'region'" in str(exc.value)

    def test_unknown_variable_without_close_match(self, registry):
        with pytest.raises(UnknownVariableError) as exc:
            compiled("~ zzzzzzzzzzzzzzz == 1", registry)
        assert exc.value.suggestions == []

    def test_several_problems_are_raised_together(self, registry):
        with pytest.raises(CompilationError) as exc:
            compiled("~ regoin == 'North' | region > 3", registry)
        assert [type(e) for e in exc.value.errors] == [UnknownVariableError, TypeMismatchError]

    def test_ordered_op_on_text_domain(self, registry):
        with pytest.raises(TypeMismatchError):
            compiled("~ region > 3", registry)

    def test_ordered_op_against_text_literal(self, registry):
        with pytest.raises(TypeMismatchError):
            compiled("~ year_slider >= 'recent'", registry)

    def test_numeric_choice_domain_allows_ordering(self, registry):
        pred = compiled("~ wave >= 2", registry)
        assert pred({"wave": 3}) is True
        assert pred({"wave": 1}) is False

    def test_bound_variable_resolves_to_input_id(self, registry):
        pred = compiled("~ year >= 2020", registry)
        assert pred.inputs == ["year_slider"]
        assert pred({"year_slider": 2021.0}) is True
        assert pred({"year_slider": 2019.0}) is False


class TestSemantics:
    def test_unset_value_only_satisfies_not_equal(self, registry):
        assert compiled("~ region == 'North'", registry)({}) is False
        assert compiled("~ region != 'North'", registry)({}) is True
        assert compiled("~ region %in% c('North')", registry)({}) is False
        assert compiled("~ year_slider > 1", registry)({"year_slider": None}) is False

    def test_multi_valued_overlap(self, registry):
        state = {"cities": ["Oslo", "Bergen"]}
        assert compiled("~ cities == 'Oslo'", registry)(state) is True
        assert compiled("~ cities != 'Oslo'", registry)(state) is False
        assert compiled("~ cities %in% c('Arendal', 'Bergen')", registry)(state) is True
        assert compiled("~ cities %in% c('Arendal')", registry)(state) is False

    def test_empty_multi_selection(self, registry):
        assert compiled("~ cities == 'Oslo'", registry)({"cities": []}) is False
        assert compiled("~ cities != 'Oslo'", registry)({"cities": []}) is True

    def test_numbers_match_across_representations(self, registry):
        pred = compiled("~ wave == 2", registry)
        assert pred({"wave": 2}) is True
        assert pred({"wave": 2.0}) is True
        assert pred({"wave": "2"}) is True

    def test_non_numeric_runtime_value_makes_ordering_false(self, registry):
        assert compiled("~ year_slider > 2000", registry)({"year_slider": "soon"}) is False

    def test_boolean_switch(self, registry):
        pred = compiled("~ details == TRUE", registry)
        assert pred({"details": True}) is True
        assert pred({"details": False}) is False
        assert pred({"details": "true"}) is True

    def test_literal_key_keeps_text_and_bools_apart(self):
        assert literal_key("a") != literal_key(True)
        assert literal_key(1) != literal_key(True)
        assert literal_key("2020") == literal_key(2020.0)


STATE_VALUES = {
    "region": [None, "North", "South"],
    "cities": [None, [], ["Oslo"], ["Bergen", "Arendal"]],
    "year_slider": [None, 2019.0, 2021.0],
    "wave": [None, 1, 3],
    "details": [None, True, False],
}

# formula names per input: its id and, where it has one, its bound variable
LEAF_NAMES = {
    "region": ["region"],
    "cities": ["cities", "city"],
    "year_slider": ["year_slider", "year"],
    "wave": ["wave"],
    "details": ["details"],
}


def _random_leaf(rng):
    input_id = rng.choice(list(STATE_VALUES))
    var = rng.choice(LEAF_NAMES[input_id])
    if input_id in ("wave", "year_slider"):
        pool = [1, 2, 3] if input_id == "wave" else [2019, 2020, 2021]
        op = rng.choice(["==", "!=", ">", "<", ">=", "<=", "in"])
        value = tuple(rng.sample(pool, 2)) if op == "in" else rng.choice(pool)
    elif input_id == "details":
        op, value = rng.choice(["==", "!="]), rng.choice([True, False])
    else:
        pool = ["North", "South"] if input_id == "region" else ["Oslo", "Bergen", "Arendal"]
        op = rng.choice(["==", "!=", "in"])
        value = tuple(rng.sample(pool, 2)) if op == "in" else rng.choice(pool)
    return Comparison(var, op, value)


def _random_expr(rng, depth=0):
    if depth >= 3 or rng.random() < 0.3:
        return _random_leaf(rng)
    node = rng.choice(["and", "or", "not"])
    if node == "not":
        return Not(_random_expr(rng, depth + 1))
    cls = And if node == "and" else Or
    return cls(_random_expr(rng, depth + 1), _random_expr(rng, depth + 1))


class TestOracleEquivalence:
    def test_compiled_predicates_agree_with_reference_evaluator(self, registry):
        rng = random.Random(1234)
        states = [dict(zip(STATE_VALUES, combo)) for combo in itertools.product(*STATE_VALUES.values())]
        for _ in range(150):
            expr = _random_expr(rng)
            pred = compile_condition(expr, registry)
            for state in states:
                assert pred(state) == evaluate(expr, state, pred.keys), (expr, state)

    def test_bound_variable_alias_reads_the_input_id(self, registry):
        expr = parse_formula("~ year >= 2020 & city == 'Oslo'")
        pred = compile_condition(expr, registry)
        state = {"year_slider": 2021.0, "cities": ["Oslo"]}
        assert pred(state) is True
        assert evaluate(expr, state, pred.keys) is True
        assert pred.keys == {"year": "year_slider", "city": "cities"}


class TestJsonLowering:
    def test_comparison_and_combinators(self, registry):
        expr = parse_formula("~ year >= 2020 & !(region %in% c('North'))")
        pred = compile_condition(expr, registry)
        assert pred.as_dict() == {
            "op": "and",
            "conditions": [
                {"var": "year_slider", "op": "gte", "val": 2020},
                {"op": "not", "condition": {"var": "region", "op": "in", "val": ["North"]}},
            ],
        }

    def test_unresolved_lowering_keeps_variable_name(self):
        assert to_condition(Comparison("x", "!=", 1)) == {"var": "x", "op": "neq", "val": 1}
