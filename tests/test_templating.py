"""Tests for title placeholder substitution."""

import logging

from dashcore.inputs import InputRegistry, make_input
from dashcore.templating import check_template, format_value, placeholders, render_template


def test_placeholders_are_unique_in_order():
    assert placeholders("{b} and {a} and {b}") == ["b", "a"]
    assert placeholders(None) == []


def test_format_value():
    assert format_value(["North", "South"]) == "North, South"
    assert format_value(2021.0) == "2021"
    assert format_value(2.5) == "2.5"
    assert format_value(True) == "true"
    assert format_value([]) is None
    assert format_value(None) is None


class TestRenderTemplate:
    def test_state_values(self):
        assert render_template("Results for {region}", state={"region": "North"}) == "Results for North"

    def test_multi_valued_state_joined(self):
        assert render_template("{cities}", state={"cities": ["Oslo", "Bergen"]}) == "Oslo, Bergen"

    def test_unresolved_left_verbatim(self):
        assert render_template("Wave {wave} in {region}", state={"region": "North"}) == "Wave {wave} in North"
        assert render_template("{region}", state={"region": None}) == "{region}"

    def test_group_keys_win_over_state(self):
        out = render_template("{region}", state={"region": ["North", "South"]}, group_keys={"region": "South"})
        assert out == "South"

    def test_title_map_literal(self):
        assert render_template("{label}", title_map={"label": "Fixed"}) == "Fixed"

    def test_title_map_lookup_uses_first_matching_input(self):
        registry = InputRegistry.from_specs(
            [
                make_input("wave", "radio", bound_variable="wave", options=[1, 2]),
                make_input("region", "select_single", bound_variable="region", options=["N", "S"]),
            ]
        )
        title_map = {"period": {"1": "Spring", "2": "Autumn", "N": "Northern"}}
        out = render_template("{period}", state={"wave": 2, "region": "N"}, title_map=title_map, registry=registry)
        assert out == "Autumn"

    def test_title_map_without_match_falls_back(self):
        out = render_template("{region}", state={"region": "S"}, title_map={"region": {"N": "Northern"}})
        assert out == "S"

    def test_bound_variable_alias(self):
        registry = InputRegistry.from_specs([make_input("year_slider", "slider", bound_variable="year", min=2000, max=2030)])
        assert render_template("Since {year}", state={"year_slider": 2020.0}, registry=registry) == "Since 2020"

    def test_none_template(self):
        assert render_template(None, state={"a": 1}) is None


def test_check_template_warns_for_each_unknown_name(caplog):
    with caplog.at_level(logging.WARNING, logger="dashcore.templating"):
        missing = check_template("{region} {wave} {label}", known=["region"], title_map={"label": "x"}, context="title of chart 'c'")
    assert missing == ["wave"]
    assert "{wave}" in caplog.text
    assert "title of chart 'c'" in caplog.text
