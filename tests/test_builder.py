"""Tests for the immutable dashboard builder and its layered defaults."""

import pytest

from dashcore.builder import DashboardBuilder
from dashcore.errors import SpecError
from dashcore.pipelines import AggregationMode, ChartType


class TestDefaults:
    def test_builder_calls_return_new_builders(self, survey_frame):
        base = DashboardBuilder()
        with_data = base.add_dataset("survey", survey_frame)
        layered = with_data.with_defaults(dataset="survey")
        assert base.datasets == {}
        assert with_data.defaults == {}
        assert layered.defaults == {"dataset": "survey"}

    def test_later_layers_win(self):
        builder = (
            DashboardBuilder()
            .with_defaults(dataset="survey", aggregation="percent", complete_groups=False)
            .with_defaults(aggregation="count")
            .add_chart("c", "bar", roles={"x": "region"})
        )
        chart = builder.charts[0]
        assert chart.aggregation is AggregationMode.COUNT
        assert chart.complete_groups is False
        assert chart.dataset == "survey"

    def test_explicit_arguments_win_over_defaults(self):
        builder = DashboardBuilder().with_defaults(dataset="survey", aggregation="percent")
        chart = builder.add_chart("c", "pie", dataset="other", aggregation="count", roles={"x": "a"}).charts[0]
        assert chart.dataset == "other"
        assert chart.aggregation is AggregationMode.COUNT
        assert chart.chart_type is ChartType.PIE

    def test_mapping_defaults_merge_per_key(self):
        builder = (
            DashboardBuilder()
            .with_defaults(dataset="survey", roles={"x": "region", "weight": "w"}, styling={"height": 300})
            .with_defaults(styling={"color": "red"})
        )
        chart = builder.add_chart("c", "bar", roles={"x": "city"}).charts[0]
        assert dict(chart.roles) == {"x": "city", "weight": "w"}
        assert dict(chart.styling) == {"height": 300, "color": "red"}

    def test_chart_type_can_come_from_defaults(self):
        chart = DashboardBuilder().with_defaults(dataset="d", chart_type="timeline").add_chart("c", roles={"time": "t"}).charts[0]
        assert chart.chart_type is ChartType.TIMELINE

    def test_sibling_layers_do_not_leak(self):
        base = DashboardBuilder().with_defaults(dataset="survey")
        percent = base.with_defaults(aggregation="percent")
        base.with_defaults(aggregation="mean")
        assert percent.defaults["aggregation"] == "percent"
        assert "aggregation" not in base.defaults

    def test_missing_dataset(self):
        with pytest.raises(SpecError, match="dataset"):
            DashboardBuilder().add_chart("c", "bar", roles={"x": "a"})

    def test_missing_chart_type(self):
        with pytest.raises(SpecError, match="chart type"):
            DashboardBuilder().add_chart("c", dataset="d", roles={"x": "a"})


class TestComposition:
    def test_adding_builders_concatenates_and_layers(self, survey_frame):
        left = DashboardBuilder().add_dataset("survey", survey_frame).with_defaults(dataset="survey", aggregation="percent")
        right = DashboardBuilder().with_defaults(aggregation="count").add_input("gender", "radio", bound_variable="gender", options=["Female", "Male"])
        combined = left + right
        assert combined.defaults == {"dataset": "survey", "aggregation": "count"}
        assert [i.id for i in combined.inputs] == ["gender"]
        assert "survey" in combined.datasets

    def test_build_and_compile(self, survey_builder):
        spec = survey_builder.build()
        assert [c.chart_id for c in spec.charts] == ["answers", "by_gender", "trend", "detail"]
        assert spec.edges[0].parent == "region"
        bundle = survey_builder.compile()
        assert bundle.chart_ids == ["answers", "by_gender", "trend", "detail"]
