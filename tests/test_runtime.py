"""Tests for the runtime state machine and debouncer."""

import logging

import pytest

from dashcore.errors import ReentrantUpdateError
from dashcore.runtime import DashboardRuntime, Debouncer, RuntimeState


class Recorder:
    def __init__(self):
        self.renders = []
        self.visibility = []

    def render(self, chart_id, data):
        self.renders.append(chart_id)

    def on_visibility(self, chart_id, visible):
        self.visibility.append((chart_id, visible))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def runtime(survey_bundle, recorder):
    rt = DashboardRuntime(survey_bundle, render=recorder.render, on_visibility=recorder.on_visibility)
    rt.initial_render()
    recorder.renders.clear()
    recorder.visibility.clear()
    return rt


class TestInitialRender:
    def test_renders_every_chart_once(self, survey_bundle, recorder):
        rt = DashboardRuntime(survey_bundle, render=recorder.render, on_visibility=recorder.on_visibility)
        series = rt.initial_render()
        assert sorted(recorder.renders) == sorted(survey_bundle.chart_ids)
        assert set(series) == set(survey_bundle.chart_ids)
        assert rt.status is RuntimeState.IDLE

    def test_initial_visibility(self, runtime):
        assert runtime.visibility == {"answers": True, "by_gender": True, "trend": True, "detail": False}

    def test_initial_state_is_defaults(self, runtime):
        assert runtime.state == {"region": "All", "city": [], "year": 2021.0, "gender": "All", "details": False}


class TestSetInput:
    def test_only_affected_charts_rerender(self, runtime, recorder):
        result = runtime.set_input("gender", "Male")
        assert sorted(result.rendered) == ["answers", "by_gender"]
        assert sorted(recorder.renders) == ["answers", "by_gender"]
        assert runtime.series["answers"].title == "Answers (Male)"
        assert runtime.series["by_gender"].as_mapping() == {"Female": 0, "Male": 4}

    def test_value_is_normalized(self, runtime):
        runtime.set_input("year", "2022")
        assert runtime.state["year"] == 2022.0
        runtime.set_input("year", 2050)
        assert runtime.state["year"] == 2023.0

    def test_unchanged_value_is_a_noop(self, runtime, recorder):
        result = runtime.set_input("gender", "All")
        assert result.is_noop
        assert recorder.renders == []

    def test_unknown_input_is_logged_and_ignored(self, runtime, caplog):
        with caplog.at_level(logging.WARNING, logger="dashcore.runtime"):
            result = runtime.set_input("nope", 1)
        assert result.is_noop
        assert "unknown input 'nope'" in caplog.text

    def test_parent_change_cascades_to_child(self, runtime):
        runtime.set_input("city", ["Hamar"])
        result = runtime.set_input("region", "North")
        assert runtime.state["city"] == ["Oslo"]
        assert result.reset == {"city": (["Hamar"], ["Oslo"])}
        assert result.changed == ["region", "city"]
        assert set(result.rendered) == {"answers", "trend", "detail"}

    def test_child_written_directly_stays_valid_for_its_parent(self, runtime, survey_bundle):
        runtime.set_input("region", "North")
        result = runtime.set_input("city", ["Hamar"])
        assert runtime.state["city"] == ["Oslo"]
        assert set(runtime.state["city"]) <= set(survey_bundle.graph.options_for("city", runtime.state))
        assert result.changed == ["city"]
        assert runtime.set_input("city", ["Hamar"]).is_noop

    def test_child_written_with_its_parent_in_one_transition(self, runtime):
        runtime.set_inputs({"region": "South", "city": ["Hamar", "Arendal"]})
        assert runtime.state["city"] == ["Arendal"]

    def test_visibility_changes_are_reported(self, runtime, recorder):
        result = runtime.set_input("details", True)
        assert result.visibility == {"detail": True}
        assert recorder.visibility == [("detail", True)]
        assert runtime.is_visible("detail")
        assert runtime.set_input("details", False).visibility == {"detail": False}

    def test_set_inputs_is_one_transition(self, runtime, recorder):
        result = runtime.set_inputs({"gender": "Female", "region": "South", "unknown": 3})
        assert result.changed == ["region", "city", "gender"]
        assert sorted(recorder.renders) == sorted(set(recorder.renders))

    def test_reentrant_update_raises(self, survey_bundle):
        holder = {}

        def render(chart_id, data):
            holder["rt"].set_input("gender", "Male")

        rt = DashboardRuntime(survey_bundle, render=render)
        holder["rt"] = rt
        with pytest.raises(ReentrantUpdateError):
            rt.initial_render()
        assert rt.status is RuntimeState.IDLE


class TestReset:
    def test_full_reset_reproduces_initial_render(self, survey_bundle):
        rt = DashboardRuntime(survey_bundle)
        initial = {cid: data.to_json() for cid, data in rt.initial_render().items()}
        initial_state = rt.state
        rt.set_input("city", ["Hamar"])
        rt.set_input("region", "South")
        rt.set_input("gender", "Female")
        rt.set_input("year", 2023)
        rt.set_input("details", True)
        rt.reset()
        assert rt.state == initial_state
        assert {cid: data.to_json() for cid, data in rt.series.items()} == initial
        assert rt.visibility["detail"] is False

    def test_partial_reset(self, runtime):
        runtime.set_input("gender", "Female")
        runtime.set_input("year", 2023)
        result = runtime.reset(["gender"])
        assert runtime.state["gender"] == "All"
        assert runtime.state["year"] == 2023.0
        assert result.changed == ["gender"]

    def test_reset_without_changes_is_a_noop(self, runtime):
        assert runtime.reset().is_noop


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestDebouncer:
    def test_rapid_slider_events_coalesce(self, runtime, recorder):
        clock = FakeClock()
        debouncer = Debouncer(runtime, delay_ms=100, clock=clock)
        assert debouncer.submit("year", 2022) is None
        assert debouncer.submit("year", 2023) is None
        clock.now = 0.05
        assert debouncer.poll() == []
        assert runtime.state["year"] == 2021.0
        clock.now = 0.2
        results = debouncer.poll()
        assert len(results) == 1
        assert runtime.state["year"] == 2023.0
        assert recorder.renders == ["answers"]
        assert debouncer.pending == {}

    def test_choice_inputs_apply_immediately(self, runtime):
        debouncer = Debouncer(runtime, clock=FakeClock())
        result = debouncer.submit("gender", "Male")
        assert result is not None
        assert runtime.state["gender"] == "Male"

    def test_flush_applies_everything_pending(self, runtime):
        debouncer = Debouncer(runtime, delay_ms=500, clock=FakeClock())
        debouncer.submit("year", 2022)
        assert debouncer.pending == {"year": 2022}
        debouncer.flush()
        assert runtime.state["year"] == 2022.0

    def test_zero_delay_passes_through(self, runtime):
        debouncer = Debouncer(runtime, delay_ms=0, clock=FakeClock())
        assert debouncer.submit("year", 2022) is not None
