import logging
from typing import Any, Dict

import altair as alt
import numpy as np
import pandas as pd
import streamlit as st

from dashcore.builder import DashboardBuilder
from dashcore.bundle import Bundle
from dashcore.charts import build_chart
from dashcore.errors import CompilationError
from dashcore.inputs import InputKind, InputSpec
from dashcore.runtime import DashboardRuntime

alt.data_transformers.disable_max_rows()
logging.basicConfig(level=logging.INFO)


# ---------- demo dashboard ----------
def demo_survey(n: int = 600, seed: int = 7) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    regions = {"North": ["Oslo", "Bergen"], "South": ["Kristiansand", "Arendal"]}
    region = rng.choice(list(regions), size=n)
    city = [rng.choice(regions[r]) for r in region]
    return pd.DataFrame(
        {
            "region": region,
            "city": city,
            "year": rng.choice([2021, 2022, 2023, 2024], size=n),
            "gender": rng.choice(["Female", "Male"], size=n),
            "answer": rng.choice(["Agree", "Neutral", "Disagree"], size=n, p=[0.5, 0.2, 0.3]),
            "score": rng.integers(1, 11, size=n).astype(float),
            "weight": rng.uniform(0.5, 1.5, size=n).round(3),
        }
    )


def demo_builder() -> DashboardBuilder:
    base = (
        DashboardBuilder()
        .add_dataset("survey", demo_survey())
        .add_input("region", "select_single", bound_variable="region", options=["All", "North", "South"], default="All")
        .add_input("city", "select_multiple", bound_variable="city", options=["Oslo", "Bergen", "Kristiansand", "Arendal"])
        .add_input("year", "slider", bound_variable="year", min=2021, max=2024, step=1, default=2021)
        .add_input("gender", "radio", bound_variable="gender", options=["All", "Female", "Male"], default="All")
        .add_input("details", "switch", is_virtual=True, default=False, label="Show details")
        .link(
            "region",
            "city",
            {
                "All": ["Oslo", "Bergen", "Kristiansand", "Arendal"],
                "North": ["Oslo", "Bergen"],
                "South": ["Kristiansand", "Arendal"],
            },
        )
        .with_defaults(dataset="survey", cross_tab_filter_vars=["region", "city", "year", "gender"])
    )
    return (
        base.add_chart("answers", "stackedbar", roles={"x": "region", "stack": "answer"}, aggregation="percent", title="Answers by region ({gender})", stack_order=["Agree", "Neutral", "Disagree"])
        .add_chart("trend", "timeline", roles={"time": "year", "y": "score", "group": "gender"}, aggregation="mean", title="Mean score since {year}")
        .add_chart("weighted", "bar", roles={"x": "city", "y": "score", "weight": "weight"}, aggregation="weighted", title="Weighted score by city")
        .add_chart("mix", "heatmap", roles={"x": "city", "y": "answer"}, aggregation="count", show_when="~ details == TRUE", title="Answer counts")
    )


@st.cache_resource
def load_bundle() -> Bundle:
    return demo_builder().compile()


# ---------- widgets ----------
def render_widget(spec: InputSpec, runtime: DashboardRuntime) -> Any:
    label = spec.label or spec.id.replace("_", " ").title()
    current = runtime.state.get(spec.id)
    options = list(runtime.bundle.graph.options_for(spec.id, runtime.state) or spec.options)
    if spec.kind == InputKind.SELECT_SINGLE:
        index = options.index(current) if current in options else 0
        return st.selectbox(label, options=options, index=index, key=spec.id)
    if spec.kind in (InputKind.SELECT_MULTIPLE, InputKind.CHECKBOX):
        return st.multiselect(label, options=options, default=[v for v in current or [] if v in options], key=spec.id)
    if spec.kind in (InputKind.RADIO, InputKind.BUTTON_GROUP):
        index = options.index(current) if current in options else 0
        return st.radio(label, options=options, index=index, key=spec.id, horizontal=True)
    if spec.kind == InputKind.SLIDER:
        return st.slider(label, min_value=int(spec.min), max_value=int(spec.max), value=int(current), step=int(spec.step or 1), key=spec.id)
    if spec.kind == InputKind.SWITCH:
        return st.toggle(label, value=bool(current), key=spec.id)
    if spec.kind == InputKind.NUMBER:
        return st.number_input(label, value=current, key=spec.id)
    return st.text_input(label, value=current or "", key=spec.id)


# ---------- UI setup ----------
st.set_page_config(page_title="Dashcore Preview", layout="wide")
st.title("Dashcore Preview")
st.caption("Cross-tab charts recomputed by the dashboard runtime on every input change.")

try:
    bundle = load_bundle()
except CompilationError as exc:
    st.error("Dashboard failed to compile.")
    for err in exc.errors:
        st.write(f"- {err}")
    st.stop()

runtime = DashboardRuntime(bundle)
runtime.initial_render()

with st.sidebar:
    st.header("Filters")
    values: Dict[str, Any] = {}
    for spec in bundle.registry:
        values[spec.id] = render_widget(spec, runtime)
        # Linked children read their options from the state including this value.
        runtime.set_input(spec.id, values[spec.id])
    if st.button("Reset"):
        for spec in bundle.registry:
            st.session_state.pop(spec.id, None)
        st.rerun()

visible = [cid for cid in bundle.chart_ids if runtime.is_visible(cid)]
cols = st.columns(2)
for i, chart_id in enumerate(visible):
    data = runtime.series[chart_id]
    with cols[i % 2]:
        if data.is_empty:
            st.subheader(data.title or chart_id)
            st.info("No rows match the current filters.")
            continue
        st.altair_chart(build_chart(data, bundle.charts[chart_id]), use_container_width=True)

with st.expander("Bundle payload"):
    st.json(bundle.payload()["pipelines"])
