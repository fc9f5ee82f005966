from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd

from dashcore.pipelines import AggregationMode, ChartBinding, ChartType, SeriesData

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def series_frame(data: SeriesData) -> pd.DataFrame:
    """Long-form frame (category, series, value) for plotting."""
    rows: List[Dict[str, Any]] = []
    for s in data.series:
        for cat, value in zip(data.categories, s.data):
            rows.append({"category": cat, "series": s.name, "value": value})
    return pd.DataFrame(rows, columns=["category", "series", "value"])


def _value_axis(binding: ChartBinding) -> alt.Axis:
    if binding.aggregation == AggregationMode.PERCENT:
        return alt.Axis(title="Percent", format=".1f")
    return alt.Axis(title=binding.styling.get("y_title") or binding.aggregation.value.title())


def build_chart(data: SeriesData, binding: ChartBinding) -> alt.Chart:
    df = series_frame(data)
    cat_sort = list(data.categories)
    series_sort = [s.name for s in data.series]
    height = int(binding.styling.get("height", 260))
    title = data.title or ""
    tooltip = ["category", "series", alt.Tooltip("value:Q", format=",.1f")]
    color: Optional[str] = binding.styling.get("color")

    chart_type = binding.chart_type
    if chart_type == ChartType.PIE:
        chart = (
            alt.Chart(df)
            .mark_arc()
            .encode(
                theta=alt.Theta("value:Q"),
                color=alt.Color("category:N", sort=cat_sort, title=binding.roles.get("x")),
                tooltip=tooltip,
            )
        )
    elif chart_type == ChartType.HEATMAP:
        chart = (
            alt.Chart(df)
            .mark_rect()
            .encode(
                x=alt.X("category:N", sort=cat_sort, title=binding.roles.get("x")),
                y=alt.Y("series:N", sort=series_sort, title=binding.roles.get("y")),
                color=alt.Color("value:Q", scale=alt.Scale(scheme=binding.styling.get("scheme", "blues"))),
                tooltip=tooltip,
            )
        )
    elif chart_type == ChartType.TIMELINE:
        chart = (
            alt.Chart(df)
            .mark_line(point=True)
            .encode(
                x=alt.X("category:O", sort=cat_sort, title=binding.roles.get("time")),
                y=alt.Y("value:Q", axis=_value_axis(binding)),
                color=alt.Color("series:N", sort=series_sort, title=binding.roles.get("group")),
                tooltip=tooltip,
            )
        )
    elif chart_type == ChartType.STACKED_BAR:
        chart = (
            alt.Chart(df)
            .mark_bar()
            .encode(
                x=alt.X("category:N", sort=cat_sort, title=binding.roles.get("x")),
                y=alt.Y("value:Q", stack="zero", axis=_value_axis(binding)),
                color=alt.Color("series:N", sort=series_sort, title=binding.roles.get("stack")),
                order=alt.Order("series_rank:Q"),
                tooltip=tooltip,
            )
            .transform_calculate(series_rank=f"indexof({series_sort!r}, datum.series)")
        )
    else:
        encoding: Dict[str, Any] = {
            "x": alt.X("category:N", sort=cat_sort, title=binding.roles.get("x")),
            "y": alt.Y("value:Q", axis=_value_axis(binding)),
            "tooltip": tooltip,
        }
        if len(series_sort) > 1:
            encoding["color"] = alt.Color("series:N", sort=series_sort, title=binding.roles.get("group"))
            encoding["xOffset"] = alt.XOffset("series:N", sort=series_sort)
        mark = alt.Chart(df).mark_bar(color=color) if color and len(series_sort) <= 1 else alt.Chart(df).mark_bar()
        chart = mark.encode(**encoding)

    return chart.properties(title=title, height=height)


def series_to_vega(data: SeriesData, binding: ChartBinding) -> Dict[str, Any]:
    """Render contract adapter: SeriesData -> Vega-Lite spec dict."""
    return to_vega_spec(build_chart(data, binding))
