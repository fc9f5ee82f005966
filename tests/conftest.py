import pandas as pd
import pytest

from dashcore.builder import DashboardBuilder
from dashcore.datasets import DatasetStore
from dashcore.inputs import InputRegistry, make_input


@pytest.fixture
def region_year_frame():
    """Two rows: region A in 2020 and region B in 2021."""
    return pd.DataFrame({"region": ["A", "B"], "year": [2020, 2021]})


@pytest.fixture
def survey_frame():
    """Small hand-written survey extract; every region/gender cell is populated."""
    return pd.DataFrame(
        {
            "region": ["North", "North", "North", "South", "South", "South", "East", "East"],
            "city": ["Oslo", "Bergen", "Oslo", "Arendal", "Kristiansand", "Arendal", "Hamar", "Hamar"],
            "gender": ["Female", "Male", "Male", "Female", "Male", "Female", "Female", "Male"],
            "year": [2021, 2022, 2023, 2021, 2022, 2023, 2022, 2023],
            "answer": ["Agree", "Agree", "Disagree", "Neutral", "Agree", "Disagree", "Agree", "Neutral"],
            "score": [7.0, 9.0, 3.0, 5.0, 8.0, 2.0, 6.0, 4.0],
            "weight": [1.0, 2.0, 1.0, 1.0, 0.5, 1.5, 1.0, 1.0],
        }
    )


@pytest.fixture
def survey_registry():
    return InputRegistry.from_specs(
        [
            make_input("region", "select_single", bound_variable="region", options=["All", "North", "South", "East"], default="All"),
            make_input(
                "city",
                "select_multiple",
                bound_variable="city",
                options=["Oslo", "Bergen", "Arendal", "Kristiansand", "Hamar"],
            ),
            make_input("year", "slider", bound_variable="year", min=2021, max=2023, step=1, default=2021),
            make_input("gender", "radio", bound_variable="gender", options=["All", "Female", "Male"], default="All"),
            make_input("details", "switch", is_virtual=True, default=False),
        ]
    )


@pytest.fixture
def store():
    return DatasetStore()


@pytest.fixture
def survey_builder(survey_frame):
    """Builder for a four-chart survey dashboard with a region -> city link."""
    return (
        DashboardBuilder()
        .add_dataset("survey", survey_frame)
        .add_input("region", "select_single", bound_variable="region", options=["All", "North", "South", "East"], default="All")
        .add_input("city", "select_multiple", bound_variable="city", options=["Oslo", "Bergen", "Arendal", "Kristiansand", "Hamar"])
        .add_input("year", "slider", bound_variable="year", min=2021, max=2023, step=1, default=2021)
        .add_input("gender", "radio", bound_variable="gender", options=["All", "Female", "Male"], default="All")
        .add_input("details", "switch", is_virtual=True, default=False)
        .link(
            "region",
            "city",
            {
                "All": ["Oslo", "Bergen", "Arendal", "Kristiansand", "Hamar"],
                "North": ["Oslo", "Bergen"],
                "South": ["Arendal", "Kristiansand"],
                "East": ["Hamar"],
            },
        )
        .with_defaults(dataset="survey")
        .add_chart(
            "answers",
            "stackedbar",
            roles={"x": "region", "stack": "answer"},
            aggregation="percent",
            cross_tab_filter_vars=["region", "city", "year"],
            title="Answers ({gender})",
        )
        .add_chart("by_gender", "bar", roles={"x": "gender"}, cross_tab_filter_vars=["gender"])
        .add_chart(
            "trend",
            "timeline",
            roles={"time": "year", "y": "score"},
            aggregation="mean",
            cross_tab_filter_vars=["region"],
        )
        .add_chart(
            "detail",
            "heatmap",
            roles={"x": "city", "y": "answer"},
            cross_tab_filter_vars=["region", "city"],
            show_when="~ details == TRUE",
        )
    )


@pytest.fixture
def survey_bundle(survey_builder):
    return survey_builder.compile()
