from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CompilerOptionsModel(BaseModel):
    debounce_ms: int = 250
    all_labels: Optional[List[str]] = None
    debounced_kinds: Optional[List[str]] = None
    max_suggestions: int = 3
    max_suggestion_distance: int = 3
    asset_id_length: int = 12
    percent_scale: float = 100.0


class InputModel(BaseModel):
    id: str
    kind: str
    bound_variable: Optional[str] = None
    options: List[Any] = Field(default_factory=list)
    default: Any = None
    is_virtual: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    labels: List[str] = Field(default_factory=list)
    toggle_series: Optional[str] = None
    override: bool = False
    label: Optional[str] = None


class ChartModel(BaseModel):
    chart_id: str
    chart_type: str
    dataset: str
    roles: Dict[str, str] = Field(default_factory=dict)
    cross_tab_filter_vars: List[str] = Field(default_factory=list)
    aggregation: str = "count"
    complete_groups: bool = True
    show_when: Optional[str] = None
    title: Optional[str] = None
    title_map: Dict[str, Any] = Field(default_factory=dict)
    static_filter: Optional[str] = None
    x_order: List[Any] = Field(default_factory=list)
    stack_order: List[Any] = Field(default_factory=list)
    styling: Dict[str, Any] = Field(default_factory=dict)


class EdgeModel(BaseModel):
    parent: str
    child: str
    options_by_parent: Dict[str, List[Any]] = Field(default_factory=dict)


class DashboardSpecModel(BaseModel):
    inputs: List[InputModel] = Field(default_factory=list)
    charts: List[ChartModel] = Field(default_factory=list)
    edges: List[EdgeModel] = Field(default_factory=list)
    show_when: Dict[str, str] = Field(default_factory=dict)
    # dataset name -> list of row records
    datasets: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    options: CompilerOptionsModel = Field(default_factory=CompilerOptionsModel)


class RecomputeRequest(BaseModel):
    spec: DashboardSpecModel
    state: Dict[str, Any] = Field(default_factory=dict)
    include_vega: bool = True


class MetaKindsResponse(BaseModel):
    input_kinds: List[str]
    chart_types: List[str]
    aggregations: List[str]
