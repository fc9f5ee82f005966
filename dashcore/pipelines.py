"""Chart data pipelines: filter -> group -> aggregate -> shape.

Each chart type maps its roles onto a category key, an optional series key and
an optional value column.  The mapping lives in ``SHAPES``; ``compile_pipeline``
validates a binding against its dataset schema and returns a ``Pipeline`` that
turns the live FilterState plus an interned dataset into ``SeriesData``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from dashcore.conditions import as_number, evaluate, literal_key
from dashcore.config import CompilerOptions
from dashcore.datasets import DatasetAsset, to_json_value
from dashcore.errors import DashboardError, SchemaError, SpecError, TypeMismatchError
from dashcore.inputs import CHOICE_KINDS, InputKind, InputRegistry, InputSpec
from dashcore.templating import placeholders, render_template


logger = logging.getLogger(__name__)


class ChartType(str, Enum):
    BAR = "bar"
    STACKED_BAR = "stackedbar"
    TIMELINE = "timeline"
    PIE = "pie"
    HEATMAP = "heatmap"


class AggregationMode(str, Enum):
    COUNT = "count"
    PERCENT = "percent"
    MEAN = "mean"
    SUM = "sum"
    WEIGHTED = "weighted"
    NONE = "none"


VALUE_MODES = frozenset({AggregationMode.MEAN, AggregationMode.SUM, AggregationMode.WEIGHTED, AggregationMode.NONE})
# Modes whose missing groups are filled with 0 rather than null.
ZERO_FILL_MODES = frozenset({AggregationMode.COUNT, AggregationMode.PERCENT, AggregationMode.SUM, AggregationMode.NONE})


@dataclass(frozen=True)
class ChartBinding:
    chart_id: str
    chart_type: ChartType
    dataset: str
    roles: Mapping[str, str] = field(default_factory=dict)
    cross_tab_filter_vars: Tuple[str, ...] = ()
    aggregation: AggregationMode = AggregationMode.COUNT
    complete_groups: bool = True
    show_when: Optional[str] = None
    title: Optional[str] = None
    title_map: Mapping[str, Any] = field(default_factory=dict)
    static_filter: Optional[str] = None
    x_order: Tuple[Any, ...] = ()
    stack_order: Tuple[Any, ...] = ()
    styling: Mapping[str, Any] = field(default_factory=dict)

    @property
    def weight_var(self) -> Optional[str]:
        return self.roles.get("weight")


def make_binding(chart_id: str, chart_type: str | ChartType, dataset: str, **kwargs: Any) -> ChartBinding:
    """Build a ChartBinding from loosely-typed arguments (strings for enums, lists for tuples)."""
    try:
        chart_type = ChartType(chart_type)
    except ValueError as exc:
        allowed = ", ".join(t.value for t in ChartType)
        raise SpecError(f"Unknown chart type {chart_type!r} for '{chart_id}'; expected one of: {allowed}") from exc
    if "aggregation" in kwargs:
        try:
            kwargs["aggregation"] = AggregationMode(kwargs["aggregation"] or AggregationMode.COUNT)
        except ValueError as exc:
            allowed = ", ".join(m.value for m in AggregationMode)
            raise SpecError(f"Unknown aggregation {kwargs['aggregation']!r} for '{chart_id}'; expected one of: {allowed}") from exc
    for key in ("cross_tab_filter_vars", "x_order", "stack_order"):
        if key in kwargs:
            kwargs[key] = tuple(kwargs[key] or ())
    for key in ("roles", "title_map", "styling"):
        if key in kwargs:
            kwargs[key] = dict(kwargs[key] or {})
    roles = kwargs.get("roles", {})
    kwargs["roles"] = {k: v for k, v in roles.items() if v}
    return ChartBinding(chart_id=chart_id, chart_type=chart_type, dataset=dataset, **kwargs)


# ---------- chart shapes ----------

@dataclass(frozen=True)
class Shape:
    category: str
    series: Optional[str] = None
    value: Optional[str] = None
    sort_categories: bool = False


ShapeBuilder = Callable[[ChartBinding], Shape]
SHAPES: Dict[ChartType, ShapeBuilder] = {}
REQUIRED_ROLES: Dict[ChartType, Tuple[str, ...]] = {}


def register_shape(chart_type: ChartType, *required: str) -> Callable[[ShapeBuilder], ShapeBuilder]:
    def deco(fn: ShapeBuilder) -> ShapeBuilder:
        SHAPES[chart_type] = fn
        REQUIRED_ROLES[chart_type] = tuple(required)
        return fn

    return deco


@register_shape(ChartType.BAR, "x")
def _bar_shape(binding: ChartBinding) -> Shape:
    return Shape(category=binding.roles["x"], series=binding.roles.get("group"), value=binding.roles.get("y"))


@register_shape(ChartType.STACKED_BAR, "x", "stack")
def _stacked_bar_shape(binding: ChartBinding) -> Shape:
    return Shape(category=binding.roles["x"], series=binding.roles["stack"], value=binding.roles.get("y"))


@register_shape(ChartType.TIMELINE, "time")
def _timeline_shape(binding: ChartBinding) -> Shape:
    return Shape(
        category=binding.roles["time"],
        series=binding.roles.get("group"),
        value=binding.roles.get("y"),
        sort_categories=True,
    )


@register_shape(ChartType.PIE, "x")
def _pie_shape(binding: ChartBinding) -> Shape:
    return Shape(category=binding.roles["x"], value=binding.roles.get("y"))


@register_shape(ChartType.HEATMAP, "x", "y")
def _heatmap_shape(binding: ChartBinding) -> Shape:
    return Shape(category=binding.roles["x"], series=binding.roles["y"], value=binding.roles.get("value"))


# ---------- output ----------

@dataclass
class Series:
    name: str
    data: List[Optional[float]]

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "data": [to_json_value(v) for v in self.data]}


@dataclass
class SeriesData:
    chart_id: str
    categories: List[Any] = field(default_factory=list)
    series: List[Series] = field(default_factory=list)
    title: Optional[str] = None
    rows: Optional[List[Dict[str, Any]]] = None

    @property
    def is_empty(self) -> bool:
        return not self.series or not self.categories

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "chartId": self.chart_id,
            "title": self.title,
            "categories": [to_json_value(c) for c in self.categories],
            "series": [s.as_dict() for s in self.series],
        }
        if self.rows is not None:
            out["rows"] = self.rows
        return out

    def to_json(self) -> str:
        return json.dumps(self.as_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def as_mapping(self) -> Dict[Any, Any]:
        """``{category: value}`` for a single series, else ``{series: {category: value}}``."""
        if len(self.series) == 1:
            return dict(zip(self.categories, self.series[0].data))
        return {s.name: dict(zip(self.categories, s.data)) for s in self.series}


# ---------- live filters ----------

@dataclass(frozen=True)
class FilterRule:
    variable: str
    spec: InputSpec

    def mask(self, frame: pd.DataFrame, value: Any, options: CompilerOptions) -> Optional[pd.Series]:
        """Boolean row mask for the input's current value, or None when it does not filter."""
        col = frame[self.variable]
        kind = self.spec.kind
        if kind in CHOICE_KINDS:
            selected = value if isinstance(value, (list, tuple)) else ([] if value is None else [value])
            if not selected or any(options.is_all_label(v) for v in selected):
                return None
            keys = {literal_key(v) for v in selected}
            return col.map(lambda v: literal_key(v) in keys).astype(bool)
        if kind == InputKind.SLIDER:
            if value is None:
                return None
            if self.spec.labels:
                pos = value[0] if isinstance(value, list) else value
                allowed = {str(v) for v in self.spec.labels[max(int(round(pos)) - 1, 0):]}
                return col.astype(str).isin(allowed)
            nums = pd.to_numeric(col, errors="coerce")
            if isinstance(value, list):
                return (nums >= value[0]) & (nums <= value[1])
            return nums >= value
        if kind == InputKind.TEXT:
            query = (value or "").strip().lower()
            if not query:
                return None
            return col.astype(str).str.lower().str.contains(query, regex=False, na=False)
        if kind == InputKind.NUMBER:
            if value is None:
                return None
            return pd.to_numeric(col, errors="coerce") == float(value)
        if kind == InputKind.SWITCH:
            if not value:
                return None
            return col.map(lambda v: literal_key(v) in {("bool", True), ("num", 1.0)}).astype(bool)
        return None

    def as_dict(self) -> Dict[str, Any]:
        return {"variable": self.variable, "input": self.spec.id, "kind": self.spec.kind.value}


@dataclass(frozen=True)
class SeriesToggle:
    input_id: str
    series_name: str
    override: bool

    def as_dict(self) -> Dict[str, Any]:
        return {"input": self.input_id, "series": self.series_name, "override": self.override}


@dataclass(frozen=True)
class Domain:
    categories: Tuple[Any, ...]
    series: Tuple[Any, ...]


def _ordered_unique(values: Sequence[Any], preferred: Sequence[Any], sort: bool) -> Tuple[Any, ...]:
    seen = []
    for v in values:
        if v not in seen:
            seen.append(v)
    if sort:
        if all(as_number(v) is not None for v in seen):
            seen.sort(key=lambda v: float(v))
        else:
            seen.sort(key=str)
    if not preferred:
        return tuple(seen)
    present = {str(v): v for v in seen}
    head = [present[str(p)] for p in preferred if str(p) in present]
    tail = [v for v in seen if str(v) not in {str(p) for p in preferred}]
    return tuple(head + tail)


class Pipeline:
    """Compiled per-chart data function: ``pipeline(state, asset) -> SeriesData``."""

    def __init__(
        self,
        binding: ChartBinding,
        shape: Shape,
        schema: Mapping[str, str],
        filters: Sequence[FilterRule],
        toggles: Sequence[SeriesToggle],
        registry: Optional[InputRegistry] = None,
        options: Optional[CompilerOptions] = None,
    ):
        self.binding = binding
        self.shape = shape
        self.schema = dict(schema)
        self.filters = tuple(filters)
        self.toggles = tuple(toggles)
        self.registry = registry
        self.options = options or CompilerOptions()
        self._domains: Dict[str, Domain] = {}

    @property
    def chart_id(self) -> str:
        return self.binding.chart_id

    @property
    def mode(self) -> AggregationMode:
        return self.binding.aggregation

    @property
    def inputs(self) -> List[str]:
        """Input ids whose value can change this chart's output."""
        ids = [f.spec.id for f in self.filters] + [t.input_id for t in self.toggles]
        if self.registry is not None:
            for name in placeholders(self.binding.title) + list(self.binding.title_map):
                resolved = self.registry.resolve(name)
                if resolved is not None:
                    ids.append(resolved)
            if self.binding.title_map:
                ids.extend(self.registry.ids)
        out: List[str] = []
        for i in ids:
            if i not in out:
                out.append(i)
        return out

    def domain(self, asset: DatasetAsset) -> Domain:
        cached = self._domains.get(asset.asset_id)
        if cached is not None:
            return cached
        frame = asset.frame
        shape = self.shape
        cats = frame[shape.category].dropna().tolist()
        series = frame[shape.series].dropna().tolist() if shape.series else []
        domain = Domain(
            categories=_ordered_unique(cats, self.binding.x_order, shape.sort_categories),
            series=_ordered_unique(series, self.binding.stack_order, False),
        )
        self._domains[asset.asset_id] = domain
        return domain

    # -- step 1: filter
    def filter_rows(self, state: Mapping[str, Any], frame: pd.DataFrame) -> pd.DataFrame:
        mask = pd.Series(True, index=frame.index)
        for rule in self.filters:
            m = rule.mask(frame, state.get(rule.spec.id), self.options)
            if m is not None:
                mask &= m.fillna(False).astype(bool)
        if self.shape.series and self.toggles:
            names = frame[self.shape.series].astype(str)
            exempt = [t.series_name for t in self.toggles if t.override and state.get(t.input_id)]
            hidden = [t.series_name for t in self.toggles if not state.get(t.input_id)]
            if exempt:
                mask |= names.isin(exempt)
            if hidden:
                mask &= ~names.isin(hidden)
        return frame[mask]

    # -- steps 2+3: group and aggregate
    def aggregate(self, rows: pd.DataFrame) -> pd.Series:
        shape = self.shape
        keys = [shape.category] + ([shape.series] if shape.series else [])
        rows = rows.dropna(subset=keys)
        grouped = rows.groupby(keys, sort=False)
        mode = self.mode
        weight = self.binding.weight_var
        if mode in (AggregationMode.COUNT, AggregationMode.PERCENT):
            if weight:
                out = grouped[weight].sum()
            elif shape.value and self.schema.get(shape.value) == "numeric":
                # Pre-counted rows: the value column carries the counts.
                out = grouped[shape.value].sum()
            else:
                out = grouped.size()
            out = out.astype(float)
            if mode == AggregationMode.PERCENT:
                if shape.series:
                    totals = out.groupby(level=0, sort=False).transform("sum")
                else:
                    totals = pd.Series(out.sum(), index=out.index)
                out = (out / totals.replace(0, np.nan) * self.options.percent_scale).fillna(0.0)
            return out
        if mode == AggregationMode.SUM:
            return grouped[shape.value].sum().astype(float)
        if mode == AggregationMode.MEAN:
            return grouped[shape.value].mean().astype(float)
        if mode == AggregationMode.WEIGHTED:
            tmp = rows.assign(_wx=rows[shape.value] * rows[weight], _w=rows[weight])
            sums = tmp.groupby(keys, sort=False)[["_wx", "_w"]].sum()
            return (sums["_wx"] / sums["_w"].replace(0, np.nan)).astype(float)
        # NONE: values pass through untouched; the first row of each key wins.
        return grouped[shape.value].first()

    # -- step 4: shape
    def shape_output(self, values: pd.Series, domain: Domain, state: Mapping[str, Any], rows: pd.DataFrame) -> SeriesData:
        shape = self.shape
        lookup: Dict[Tuple[Any, Any], Any] = {}
        for key, val in values.items():
            if shape.series:
                cat, ser = key
            else:
                cat, ser = (key[0] if isinstance(key, tuple) else key), None
            lookup[(literal_key(cat), None if ser is None else literal_key(ser))] = val

        observed_cats = {k[0] for k in lookup}
        observed_series = {k[1] for k in lookup}
        if self.binding.complete_groups:
            categories = list(domain.categories)
            series_names = list(domain.series) if shape.series else [None]
        else:
            categories = [c for c in domain.categories if literal_key(c) in observed_cats]
            series_names = [s for s in domain.series if literal_key(s) in observed_series] if shape.series else [None]
        if shape.series:
            hidden = {t.series_name for t in self.toggles if not state.get(t.input_id)}
            series_names = [s for s in series_names if str(s) not in hidden]

        fill = 0.0 if self.mode in ZERO_FILL_MODES and self.binding.complete_groups else None
        out_series: List[Series] = []
        for ser in series_names:
            skey = None if ser is None else literal_key(ser)
            data = []
            for cat in categories:
                val = lookup.get((literal_key(cat), skey), fill)
                data.append(_clean_number(val))
            name = self._series_name() if ser is None else str(ser)
            out_series.append(Series(name=name, data=data))

        return SeriesData(
            chart_id=self.chart_id,
            categories=[to_json_value(c) for c in categories],
            series=out_series,
            title=self.render_title(state, rows),
            rows=[{k: to_json_value(v) for k, v in r.items()} for r in rows.to_dict(orient="records")]
            if self.mode == AggregationMode.NONE
            else None,
        )

    def _series_name(self) -> str:
        label = self.binding.styling.get("series_name")
        if label:
            return str(label)
        if self.mode == AggregationMode.PERCENT:
            return "percent"
        if self.mode == AggregationMode.COUNT and not self.binding.weight_var:
            return "count"
        return self.shape.value or self.binding.weight_var or "value"

    def render_title(self, state: Mapping[str, Any], rows: pd.DataFrame) -> Optional[str]:
        if not self.binding.title:
            return self.binding.title
        group_keys: Dict[str, Any] = {}
        for col in (self.shape.category, self.shape.series):
            if col and not rows.empty:
                uniq = rows[col].dropna().unique()
                if len(uniq) == 1:
                    group_keys[col] = to_json_value(uniq[0])
        return render_template(
            self.binding.title,
            state=state,
            group_keys=group_keys,
            title_map=self.binding.title_map,
            registry=self.registry,
        )

    def __call__(self, state: Mapping[str, Any], asset: DatasetAsset) -> SeriesData:
        domain = self.domain(asset)
        rows = self.filter_rows(state, asset.frame)
        if rows.empty:
            logger.debug("Chart %s: no rows after filtering", self.chart_id)
            return SeriesData(chart_id=self.chart_id, title=self.render_title(state, rows))
        values = self.aggregate(rows)
        return self.shape_output(values, domain, state, rows)

    def describe(self, asset: Optional[DatasetAsset] = None) -> Dict[str, Any]:
        """Declarative definition of this pipeline, as shipped in the bundle."""
        b = self.binding
        out: Dict[str, Any] = {
            "chartId": b.chart_id,
            "chartType": b.chart_type.value,
            "categoryVar": self.shape.category,
            "seriesVar": self.shape.series,
            "valueVar": self.shape.value,
            "weightVar": b.weight_var,
            "aggregation": b.aggregation.value,
            "completeGroups": b.complete_groups,
            "filterVars": list(b.cross_tab_filter_vars),
            "filters": [f.as_dict() for f in self.filters],
            "toggles": [t.as_dict() for t in self.toggles],
            "titleTemplate": b.title,
            "titleMap": {k: v if isinstance(v, str) else {str(kk): vv for kk, vv in v.items()} for k, v in b.title_map.items()},
        }
        if asset is not None:
            domain = self.domain(asset)
            out["assetId"] = asset.asset_id
            out["domain"] = {
                "categories": [to_json_value(c) for c in domain.categories],
                "series": [to_json_value(s) for s in domain.series],
            }
        return out


def _clean_number(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if np.isnan(out) or np.isinf(out):
        return None
    return out


def check_binding(
    binding: ChartBinding,
    schema: Mapping[str, str],
    registry: Optional[InputRegistry] = None,
) -> List[DashboardError]:
    """Every problem with a binding against its dataset schema and the declared inputs."""
    errors: List[DashboardError] = []
    cid = binding.chart_id
    builder = SHAPES.get(binding.chart_type)
    if builder is None:
        return [SpecError(f"Chart '{cid}': no pipeline registered for chart type '{binding.chart_type}'")]

    missing_roles = [r for r in REQUIRED_ROLES[binding.chart_type] if not binding.roles.get(r)]
    if missing_roles:
        errors.append(SpecError(f"Chart '{cid}' ({binding.chart_type.value}) is missing role(s): {', '.join(missing_roles)}"))
        return errors

    for role, col in binding.roles.items():
        if col not in schema:
            errors.append(SchemaError(f"Chart '{cid}': {role} column '{col}' is not in dataset '{binding.dataset}'", chart_id=cid, column=col))
    for col in binding.cross_tab_filter_vars:
        if col not in schema:
            errors.append(SchemaError(f"Chart '{cid}': filter column '{col}' is not in dataset '{binding.dataset}'", chart_id=cid, column=col))
    if errors:
        return errors

    shape = builder(binding)
    mode = binding.aggregation
    if mode in VALUE_MODES and not shape.value:
        role = "value" if binding.chart_type == ChartType.HEATMAP else "y"
        errors.append(SpecError(f"Chart '{cid}': aggregation '{mode.value}' needs a '{role}' column"))
    if mode == AggregationMode.WEIGHTED and not binding.weight_var:
        errors.append(SpecError(f"Chart '{cid}': aggregation 'weighted' needs a 'weight' column"))
    numeric_needed = []
    if mode in (AggregationMode.MEAN, AggregationMode.SUM, AggregationMode.WEIGHTED) and shape.value:
        numeric_needed.append(shape.value)
    if binding.weight_var:
        numeric_needed.append(binding.weight_var)
    for col in numeric_needed:
        if schema.get(col) not in ("numeric", "boolean"):
            errors.append(
                TypeMismatchError(f"Chart '{cid}': column '{col}' must be numeric for '{mode.value}' (found {schema.get(col)})")
            )

    if registry is not None:
        for col in binding.cross_tab_filter_vars:
            virtual = registry.get(col)
            if virtual is not None and virtual.is_virtual:
                errors.append(
                    SpecError(
                        f"Chart '{cid}': filter column '{col}' collides with virtual input '{col}'; "
                        "bind the input to the column or rename it"
                    )
                )
            for spec in registry.bound_to(col):
                if spec.kind in (InputKind.SLIDER, InputKind.NUMBER) and not spec.labels and schema.get(col) != "numeric":
                    errors.append(
                        TypeMismatchError(
                            f"Chart '{cid}': {spec.kind.value} input '{spec.id}' filters non-numeric column '{col}'"
                        )
                    )
    return errors


def compile_pipeline(
    binding: ChartBinding,
    schema: Mapping[str, str],
    registry: Optional[InputRegistry] = None,
    options: Optional[CompilerOptions] = None,
) -> Pipeline:
    errors = check_binding(binding, schema, registry)
    if errors:
        raise errors[0]
    shape = SHAPES[binding.chart_type](binding)
    filters: List[FilterRule] = []
    toggles: List[SeriesToggle] = []
    if registry is not None:
        for col in binding.cross_tab_filter_vars:
            for spec in registry.bound_to(col):
                if spec.toggle_series is None:
                    filters.append(FilterRule(variable=col, spec=spec))
        if shape.series:
            for spec in registry:
                if spec.kind == InputKind.SWITCH and spec.toggle_series is not None:
                    if spec.bound_variable is None or spec.bound_variable in binding.cross_tab_filter_vars or spec.bound_variable == shape.series:
                        toggles.append(SeriesToggle(spec.id, str(spec.toggle_series), spec.override))
    return Pipeline(binding, shape, schema, filters, toggles, registry=registry, options=options)


def apply_static_filter(frame: pd.DataFrame, expr: Any) -> pd.DataFrame:
    """Rows of ``frame`` satisfying a condition over its data columns (compile time only)."""
    if frame.empty:
        return frame
    records = frame.to_dict(orient="records")
    keep = [evaluate(expr, {k: to_json_value(v) for k, v in row.items()}) for row in records]
    return frame[pd.Series(keep, index=frame.index)].reset_index(drop=True)
