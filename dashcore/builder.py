from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

from dashcore.bundle import Bundle, DashboardSpec, compile_dashboard
from dashcore.config import CompilerOptions
from dashcore.dependencies import DependencyEdge
from dashcore.errors import SpecError
from dashcore.inputs import InputSpec, make_input
from dashcore.pipelines import ChartBinding, make_binding


# Mapping-valued chart fields merge key by key across layers instead of being replaced.
_MERGED_FIELDS = ("roles", "title_map", "styling")


def _layer(base: Mapping[str, Any], top: Mapping[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in top.items():
        if key in _MERGED_FIELDS and isinstance(out.get(key), Mapping) and isinstance(value, Mapping):
            out[key] = {**out[key], **value}
        else:
            out[key] = value
    return out


@dataclass(frozen=True)
class DashboardBuilder:
    """Immutable, chainable dashboard declaration.

    Every method returns a new builder.  ``with_defaults`` layers chart
    settings over the current defaults; ``add_chart`` arguments win over
    every layer.

        base = DashboardBuilder().with_defaults(dataset="survey", aggregation="percent")
        wave = base.with_defaults(cross_tab_filter_vars=["wave"])
        spec = wave.add_chart("q1", "bar", roles={"x": "q1"}).build()
    """

    defaults: Mapping[str, Any] = field(default_factory=dict)
    inputs: Tuple[InputSpec, ...] = ()
    charts: Tuple[ChartBinding, ...] = ()
    edges: Tuple[DependencyEdge, ...] = ()
    show_when: Mapping[str, str] = field(default_factory=dict)
    datasets: Mapping[str, Any] = field(default_factory=dict)

    def with_defaults(self, **defaults: Any) -> "DashboardBuilder":
        return replace(self, defaults=_layer(self.defaults, defaults))

    def add_dataset(self, name: str, data: Any) -> "DashboardBuilder":
        return replace(self, datasets={**self.datasets, name: data})

    def add_input(self, input_id: str, kind: str, **kwargs: Any) -> "DashboardBuilder":
        return replace(self, inputs=self.inputs + (make_input(input_id, kind, **kwargs),))

    def add_chart(self, chart_id: str, chart_type: Optional[str] = None, **kwargs: Any) -> "DashboardBuilder":
        params = _layer(self.defaults, kwargs)
        chart_type = chart_type or params.pop("chart_type", None)
        params.pop("chart_type", None)
        dataset = params.pop("dataset", None)
        if chart_type is None:
            raise SpecError(f"Chart '{chart_id}' has no chart type and no default one")
        if dataset is None:
            raise SpecError(f"Chart '{chart_id}' has no dataset and no default one")
        binding = make_binding(chart_id, chart_type, dataset, **params)
        return replace(self, charts=self.charts + (binding,))

    def link(self, parent: str, child: str, options_by_parent: Mapping[Any, Any]) -> "DashboardBuilder":
        edge = DependencyEdge(parent, child, {k: tuple(v) for k, v in options_by_parent.items()})
        return replace(self, edges=self.edges + (edge,))

    def when(self, chart_id: str, formula: str) -> "DashboardBuilder":
        return replace(self, show_when={**self.show_when, chart_id: formula})

    def __add__(self, other: "DashboardBuilder") -> "DashboardBuilder":
        if not isinstance(other, DashboardBuilder):
            return NotImplemented
        return DashboardBuilder(
            defaults=_layer(self.defaults, other.defaults),
            inputs=self.inputs + other.inputs,
            charts=self.charts + other.charts,
            edges=self.edges + other.edges,
            show_when={**self.show_when, **other.show_when},
            datasets={**self.datasets, **other.datasets},
        )

    def build(self) -> DashboardSpec:
        return DashboardSpec(
            inputs=self.inputs,
            charts=self.charts,
            edges=self.edges,
            show_when=dict(self.show_when),
            datasets=dict(self.datasets),
        )

    def compile(self, options: Optional[CompilerOptions] = None) -> Bundle:
        return compile_dashboard(self.build(), options)
