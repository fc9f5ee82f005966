from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from dashcore.conditions import Predicate, check_condition
from dashcore.config import CompilerOptions
from dashcore.datasets import DatasetAsset, DatasetStore, as_frame, infer_schema
from dashcore.dependencies import DependencyEdge, DependencyGraph, check_edges, topological_order
from dashcore.errors import (
    CompilationError,
    CyclicDependencyError,
    DashboardError,
    ParseError,
    SchemaError,
    SpecError,
    UnknownVariableError,
    suggest_names,
)
from dashcore.formula import parse_formula, variables
from dashcore.inputs import InputRegistry, InputSpec
from dashcore.pipelines import ChartBinding, Pipeline, apply_static_filter, check_binding, compile_pipeline
from dashcore.templating import check_template, placeholders


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardSpec:
    """Everything an author declares: inputs, charts, links, gating rules and raw datasets.

    ``show_when`` maps chart ids to formulas and overrides a chart's own
    ``show_when`` field.
    """

    inputs: Sequence[InputSpec] = ()
    charts: Sequence[ChartBinding] = ()
    edges: Sequence[DependencyEdge] = ()
    show_when: Mapping[str, str] = field(default_factory=dict)
    datasets: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class Bundle:
    registry: InputRegistry
    graph: DependencyGraph
    charts: Dict[str, ChartBinding]
    predicates: Dict[str, Predicate]
    pipelines: Dict[str, Pipeline]
    store: DatasetStore
    chart_assets: Dict[str, str]
    options: CompilerOptions = field(default_factory=CompilerOptions)

    @property
    def chart_ids(self) -> List[str]:
        return list(self.charts)

    def asset_for(self, chart_id: str) -> DatasetAsset:
        return self.store.get(self.chart_assets[chart_id])

    def payload(self) -> Dict[str, Any]:
        return {
            "datasets": self.store.payload(),
            "dependencies": self.graph.as_dict(),
            "predicates": {cid: p.as_dict() for cid, p in self.predicates.items()},
            "pipelines": {cid: p.describe(self.asset_for(cid)) for cid, p in self.pipelines.items()},
            "templates": {
                cid: {"template": b.title, "placeholders": placeholders(b.title)}
                for cid, b in self.charts.items()
                if b.title
            },
            "inputs": [spec.as_dict() for spec in self.registry],
            "chart_assets": dict(self.chart_assets),
        }

    def to_json(self) -> str:
        return json.dumps(self.payload(), sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _collect_registry(
    specs: Sequence[InputSpec], errors: List[DashboardError], rejected: Set[str]
) -> InputRegistry:
    """Valid, unique inputs; names of inputs that failed validation go to ``rejected``."""
    kept: List[InputSpec] = []
    seen: Set[str] = set()
    for spec in specs:
        if spec.id in seen:
            errors.append(SpecError(f"Duplicate input id '{spec.id}'"))
            continue
        seen.add(spec.id)
        problems = spec.validate()
        errors.extend(problems)
        if problems:
            rejected.add(spec.id)
            if spec.bound_variable:
                rejected.add(spec.bound_variable)
        else:
            kept.append(spec)
    return InputRegistry(tuple(kept))


def _unreported(problems: Sequence[DashboardError], rejected: Set[str]) -> List[DashboardError]:
    """Drop unknown-variable errors for inputs whose own declaration error is already reported."""
    return [p for p in problems if not (isinstance(p, UnknownVariableError) and p.name in rejected)]


def _parse(text: str, context: str, errors: List[DashboardError]) -> Optional[Any]:
    try:
        return parse_formula(text)
    except ParseError as exc:
        errors.append(
            ParseError(f"{exc} in {context}", position=exc.position, expected=exc.expected, reason=exc.reason, text=exc.text)
        )
        return None


def compile_dashboard(spec: DashboardSpec, options: Optional[CompilerOptions] = None) -> Bundle:
    """Compile a dashboard declaration into a Bundle, or raise one CompilationError listing every problem."""
    options = options or CompilerOptions()
    errors: List[DashboardError] = []

    rejected: Set[str] = set()
    registry = _collect_registry(spec.inputs, errors, rejected)

    edges = list(spec.edges)
    edge_errors = check_edges(edges, registry)
    errors.extend(_unreported(edge_errors, rejected))
    order: List[str] = registry.ids
    if not edge_errors:
        try:
            order = topological_order(edges, registry)
        except CyclicDependencyError as exc:
            errors.append(exc)
    graph = DependencyGraph(edges if not edge_errors else [], order, registry)

    store = DatasetStore(options)
    frames = {name: as_frame(data) for name, data in spec.datasets.items()}
    schemas = {name: infer_schema(df) for name, df in frames.items()}

    all_columns: Set[str] = {c for schema in schemas.values() for c in schema}
    for input_spec in registry:
        var = input_spec.filter_variable
        if var and schemas and var not in all_columns:
            errors.append(
                SchemaError(
                    f"Input '{input_spec.id}' is bound to '{var}', which no dataset has; "
                    "declare it with is_virtual=True if it only gates show_when",
                    column=var,
                )
            )

    charts: Dict[str, ChartBinding] = {}
    predicates: Dict[str, Predicate] = {}
    pipelines: Dict[str, Pipeline] = {}
    chart_assets: Dict[str, str] = {}
    for binding in spec.charts:
        cid = binding.chart_id
        if cid in charts:
            errors.append(SpecError(f"Duplicate chart id '{cid}'"))
            continue
        charts[cid] = binding

        formula = spec.show_when.get(cid, binding.show_when)
        if formula:
            expr = _parse(formula, f"show_when of chart '{cid}'", errors)
            if expr is not None:
                keys, problems = check_condition(expr, registry, options=options, context=f"show_when of chart '{cid}'")
                errors.extend(_unreported(problems, rejected))
                if not problems:
                    predicates[cid] = Predicate(expr, keys)

        if binding.dataset not in frames:
            hint = suggest_names(binding.dataset, list(frames), limit=options.max_suggestions)
            msg = f"Chart '{cid}' uses unknown dataset '{binding.dataset}'"
            if hint:
                msg += ". Did you mean " + ", ".join(f"'{h}'" for h in hint) + "?"
            errors.append(SpecError(msg))
            continue

        frame = frames[binding.dataset]
        schema = schemas[binding.dataset]
        filter_ok = True
        if binding.static_filter:
            expr = _parse(binding.static_filter, f"static filter of chart '{cid}'", errors)
            missing = [v for v in variables(expr) if v not in schema] if expr is not None else []
            for col in missing:
                errors.append(
                    SchemaError(
                        f"Static filter of chart '{cid}' references column '{col}' not in dataset '{binding.dataset}'",
                        chart_id=cid,
                        column=col,
                    )
                )
            filter_ok = expr is not None and not missing
            if filter_ok:
                frame = apply_static_filter(frame, expr)

        problems = check_binding(binding, schema, registry)
        errors.extend(problems)
        if problems or not filter_ok:
            continue

        known = set(registry.ids) | {s.bound_variable for s in registry if s.bound_variable} | set(binding.roles.values())
        check_template(binding.title, known, binding.title_map, context=f"title of chart '{cid}'")

        chart_assets[cid] = store.intern(frame)
        pipelines[cid] = compile_pipeline(binding, store.get(chart_assets[cid]).schema, registry, options)

    if errors:
        logger.info("Dashboard compilation failed with %d error(s)", len(errors))
        raise CompilationError(errors)

    logger.info(
        "Compiled dashboard: %d inputs, %d charts, %d predicates, %d datasets (%d deduplicated)",
        len(registry),
        len(charts),
        len(predicates),
        len(store),
        store.dedup_hits,
    )
    return Bundle(
        registry=registry,
        graph=graph,
        charts=charts,
        predicates=predicates,
        pipelines=pipelines,
        store=store,
        chart_assets=chart_assets,
        options=options,
    )
