from __future__ import annotations

import logging
import math

import numpy as np
import pandas as pd
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import DashboardSpecModel, MetaKindsResponse, RecomputeRequest
from dashcore.bundle import Bundle, DashboardSpec, compile_dashboard
from dashcore.charts import series_to_vega
from dashcore.config import CompilerOptions, normalize_options
from dashcore.dependencies import DependencyEdge
from dashcore.errors import CompilationError, DashboardError
from dashcore.inputs import InputKind, make_input
from dashcore.pipelines import AggregationMode, ChartType, make_binding
from dashcore.runtime import DashboardRuntime


app = FastAPI(title="Dashcore API", version="0.1.0")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _json(data: object) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        )
    )


def _error(exc: DashboardError, status_code: int = 422) -> JSONResponse:
    body = exc.as_dict()
    body["error"] = body.pop("message")
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _spec_from_model(model: DashboardSpecModel) -> DashboardSpec:
    inputs = [make_input(m.id, m.kind, **m.model_dump(exclude={"id", "kind"})) for m in model.inputs]
    charts = [make_binding(m.chart_id, m.chart_type, m.dataset, **m.model_dump(exclude={"chart_id", "chart_type", "dataset"})) for m in model.charts]
    edges = [DependencyEdge(e.parent, e.child, {k: tuple(v) for k, v in e.options_by_parent.items()}) for e in model.edges]
    return DashboardSpec(
        inputs=inputs,
        charts=charts,
        edges=edges,
        show_when=dict(model.show_when),
        datasets={name: pd.DataFrame(rows) for name, rows in model.datasets.items()},
    )


def _compile(model: DashboardSpecModel) -> Bundle:
    options: CompilerOptions = normalize_options(model.options.model_dump(exclude_none=True))
    return compile_dashboard(_spec_from_model(model), options)


@app.get("/meta/kinds")
def meta_kinds():
    return _json(
        MetaKindsResponse(
            input_kinds=[k.value for k in InputKind],
            chart_types=[t.value for t in ChartType],
            aggregations=[m.value for m in AggregationMode],
        )
    )


@app.post("/compile")
def compile_spec(model: DashboardSpecModel):
    try:
        bundle = _compile(model)
        return _json(bundle.payload())
    except CompilationError as exc:
        logger.info("compile rejected: %d error(s)", len(exc.errors))
        return _error(exc)
    except DashboardError as exc:
        return _error(exc)
    except Exception as exc:
        logger.exception("compile failed")
        return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})


@app.post("/recompute")
def recompute(request: RecomputeRequest):
    try:
        bundle = _compile(request.spec)
        runtime = DashboardRuntime(bundle)
        runtime.initial_render()
        if request.state:
            runtime.set_inputs(request.state)
        series = runtime.series
        out = {
            "state": runtime.state,
            "visibility": runtime.visibility,
            "titles": {cid: data.title for cid, data in series.items()},
            "series": {cid: data.as_dict() for cid, data in series.items()},
        }
        if request.include_vega:
            out["vega"] = {cid: series_to_vega(data, bundle.charts[cid]) for cid, data in series.items()}
        return _json(out)
    except CompilationError as exc:
        logger.info("recompute rejected: %d error(s)", len(exc.errors))
        return _error(exc)
    except DashboardError as exc:
        return _error(exc)
    except Exception as exc:
        logger.exception("recompute failed")
        return JSONResponse(status_code=500, content={"error": str(exc), "type": type(exc).__name__})
