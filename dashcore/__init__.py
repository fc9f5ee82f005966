"""Declarative cross-tab dashboard compiler and runtime.

This package contains:
- formula parsing (``~ condition`` -> AST) and condition compilation
- the input registry and linked-input dependency graph
- chart data pipelines (filter -> group -> aggregate -> shape)
- dataset interning, title templating and bundle assembly
- the runtime state machine driving a compiled bundle
- chart helpers (SeriesData -> Altair -> Vega-Lite spec dict)
"""

from dashcore.builder import DashboardBuilder
from dashcore.bundle import Bundle, DashboardSpec, compile_dashboard
from dashcore.config import CompilerOptions, normalize_options
from dashcore.runtime import DashboardRuntime

__all__ = [
    "Bundle",
    "CompilerOptions",
    "DashboardBuilder",
    "DashboardRuntime",
    "DashboardSpec",
    "compile_dashboard",
    "normalize_options",
]
