from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from dashcore.errors import ReentrantUpdateError
from dashcore.pipelines import SeriesData

if TYPE_CHECKING:
    from dashcore.bundle import Bundle


logger = logging.getLogger(__name__)

RenderCallback = Callable[[str, SeriesData], None]
VisibilityCallback = Callable[[str, bool], None]


class RuntimeState(str, Enum):
    IDLE = "idle"
    RECOMPUTING = "recomputing"


@dataclass
class RecomputeResult:
    changed: List[str] = field(default_factory=list)
    reset: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)
    visibility: Dict[str, bool] = field(default_factory=dict)
    rendered: Dict[str, SeriesData] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return not self.changed

    def as_dict(self) -> Dict[str, Any]:
        return {
            "changed": list(self.changed),
            "reset": {k: {"from": old, "to": new} for k, (old, new) in self.reset.items()},
            "visibility": dict(self.visibility),
            "series": {k: v.as_dict() for k, v in self.rendered.items()},
        }


class DashboardRuntime:
    """Drives a compiled bundle: one FilterState, one writer, one recompute at a time."""

    def __init__(
        self,
        bundle: "Bundle",
        render: Optional[RenderCallback] = None,
        on_visibility: Optional[VisibilityCallback] = None,
    ):
        self.bundle = bundle
        self.render = render
        self.on_visibility = on_visibility
        self.status = RuntimeState.IDLE
        self._state: Dict[str, Any] = bundle.registry.defaults()
        self._visibility: Dict[str, bool] = {}
        self._last: Dict[str, SeriesData] = {}

    @property
    def state(self) -> Dict[str, Any]:
        return dict(self._state)

    @property
    def visibility(self) -> Dict[str, bool]:
        return dict(self._visibility)

    @property
    def series(self) -> Dict[str, SeriesData]:
        return dict(self._last)

    def is_visible(self, chart_id: str) -> bool:
        return self._visibility.get(chart_id, True)

    def initial_render(self) -> Dict[str, SeriesData]:
        with self._transition():
            self._state = self._settled_defaults(self.bundle.registry.ids)
            for chart_id in self.bundle.chart_ids:
                self._visibility[chart_id] = self._evaluate_visibility(chart_id)
                if self.on_visibility is not None:
                    self.on_visibility(chart_id, self._visibility[chart_id])
            return self._recompute(self.bundle.chart_ids)

    def set_input(self, input_id: str, value: Any) -> RecomputeResult:
        spec = self.bundle.registry.get(input_id)
        if spec is None:
            logger.warning("Ignoring update for unknown input '%s'", input_id)
            return RecomputeResult()
        with self._transition():
            value = self.bundle.graph.clamp(input_id, spec.normalize_value(value), self._state)
            if self._state.get(input_id) == value:
                logger.debug("Input %s unchanged (%r)", input_id, value)
                return RecomputeResult()
            self._state[input_id] = value
            return self._apply([input_id])

    def set_inputs(self, values: Dict[str, Any]) -> RecomputeResult:
        """Apply several input changes as a single transition."""
        with self._transition():
            changed: List[str] = []
            for input_id, value in values.items():
                spec = self.bundle.registry.get(input_id)
                if spec is None:
                    logger.warning("Ignoring update for unknown input '%s'", input_id)
                    continue
                value = spec.normalize_value(value)
                if self._state.get(input_id) != value:
                    self._state[input_id] = value
                    changed.append(input_id)
            if not changed:
                return RecomputeResult()
            return self._apply(changed)

    def reset(self, ids: Optional[Iterable[str]] = None) -> RecomputeResult:
        """Restore defaults for ``ids`` (all inputs when None)."""
        registry = self.bundle.registry
        targets = registry.ids if ids is None else [i for i in ids if i in registry]
        with self._transition():
            settled = self._settled_defaults(targets)
            changed = [i for i in registry.ids if self._state.get(i) != settled[i]]
            self._state = settled
            if not changed:
                return RecomputeResult()
            return self._apply(changed)

    # ---------- internals ----------

    def _transition(self) -> "_Transition":
        return _Transition(self)

    def _settled_defaults(self, ids: Iterable[str]) -> Dict[str, Any]:
        registry = self.bundle.registry
        ids = list(ids)
        state = dict(self._state)
        for input_id in ids:
            state[input_id] = registry[input_id].initial_value()
        # Defaults of linked children must be valid for their parents' defaults too.
        return self.bundle.graph.cascade(state, ids).state

    def _apply(self, changed: List[str]) -> RecomputeResult:
        cascade = self.bundle.graph.cascade(self._state, changed)
        self._state = cascade.state
        dirty: Set[str] = cascade.dirty
        logger.debug("Recompute for %s (cascade %s)", changed, cascade.recomputed)

        visibility_changes: Dict[str, bool] = {}
        for chart_id in self.bundle.chart_ids:
            predicate = self.bundle.predicates.get(chart_id)
            if predicate is None or not dirty.intersection(predicate.inputs):
                continue
            visible = self._evaluate_visibility(chart_id)
            if visible != self._visibility.get(chart_id):
                self._visibility[chart_id] = visible
                visibility_changes[chart_id] = visible
                if self.on_visibility is not None:
                    self.on_visibility(chart_id, visible)

        affected = [
            chart_id
            for chart_id in self.bundle.chart_ids
            if dirty.intersection(self.bundle.pipelines[chart_id].inputs)
        ]
        rendered = self._recompute(affected)
        return RecomputeResult(
            changed=sorted(dirty, key=self.bundle.registry.index_of),
            reset=cascade.reset,
            visibility=visibility_changes,
            rendered=rendered,
        )

    def _evaluate_visibility(self, chart_id: str) -> bool:
        predicate = self.bundle.predicates.get(chart_id)
        return True if predicate is None else predicate(self._state)

    def _recompute(self, chart_ids: Iterable[str]) -> Dict[str, SeriesData]:
        out: Dict[str, SeriesData] = {}
        for chart_id in chart_ids:
            pipeline = self.bundle.pipelines[chart_id]
            data = pipeline(self._state, self.bundle.asset_for(chart_id))
            self._last[chart_id] = data
            out[chart_id] = data
            if self.render is not None:
                self.render(chart_id, data)
        return out


class _Transition:
    """IDLE -> RECOMPUTING -> IDLE guard; nested entry is a re-entrant update."""

    def __init__(self, runtime: DashboardRuntime):
        self.runtime = runtime

    def __enter__(self) -> None:
        if self.runtime.status is RuntimeState.RECOMPUTING:
            raise ReentrantUpdateError("Input updated while the dashboard is recomputing")
        self.runtime.status = RuntimeState.RECOMPUTING

    def __exit__(self, *exc: object) -> None:
        self.runtime.status = RuntimeState.IDLE


class Debouncer:
    """Coalesce rapid slider/text events into one update per input.

    ``submit`` records the latest value; inputs of kinds not listed in
    ``debounced_kinds`` pass straight through.  ``poll`` applies every pending
    value whose quiet period has elapsed and ``flush`` applies all of them.
    """

    def __init__(
        self,
        runtime: DashboardRuntime,
        delay_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        options = runtime.bundle.options
        self.runtime = runtime
        self.delay = (options.debounce_ms if delay_ms is None else delay_ms) / 1000.0
        self.kinds = set(options.debounced_kinds)
        self.clock = clock
        self._pending: Dict[str, Tuple[Any, float]] = {}

    @property
    def pending(self) -> Dict[str, Any]:
        return {k: v for k, (v, _) in self._pending.items()}

    def submit(self, input_id: str, value: Any) -> Optional[RecomputeResult]:
        spec = self.runtime.bundle.registry.get(input_id)
        if spec is None or spec.kind.value not in self.kinds or self.delay <= 0:
            return self.runtime.set_input(input_id, value)
        self._pending[input_id] = (value, self.clock() + self.delay)
        return None

    def poll(self) -> List[RecomputeResult]:
        now = self.clock()
        due = [k for k, (_, deadline) in self._pending.items() if deadline <= now]
        return [self._dispatch(k) for k in due]

    def flush(self) -> List[RecomputeResult]:
        return [self._dispatch(k) for k in list(self._pending)]

    def _dispatch(self, input_id: str) -> RecomputeResult:
        value, _ = self._pending.pop(input_id)
        return self.runtime.set_input(input_id, value)
