from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from dashcore.errors import CyclicDependencyError, DashboardError, SpecError, UnknownVariableError, suggest_names
from dashcore.inputs import InputRegistry


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DependencyEdge:
    parent: str
    child: str
    options_by_parent: Mapping[Any, Tuple[Any, ...]] = field(default_factory=dict)

    def options_for(self, parent_value: Any) -> Tuple[Any, ...]:
        """Child options implied by the parent's value (union over a multi-valued parent)."""
        if isinstance(parent_value, (list, tuple, set, frozenset)):
            merged: List[Any] = []
            for v in parent_value:
                for opt in self._lookup(v):
                    if opt not in merged:
                        merged.append(opt)
            return tuple(merged)
        return self._lookup(parent_value)

    def _lookup(self, value: Any) -> Tuple[Any, ...]:
        if value in self.options_by_parent:
            return tuple(self.options_by_parent[value])
        # Keys may arrive as strings from JSON while widget values are numbers (or vice versa).
        for key, opts in self.options_by_parent.items():
            if str(key) == str(value):
                return tuple(opts)
        return ()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "parent": self.parent,
            "child": self.child,
            "optionsByParent": {str(k): list(v) for k, v in self.options_by_parent.items()},
        }


@dataclass
class CascadeResult:
    state: Dict[str, Any]
    dirty: Set[str]
    recomputed: List[str]
    reset: Dict[str, Tuple[Any, Any]]


class DependencyGraph:
    """Topologically ordered parent -> child input relationships."""

    def __init__(self, edges: Sequence[DependencyEdge], order: Sequence[str], registry: InputRegistry):
        self.edges = tuple(edges)
        self.order = list(order)
        self.registry = registry
        self._parents: Dict[str, List[DependencyEdge]] = {}
        self._children: Dict[str, List[str]] = {}
        for edge in self.edges:
            self._parents.setdefault(edge.child, []).append(edge)
            self._children.setdefault(edge.parent, []).append(edge.child)

    def parents_of(self, input_id: str) -> List[str]:
        return [e.parent for e in self._parents.get(input_id, [])]

    def children_of(self, input_id: str) -> List[str]:
        return list(self._children.get(input_id, []))

    def options_for(self, child: str, state: Mapping[str, Any]) -> Optional[Tuple[Any, ...]]:
        """Valid options for a linked child (intersection across parents), or None if unlinked."""
        edges = self._parents.get(child)
        if not edges:
            return None
        options = list(edges[0].options_for(state.get(edges[0].parent)))
        for edge in edges[1:]:
            allowed = edge.options_for(state.get(edge.parent))
            options = [o for o in options if o in allowed]
        return tuple(options)

    def cascade(self, state: Mapping[str, Any], changed: Iterable[str]) -> CascadeResult:
        """Refresh every linked descendant of ``changed`` once, in topological order.

        A linked input that is itself in ``changed`` is validated against its parents too.
        """
        new_state = dict(state)
        written = set(changed)
        dirty: Set[str] = set(written)
        recomputed: List[str] = []
        reset: Dict[str, Tuple[Any, Any]] = {}
        for input_id in self.order:
            parents = self.parents_of(input_id)
            if not parents:
                continue
            if input_id not in written and not any(p in dirty for p in parents):
                continue
            recomputed.append(input_id)
            old = new_state.get(input_id)
            fixed = self.clamp(input_id, old, new_state)
            if fixed != old:
                reset[input_id] = (old, fixed)
                new_state[input_id] = fixed
                logger.debug("Reset linked input %s from %r to %r", input_id, old, fixed)
            dirty.add(input_id)
        return CascadeResult(state=new_state, dirty=dirty, recomputed=recomputed, reset=reset)

    def clamp(self, input_id: str, value: Any, state: Mapping[str, Any]) -> Any:
        """``value`` made valid for the parents' current values; unlinked inputs pass through."""
        options = self.options_for(input_id, state)
        if options is None:
            return value
        return self._valid_value(input_id, value, options)

    def _valid_value(self, input_id: str, value: Any, options: Tuple[Any, ...]) -> Any:
        spec = self.registry[input_id]
        if spec.is_multi_valued:
            current = list(value or [])
            kept = [v for v in current if v in options]
            if kept or not current:
                return kept
            return [options[0]] if options else []
        if value in options:
            return value
        return options[0] if options else None

    def as_dict(self) -> Dict[str, Any]:
        return {"order": list(self.order), "edges": [e.as_dict() for e in self.edges]}


def check_edges(edges: Sequence[DependencyEdge], registry: InputRegistry) -> List[DashboardError]:
    errors: List[DashboardError] = []
    seen: Set[Tuple[str, str]] = set()
    for edge in edges:
        for role, input_id in (("parent", edge.parent), ("child", edge.child)):
            if input_id not in registry:
                errors.append(
                    UnknownVariableError(input_id, suggest_names(input_id, registry.ids), context=f"linked input {role}")
                )
        if edge.parent == edge.child:
            errors.append(CyclicDependencyError([edge.parent, edge.child]))
        if (edge.parent, edge.child) in seen:
            errors.append(SpecError(f"Duplicate link {edge.parent} -> {edge.child}"))
        seen.add((edge.parent, edge.child))
        child = registry.get(edge.child)
        if child is not None and child.options:
            stray = sorted(
                {str(o) for opts in edge.options_by_parent.values() for o in opts if o not in child.options}
            )
            if stray:
                errors.append(
                    SpecError(f"Linked options {stray} are not declared options of child input '{edge.child}'")
                )
    return errors


def topological_order(edges: Sequence[DependencyEdge], registry: InputRegistry) -> List[str]:
    """Kahn's algorithm over all inputs; ties follow declaration order so the result is stable."""
    ids = registry.ids
    rank = {input_id: i for i, input_id in enumerate(ids)}
    indegree = {input_id: 0 for input_id in ids}
    children: Dict[str, List[str]] = {input_id: [] for input_id in ids}
    for edge in edges:
        if edge.child not in children or edge.parent not in children:
            continue
        if edge.child not in children[edge.parent]:
            children[edge.parent].append(edge.child)
            indegree[edge.child] += 1

    ready = sorted((i for i in ids if indegree[i] == 0), key=rank.__getitem__)
    order: List[str] = []
    while ready:
        node = ready.pop(0)
        order.append(node)
        for child in children[node]:
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)
                ready.sort(key=rank.__getitem__)

    if len(order) != len(ids):
        raise CyclicDependencyError(_find_cycle({i for i in ids if i not in order}, children))
    return order


def _find_cycle(remaining: Set[str], children: Mapping[str, List[str]]) -> List[str]:
    # Every unsorted node still has an unsorted parent, so walking parents must revisit a node.
    parents: Dict[str, List[str]] = {n: [] for n in remaining}
    for node in sorted(remaining):
        for child in children[node]:
            if child in remaining:
                parents[child].append(node)
    node = min(remaining)
    path: List[str] = [node]
    while True:
        node = parents[node][0]
        if node in path:
            cycle = path[path.index(node):]
            cycle.reverse()
            return cycle + [cycle[0]]
        path.append(node)


def build_dependency_graph(edges: Iterable[DependencyEdge], registry: InputRegistry) -> DependencyGraph:
    edges = list(edges)
    errors = check_edges(edges, registry)
    if errors:
        raise errors[0]
    order = topological_order(edges, registry)
    return DependencyGraph(edges, order, registry)
