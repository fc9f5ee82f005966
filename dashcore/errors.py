from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence


class DashboardError(Exception):
    """Base class for every error raised while compiling or running a dashboard."""

    kind = "dashboard_error"

    def as_dict(self) -> Dict[str, Any]:
        return {"type": type(self).__name__, "kind": self.kind, "message": str(self)}


class ParseError(DashboardError):
    kind = "parse_error"

    def __init__(
        self,
        message: str,
        *,
        position: Optional[int] = None,
        expected: Optional[str] = None,
        reason: Optional[str] = None,
        text: Optional[str] = None,
    ):
        self.position = position
        self.expected = expected
        self.reason = reason
        self.text = text
        super().__init__(message)

    def as_dict(self) -> Dict[str, Any]:
        out = super().as_dict()
        out.update({"position": self.position, "expected": self.expected, "reason": self.reason})
        return out


class UnknownVariableError(DashboardError):
    kind = "unknown_variable"

    def __init__(self, name: str, suggestions: Sequence[str] = (), *, context: str = ""):
        self.name = name
        self.suggestions = list(suggestions)
        self.context = context
        msg = f"Unknown input '{name}'"
        if context:
            msg += f" in {context}"
        if self.suggestions:
            msg += ". Did you mean " + ", ".join(f"'{s}'" for s in self.suggestions) + "?"
        super().__init__(msg)

    def as_dict(self) -> Dict[str, Any]:
        out = super().as_dict()
        out.update({"name": self.name, "suggestions": self.suggestions})
        return out


class CyclicDependencyError(DashboardError):
    kind = "cyclic_dependency"

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__("Cyclic input dependency: " + " -> ".join(self.cycle))

    def as_dict(self) -> Dict[str, Any]:
        out = super().as_dict()
        out["cycle"] = self.cycle
        return out


class SchemaError(DashboardError):
    """A chart references a column its dataset does not have."""

    kind = "schema_error"

    def __init__(self, message: str, *, chart_id: Optional[str] = None, column: Optional[str] = None):
        self.chart_id = chart_id
        self.column = column
        super().__init__(message)

    def as_dict(self) -> Dict[str, Any]:
        out = super().as_dict()
        out.update({"chart_id": self.chart_id, "column": self.column})
        return out


class TypeMismatchError(DashboardError):
    kind = "type_mismatch"


class SpecError(DashboardError):
    """Invalid input or chart declaration (duplicate ids, bad defaults, missing roles)."""

    kind = "spec_error"


class CompilationError(DashboardError):
    kind = "compilation_failed"

    def __init__(self, errors: Iterable[DashboardError]):
        self.errors: List[DashboardError] = list(errors)
        lines = [f"{len(self.errors)} error(s) while compiling dashboard:"]
        lines += [f"  - {e}" for e in self.errors]
        super().__init__("\n".join(lines))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "kind": self.kind,
            "message": f"{len(self.errors)} error(s) while compiling dashboard",
            "errors": [e.as_dict() for e in self.errors],
        }


class ReentrantUpdateError(DashboardError, RuntimeError):
    kind = "reentrant_update"


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + (ca != cb)))
        prev = cur
    return prev[-1]


def suggest_names(name: str, candidates: Iterable[str], *, limit: int = 3, max_distance: int = 3) -> List[str]:
    """Closest candidates by case-insensitive edit distance, nearest first."""
    scored = []
    for order, cand in enumerate(candidates):
        dist = levenshtein(name.lower(), cand.lower())
        # Allow longer names proportionally more slack.
        if dist <= max(max_distance, len(name) // 3):
            scored.append((dist, order, cand))
    scored.sort()
    return [c for _, _, c in scored[:limit]]
