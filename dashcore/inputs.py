from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from dashcore.errors import CompilationError, SpecError


class InputKind(str, Enum):
    SELECT_SINGLE = "select_single"
    SELECT_MULTIPLE = "select_multiple"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    BUTTON_GROUP = "button_group"
    SLIDER = "slider"
    TEXT = "text"
    NUMBER = "number"
    SWITCH = "switch"


CHOICE_KINDS = frozenset(
    {InputKind.SELECT_SINGLE, InputKind.SELECT_MULTIPLE, InputKind.CHECKBOX, InputKind.RADIO, InputKind.BUTTON_GROUP}
)
MULTI_VALUED_KINDS = frozenset({InputKind.SELECT_MULTIPLE, InputKind.CHECKBOX})
NUMERIC_KINDS = frozenset({InputKind.SLIDER, InputKind.NUMBER})


def is_numeric_like(value: object) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    try:
        float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False
    return True


@dataclass(frozen=True)
class InputSpec:
    id: str
    kind: InputKind
    bound_variable: Optional[str] = None
    options: Tuple[Any, ...] = ()
    default: Any = None
    is_virtual: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    labels: Tuple[str, ...] = ()
    toggle_series: Optional[str] = None
    override: bool = False
    label: Optional[str] = None

    @property
    def is_multi_valued(self) -> bool:
        return self.kind in MULTI_VALUED_KINDS

    @property
    def filter_variable(self) -> Optional[str]:
        return None if self.is_virtual else self.bound_variable

    @property
    def domain(self) -> Dict[str, Any]:
        if self.kind in CHOICE_KINDS:
            return {"type": "enum", "values": list(self.options)}
        if self.kind == InputKind.SWITCH:
            return {"type": "enum", "values": [False, True]}
        if self.kind == InputKind.SLIDER and self.labels:
            return {"type": "range", "min": 1, "max": len(self.labels), "step": 1, "labels": list(self.labels)}
        if self.kind in NUMERIC_KINDS:
            return {"type": "range", "min": self.min, "max": self.max, "step": self.step}
        return {"type": "text"}

    @property
    def is_numeric_domain(self) -> bool:
        if self.kind in NUMERIC_KINDS:
            return True
        if self.kind in CHOICE_KINDS:
            return bool(self.options) and all(is_numeric_like(o) for o in self.options)
        return False

    def initial_value(self) -> Any:
        """The value this input holds on page load."""
        return self.normalize_value(self.default)

    def normalize_value(self, value: Any) -> Any:
        """Coerce a raw widget value into the canonical FilterState representation.

        Multi-valued inputs hold lists, switches booleans, sliders/numbers floats
        (or a two-element list for a range slider) and everything else a scalar.
        """
        kind = self.kind
        if kind in MULTI_VALUED_KINDS:
            if value is None:
                return []
            if isinstance(value, (list, tuple, set, frozenset)):
                return [v for v in value if v is not None]
            return [value]
        if kind == InputKind.SWITCH:
            if isinstance(value, str):
                return value.strip().lower() in {"true", "1", "yes", "on"}
            return bool(value)
        if kind in NUMERIC_KINDS:
            if isinstance(value, (list, tuple)) and len(value) == 2 and kind == InputKind.SLIDER:
                lo, hi = (self._as_float(v) for v in value)
                return [lo, hi] if lo is not None and hi is not None else None
            return self._as_float(value)
        if kind == InputKind.TEXT:
            return "" if value is None else str(value)
        if isinstance(value, (list, tuple)):
            return value[0] if value else None
        return value

    def _as_float(self, value: Any) -> Optional[float]:
        if value is None or value == "":
            return None
        try:
            out = float(value)
        except (TypeError, ValueError):
            return None
        if self.min is not None:
            out = max(float(self.min), out)
        if self.max is not None:
            out = min(float(self.max), out)
        return out

    def validate(self) -> List[SpecError]:
        errors: List[SpecError] = []
        if not self.id or not str(self.id).strip():
            errors.append(SpecError("Input id must be a non-empty string"))
        if self.is_virtual and self.bound_variable:
            errors.append(
                SpecError(
                    f"Input '{self.id}' is virtual but binds variable '{self.bound_variable}'; "
                    "virtual inputs exist only for show_when gating"
                )
            )
        if not self.is_virtual and not self.bound_variable and self.kind != InputKind.SWITCH:
            errors.append(
                SpecError(f"Input '{self.id}' has no bound variable; declare it with is_virtual=True to gate show_when only")
            )
        if self.kind == InputKind.SWITCH and self.toggle_series is None and not self.is_virtual and not self.bound_variable:
            errors.append(SpecError(f"Switch '{self.id}' needs a bound variable, toggle_series or is_virtual=True"))
        if self.kind in CHOICE_KINDS:
            if not self.options:
                errors.append(SpecError(f"Input '{self.id}' ({self.kind.value}) declares no options"))
            if len(set(map(str, self.options))) != len(self.options):
                errors.append(SpecError(f"Input '{self.id}' declares duplicate options"))
            default = self.normalize_value(self.default)
            chosen = default if isinstance(default, list) else ([] if default is None else [default])
            bad = [v for v in chosen if v not in self.options]
            if bad:
                errors.append(SpecError(f"Default {bad!r} of input '{self.id}' is not among its options"))
        if self.kind in NUMERIC_KINDS:
            if self.min is not None and self.max is not None and float(self.min) > float(self.max):
                errors.append(SpecError(f"Input '{self.id}' has min > max"))
            if self.step is not None and float(self.step) <= 0:
                errors.append(SpecError(f"Input '{self.id}' has a non-positive step"))
        if self.toggle_series is not None and self.kind != InputKind.SWITCH:
            errors.append(SpecError(f"Only switch inputs may toggle a series (input '{self.id}')"))
        return errors

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "boundVariable": self.bound_variable,
            "isVirtual": self.is_virtual,
            "domain": self.domain,
            "default": self.initial_value(),
            "toggleSeries": self.toggle_series,
            "override": self.override,
            "label": self.label,
        }


def make_input(input_id: str, kind: str | InputKind, **kwargs: Any) -> InputSpec:
    """Build an InputSpec from loosely-typed keyword arguments (lists become tuples)."""
    try:
        kind = InputKind(kind)
    except ValueError as exc:
        allowed = ", ".join(k.value for k in InputKind)
        raise SpecError(f"Unknown input kind {kind!r} for '{input_id}'; expected one of: {allowed}") from exc
    for key in ("options", "labels"):
        if key in kwargs and kwargs[key] is not None:
            kwargs[key] = tuple(kwargs[key])
        elif key in kwargs:
            kwargs[key] = ()
    return InputSpec(id=input_id, kind=kind, **kwargs)


@dataclass(frozen=True)
class InputRegistry:
    """Canonical, ordered record of every declared input."""

    specs: Tuple[InputSpec, ...] = ()
    _by_id: Mapping[str, InputSpec] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_id", {s.id: s for s in self.specs})

    @classmethod
    def from_specs(cls, specs: Iterable[InputSpec]) -> "InputRegistry":
        specs = tuple(specs)
        errors: List[SpecError] = []
        seen = set()
        for spec in specs:
            if spec.id in seen:
                errors.append(SpecError(f"Duplicate input id '{spec.id}'"))
            seen.add(spec.id)
            errors.extend(spec.validate())
        if errors:
            raise CompilationError(errors)
        return cls(specs)

    def with_input(self, spec: InputSpec) -> "InputRegistry":
        if spec.id in self._by_id:
            raise SpecError(f"Duplicate input id '{spec.id}'")
        problems = spec.validate()
        if problems:
            raise problems[0]
        return InputRegistry(self.specs + (spec,))

    def __contains__(self, input_id: object) -> bool:
        return input_id in self._by_id

    def __iter__(self) -> Iterator[InputSpec]:
        return iter(self.specs)

    def __len__(self) -> int:
        return len(self.specs)

    def get(self, input_id: str) -> Optional[InputSpec]:
        return self._by_id.get(input_id)

    def __getitem__(self, input_id: str) -> InputSpec:
        return self._by_id[input_id]

    @property
    def ids(self) -> List[str]:
        return [s.id for s in self.specs]

    def index_of(self, input_id: str) -> int:
        return self.ids.index(input_id)

    def bound_to(self, variable: str) -> List[InputSpec]:
        return [s for s in self.specs if s.filter_variable == variable]

    def resolve(self, name: str) -> Optional[str]:
        """Map a formula variable to an input id: exact id first, then a unique bound variable."""
        if name in self._by_id:
            return name
        bound = [s.id for s in self.specs if s.bound_variable == name]
        return bound[0] if len(bound) == 1 else None

    def defaults(self) -> Dict[str, Any]:
        return {s.id: s.initial_value() for s in self.specs}
