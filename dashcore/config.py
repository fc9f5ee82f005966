from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple


# Selection labels that mean "do not filter on this variable" (case-insensitive).
DEFAULT_ALL_LABELS: Tuple[str, ...] = ("all", "alle", "tous", "todo", "tutti", "すべて", "全部")
DEFAULT_DEBOUNCED_KINDS: Tuple[str, ...] = ("slider", "text")


@dataclass(frozen=True)
class CompilerOptions:
    debounce_ms: int = 250
    all_labels: Tuple[str, ...] = DEFAULT_ALL_LABELS
    debounced_kinds: Tuple[str, ...] = DEFAULT_DEBOUNCED_KINDS
    max_suggestions: int = 3
    max_suggestion_distance: int = 3
    asset_id_length: int = 12
    percent_scale: float = 100.0

    def is_all_label(self, value: object) -> bool:
        return str(value).strip().lower() in self.all_labels


def _as_str_tuple(values: Optional[Iterable[object]], fallback: Tuple[str, ...]) -> Tuple[str, ...]:
    if not values:
        return fallback
    if isinstance(values, str):
        values = [values]
    out = tuple(str(v).strip().lower() for v in values if v is not None and str(v).strip())
    return out or fallback


def _clamped_int(raw: object, default: int, lo: int, hi: int) -> int:
    try:
        value = int(raw)  # type: ignore[arg-type]
    except Exception:
        value = default
    return max(lo, min(hi, value))


def normalize_options(raw: Optional[dict] = None) -> CompilerOptions:
    raw = dict(raw or {})

    debounce_ms = _clamped_int(raw.get("debounce_ms", 250), 250, 0, 10_000)
    max_suggestions = _clamped_int(raw.get("max_suggestions", 3), 3, 0, 20)
    max_distance = _clamped_int(raw.get("max_suggestion_distance", 3), 3, 0, 20)
    asset_id_length = _clamped_int(raw.get("asset_id_length", 12), 12, 8, 64)

    percent_scale = raw.get("percent_scale", 100.0)
    try:
        percent_scale = float(percent_scale)
    except Exception:
        percent_scale = 100.0
    if percent_scale <= 0:
        percent_scale = 100.0

    return CompilerOptions(
        debounce_ms=debounce_ms,
        all_labels=_as_str_tuple(raw.get("all_labels"), DEFAULT_ALL_LABELS),
        debounced_kinds=_as_str_tuple(raw.get("debounced_kinds"), DEFAULT_DEBOUNCED_KINDS),
        max_suggestions=max_suggestions,
        max_suggestion_distance=max_distance,
        asset_id_length=asset_id_length,
        percent_scale=percent_scale,
    )
