from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional

from dashcore.inputs import InputRegistry


logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


def placeholders(template: Optional[str]) -> List[str]:
    if not template:
        return []
    out: List[str] = []
    for name in PLACEHOLDER_RE.findall(template):
        if name not in out:
            out.append(name)
    return out


def format_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        parts = [format_value(v) for v in value]
        parts = [p for p in parts if p is not None]
        return ", ".join(parts) if parts else None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _title_map_value(entry: Any, state: Mapping[str, Any], order: Iterable[str]) -> Optional[str]:
    if isinstance(entry, str):
        return entry
    if not isinstance(entry, Mapping):
        return None
    lookup = {str(k): v for k, v in entry.items()}
    # First input (in declaration order) whose current value is a key of the mapping wins.
    for input_id in order:
        value = state.get(input_id)
        candidates = value if isinstance(value, (list, tuple)) else [value]
        for v in candidates:
            if v is not None and str(v) in lookup:
                return format_value(lookup[str(v)])
    return None


def _state_value(name: str, state: Mapping[str, Any], registry: Optional[InputRegistry]) -> Optional[str]:
    if name in state:
        return format_value(state[name])
    if registry is not None:
        input_id = registry.resolve(name)
        if input_id is not None and input_id in state:
            return format_value(state[input_id])
    return None


def resolve_placeholder(
    name: str,
    *,
    state: Mapping[str, Any],
    group_keys: Mapping[str, Any],
    title_map: Mapping[str, Any],
    registry: Optional[InputRegistry] = None,
) -> Optional[str]:
    """Lookup order: title map, group-by key, filter state."""
    if name in title_map:
        order = registry.ids if registry is not None else list(state)
        mapped = _title_map_value(title_map[name], state, order)
        if mapped is not None:
            return mapped
    if name in group_keys:
        value = format_value(group_keys[name])
        if value is not None:
            return value
    return _state_value(name, state, registry)


def render_template(
    template: Optional[str],
    state: Optional[Mapping[str, Any]] = None,
    group_keys: Optional[Mapping[str, Any]] = None,
    title_map: Optional[Mapping[str, Any]] = None,
    registry: Optional[InputRegistry] = None,
) -> Optional[str]:
    if template is None:
        return None
    state = state or {}
    group_keys = group_keys or {}
    title_map = title_map or {}

    def _sub(match: "re.Match[str]") -> str:
        value = resolve_placeholder(
            match.group(1), state=state, group_keys=group_keys, title_map=title_map, registry=registry
        )
        return match.group(0) if value is None else value

    return PLACEHOLDER_RE.sub(_sub, template)


def check_template(
    template: Optional[str],
    known: Iterable[str],
    title_map: Optional[Mapping[str, Any]] = None,
    *,
    context: str = "",
) -> List[str]:
    """Names in ``template`` that nothing can resolve; each one is logged as a warning."""
    known = set(known) | set(title_map or {})
    missing = [name for name in placeholders(template) if name not in known]
    for name in missing:
        logger.warning("Placeholder {%s} in %s cannot be resolved and will be left verbatim", name, context or "template")
    return missing
