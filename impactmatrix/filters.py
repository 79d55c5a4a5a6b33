"""Idea filtering for the matrix board.

Filter groups combine with AND. Inside a multi-select group (categories,
statuses, quadrants) membership is OR, and an empty selection means
"no constraint", never "match nothing".

Ideas are plain mappings as returned by the store (``effort``,
``business_value``, ``weight``, ``status``, ``category_id``,
``position_x``, ``position_y``).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from impactmatrix import config
from impactmatrix.errors import FilterStateError
from impactmatrix.grid import (
    DEFAULT_DRIFT_TOLERANCE,
    QUADRANTS,
    SCORE_MAX,
    SCORE_MIN,
    classify_quadrant,
    has_custom_position,
    has_position_drift,
    pixel_to_score,
)

Range = Tuple[float, float]
FULL_RANGE: Range = (SCORE_MIN, SCORE_MAX)
RANGE_FIELDS = (
    "original_effort",
    "original_value",
    "original_weight",
    "positioned_effort",
    "positioned_value",
)
SET_FIELDS = ("category_ids", "statuses", "quadrants")


@dataclass
class FilterState:
    category_ids: Set[str] = field(default_factory=set)
    statuses: Set[str] = field(default_factory=set)
    quadrants: Set[str] = field(default_factory=set)
    original_effort: Range = FULL_RANGE
    original_value: Range = FULL_RANGE
    original_weight: Range = FULL_RANGE
    positioned_effort: Range = FULL_RANGE
    positioned_value: Range = FULL_RANGE
    only_with_drift: bool = False

    @classmethod
    def from_dict(cls, payload: object) -> "FilterState":
        """Validate a decoded payload; missing keys fall back to neutral values."""
        if not isinstance(payload, Mapping):
            raise FilterStateError("Filters must be an object.")
        unknown = sorted(set(payload) - set(SET_FIELDS) - set(RANGE_FIELDS) - {"only_with_drift"})
        if unknown:
            raise FilterStateError(f"Unknown filter keys: {', '.join(unknown)}")

        state = cls()
        state.category_ids = _parse_set(payload, "category_ids")
        state.statuses = _parse_set(payload, "statuses")
        bad_statuses = sorted(state.statuses - set(config.IDEA_STATUSES))
        if bad_statuses:
            raise FilterStateError(f"Unknown statuses: {', '.join(bad_statuses)}")
        state.quadrants = _parse_set(payload, "quadrants")
        bad_quadrants = sorted(state.quadrants - set(QUADRANTS))
        if bad_quadrants:
            raise FilterStateError(f"Unknown quadrants: {', '.join(bad_quadrants)}")
        for name in RANGE_FIELDS:
            setattr(state, name, _parse_range(payload, name))
        flag = payload.get("only_with_drift", False)
        if not isinstance(flag, bool):
            raise FilterStateError("only_with_drift must be true or false.")
        state.only_with_drift = flag
        return state

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "FilterState":
        if not raw:
            raise FilterStateError("Filters payload is empty.")
        try:
            parsed = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            raise FilterStateError(f"Filters payload is not valid JSON: {exc}") from exc
        return cls.from_dict(parsed)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {name: sorted(getattr(self, name)) for name in SET_FIELDS}
        for name in RANGE_FIELDS:
            payload[name] = list(getattr(self, name))
        payload["only_with_drift"] = self.only_with_drift
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


def _parse_set(payload: Mapping, name: str) -> Set[str]:
    raw = payload.get(name, [])
    if not isinstance(raw, (list, tuple, set)):
        raise FilterStateError(f"{name} must be a list.")
    values = set()
    for item in raw:
        if not isinstance(item, (str, int)) or isinstance(item, bool):
            raise FilterStateError(f"{name} must contain strings.")
        values.add(str(item))
    return values


def _parse_range(payload: Mapping, name: str) -> Range:
    raw = payload.get(name, list(FULL_RANGE))
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        raise FilterStateError(f"{name} must be a [min, max] pair.")
    lo, hi = raw
    for bound in (lo, hi):
        if isinstance(bound, bool) or not isinstance(bound, (int, float)):
            raise FilterStateError(f"{name} bounds must be numbers.")
    if not SCORE_MIN <= lo <= hi <= SCORE_MAX:
        raise FilterStateError(f"{name} must satisfy {SCORE_MIN} <= min <= max <= {SCORE_MAX}.")
    return lo, hi


def default_filter_state() -> FilterState:
    return FilterState()


def positioned_effort(idea: Mapping) -> int:
    if has_custom_position(idea.get("position_x"), idea.get("position_y")):
        return pixel_to_score(idea["position_x"], idea["position_y"])[0]
    return idea["effort"]


def positioned_value(idea: Mapping) -> int:
    if has_custom_position(idea.get("position_x"), idea.get("position_y")):
        return pixel_to_score(idea["position_x"], idea["position_y"])[1]
    return idea["business_value"]


def effective_scores(idea: Mapping) -> Tuple[int, int]:
    """(effort, business_value) as shown on the board: custom position wins."""
    return positioned_effort(idea), positioned_value(idea)


def idea_quadrant(idea: Mapping) -> str:
    return classify_quadrant(*effective_scores(idea))


def idea_has_drift(idea: Mapping, tolerance: float = DEFAULT_DRIFT_TOLERANCE) -> bool:
    return has_position_drift(
        idea.get("position_x"),
        idea.get("position_y"),
        idea["effort"],
        idea["business_value"],
        tolerance=tolerance,
    )


def in_range(value: float, bounds: Range) -> bool:
    return bounds[0] <= value <= bounds[1]


def idea_matches(idea: Mapping, filters: FilterState, tolerance: float = DEFAULT_DRIFT_TOLERANCE) -> bool:
    if filters.category_ids:
        category_id = idea.get("category_id")
        if category_id is None or str(category_id) not in filters.category_ids:
            return False
    if filters.statuses and idea.get("status") not in filters.statuses:
        return False

    weight = idea.get("weight")
    if weight is None:
        weight = config.DEFAULT_SCORE
    if not in_range(idea["effort"], filters.original_effort):
        return False
    if not in_range(idea["business_value"], filters.original_value):
        return False
    if not in_range(weight, filters.original_weight):
        return False

    effort, value = effective_scores(idea)
    if not in_range(effort, filters.positioned_effort):
        return False
    if not in_range(value, filters.positioned_value):
        return False

    if filters.quadrants and classify_quadrant(effort, value) not in filters.quadrants:
        return False
    if filters.only_with_drift and not idea_has_drift(idea, tolerance):
        return False
    return True


def filter_ideas(
    ideas: Iterable[Mapping],
    filters: FilterState,
    tolerance: float = DEFAULT_DRIFT_TOLERANCE,
) -> List[Mapping]:
    """Ideas passing every active filter, in their original order."""
    return [idea for idea in ideas if idea_matches(idea, filters, tolerance)]


def count_active_filters(filters: FilterState) -> int:
    """Number of filter dimensions that differ from neutral, for the badge."""
    count = 0
    for name in SET_FIELDS:
        if getattr(filters, name):
            count += 1
    for name in RANGE_FIELDS:
        lo, hi = getattr(filters, name)
        if lo > SCORE_MIN or hi < SCORE_MAX:
            count += 1
    if filters.only_with_drift:
        count += 1
    return count
