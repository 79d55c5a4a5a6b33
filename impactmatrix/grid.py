"""Grid coordinate model for the effort / business value matrix.

The board is a ``GRID_SIZE`` x ``GRID_SIZE`` grid. Effort runs left to right
(1 = leftmost column) and business value runs bottom to top (10 = top row),
so the y axis is inverted relative to screen coordinates.

Everything here is pure and total: malformed scores are clamped instead of
raising, because these helpers sit on the rendering path for every idea.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

GRID_SIZE = 10
CELL_WIDTH = 120
CELL_HEIGHT = 65
GRID_WIDTH = GRID_SIZE * CELL_WIDTH
GRID_HEIGHT = GRID_SIZE * CELL_HEIGHT
SCORE_MIN = 1
SCORE_MAX = 10
SCORE_MIDPOINT = 5
DEFAULT_DRIFT_TOLERANCE = 10.0

QUICK_WINS = "quick-wins"
MAJOR_PROJECTS = "major-projects"
FILL_INS = "fill-ins"
THANKLESS_TASKS = "thankless-tasks"

QUADRANTS: Dict[str, Dict[str, str]] = {
    QUICK_WINS: {
        "id": QUICK_WINS,
        "label": "Quick Wins",
        "description": "Low effort, high value - prioritize these!",
        "color": "#22c55e",
    },
    MAJOR_PROJECTS: {
        "id": MAJOR_PROJECTS,
        "label": "Major Projects",
        "description": "High effort, high value - plan carefully",
        "color": "#3b82f6",
    },
    FILL_INS: {
        "id": FILL_INS,
        "label": "Fill-Ins",
        "description": "Low effort, low value - do when you have time",
        "color": "#eab308",
    },
    THANKLESS_TASKS: {
        "id": THANKLESS_TASKS,
        "label": "Thankless Tasks",
        "description": "High effort, low value - avoid or eliminate",
        "color": "#ef4444",
    },
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    """Snap any number onto the integer score scale [1, 10]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return SCORE_MIDPOINT
    if math.isnan(number):
        return SCORE_MIDPOINT
    if math.isinf(number):
        return SCORE_MAX if number > 0 else SCORE_MIN
    return max(SCORE_MIN, min(SCORE_MAX, round_half_up(number)))


def score_to_pixel(effort: float, business_value: float) -> Tuple[float, float]:
    """Return the centre of the cell for ``(effort, business_value)``."""
    effort = clamp_score(effort)
    business_value = clamp_score(business_value)
    x = (effort - 1) * CELL_WIDTH + CELL_WIDTH / 2
    y = (GRID_SIZE - business_value) * CELL_HEIGHT + CELL_HEIGHT / 2
    return x, y


def nearest_cell(offset: float, cell_size: float, fallback: int) -> int:
    """0-based index of the nearest cell centre along one axis, clamped to the grid."""
    offset = float(offset)
    if math.isnan(offset):
        return fallback
    if math.isinf(offset):
        return GRID_SIZE - 1 if offset > 0 else 0
    index = round_half_up((offset - cell_size / 2) / cell_size)
    return max(0, min(GRID_SIZE - 1, index))


def pixel_to_score(x: float, y: float) -> Tuple[int, int]:
    """Return the scores of the cell whose centre is nearest to ``(x, y)``.

    Lossy: every pixel inside a cell maps to that cell, and points off the
    canvas clamp to the outermost row/column. Cell centres round-trip exactly.
    A NaN coordinate maps to the midpoint score on its axis.
    """
    column = nearest_cell(x, CELL_WIDTH, SCORE_MIDPOINT - 1)
    row = nearest_cell(y, CELL_HEIGHT, GRID_SIZE - SCORE_MIDPOINT)
    return column + 1, GRID_SIZE - row


def classify_quadrant(effort: float, business_value: float) -> str:
    """Quadrant id for a score pair.

    The midpoint 5 counts as "low" on both axes, so ``(5, 5)`` is a fill-in.
    """
    is_high_effort = effort > SCORE_MIDPOINT
    is_high_value = business_value > SCORE_MIDPOINT
    if is_high_value and not is_high_effort:
        return QUICK_WINS
    if is_high_value and is_high_effort:
        return MAJOR_PROJECTS
    if not is_high_value and not is_high_effort:
        return FILL_INS
    return THANKLESS_TASKS


def quadrant_label(quadrant: str) -> str:
    return QUADRANTS.get(quadrant, {}).get("label", quadrant)


def has_custom_position(position_x: Optional[float], position_y: Optional[float]) -> bool:
    return position_x is not None and position_y is not None


def has_position_drift(
    position_x: Optional[float],
    position_y: Optional[float],
    effort: float,
    business_value: float,
    tolerance: float = DEFAULT_DRIFT_TOLERANCE,
) -> bool:
    """True when a stored position sits more than ``tolerance`` px off its cell centre.

    Each axis is checked on its own; this is not a radius test.
    """
    if not has_custom_position(position_x, position_y):
        return False
    expected_x, expected_y = score_to_pixel(effort, business_value)
    return abs(float(position_x) - expected_x) > tolerance or abs(float(position_y) - expected_y) > tolerance


def drift_distance(
    position_x: Optional[float],
    position_y: Optional[float],
    effort: float,
    business_value: float,
) -> Optional[float]:
    if not has_custom_position(position_x, position_y):
        return None
    expected_x, expected_y = score_to_pixel(effort, business_value)
    return math.hypot(float(position_x) - expected_x, float(position_y) - expected_y)


def drift_delta(
    position_x: Optional[float],
    position_y: Optional[float],
    effort: float,
    business_value: float,
) -> Optional[Tuple[int, int]]:
    """Score-space offset of a custom position, as ``(effort_delta, value_delta)``."""
    if not has_custom_position(position_x, position_y):
        return None
    positioned_effort, positioned_value = pixel_to_score(position_x, position_y)
    return positioned_effort - clamp_score(effort), positioned_value - clamp_score(business_value)


def format_drift_delta(delta: Optional[Tuple[int, int]]) -> str:
    if delta is None:
        return "Grid position"
    effort_delta, value_delta = delta
    parts = []
    if effort_delta:
        parts.append(f"Effort {effort_delta:+d}")
    if value_delta:
        parts.append(f"Value {value_delta:+d}")
    if not parts:
        return "Same cell"
    return ", ".join(parts)
