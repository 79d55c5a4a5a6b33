import math

import pytest

from impactmatrix.grid import (
    CELL_HEIGHT,
    CELL_WIDTH,
    FILL_INS,
    MAJOR_PROJECTS,
    QUADRANTS,
    QUICK_WINS,
    THANKLESS_TASKS,
    clamp_score,
    classify_quadrant,
    drift_delta,
    drift_distance,
    format_drift_delta,
    has_position_drift,
    pixel_to_score,
    quadrant_label,
    score_to_pixel,
)


def test_score_to_pixel_corners():
    assert score_to_pixel(1, 10) == (60, 32.5)
    assert score_to_pixel(10, 1) == (1140, 617.5)


def test_round_trip_every_cell():
    for effort in range(1, 11):
        for value in range(1, 11):
            x, y = score_to_pixel(effort, value)
            assert pixel_to_score(x, y) == (effort, value)


def test_pixel_inside_cell_maps_to_that_cell():
    assert pixel_to_score(0, 0) == (1, 10)
    assert pixel_to_score(CELL_WIDTH - 0.1, CELL_HEIGHT - 0.1) == (1, 10)
    assert pixel_to_score(CELL_WIDTH, CELL_HEIGHT) == (2, 9)


def test_pixel_off_canvas_clamps():
    assert pixel_to_score(-500, -500) == (1, 10)
    assert pixel_to_score(5000, 5000) == (10, 1)


@pytest.mark.parametrize(
    "x,y,expected",
    [
        (float("nan"), 10.0, (5, 10)),
        (60.0, float("nan"), (1, 5)),
        (float("inf"), 10.0, (10, 10)),
        (float("-inf"), 10.0, (1, 10)),
        (60.0, float("inf"), (1, 1)),
        (60.0, float("-inf"), (1, 10)),
        (float("nan"), float("nan"), (5, 5)),
    ],
)
def test_non_finite_pixels_are_clamped(x, y, expected):
    assert pixel_to_score(x, y) == expected


def test_drift_helpers_accept_non_finite_positions():
    assert drift_delta(float("nan"), 1.0, 5, 5) == (0, 5)
    assert has_position_drift(float("inf"), 10.0, 5, 5) is True
    assert drift_delta(float("-inf"), float("inf"), 5, 5) == (-4, -4)


def test_out_of_range_scores_are_clamped():
    assert score_to_pixel(0, 11) == score_to_pixel(1, 10)
    assert score_to_pixel(42, -3) == score_to_pixel(10, 1)


@pytest.mark.parametrize(
    "raw,expected",
    [(0, 1), (11, 10), (7.4, 7), (7.5, 8), (float("nan"), 5), (float("inf"), 10), ("x", 5)],
)
def test_clamp_score(raw, expected):
    assert clamp_score(raw) == expected


@pytest.mark.parametrize(
    "effort,value,quadrant",
    [
        (5, 5, FILL_INS),
        (5, 6, QUICK_WINS),
        (6, 6, MAJOR_PROJECTS),
        (6, 5, THANKLESS_TASKS),
        (1, 10, QUICK_WINS),
        (10, 1, THANKLESS_TASKS),
    ],
)
def test_classify_quadrant(effort, value, quadrant):
    assert classify_quadrant(effort, value) == quadrant


def test_quadrant_labels():
    assert set(QUADRANTS) == {QUICK_WINS, MAJOR_PROJECTS, FILL_INS, THANKLESS_TASKS}
    assert quadrant_label(QUICK_WINS) == "Quick Wins"
    assert quadrant_label("unknown") == "unknown"


def test_drift_is_false_without_custom_position():
    assert has_position_drift(None, None, 3, 3) is False
    assert has_position_drift(100.0, None, 3, 3) is False


def test_drift_tolerance_is_per_axis_and_exclusive():
    x, y = score_to_pixel(4, 6)
    assert has_position_drift(x, y, 4, 6) is False
    assert has_position_drift(x + 10, y, 4, 6) is False
    assert has_position_drift(x, y - 10.5, 4, 6) is True
    # 8px on both axes is more than 10px away in a straight line, but not on either axis.
    assert has_position_drift(x + 8, y + 8, 4, 6) is False
    assert has_position_drift(x + 8, y + 8, 4, 6, tolerance=5) is True


def test_drift_distance_and_delta():
    x, y = score_to_pixel(8, 8)
    assert drift_distance(x, y, 2, 8) == pytest.approx(6 * CELL_WIDTH)
    assert drift_delta(x, y, 2, 8) == (6, 0)
    assert drift_delta(None, None, 2, 8) is None
    assert math.isclose(drift_distance(x, y, 8, 8), 0.0)


def test_format_drift_delta():
    assert format_drift_delta(None) == "Grid position"
    assert format_drift_delta((0, 0)) == "Same cell"
    assert format_drift_delta((6, 0)) == "Effort +6"
    assert format_drift_delta((-1, 2)) == "Effort -1, Value +2"
