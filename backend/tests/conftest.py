"""Pytest configuration and fixtures."""

from typing import List, Sequence

import pytest

from barpath.config import Settings
from barpath.cv.path_tracker import PathPoint


def rep_ys(low: float = 0.3, high: float = 0.7, half: int = 10) -> List[float]:
    """Y values for one down-then-up excursion: low -> high -> low."""
    step = (high - low) / (half - 1)
    down = [low + step * i for i in range(half)]
    up = [high - step * i for i in range(half)]
    return down + up


def make_points(ys: Sequence[float], x: float = 0.5, start_ms: int = 0, step_ms: int = 100) -> List[PathPoint]:
    return [PathPoint(x, y, start_ms + i * step_ms) for i, y in enumerate(ys)]


def anchor(cx: float, cy: float, w: float = 0.1, h: float = 0.05, conf: float = 0.9) -> List[float]:
    """One raw detector row: [center_x, center_y, width, height, confidence]."""
    return [cx, cy, w, h, conf]


@pytest.fixture
def settings(tmp_path):
    """Default tunables, with reports going to a temp directory.

    Returns:
        Settings that ignore any local .env file.
    """
    return Settings(_env_file=None, report_dir=str(tmp_path / "reports"))


@pytest.fixture
def rep_points():
    """One clean squat rep: y 0.3 -> 0.7 -> 0.3, 20 points 100ms apart, x fixed at 0.5.

    Returns:
        List of PathPoint.
    """
    return make_points(rep_ys())


@pytest.fixture
def flat_points():
    """Points that never move vertically.

    Returns:
        List of 20 identical PathPoint positions 100ms apart.
    """
    return make_points([0.5] * 20)


@pytest.fixture
def rep_frames():
    """Detector frames for one clean rep, as (anchors, timestamp_ms) pairs.

    Returns:
        List of single-anchor frames following rep_points.
    """
    return [([anchor(0.5, y)], i * 100) for i, y in enumerate(rep_ys())]
