"""Tests for the nearest-neighbor path tracker."""

import math

import pytest

from barpath.config import Settings
from barpath.cv.path_tracker import (
    PathPoint,
    PathTracker,
    TrackerThresholds,
    duration_ms,
    total_distance,
    vertical_range,
)
from conftest import make_points


def test_path_metrics(rep_points):
    assert total_distance(rep_points) == pytest.approx(0.8)
    assert vertical_range(rep_points) == pytest.approx(0.4)
    assert duration_ms(rep_points) == 1900


def test_path_metrics_on_empty_input():
    assert total_distance([]) == 0.0
    assert vertical_range([]) == 0.0
    assert duration_ms([]) == 0


def test_thresholds_from_settings():
    thresholds = TrackerThresholds.from_settings(Settings(_env_file=None, min_path_points=10, path_max_points=200))
    assert thresholds.short_path_points == 5
    assert thresholds.keep_points == 140
    assert thresholds.max_consecutive_misses == 5


class TestNoiseGate:
    """Points are rejected on big jumps, high speed or stale timestamps."""

    def test_first_point_starts_path(self):
        tracker = PathTracker()
        paths = tracker.ingest((0.5, 0.5), 0)

        assert len(paths) == 1
        assert paths[0].path_id == "path_1"
        assert paths[0].points == (PathPoint(0.5, 0.5, 0),)

    def test_jump_is_rejected(self):
        tracker = PathTracker()
        tracker.ingest((0.5, 0.5), 0)

        paths = tracker.ingest((0.9, 0.5), 1000)

        assert len(paths[0].points) == 1
        assert tracker.consecutive_misses == 1
        assert tracker.last_point == PathPoint(0.5, 0.5, 0)

    def test_speed_is_rejected(self):
        tracker = PathTracker()
        tracker.ingest((0.5, 0.5), 0)

        # 0.15 in 50ms is 3 units/s
        tracker.ingest((0.5, 0.65), 50)

        assert tracker.consecutive_misses == 1
        assert len(tracker.paths[0].points) == 1

    def test_non_increasing_timestamp_is_rejected(self):
        tracker = PathTracker()
        tracker.ingest((0.5, 0.5), 100)
        tracker.ingest((0.5, 0.51), 100)
        tracker.ingest((0.5, 0.51), 50)

        assert tracker.consecutive_misses == 2
        assert len(tracker.paths[0].points) == 1

    def test_non_finite_center_is_rejected(self):
        tracker = PathTracker()
        tracker.ingest((math.nan, 0.5), 0)
        assert tracker.paths == []
        assert tracker.consecutive_misses == 1

    def test_gated_against_last_accepted_point(self):
        tracker = PathTracker()
        tracker.ingest((0.5, 0.5), 0)
        tracker.ingest((0.9, 0.5), 100)
        tracker.ingest((0.52, 0.5), 200)

        assert tracker.consecutive_misses == 0
        assert len(tracker.paths[0].points) == 2


class TestAssociation:
    def test_nearby_point_extends_path(self):
        tracker = PathTracker()
        tracker.ingest((0.3, 0.5), 0)
        tracker.ingest((0.3, 0.52), 100)

        assert len(tracker.paths) == 1
        assert len(tracker.paths[0].points) == 2

    def test_far_point_starts_new_path_under_cap(self):
        tracker = PathTracker(TrackerThresholds(max_active_paths=2))
        tracker.ingest((0.3, 0.5), 0)
        tracker.ingest((0.47, 0.5), 1000)

        paths = tracker.snapshot()
        assert [p.path_id for p in paths] == ["path_1", "path_2"]
        assert paths[0].color != paths[1].color

    def test_at_cap_falls_back_to_most_recent_path(self):
        tracker = PathTracker(TrackerThresholds(max_active_paths=2))
        tracker.ingest((0.3, 0.5), 0)
        tracker.ingest((0.47, 0.5), 1000)
        tracker.ingest((0.65, 0.5), 2000)

        paths = tracker.paths
        assert len(paths) == 2
        assert len(paths[0].points) == 1
        assert [p.x for p in paths[1].points] == [0.47, 0.65]

    def test_cap_is_never_exceeded(self):
        tracker = PathTracker(TrackerThresholds(max_active_paths=1))
        for i in range(20):
            tracker.ingest((0.1 + 0.18 * (i % 2), 0.5), i * 1000)
            assert len(tracker.paths) <= 1

    def test_association_window(self):
        tracker = PathTracker(TrackerThresholds(max_active_paths=2, path_timeout_ms=60000))
        tracker.ingest((0.5, 0.5), 0, cleanup=False)
        tracker.ingest((0.5, 0.51), 8000, cleanup=False)

        assert len(tracker.paths) == 2


class TestRelocation:
    """The noise gate stops holding once its reference point is stale."""

    def test_relocates_after_consecutive_misses(self):
        tracker = PathTracker(TrackerThresholds(max_consecutive_misses=3))
        tracker.ingest((0.2, 0.3), 0)

        for i in range(1, 4):
            tracker.ingest((0.7, 0.6), i * 33)
        assert tracker.consecutive_misses == 3

        paths = tracker.ingest((0.7, 0.6), 4 * 33)

        assert tracker.consecutive_misses == 0
        assert [p.path_id for p in paths] == ["path_2"]
        assert paths[0].points == (PathPoint(0.7, 0.6, 132),)

        tracker.ingest((0.7, 0.61), 5 * 33)
        assert len(tracker.paths[0].points) == 2

    def test_relocates_when_last_point_is_old(self):
        tracker = PathTracker(TrackerThresholds(association_window_ms=1000, path_timeout_ms=60000))
        tracker.ingest((0.2, 0.3), 0, cleanup=False)

        paths = tracker.ingest((0.7, 0.6), 1000, cleanup=False)

        assert tracker.consecutive_misses == 0
        assert tracker.last_point == PathPoint(0.7, 0.6, 1000)
        assert len(paths) == 1

    def test_retires_stalest_path_at_cap(self):
        tracker = PathTracker(TrackerThresholds(max_active_paths=2, max_consecutive_misses=1))
        tracker.ingest((0.3, 0.5), 0)
        tracker.ingest((0.47, 0.5), 1000)
        tracker.ingest((0.95, 0.95), 1100)

        paths = tracker.ingest((0.95, 0.95), 1200)

        assert [p.path_id for p in paths] == ["path_2", "path_3"]
        assert paths[1].points == (PathPoint(0.95, 0.95, 1200),)

    def test_fresh_rejections_do_not_relocate(self):
        tracker = PathTracker()
        tracker.ingest((0.2, 0.3), 0)
        for i in range(1, 5):
            tracker.ingest((0.7, 0.6), i * 33)

        assert tracker.consecutive_misses == 4
        assert tracker.last_point == PathPoint(0.2, 0.3, 0)
        assert [p.path_id for p in tracker.paths] == ["path_1"]

    def test_non_finite_point_never_relocates(self):
        tracker = PathTracker(TrackerThresholds(max_consecutive_misses=1))
        tracker.ingest((0.2, 0.3), 0)
        tracker.ingest((0.7, 0.6), 100)
        tracker.ingest((math.nan, 0.6), 200)

        assert tracker.consecutive_misses == 2
        assert tracker.last_point == PathPoint(0.2, 0.3, 0)


class TestTrimAndCleanup:
    def test_trim_keeps_recent_points(self):
        tracker = PathTracker(TrackerThresholds(path_max_points=10, path_keep_ratio=0.7))
        for i in range(11):
            tracker.ingest((0.5, 0.3 + 0.01 * i), i * 100)
            assert len(tracker.paths[0].points) <= 10

        points = tracker.paths[0].points
        assert len(points) == 7
        assert points[-1].timestamp == 1000
        assert points[0].timestamp == 400

    def test_stale_path_removed(self):
        tracker = PathTracker()
        tracker.ingest((0.5, 0.5), 0)

        removed = tracker.cleanup(9000)

        assert [p.path_id for p in removed] == ["path_1"]
        assert tracker.paths == []

    def test_short_old_path_removed(self):
        tracker = PathTracker()
        tracker.ingest((0.5, 0.5), 0)
        tracker.ingest((0.5, 0.51), 4000)

        tracker.cleanup(5001)

        assert tracker.paths == []

    def test_long_recent_path_kept(self):
        tracker = PathTracker()
        for point in make_points([0.5 + 0.01 * i for i in range(6)], step_ms=1000):
            tracker.ingest((point.x, point.y), point.timestamp)

        tracker.cleanup(6000)

        assert len(tracker.paths) == 1

    def test_cleanup_is_rate_limited(self):
        tracker = PathTracker()
        assert tracker.maybe_cleanup(0)
        assert not tracker.maybe_cleanup(3000)
        assert tracker.maybe_cleanup(3001)

    def test_ingest_runs_cleanup(self):
        tracker = PathTracker(TrackerThresholds(max_active_paths=2))
        tracker.ingest((0.3, 0.5), 0)
        tracker.ingest((0.47, 0.5), 1000)
        for i in range(1, 8):
            tracker.ingest((0.47, 0.5 + 0.01 * i), 1000 + i * 1000)

        # path_1 never grew and is past its grace period
        assert [p.path_id for p in tracker.paths] == ["path_2"]

    def test_ingest_without_cleanup(self):
        tracker = PathTracker()
        tracker.ingest((0.5, 0.5), 0, cleanup=False)
        tracker.ingest((0.5, 0.51), 9000, cleanup=False)
        assert len(tracker.paths) == 1


def test_reset_restarts_numbering():
    tracker = PathTracker()
    tracker.ingest((0.5, 0.5), 0)
    tracker.ingest((0.9, 0.5), 100)
    tracker.reset()

    assert tracker.paths == []
    assert tracker.consecutive_misses == 0
    assert tracker.last_point is None
    assert tracker.ingest((0.9, 0.9), 0)[0].path_id == "path_1"


def test_trackers_do_not_share_ids():
    first = PathTracker()
    second = PathTracker()
    first.ingest((0.5, 0.5), 0)
    assert second.ingest((0.5, 0.5), 0)[0].path_id == "path_1"


def test_snapshots_are_immutable_copies():
    tracker = PathTracker()
    tracker.ingest((0.5, 0.5), 0)
    before = tracker.snapshot()[0]

    tracker.ingest((0.5, 0.51), 100)

    assert len(before.points) == 1
    assert len(tracker.snapshot()[0].points) == 2
