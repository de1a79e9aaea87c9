"""Tests for detection post-processing."""

import math
from itertools import combinations

import numpy as np
import pytest

from barpath.cv.detection import BoundingBox, Detection
from barpath.cv.post_processor import (
    DetectionPostProcessor,
    PostProcessorThresholds,
    anchors_from_columns,
    non_max_suppression,
    postprocess,
)
from conftest import anchor


def test_bounding_box_iou():
    a = BoundingBox(0.0, 0.0, 0.2, 0.2)
    b = BoundingBox(0.1, 0.0, 0.3, 0.2)
    assert a.iou(b) == pytest.approx(1 / 3)
    assert a.iou(a) == pytest.approx(1.0)
    assert a.iou(BoundingBox(0.5, 0.5, 0.6, 0.6)) == 0.0


def test_iou_of_empty_boxes_is_zero():
    empty = BoundingBox(0.3, 0.3, 0.3, 0.3)
    assert empty.iou(empty) == 0.0


def test_nms_keeps_higher_confidence_of_overlapping_pair():
    """Two boxes with IoU ~0.9: only the 0.8 one survives."""
    anchors = [
        anchor(0.50, 0.5, w=0.2, h=0.1, conf=0.6),
        anchor(0.49, 0.5, w=0.2, h=0.1, conf=0.8),
    ]
    first = BoundingBox(0.40, 0.45, 0.60, 0.55)
    second = BoundingBox(0.39, 0.45, 0.59, 0.55)
    assert first.iou(second) > 0.9

    detections = postprocess(anchors)

    assert len(detections) == 1
    assert detections[0].score == pytest.approx(0.8)


def test_nms_output_is_pairwise_below_threshold():
    thresholds = PostProcessorThresholds(max_detections=10)
    anchors = [
        anchor(0.30 + 0.02 * i, 0.5, w=0.1, h=0.05, conf=0.9 - 0.05 * i)
        for i in range(8)
    ]

    detections = postprocess(anchors, thresholds)

    for a, b in combinations(detections, 2):
        assert a.bbox.iou(b.bbox) <= thresholds.iou_threshold


def test_non_max_suppression_respects_limit_and_order():
    boxes = [BoundingBox(0.1 * i, 0.4, 0.1 * i + 0.08, 0.45) for i in range(5)]
    detections = [Detection(b, score) for b, score in zip(boxes, [0.3, 0.9, 0.5, 0.7, 0.6])]

    kept = non_max_suppression(detections, iou_threshold=0.3, max_detections=3)

    assert [d.score for d in kept] == [0.9, 0.7, 0.6]


def test_max_detections_cap():
    anchors = [anchor(0.1 + 0.2 * i, 0.5, conf=0.5 + 0.1 * i) for i in range(5)]

    detections = postprocess(anchors)

    assert len(detections) == 3
    scores = [d.score for d in detections]
    assert scores == sorted(scores, reverse=True)


def test_confidence_threshold_filters_low_scores():
    detections = postprocess([anchor(0.5, 0.5, conf=0.1), anchor(0.2, 0.2, conf=0.2)])

    assert len(detections) == 1
    assert detections[0].score == pytest.approx(0.2)


def test_malformed_anchors_are_dropped():
    """NaN, infinities, wrong arity and out-of-range confidence never raise."""
    anchors = [
        [math.nan, 0.5, 0.1, 0.05, 0.9],
        [0.5, math.inf, 0.1, 0.05, 0.9],
        [0.5, 0.5, 0.1],
        [0.5, 0.5, 0.1, 0.05, 1.5],
        [0.5, 0.5, 0.1, 0.05, -0.3],
        "garbage",
        anchor(0.5, 0.5, conf=0.7),
    ]

    detections = postprocess(anchors)

    assert len(detections) == 1
    assert detections[0].score == pytest.approx(0.7)


def test_object_array_with_bad_cell_is_decoded_row_by_row():
    anchors = np.array([[0.5, 0.5, 0.1, 0.05, "x"], anchor(0.3, 0.4, conf=0.8)], dtype=object)

    detections = postprocess(anchors)

    assert len(detections) == 1
    assert detections[0].score == pytest.approx(0.8)
    assert detections[0].center == pytest.approx((0.3, 0.4))


def test_non_iterable_and_empty_input():
    assert postprocess(None) == []
    assert postprocess([]) == []
    assert postprocess(42) == []
    assert postprocess(np.empty((0, 5))) == []


def test_boxes_are_clamped_to_frame():
    detections = postprocess([anchor(0.02, 0.5, w=0.1, h=0.05)])

    assert len(detections) == 1
    box = detections[0].bbox
    assert box.left == 0.0
    assert box.right == pytest.approx(0.07)
    assert 0.0 <= box.top < box.bottom <= 1.0


def test_degenerate_boxes_are_dropped():
    assert postprocess([anchor(0.5, 0.5, w=0.0, h=0.05)]) == []
    # Entirely outside the frame clamps to zero width
    assert postprocess([anchor(1.5, 0.5, w=0.1, h=0.05)]) == []


@pytest.mark.parametrize(
    "row",
    [
        anchor(0.5, 0.5, w=0.02, h=0.02),   # Area too small
        anchor(0.5, 0.5, w=0.9, h=0.9),     # Area too large
        anchor(0.5, 0.5, w=0.6, h=0.04),    # Too elongated
        anchor(0.5, 0.5, w=0.03, h=0.2),    # Too tall
    ],
)
def test_implausible_boxes_are_dropped(row):
    assert postprocess([row]) == []


def test_temporal_gate_uses_recent_centers():
    rows = [anchor(0.5, 0.5, conf=0.9), anchor(0.15, 0.1, conf=0.5)]

    detections = postprocess(rows, recent_centers=[(0.1, 0.1)])

    assert len(detections) == 1
    assert detections[0].center == pytest.approx((0.15, 0.1))


def test_anchors_from_columns_cuts_to_shortest():
    matrix = anchors_from_columns([0.5, 0.6, 0.7], [0.5, 0.5], [0.1, 0.1, 0.1], [0.05, 0.05, 0.05], [0.9, 0.8, 0.7])

    assert matrix.shape == (2, 5)
    assert len(postprocess(matrix)) == 2


def test_anchors_from_columns_empty():
    assert anchors_from_columns([], [], [], [], []).shape == (0, 5)


class TestDetectionPostProcessor:
    """Stateful filtering: primary selection and hold-last bridging."""

    def test_hold_last_for_limited_frames(self):
        processor = DetectionPostProcessor(PostProcessorThresholds(hold_last_frames=2))
        first = processor.process([anchor(0.4, 0.5)])
        assert first.primary is not None and not first.held

        for _ in range(2):
            held = processor.process([])
            assert held.held
            assert held.primary == first.primary
            assert held.detections == [first.primary]

        expired = processor.process([])
        assert expired.primary is None
        assert expired.detections == []
        assert not expired.held
        assert processor.consecutive_misses == 3

    def test_no_hold_before_any_detection(self):
        processor = DetectionPostProcessor()
        frame = processor.process([])
        assert frame.primary is None
        assert not frame.held

    def test_hold_disabled(self):
        processor = DetectionPostProcessor(PostProcessorThresholds(hold_last_frames=0))
        processor.process([anchor(0.4, 0.5)])
        assert processor.process([]).primary is None

    def test_detection_resets_miss_counter(self):
        processor = DetectionPostProcessor()
        processor.process([anchor(0.4, 0.5)])
        processor.process([])
        processor.process([anchor(0.41, 0.5)])
        assert processor.consecutive_misses == 0

    def test_primary_is_closest_to_recent_average(self):
        processor = DetectionPostProcessor()
        processor.process([anchor(0.3, 0.5)])

        frame = processor.process([anchor(0.32, 0.5, conf=0.5), anchor(0.45, 0.5, conf=0.9)])

        assert frame.detections[0].score == pytest.approx(0.9)
        assert frame.primary.score == pytest.approx(0.5)

    def test_first_primary_is_best_confidence(self):
        processor = DetectionPostProcessor()
        frame = processor.process([anchor(0.2, 0.5, conf=0.5), anchor(0.7, 0.5, conf=0.9)])
        assert frame.primary.score == pytest.approx(0.9)

    def test_reset_clears_history(self):
        processor = DetectionPostProcessor()
        processor.process([anchor(0.1, 0.1)])
        processor.reset()

        # Far from the old history, accepted because the gate has no context
        frame = processor.process([anchor(0.8, 0.8)])
        assert frame.primary is not None
        assert processor.process([]).held

    def test_history_dropped_after_hold_expires(self):
        """A bar that reappears far away after a long dropout is not gated out."""
        processor = DetectionPostProcessor(PostProcessorThresholds(hold_last_frames=2))
        for _ in range(5):
            processor.process([anchor(0.2, 0.3)])

        for _ in range(100):
            processor.process([])

        frame = processor.process([anchor(0.7, 0.6)])
        assert frame.primary is not None
        assert frame.primary.center == pytest.approx((0.7, 0.6))
        assert processor.consecutive_misses == 0

    def test_short_dropout_keeps_temporal_gate(self):
        processor = DetectionPostProcessor(PostProcessorThresholds(hold_last_frames=2))
        processor.process([anchor(0.2, 0.3)])
        processor.process([])

        frame = processor.process([anchor(0.7, 0.6)])
        assert frame.held
        assert frame.primary.center == pytest.approx((0.2, 0.3))
