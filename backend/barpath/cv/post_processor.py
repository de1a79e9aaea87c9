"""
Post-processing of raw object-detector output into per-frame detections.

PIPELINE (per frame):
1. Threshold filter: drop anchors below the confidence threshold
2. Geometry: center/size -> clamped (left, top, right, bottom), drop degenerate boxes
3. Validity heuristic: plausible area, aspect ratio and dimensions for a barbell,
   plus an optional temporal gate around the recent average center
4. Greedy NMS: best-first, suppress overlaps above the IoU threshold

Malformed anchors (wrong arity, NaN/Inf, confidence outside [0, 1]) are
treated as below threshold. Nothing here raises on numeric input.

`postprocess` is a pure function. `DetectionPostProcessor` wraps it with the
per-session state needed for the temporal gate, primary-detection selection
and the bounded hold-last fallback over short detector dropouts.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Sequence, Tuple

import numpy as np

from barpath.config import Settings
from barpath.cv.detection import BoundingBox, Detection

logger = logging.getLogger(__name__)

ANCHOR_FIELDS = 5  # center_x, center_y, width, height, confidence


@dataclass
class PostProcessorThresholds:
    """Tunables for detection filtering."""
    confidence_threshold: float = 0.2
    iou_threshold: float = 0.3
    max_detections: int = 3

    # Barbell plausibility ranges
    min_box_area: float = 0.001
    max_box_area: float = 0.5
    min_aspect_ratio: float = 0.2
    max_aspect_ratio: float = 10.0
    min_box_width: float = 0.01
    min_box_height: float = 0.005

    # Temporal gate and dropout bridging
    max_context_distance: float = 0.2
    recent_detection_window: int = 5
    hold_last_frames: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "PostProcessorThresholds":
        return cls(
            confidence_threshold=settings.confidence_threshold,
            iou_threshold=settings.iou_threshold,
            max_detections=settings.max_detections,
            min_box_area=settings.min_box_area,
            max_box_area=settings.max_box_area,
            min_aspect_ratio=settings.min_aspect_ratio,
            max_aspect_ratio=settings.max_aspect_ratio,
            min_box_width=settings.min_box_width,
            min_box_height=settings.min_box_height,
            max_context_distance=settings.max_context_distance,
            recent_detection_window=settings.recent_detection_window,
            hold_last_frames=settings.hold_last_frames,
        )


def anchors_from_columns(
    center_x: Sequence[float],
    center_y: Sequence[float],
    width: Sequence[float],
    height: Sequence[float],
    confidence: Sequence[float],
) -> np.ndarray:
    """
    Stack per-anchor columns (detector layout) into an (A, 5) matrix.

    Columns of unequal length are cut to the shortest one: anchors missing
    a field cannot be decoded and are dropped.
    """
    columns = [np.ravel(np.asarray(c, dtype=float)) for c in (center_x, center_y, width, height, confidence)]
    length = min(len(c) for c in columns)
    if length == 0:
        return np.empty((0, ANCHOR_FIELDS), dtype=float)
    return np.stack([c[:length] for c in columns], axis=1)


def _as_anchor_matrix(anchors) -> np.ndarray:
    """Coerce anchor rows to an (A, 5) float matrix; malformed rows become NaN."""
    if anchors is None:
        return np.empty((0, ANCHOR_FIELDS), dtype=float)

    if isinstance(anchors, np.ndarray) and anchors.ndim == 2 and anchors.shape[1] == ANCHOR_FIELDS:
        try:
            return anchors.astype(float, copy=False)
        except (TypeError, ValueError):
            pass  # Object array with bad cells: decode row by row

    try:
        raw_rows = list(anchors)
    except TypeError:
        return np.empty((0, ANCHOR_FIELDS), dtype=float)

    rows = []
    for row in raw_rows:
        try:
            values = np.asarray(row, dtype=float).ravel()
        except (TypeError, ValueError):
            values = np.empty(0)
        if values.shape[0] != ANCHOR_FIELDS:
            values = np.full(ANCHOR_FIELDS, np.nan)
        rows.append(values)

    if not rows:
        return np.empty((0, ANCHOR_FIELDS), dtype=float)
    return np.vstack(rows)


def non_max_suppression(
    detections: List[Detection],
    iou_threshold: float,
    max_detections: int,
) -> List[Detection]:
    """Greedy NMS: keep the best box, drop everything overlapping it, repeat."""
    remaining = sorted(detections, key=lambda d: d.score, reverse=True)
    kept: List[Detection] = []

    while remaining and len(kept) < max_detections:
        best = remaining.pop(0)
        kept.append(best)
        remaining = [d for d in remaining if best.bbox.iou(d.bbox) <= iou_threshold]

    return kept


def postprocess(
    anchors,
    thresholds: Optional[PostProcessorThresholds] = None,
    recent_centers: Optional[Sequence[Tuple[float, float]]] = None,
) -> List[Detection]:
    """
    Turn raw anchor rows into a best-first, non-overlapping detection list.

    Args:
        anchors: (A, 5) array or iterable of (cx, cy, w, h, conf) rows
        thresholds: Filtering tunables (defaults when omitted)
        recent_centers: Centers of recently accepted detections; enables the
            temporal plausibility gate when non-empty

    Returns:
        At most `max_detections` detections, highest confidence first
    """
    t = thresholds or PostProcessorThresholds()
    matrix = _as_anchor_matrix(anchors)
    if matrix.shape[0] == 0:
        return []

    finite = np.all(np.isfinite(matrix), axis=1)
    matrix = np.where(np.isfinite(matrix), matrix, 0.0)
    cx, cy, w, h, conf = matrix.T

    keep = finite & (conf >= t.confidence_threshold) & (conf <= 1.0)

    left = np.clip(cx - w / 2.0, 0.0, 1.0)
    top = np.clip(cy - h / 2.0, 0.0, 1.0)
    right = np.clip(cx + w / 2.0, 0.0, 1.0)
    bottom = np.clip(cy + h / 2.0, 0.0, 1.0)
    keep &= (right > left) & (bottom > top)

    box_w = right - left
    box_h = bottom - top
    area = box_w * box_h
    aspect = np.divide(box_w, box_h, out=np.zeros_like(box_w), where=box_h > 0)

    keep &= (area > t.min_box_area) & (area < t.max_box_area)
    keep &= (aspect > t.min_aspect_ratio) & (aspect < t.max_aspect_ratio)
    keep &= (box_w > t.min_box_width) & (box_h > t.min_box_height)

    if recent_centers:
        avg_x = float(np.mean([c[0] for c in recent_centers]))
        avg_y = float(np.mean([c[1] for c in recent_centers]))
        distance = np.hypot((left + right) / 2.0 - avg_x, (top + bottom) / 2.0 - avg_y)
        keep &= distance < t.max_context_distance

    candidates = [
        Detection(
            bbox=BoundingBox(float(left[i]), float(top[i]), float(right[i]), float(bottom[i])),
            score=float(conf[i]),
            class_id=0,
        )
        for i in np.flatnonzero(keep)
    ]

    return non_max_suppression(candidates, t.iou_threshold, t.max_detections)


@dataclass
class FrameDetections:
    """Detections for one frame as handed to the tracker and the renderer."""
    detections: List[Detection] = field(default_factory=list)
    primary: Optional[Detection] = None
    held: bool = False  # True when the last accepted detection was reused


class DetectionPostProcessor:
    """
    Per-session detection filter.

    Keeps a short window of accepted detections for the temporal gate and
    for choosing the primary detection, and bridges up to `hold_last_frames`
    consecutive empty frames with the last accepted detection. A longer
    dropout clears the window, so the temporal gate does not lock out a bar
    that reappears somewhere else.
    """

    def __init__(self, thresholds: Optional[PostProcessorThresholds] = None):
        self.thresholds = thresholds or PostProcessorThresholds()
        self._recent: Deque[Detection] = deque(maxlen=max(1, self.thresholds.recent_detection_window))
        self._last_detection: Optional[Detection] = None
        self._consecutive_misses = 0

    @property
    def consecutive_misses(self) -> int:
        return self._consecutive_misses

    def process(self, anchors) -> FrameDetections:
        """Filter one frame of anchors and pick the detection to track."""
        recent_centers = [d.center for d in self._recent]
        detections = postprocess(anchors, self.thresholds, recent_centers)

        if not detections:
            return self._handle_no_detections()

        primary = self.select_primary(detections)
        self._consecutive_misses = 0
        self._last_detection = primary
        self._recent.append(primary)
        return FrameDetections(detections=detections, primary=primary)

    def select_primary(self, detections: List[Detection]) -> Optional[Detection]:
        """Detection closest to the recent average center, else the best one."""
        if not detections:
            return None
        if not self._recent:
            return detections[0]

        avg_x = sum(d.center[0] for d in self._recent) / len(self._recent)
        avg_y = sum(d.center[1] for d in self._recent) / len(self._recent)
        return min(
            detections,
            key=lambda d: (d.center[0] - avg_x) ** 2 + (d.center[1] - avg_y) ** 2,
        )

    def _handle_no_detections(self) -> FrameDetections:
        self._consecutive_misses += 1

        if self._last_detection is not None and self._consecutive_misses <= self.thresholds.hold_last_frames:
            logger.debug(f"Holding last detection (misses: {self._consecutive_misses})")
            held = self._last_detection
            return FrameDetections(detections=[held], primary=held, held=True)

        # Dropout outlasted hold-last: the bar may reappear anywhere
        if self._recent or self._last_detection is not None:
            logger.debug(f"Dropping detection history after {self._consecutive_misses} misses")
            self._recent.clear()
            self._last_detection = None

        return FrameDetections()

    def reset(self) -> None:
        self._recent.clear()
        self._last_detection = None
        self._consecutive_misses = 0
