"""
Detection primitives shared by the post-processor and the path tracker.

All coordinates are normalized to the frame: (0, 0) is the top-left corner
and (1, 1) the bottom-right, so a larger y is lower on screen.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in normalized frame coordinates."""
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def area(self) -> float:
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.left + self.right) / 2.0, (self.top + self.bottom) / 2.0)

    def iou(self, other: "BoundingBox") -> float:
        """Intersection-over-union with another box (0 when the union is empty)."""
        inter_w = max(0.0, min(self.right, other.right) - max(self.left, other.left))
        inter_h = max(0.0, min(self.bottom, other.bottom) - max(self.top, other.top))
        intersection = inter_w * inter_h
        union = self.area + other.area - intersection
        return intersection / union if union > 0 else 0.0


@dataclass(frozen=True)
class Detection:
    """One post-processed detection for a single frame."""
    bbox: BoundingBox
    score: float
    class_id: int = 0

    @property
    def center(self) -> Tuple[float, float]:
        return self.bbox.center
