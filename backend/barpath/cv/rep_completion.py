"""
Rep completion detection over active bar paths.

A path moves GROWING -> CANDIDATE once it has enough points and has either
gone quiet for the stability window or grown past a large size. A
candidate is ACCEPTED only when every completion check passes:

1. AmplitudeCheck: peak-to-peak vertical displacement
2. ShapePatternCheck: down-then-up or up-then-down over leading/middle/trailing segments
3. DurationCheck: first-to-last point time within bounds
4. PointDensityCheck: enough samples for the shape test to mean anything

Accepted paths leave the tracker. Candidates that fail stay active and may
keep growing; only tracker cleanup discards them.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from barpath.config import Settings
from barpath.cv.path_tracker import Path, PathPoint, PathTracker, duration_ms, vertical_range

logger = logging.getLogger(__name__)


class PathState(Enum):
    """Completion state of a single path."""
    GROWING = "growing"
    CANDIDATE = "candidate"
    ACCEPTED = "accepted"


class ShapePattern(Enum):
    """Vertical shape of a rep in image coordinates (y grows downward)."""
    DOWN_UP = "down_up"   # Squat, bench: bar goes down then back up
    UP_DOWN = "up_down"   # Deadlift, row, press: bar goes up then back down


class CompletionFailure:
    """Reasons a candidate path is not (yet) a rep."""
    INSUFFICIENT_RANGE = "insufficient_range"
    NO_REP_PATTERN = "no_rep_pattern"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    TOO_FEW_POINTS = "too_few_points"


@dataclass
class CompletionThresholds:
    """Tunables for candidate selection and the completion checks."""
    min_path_points: int = 10
    stability_window_ms: int = 2000
    large_path_points: int = 30
    min_rep_range: float = 0.06
    min_movement: float = 0.03
    min_rep_duration_s: float = 0.5
    max_rep_duration_s: float = 30.0
    min_shape_points: int = 6

    @classmethod
    def from_settings(cls, settings: Settings) -> "CompletionThresholds":
        return cls(
            min_path_points=settings.min_path_points,
            stability_window_ms=settings.stability_window_ms,
            large_path_points=settings.large_path_points,
            min_rep_range=settings.min_rep_range,
            min_movement=settings.min_movement,
            min_rep_duration_s=settings.min_rep_duration_s,
            max_rep_duration_s=settings.max_rep_duration_s,
            min_shape_points=settings.min_shape_points,
        )


def classify_shape(points: Sequence[PathPoint], min_movement: float, min_points: int = 6) -> Optional[ShapePattern]:
    """
    Classify a path as down-up or up-down.

    The sequence is split into a leading quarter, a trailing quarter and the
    middle. The middle average must lie below (down-up) or above (up-down)
    both edge averages, and at least one middle-to-edge difference must
    exceed `min_movement`.
    """
    n = len(points)
    if n < max(min_points, 3):
        return None

    quarter = n // 4
    if quarter == 0 or n - 2 * quarter <= 0:
        return None

    ys = np.array([p.y for p in points], dtype=float)
    start_y = float(ys[:quarter].mean())
    end_y = float(ys[n - quarter:].mean())
    middle_y = float(ys[quarter:n - quarter].mean())

    significant = abs(middle_y - start_y) > min_movement or abs(end_y - middle_y) > min_movement
    if not significant:
        return None

    if middle_y > start_y and middle_y > end_y:
        return ShapePattern.DOWN_UP
    if middle_y < start_y and middle_y < end_y:
        return ShapePattern.UP_DOWN
    return None


class CompletionCheck:
    """Base class for rep completion checks."""

    name: str = "base_check"
    failure_reason: str = ""

    def check(
        self,
        points: Sequence[PathPoint],
        thresholds: CompletionThresholds
    ) -> Tuple[bool, str, Dict[str, Any]]:
        """
        Perform the check.

        Returns:
            Tuple of (passed, failure_reason, metrics)
        """
        raise NotImplementedError


class AmplitudeCheck(CompletionCheck):
    """Bar must travel far enough vertically."""

    name = "amplitude"
    failure_reason = CompletionFailure.INSUFFICIENT_RANGE

    def check(self, points, thresholds):
        v_range = vertical_range(points)
        return v_range >= thresholds.min_rep_range, self.failure_reason, {
            "vertical_range": v_range,
            "threshold": thresholds.min_rep_range,
        }


class ShapePatternCheck(CompletionCheck):
    """Path must look like one down-up or up-down excursion."""

    name = "shape_pattern"
    failure_reason = CompletionFailure.NO_REP_PATTERN

    def check(self, points, thresholds):
        pattern = classify_shape(points, thresholds.min_movement, thresholds.min_shape_points)
        return pattern is not None, self.failure_reason, {
            "pattern": pattern.value if pattern else None,
            "min_movement": thresholds.min_movement,
        }


class DurationCheck(CompletionCheck):
    """Rep must take a plausible amount of time."""

    name = "duration"
    failure_reason = CompletionFailure.TOO_SHORT

    def check(self, points, thresholds):
        seconds = duration_ms(points) / 1000.0
        metrics = {
            "duration_s": seconds,
            "min_s": thresholds.min_rep_duration_s,
            "max_s": thresholds.max_rep_duration_s,
        }
        if seconds < thresholds.min_rep_duration_s:
            return False, CompletionFailure.TOO_SHORT, metrics
        if seconds > thresholds.max_rep_duration_s:
            return False, CompletionFailure.TOO_LONG, metrics
        return True, self.failure_reason, metrics


class PointDensityCheck(CompletionCheck):
    """Enough samples for the other checks to be meaningful."""

    name = "point_density"
    failure_reason = CompletionFailure.TOO_FEW_POINTS

    def check(self, points, thresholds):
        return len(points) >= thresholds.min_path_points, self.failure_reason, {
            "points": len(points),
            "threshold": thresholds.min_path_points,
        }


@dataclass
class CompletionResult:
    """Outcome of running the completion checks on one path."""
    passed: bool
    failure_reasons: List[str] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> PathState:
        return PathState.ACCEPTED if self.passed else PathState.CANDIDATE


class RepCompletionDetector:
    """
    Promotes stable, rep-shaped paths out of the tracker.

    The detector holds no per-path state; it is re-evaluated over the
    tracker's active paths on every pass.
    """

    CHECKS = [
        AmplitudeCheck(),
        ShapePatternCheck(),
        DurationCheck(),
        PointDensityCheck(),
    ]

    def __init__(self, thresholds: Optional[CompletionThresholds] = None):
        self.thresholds = thresholds or CompletionThresholds()

    def state_of(self, path: Path, now: int) -> PathState:
        """GROWING or CANDIDATE depending on size and recency."""
        t = self.thresholds
        count = len(path.points)
        if count < t.min_path_points:
            return PathState.GROWING

        is_stable = now - path.last_timestamp > t.stability_window_ms
        if is_stable or count > t.large_path_points:
            return PathState.CANDIDATE
        return PathState.GROWING

    def assess(self, points: Sequence[PathPoint]) -> CompletionResult:
        """Run every check; all must pass."""
        failure_reasons = []
        metrics: Dict[str, Any] = {}

        for check in self.CHECKS:
            passed, reason, check_metrics = check.check(points, self.thresholds)
            metrics[check.name] = check_metrics
            if not passed:
                failure_reasons.append(reason)

        return CompletionResult(
            passed=not failure_reasons,
            failure_reasons=failure_reasons,
            metrics=metrics,
        )

    def evaluate(self, tracker: PathTracker, now: int) -> List[Path]:
        """
        Check every candidate path and remove accepted ones from the tracker.

        Returns:
            Accepted paths, in the tracker's order
        """
        accepted = []
        for path in tracker.paths:
            if self.state_of(path, now) != PathState.CANDIDATE:
                continue

            result = self.assess(path.points)
            if result.passed:
                tracker.remove(path)
                accepted.append(path)
                logger.debug(f"{path.path_id} accepted with {len(path.points)} points")
            else:
                logger.debug(f"{path.path_id} candidate rejected: {result.failure_reasons}")

        return accepted
