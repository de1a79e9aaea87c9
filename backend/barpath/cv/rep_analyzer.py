"""
Rep quality analysis for completed bar paths.

Converts a completed path into a RepRecord with physical metrics and a
composite quality score in [10, 100]. The score is a weighted sum of four
bucketed sub-scores:

- completeness (vertical range, cm)
- efficiency (vertical range / total distance)
- data density (point count)
- smoothness (vertical direction reversals per point)

A clean out-and-back rep covers its vertical range twice, so its
efficiency ratio tops out near 0.5 and the top efficiency bucket starts
just below that.

Analysis is a pure function of the points and labels: the same path always
yields the same record.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from barpath.config import Settings
from barpath.cv.path_tracker import PathPoint, total_distance, vertical_range

logger = logging.getLogger(__name__)

MIN_SCORE = 10.0
MAX_SCORE = 100.0

# (lower bound, score) pairs, checked top-down
DEFAULT_COMPLETENESS_BUCKETS = ((20.0, 100.0), (15.0, 85.0), (10.0, 70.0), (5.0, 50.0))
DEFAULT_EFFICIENCY_BUCKETS = ((0.45, 100.0), (0.35, 80.0), (0.25, 60.0), (0.15, 40.0))
DEFAULT_DENSITY_BUCKETS = ((40, 100.0), (25, 85.0), (15, 70.0), (10, 50.0))
# (upper bound, score) pairs for reversals per point
DEFAULT_SMOOTHNESS_BUCKETS = ((0.05, 100.0), (0.10, 80.0), (0.20, 60.0), (0.30, 40.0))


@dataclass
class QualityThresholds:
    """Validity limits, calibration and scoring tables for rep analysis."""
    min_analysis_points: int = 10
    min_analysis_distance: float = 0.01  # Normalized
    min_analysis_range: float = 0.01     # Normalized
    calibration_cm: float = 60.0
    reversal_noise: float = 0.005
    phase_pause_band: float = 0.01

    completeness_weight: float = 0.3
    efficiency_weight: float = 0.3
    density_weight: float = 0.2
    smoothness_weight: float = 0.2

    completeness_buckets: Tuple[Tuple[float, float], ...] = DEFAULT_COMPLETENESS_BUCKETS
    completeness_floor: float = 30.0
    efficiency_buckets: Tuple[Tuple[float, float], ...] = DEFAULT_EFFICIENCY_BUCKETS
    efficiency_floor: float = 20.0
    density_buckets: Tuple[Tuple[float, float], ...] = DEFAULT_DENSITY_BUCKETS
    density_floor: float = 30.0
    smoothness_buckets: Tuple[Tuple[float, float], ...] = DEFAULT_SMOOTHNESS_BUCKETS
    smoothness_floor: float = 20.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "QualityThresholds":
        return cls(
            min_analysis_points=settings.min_analysis_points,
            min_analysis_distance=settings.min_analysis_distance,
            min_analysis_range=settings.min_analysis_range,
            calibration_cm=settings.calibration_cm,
            reversal_noise=settings.reversal_noise,
            phase_pause_band=settings.phase_pause_band,
            completeness_weight=settings.completeness_weight,
            efficiency_weight=settings.efficiency_weight,
            density_weight=settings.density_weight,
            smoothness_weight=settings.smoothness_weight,
            completeness_buckets=_sorted_buckets(settings.completeness_buckets, descending=True),
            completeness_floor=settings.completeness_floor,
            efficiency_buckets=_sorted_buckets(settings.efficiency_buckets, descending=True),
            efficiency_floor=settings.efficiency_floor,
            density_buckets=_sorted_buckets(settings.density_buckets, descending=True),
            density_floor=settings.density_floor,
            smoothness_buckets=_sorted_buckets(settings.smoothness_buckets, descending=False),
            smoothness_floor=settings.smoothness_floor,
        )


def _sorted_buckets(buckets, descending: bool) -> Tuple[Tuple[float, float], ...]:
    # Lookups take the first matching bound, so order tables from the strictest bound
    pairs = [(float(bound), float(score)) for bound, score in buckets]
    return tuple(sorted(pairs, key=lambda pair: pair[0], reverse=descending))


@dataclass(frozen=True)
class RepRecord:
    """Scored metrics for one completed rep. Distances in cm, times in seconds."""
    rep_number: int
    exercise: str
    tempo: str
    total_distance: float
    vertical_range: float
    quality_score: float

    timestamp: int = 0  # Frame time (ms) of the rep's last point
    point_count: int = 0
    duration_s: float = 0.0
    avg_velocity: float = 0.0
    peak_velocity: float = 0.0
    path_deviation: float = 0.0
    eccentric_s: float = 0.0
    pause_s: float = 0.0
    concentric_s: float = 0.0
    sub_scores: Dict[str, float] = field(default_factory=dict, compare=False, hash=False)

    @property
    def grade(self) -> str:
        if self.quality_score >= 90:
            return "A"
        if self.quality_score >= 80:
            return "B"
        if self.quality_score >= 70:
            return "C"
        if self.quality_score >= 60:
            return "D"
        return "F"


@dataclass(frozen=True)
class PhaseBreakdown:
    eccentric: float
    pause: float
    concentric: float


def bucket_at_least(value: float, buckets: Sequence[Tuple[float, float]], floor: float) -> float:
    """Score of the first bucket whose lower bound `value` reaches."""
    for bound, score in buckets:
        if value >= bound:
            return score
    return floor


def bucket_at_most(value: float, buckets: Sequence[Tuple[float, float]], floor: float) -> float:
    """Score of the first bucket whose upper bound `value` stays within."""
    for bound, score in buckets:
        if value <= bound:
            return score
    return floor


def count_reversals(points: Sequence[PathPoint], noise: float) -> int:
    """Vertical direction changes, ignoring steps smaller than `noise`."""
    reversals = 0
    direction = 0
    for a, b in zip(points, points[1:]):
        dy = b.y - a.y
        if abs(dy) < noise:
            continue
        sign = 1 if dy > 0 else -1
        if direction and sign != direction:
            reversals += 1
        direction = sign
    return reversals


def velocities(points: Sequence[PathPoint], scale: float) -> List[float]:
    """Per-step speeds in scaled units per second (0 where time does not advance)."""
    speeds = []
    for a, b in zip(points, points[1:]):
        dt = (b.timestamp - a.timestamp) / 1000.0
        speeds.append(a.distance_to(b) * scale / dt if dt > 0 else 0.0)
    return speeds


def path_deviation(points: Sequence[PathPoint]) -> float:
    """Mean horizontal drift from the average x (normalized)."""
    if len(points) < 2:
        return 0.0
    xs = np.array([p.x for p in points], dtype=float)
    return float(np.mean(np.abs(xs - xs.mean())))


def phase_breakdown(points: Sequence[PathPoint], pause_band: float = 0.01) -> PhaseBreakdown:
    """
    Split a rep into eccentric, pause and concentric durations (seconds).

    The split happens at the turning point: the lowest bar position for a
    down-up rep, the highest for an up-down rep. Points around the turning
    point that stay within `pause_band` of it count as the pause.
    """
    if not points:
        return PhaseBreakdown(0.0, 0.0, 0.0)

    total = (points[-1].timestamp - points[0].timestamp) / 1000.0
    if len(points) < 6:
        return PhaseBreakdown(total * 0.4, total * 0.2, total * 0.4)

    ys = np.array([p.y for p in points], dtype=float)
    quarter = len(ys) // 4
    edges = (ys[:quarter].mean() + ys[-quarter:].mean()) / 2
    middle = ys[quarter:len(ys) - quarter].mean()
    down_up = middle >= edges

    turn = int(np.argmax(ys) if down_up else np.argmin(ys))
    hold_start = turn
    while hold_start > 0 and abs(ys[hold_start - 1] - ys[turn]) <= pause_band:
        hold_start -= 1
    hold_end = turn
    while hold_end < len(ys) - 1 and abs(ys[hold_end + 1] - ys[turn]) <= pause_band:
        hold_end += 1

    first_leg = (points[hold_start].timestamp - points[0].timestamp) / 1000.0
    pause = (points[hold_end].timestamp - points[hold_start].timestamp) / 1000.0
    second_leg = (points[-1].timestamp - points[hold_end].timestamp) / 1000.0

    if down_up:
        return PhaseBreakdown(first_leg, pause, second_leg)
    return PhaseBreakdown(second_leg, pause, first_leg)


class RepQualityAnalyzer:
    """
    Scores completed paths.

    Degenerate paths (too few points, no distance, no vertical range) are
    rejected with None rather than scored.
    """

    def __init__(self, thresholds: Optional[QualityThresholds] = None):
        self.thresholds = thresholds or QualityThresholds()

    def sub_scores(self, points: Sequence[PathPoint]) -> Dict[str, float]:
        """Bucketed sub-scores. Safe on any input, including identical points."""
        t = self.thresholds
        distance = total_distance(points)
        v_range = vertical_range(points)
        count = len(points)

        efficiency = v_range / distance if distance > 0 else 0.0
        reversal_rate = count_reversals(points, t.reversal_noise) / count if count else 1.0

        return {
            "completeness": bucket_at_least(v_range * t.calibration_cm, t.completeness_buckets, t.completeness_floor),
            "efficiency": bucket_at_least(efficiency, t.efficiency_buckets, t.efficiency_floor),
            "density": bucket_at_least(count, t.density_buckets, t.density_floor),
            "smoothness": bucket_at_most(reversal_rate, t.smoothness_buckets, t.smoothness_floor),
        }

    def quality_score(self, points: Sequence[PathPoint]) -> float:
        """Weighted composite of the sub-scores, clamped to [10, 100]."""
        t = self.thresholds
        scores = self.sub_scores(points)
        composite = (
            scores["completeness"] * t.completeness_weight
            + scores["efficiency"] * t.efficiency_weight
            + scores["density"] * t.density_weight
            + scores["smoothness"] * t.smoothness_weight
        )
        return round(min(MAX_SCORE, max(MIN_SCORE, composite)), 1)

    def analyze(self, path, exercise: str, tempo: str, rep_number: int) -> Optional[RepRecord]:
        """
        Analyze a completed path.

        Args:
            path: Anything with a `points` sequence of PathPoint
            exercise: Exercise label
            tempo: Tempo label
            rep_number: 1-based rep index within the session

        Returns:
            RepRecord, or None when the path is too degenerate to score
        """
        t = self.thresholds
        points = list(getattr(path, "points", path))

        if len(points) < t.min_analysis_points:
            logger.warning(f"Rep {rep_number}: {len(points)} points, need {t.min_analysis_points}")
            return None

        distance = total_distance(points)
        v_range = vertical_range(points)
        if distance < t.min_analysis_distance or v_range < t.min_analysis_range:
            logger.warning(f"Rep {rep_number}: degenerate path (distance={distance:.4f}, range={v_range:.4f})")
            return None

        speeds = velocities(points, t.calibration_cm)
        phases = phase_breakdown(points, t.phase_pause_band)

        return RepRecord(
            rep_number=rep_number,
            exercise=exercise,
            tempo=tempo,
            total_distance=distance * t.calibration_cm,
            vertical_range=v_range * t.calibration_cm,
            quality_score=self.quality_score(points),
            timestamp=points[-1].timestamp,
            point_count=len(points),
            duration_s=(points[-1].timestamp - points[0].timestamp) / 1000.0,
            avg_velocity=float(np.mean(speeds)) if speeds else 0.0,
            peak_velocity=max(speeds) if speeds else 0.0,
            path_deviation=path_deviation(points) * t.calibration_cm,
            eccentric_s=phases.eccentric,
            pause_s=phases.pause,
            concentric_s=phases.concentric,
            sub_scores=self.sub_scores(points),
        )

    def analyze_batch(self, paths, exercise: str, tempo: str) -> List[RepRecord]:
        """
        Analyze completed paths in order, skipping rejects.

        Rep numbers come from the path's `rep_number` when set, otherwise from
        its 1-based position.
        """
        records = []
        for index, path in enumerate(paths, start=1):
            rep_number = getattr(path, "rep_number", None) or index
            record = self.analyze(path, exercise, tempo, rep_number)
            if record is not None:
                records.append(record)
        return records
