"""
Nearest-neighbor gated tracker for the bar path.

One detection center per frame goes in; a small, bounded set of active
paths comes out. There is no motion model: association is purely distance
and time-window based.

INGEST STEPS:
1. Noise gate: reject jumps / implied speeds above threshold (miss counter).
   Once the gate has rejected `max_consecutive_misses` points in a row, or
   its reference point is older than the association window, a gated point
   is taken as a relocated bar and starts a new path
2. Association: nearest recent path within tolerance, else a new path while
   under the cap, else the most recently updated path
3. Append & trim: bounded point count with a keep window of recent points
4. Periodic cleanup: drop stale paths and short, old ones
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from barpath.config import Settings

logger = logging.getLogger(__name__)

PATH_COLORS = ("cyan", "yellow", "green", "magenta")


@dataclass(frozen=True)
class PathPoint:
    """Normalized bar center at one instant (timestamp in ms)."""
    x: float
    y: float
    timestamp: int

    def distance_to(self, other: "PathPoint") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


def total_distance(points: Sequence[PathPoint]) -> float:
    """Sum of consecutive point-to-point distances."""
    return sum(a.distance_to(b) for a, b in zip(points, points[1:]))


def vertical_range(points: Sequence[PathPoint]) -> float:
    if not points:
        return 0.0
    ys = [p.y for p in points]
    return max(ys) - min(ys)


def duration_ms(points: Sequence[PathPoint]) -> int:
    if not points:
        return 0
    return points[-1].timestamp - points[0].timestamp


@dataclass(frozen=True)
class PathSnapshot:
    """Immutable copy of a path, handed to renderers and kept for completed reps."""
    path_id: str
    points: Tuple[PathPoint, ...]
    created_at: int
    color: str
    rep_number: Optional[int] = None

    @property
    def total_distance(self) -> float:
        return total_distance(self.points)

    @property
    def vertical_range(self) -> float:
        return vertical_range(self.points)

    @property
    def duration_ms(self) -> int:
        return duration_ms(self.points)


@dataclass
class Path:
    """An active path, owned and mutated by the tracker only."""
    path_id: str
    created_at: int
    color: str = PATH_COLORS[0]
    points: List[PathPoint] = field(default_factory=list)

    @property
    def last_point(self) -> Optional[PathPoint]:
        return self.points[-1] if self.points else None

    @property
    def last_timestamp(self) -> int:
        return self.points[-1].timestamp if self.points else self.created_at

    def add_point(self, point: PathPoint, max_points: int, keep_points: int) -> None:
        """Append a point; past `max_points`, keep only the latest `keep_points`."""
        self.points.append(point)
        if len(self.points) > max_points:
            del self.points[:len(self.points) - keep_points]

    def snapshot(self, rep_number: Optional[int] = None) -> PathSnapshot:
        return PathSnapshot(
            path_id=self.path_id,
            points=tuple(self.points),
            created_at=self.created_at,
            color=self.color,
            rep_number=rep_number,
        )


@dataclass
class TrackerThresholds:
    """Gating and housekeeping tunables for the path tracker."""
    max_active_paths: int = 1
    path_max_points: int = 200
    path_keep_ratio: float = 0.7
    max_jump_distance: float = 0.2
    max_speed: float = 2.0  # Normalized units per second
    tracking_tolerance: float = 0.15
    association_window_ms: int = 8000
    path_timeout_ms: int = 8000
    short_path_points: int = 5
    short_path_grace_ms: int = 5000
    cleanup_interval_ms: int = 3000
    max_consecutive_misses: int = 5

    @property
    def keep_points(self) -> int:
        return max(1, min(self.path_max_points, int(self.path_max_points * self.path_keep_ratio)))

    @classmethod
    def from_settings(cls, settings: Settings) -> "TrackerThresholds":
        return cls(
            max_active_paths=settings.max_active_paths,
            path_max_points=settings.path_max_points,
            path_keep_ratio=settings.path_keep_ratio,
            max_jump_distance=settings.max_jump_distance,
            max_speed=settings.max_speed,
            tracking_tolerance=settings.tracking_tolerance,
            association_window_ms=settings.association_window_ms,
            path_timeout_ms=settings.path_timeout_ms,
            short_path_points=max(1, settings.min_path_points // 2),
            short_path_grace_ms=settings.short_path_grace_ms,
            cleanup_interval_ms=settings.cleanup_interval_ms,
            max_consecutive_misses=settings.max_consecutive_misses,
        )


class PathTracker:
    """
    Bounded nearest-neighbor tracker.

    Path ids come from a counter owned by the instance, so two trackers
    never share numbering.
    """

    def __init__(self, thresholds: Optional[TrackerThresholds] = None):
        self.thresholds = thresholds or TrackerThresholds()
        self._paths: List[Path] = []
        self._last_point: Optional[PathPoint] = None
        self._consecutive_misses = 0
        self._path_counter = 0
        self._last_cleanup: Optional[int] = None

    @property
    def consecutive_misses(self) -> int:
        return self._consecutive_misses

    @property
    def last_point(self) -> Optional[PathPoint]:
        return self._last_point

    @property
    def paths(self) -> List[Path]:
        """Live active paths. Only the completion detector should touch these."""
        return list(self._paths)

    def snapshot(self) -> List[PathSnapshot]:
        return [p.snapshot() for p in self._paths]

    def ingest(self, center: Tuple[float, float], timestamp: int, cleanup: bool = True) -> List[PathSnapshot]:
        """
        Feed one detection center.

        Args:
            center: Normalized (x, y) detection center
            timestamp: Frame time in ms, non-decreasing within a session
            cleanup: Run rate-limited cleanup after appending. Callers that
                evaluate completion first pass False and clean up afterwards.

        Returns:
            Snapshot of the active paths after the update
        """
        point = PathPoint(float(center[0]), float(center[1]), int(timestamp))

        if self._passes_noise_gate(point):
            path = self._find_or_create_path(point)
        elif self._is_relocation(point):
            logger.debug(
                f"Bar relocated to ({point.x:.3f}, {point.y:.3f}) after "
                f"{self._consecutive_misses} misses"
            )
            path = self._restart_path(point.timestamp)
        else:
            self._consecutive_misses += 1
            logger.debug(f"Rejected point ({point.x:.3f}, {point.y:.3f}) at {point.timestamp}ms")
            return self.snapshot()

        self._consecutive_misses = 0
        path.add_point(point, self.thresholds.path_max_points, self.thresholds.keep_points)
        self._last_point = point

        if cleanup:
            self.maybe_cleanup(point.timestamp)
        return self.snapshot()

    def _passes_noise_gate(self, point: PathPoint) -> bool:
        if not all(math.isfinite(v) for v in (point.x, point.y)):
            return False
        if self._last_point is None:
            return True

        last = self._last_point
        if point.timestamp <= last.timestamp:
            return False

        distance = point.distance_to(last)
        if distance > self.thresholds.max_jump_distance:
            return False

        speed = distance / ((point.timestamp - last.timestamp) / 1000.0)
        return speed <= self.thresholds.max_speed

    def _is_relocation(self, point: PathPoint) -> bool:
        """
        A gated point is taken as the bar's new position once the gate's
        reference is stale: too many consecutive rejections, or the last
        accepted point is older than the association window.
        """
        last = self._last_point
        if last is None or not all(math.isfinite(v) for v in (point.x, point.y)):
            return False
        if point.timestamp <= last.timestamp:
            return False
        return (
            self._consecutive_misses >= self.thresholds.max_consecutive_misses
            or point.timestamp - last.timestamp >= self.thresholds.association_window_ms
        )

    def _restart_path(self, timestamp: int) -> Path:
        """Start a path for a relocated bar, retiring the stalest path at the cap."""
        if self._paths and len(self._paths) >= self.thresholds.max_active_paths:
            stalest = min(self._paths, key=lambda p: p.last_timestamp)
            self._paths.remove(stalest)
            logger.debug(f"Retired {stalest.path_id} ({len(stalest.points)} points) for relocated bar")
        return self._start_path(timestamp)

    def _find_or_create_path(self, point: PathPoint) -> Path:
        best_path: Optional[Path] = None
        best_distance = math.inf

        for path in self._paths:
            last = path.last_point
            if last is None:
                continue
            if point.timestamp - last.timestamp >= self.thresholds.association_window_ms:
                continue
            distance = point.distance_to(last)
            if distance < self.thresholds.tracking_tolerance and distance < best_distance:
                best_distance = distance
                best_path = path

        if best_path is not None:
            return best_path

        if len(self._paths) < self.thresholds.max_active_paths:
            return self._start_path(point.timestamp)

        # At capacity: never drop a validated point
        return max(self._paths, key=lambda p: p.last_timestamp)

    def _start_path(self, timestamp: int) -> Path:
        self._path_counter += 1
        path = Path(
            path_id=f"path_{self._path_counter}",
            created_at=timestamp,
            color=PATH_COLORS[len(self._paths) % len(PATH_COLORS)],
        )
        self._paths.append(path)
        logger.debug(f"Started {path.path_id}")
        return path

    def maybe_cleanup(self, now: int) -> bool:
        """Run cleanup if the interval has elapsed. Returns True when it ran."""
        if self._last_cleanup is not None and now - self._last_cleanup <= self.thresholds.cleanup_interval_ms:
            return False
        self.cleanup(now)
        self._last_cleanup = now
        return True

    def cleanup(self, now: int) -> List[Path]:
        """Drop stale paths and short paths past their grace period."""
        t = self.thresholds
        removed = []
        for path in self._paths:
            is_stale = not path.points or now - path.last_timestamp > t.path_timeout_ms
            is_short_and_old = len(path.points) < t.short_path_points and now - path.created_at > t.short_path_grace_ms
            if is_stale or is_short_and_old:
                removed.append(path)

        for path in removed:
            self._paths.remove(path)
            logger.debug(f"Discarded {path.path_id} ({len(path.points)} points)")

        return removed

    def remove(self, path: Path) -> None:
        self._paths.remove(path)

    def reset(self) -> None:
        self._paths.clear()
        self._last_point = None
        self._consecutive_misses = 0
        self._path_counter = 0
        self._last_cleanup = None
