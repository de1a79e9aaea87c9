"""
Session orchestration for the bar path pipeline.

Owns one post-processor, tracker, completion detector and analyzer, plus
the completed-rep list, for a single workout session.

CONCURRENCY:
- Frames are processed one at a time. A frame arriving while another is in
  flight is dropped (process_frame returns None), never queued.
- reset() and evaluate() wait for the in-flight frame, so no frame ever
  sees a half-cleared session.
- Completed reps are immutable snapshots; report generation works on a
  copied ReportRequest and can run on another thread or a Celery worker.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from barpath.config import Settings, get_settings
from barpath.cv.detection import Detection
from barpath.cv.path_tracker import PathPoint, PathSnapshot, PathTracker, TrackerThresholds
from barpath.cv.post_processor import DetectionPostProcessor, PostProcessorThresholds
from barpath.cv.rep_analyzer import QualityThresholds, RepQualityAnalyzer, RepRecord
from barpath.cv.rep_completion import CompletionThresholds, RepCompletionDetector
from barpath.errors import ReportGenerationError

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Human-readable elapsed time, e.g. '2m 5s'."""
    total = max(0, int(seconds))
    return f"{total // 60}m {total % 60}s"


@dataclass(frozen=True)
class SessionStats:
    """Aggregates derived from the completed-rep list."""
    total_reps: int
    average_quality: float
    elapsed_seconds: float


@dataclass(frozen=True)
class FrameResult:
    """Read-only view of the pipeline after one frame."""
    timestamp: int
    detections: Tuple[Detection, ...] = ()
    active_paths: Tuple[PathSnapshot, ...] = ()
    new_reps: Tuple[PathSnapshot, ...] = ()
    completed_count: int = 0
    held_detection: bool = False
    rejected: bool = False  # Detection present but refused by the noise gate


@dataclass(frozen=True)
class ReportOutcome:
    """Where a report went and how many reps it holds."""
    location: Any
    rep_count: int


@dataclass(frozen=True)
class ReportRequest:
    """Snapshot of everything report generation needs."""
    exercise: str
    tempo: str
    duration: str
    reps: Tuple[PathSnapshot, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.reps

    def to_payload(self) -> Dict[str, Any]:
        """JSON-serializable form for the Celery task."""
        return {
            "exercise": self.exercise,
            "tempo": self.tempo,
            "duration": self.duration,
            "reps": [
                {
                    "rep_number": rep.rep_number,
                    "path_id": rep.path_id,
                    "created_at": rep.created_at,
                    "color": rep.color,
                    "points": [[p.x, p.y, p.timestamp] for p in rep.points],
                }
                for rep in self.reps
            ],
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ReportRequest":
        reps = tuple(
            PathSnapshot(
                path_id=rep.get("path_id", f"rep_{rep['rep_number']}"),
                points=tuple(PathPoint(float(x), float(y), int(t)) for x, y, t in rep["points"]),
                created_at=int(rep.get("created_at", 0)),
                color=rep.get("color", "cyan"),
                rep_number=rep["rep_number"],
            )
            for rep in payload.get("reps", [])
        )
        return cls(
            exercise=payload["exercise"],
            tempo=payload["tempo"],
            duration=payload.get("duration", "0m 0s"),
            reps=reps,
        )


class SessionController:
    """
    Single-session pipeline owner.

    Data flows detector output -> post-processor -> tracker -> completion
    detector -> completed reps. Consumers only ever receive copies.
    """

    def __init__(
        self,
        exercise: str = "Squat",
        tempo: str = "Moderate",
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = settings or get_settings()
        self.exercise = exercise
        self.tempo = tempo
        self._clock = clock

        self.post_processor = DetectionPostProcessor(PostProcessorThresholds.from_settings(settings))
        self.tracker = PathTracker(TrackerThresholds.from_settings(settings))
        self.completion = RepCompletionDetector(CompletionThresholds.from_settings(settings))
        self.analyzer = RepQualityAnalyzer(QualityThresholds.from_settings(settings))

        self._lock = threading.Lock()
        self._drop_lock = threading.Lock()  # Guards dropped_frames; taken by frames that miss _lock
        self._completed: List[PathSnapshot] = []
        self._next_rep_number = 1
        self._started_at: Optional[float] = None
        self._dropped_frames = 0

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    @property
    def is_started(self) -> bool:
        return self._started_at is not None

    def start(self) -> None:
        """Begin a fresh session: clear all state and start the session clock."""
        with self._lock:
            self._clear()
            self._started_at = self._clock()
        logger.info(f"Session started: {self.exercise} / {self.tempo}")

    def reset(self) -> None:
        """Clear active paths, completed reps and counters."""
        with self._lock:
            self._clear()
        logger.info("Session cleared")

    def _clear(self) -> None:
        self.post_processor.reset()
        self.tracker.reset()
        self._completed = []
        self._next_rep_number = 1
        with self._drop_lock:
            self._dropped_frames = 0

    def process_frame(self, anchors, timestamp: int) -> Optional[FrameResult]:
        """
        Run one frame of detector output through the pipeline.

        Args:
            anchors: Raw (cx, cy, w, h, conf) rows for the frame
            timestamp: Frame time in ms

        Returns:
            FrameResult, or None if the frame was dropped because another
            frame is still being processed
        """
        if not self._lock.acquire(blocking=False):
            with self._drop_lock:
                self._dropped_frames += 1
            logger.debug(f"Dropped frame at {timestamp}ms: pipeline busy")
            return None

        try:
            if self._started_at is None:
                self._started_at = self._clock()

            frame = self.post_processor.process(anchors)
            rejected = False
            if frame.primary is not None:
                self.tracker.ingest(frame.primary.center, timestamp, cleanup=False)
                rejected = self.tracker.consecutive_misses > 0

            new_reps = self._complete_and_cleanup(timestamp)

            return FrameResult(
                timestamp=timestamp,
                detections=tuple(frame.detections),
                active_paths=tuple(self.tracker.snapshot()),
                new_reps=tuple(new_reps),
                completed_count=len(self._completed),
                held_detection=frame.held,
                rejected=rejected,
            )
        finally:
            self._lock.release()

    def evaluate(self, timestamp: int) -> FrameResult:
        """Run completion and cleanup without new input (e.g. detector idle)."""
        with self._lock:
            new_reps = self._complete_and_cleanup(timestamp)
            return FrameResult(
                timestamp=timestamp,
                active_paths=tuple(self.tracker.snapshot()),
                new_reps=tuple(new_reps),
                completed_count=len(self._completed),
            )

    def _complete_and_cleanup(self, timestamp: int) -> List[PathSnapshot]:
        new_reps = []
        for path in self.completion.evaluate(self.tracker, timestamp):
            rep = path.snapshot(rep_number=self._next_rep_number)
            self._next_rep_number += 1
            # Rebind rather than mutate so earlier snapshots of the list stay valid
            self._completed = self._completed + [rep]
            new_reps.append(rep)
            logger.info(f"Completed rep #{rep.rep_number} ({len(rep.points)} points)")

        self.tracker.maybe_cleanup(timestamp)
        return new_reps

    def active_paths(self) -> List[PathSnapshot]:
        return self.tracker.snapshot()

    def completed_reps(self) -> List[PathSnapshot]:
        return list(self._completed)

    @property
    def next_rep_number(self) -> int:
        return self._next_rep_number

    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock() - self._started_at)

    def rep_records(self) -> List[RepRecord]:
        """Analyze every completed rep; rejected reps are left out."""
        return self.analyzer.analyze_batch(self._completed, self.exercise, self.tempo)

    def stats(self) -> SessionStats:
        completed = self._completed
        records = self.analyzer.analyze_batch(completed, self.exercise, self.tempo)
        average = sum(r.quality_score for r in records) / len(records) if records else 0.0
        return SessionStats(
            total_reps=len(completed),
            average_quality=average,
            elapsed_seconds=self.elapsed_seconds(),
        )

    def build_report_request(self) -> ReportRequest:
        return ReportRequest(
            exercise=self.exercise,
            tempo=self.tempo,
            duration=format_duration(self.elapsed_seconds()),
            reps=tuple(self._completed),
        )

    def generate_report(self, reporter) -> Optional[ReportOutcome]:
        """
        Analyze the completed reps and hand them to a reporter.

        Args:
            reporter: Object with generate_report(records, session_info)

        Returns:
            ReportOutcome with the reporter's result (e.g. a file path), or
            None when there is nothing to report

        Raises:
            ReportGenerationError: The reporter failed to write. Completed
                reps are kept so the call can be retried.
        """
        return run_report(self.build_report_request(), reporter, self.analyzer)


def run_report(request: ReportRequest, reporter, analyzer: RepQualityAnalyzer) -> Optional[ReportOutcome]:
    """Analyze a report snapshot and write it. Shared by the controller and the worker."""
    from barpath.reports import SessionInfo

    if request.is_empty:
        logger.info("No completed reps to report")
        return None

    records = analyzer.analyze_batch(request.reps, request.exercise, request.tempo)
    if not records:
        logger.warning(f"None of {len(request.reps)} completed reps could be analyzed")
        return None

    info = SessionInfo(exercise=request.exercise, tempo=request.tempo, duration=request.duration)
    try:
        location = reporter.generate_report(records, info)
    except ReportGenerationError:
        raise
    except OSError as e:
        logger.exception(f"Report generation failed: {e}")
        raise ReportGenerationError(str(e), rep_count=len(records)) from e

    if location is None:
        return None
    return ReportOutcome(location=location, rep_count=len(records))
