"""
Bar path pipeline: detector output to scored reps.

PIPELINE COMPONENTS:
1. DetectionPostProcessor: threshold, geometry, plausibility gate, greedy NMS, hold-last
2. PathTracker: noise-gated nearest-neighbor association into bounded paths
3. RepCompletionDetector: promotes stable, rep-shaped paths to completed reps
4. RepQualityAnalyzer: distance, range and a bucketed quality score per rep
5. SessionController: owns one session's pipeline and completed reps

Usage:
    from barpath.cv import SessionController

    session = SessionController(exercise="Squat", tempo="Moderate")
    session.start()
    for timestamp, anchors in frames:
        result = session.process_frame(anchors, timestamp)
        if result and result.new_reps:
            print(f"Rep {result.new_reps[-1].rep_number} done")
"""

from barpath.cv.detection import BoundingBox, Detection
from barpath.cv.post_processor import (
    DetectionPostProcessor, FrameDetections, PostProcessorThresholds,
    anchors_from_columns, non_max_suppression, postprocess
)
from barpath.cv.path_tracker import (
    Path, PathPoint, PathSnapshot, PathTracker, TrackerThresholds
)
from barpath.cv.rep_completion import (
    CompletionFailure, CompletionResult, CompletionThresholds,
    PathState, RepCompletionDetector, ShapePattern, classify_shape
)
from barpath.cv.rep_analyzer import QualityThresholds, RepQualityAnalyzer, RepRecord
from barpath.cv.session_controller import (
    FrameResult, ReportOutcome, ReportRequest, SessionController, SessionStats, format_duration
)

__all__ = [
    # Detection post-processing
    "BoundingBox",
    "Detection",
    "DetectionPostProcessor",
    "FrameDetections",
    "PostProcessorThresholds",
    "anchors_from_columns",
    "non_max_suppression",
    "postprocess",

    # Path tracking
    "Path",
    "PathPoint",
    "PathSnapshot",
    "PathTracker",
    "TrackerThresholds",

    # Rep completion
    "CompletionFailure",
    "CompletionResult",
    "CompletionThresholds",
    "PathState",
    "RepCompletionDetector",
    "ShapePattern",
    "classify_shape",

    # Quality analysis
    "QualityThresholds",
    "RepQualityAnalyzer",
    "RepRecord",

    # Session
    "FrameResult",
    "ReportOutcome",
    "ReportRequest",
    "SessionController",
    "SessionStats",
    "format_duration",
]
