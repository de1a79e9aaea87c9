"""Session and frame schemas."""

from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from barpath.cv.detection import Detection
from barpath.cv.path_tracker import PathSnapshot
from barpath.cv.session_controller import FrameResult, SessionStats, format_duration
from barpath.labels import ExerciseType, Tempo


class SessionCreate(BaseModel):
    """Schema for starting a tracking session."""
    exercise: str = Field(ExerciseType.SQUAT.value, description="Exercise key, e.g. squat or deadlift")
    tempo: str = Field(Tempo.MODERATE.key, description="Tempo key, e.g. moderate or pause")

    @field_validator("exercise")
    @classmethod
    def validate_exercise(cls, v: str) -> str:
        if v not in ExerciseType.all():
            raise ValueError(f"exercise must be one of: {ExerciseType.all()}")
        return v

    @field_validator("tempo")
    @classmethod
    def validate_tempo(cls, v: str) -> str:
        if v not in Tempo.all():
            raise ValueError(f"tempo must be one of: {Tempo.all()}")
        return v


class SessionStatsResponse(BaseModel):
    """Aggregate session statistics."""
    total_reps: int
    average_quality: float
    elapsed_seconds: float
    elapsed: str

    @classmethod
    def from_stats(cls, stats: SessionStats) -> "SessionStatsResponse":
        return cls(
            total_reps=stats.total_reps,
            average_quality=round(stats.average_quality, 1),
            elapsed_seconds=stats.elapsed_seconds,
            elapsed=format_duration(stats.elapsed_seconds),
        )


class SessionResponse(BaseModel):
    """Schema for a live session."""
    id: str
    exercise: str
    tempo: str
    active_paths: int
    completed_reps: int
    next_rep_number: int
    dropped_frames: int
    stats: SessionStatsResponse


class FrameRequest(BaseModel):
    """
    One frame of raw detector output.

    Each anchor is [center_x, center_y, width, height, confidence] in
    normalized coordinates. Malformed anchors are dropped, not rejected.
    """
    timestamp_ms: int = Field(..., ge=0)
    anchors: List[List[float]] = Field(default_factory=list)


class EvaluateRequest(BaseModel):
    """Run completion checks without a new frame."""
    timestamp_ms: int = Field(..., ge=0)


class DetectionResponse(BaseModel):
    """Post-NMS detection for overlay drawing."""
    left: float
    top: float
    right: float
    bottom: float
    score: float
    class_id: int

    @classmethod
    def from_detection(cls, detection: Detection) -> "DetectionResponse":
        box = detection.bbox
        return cls(
            left=box.left,
            top=box.top,
            right=box.right,
            bottom=box.bottom,
            score=detection.score,
            class_id=detection.class_id,
        )


class PathPointResponse(BaseModel):
    x: float
    y: float
    timestamp: int


class PathResponse(BaseModel):
    """Read-only path snapshot."""
    id: str
    color: str
    created_at: int
    rep_number: Optional[int] = None
    points: List[PathPointResponse]

    @classmethod
    def from_snapshot(cls, snapshot: PathSnapshot) -> "PathResponse":
        return cls(
            id=snapshot.path_id,
            color=snapshot.color,
            created_at=snapshot.created_at,
            rep_number=snapshot.rep_number,
            points=[PathPointResponse(x=p.x, y=p.y, timestamp=p.timestamp) for p in snapshot.points],
        )


class FrameResponse(BaseModel):
    """Pipeline state after a frame (or evaluation pass)."""
    dropped: bool = False
    timestamp_ms: int
    detections: List[DetectionResponse] = Field(default_factory=list)
    active_paths: List[PathResponse] = Field(default_factory=list)
    new_reps: List[int] = Field(default_factory=list)
    completed_count: int = 0
    held_detection: bool = False
    rejected: bool = False

    @classmethod
    def from_result(cls, result: FrameResult) -> "FrameResponse":
        return cls(
            timestamp_ms=result.timestamp,
            detections=[DetectionResponse.from_detection(d) for d in result.detections],
            active_paths=[PathResponse.from_snapshot(p) for p in result.active_paths],
            new_reps=[rep.rep_number for rep in result.new_reps],
            completed_count=result.completed_count,
            held_detection=result.held_detection,
            rejected=result.rejected,
        )


class ReportResponse(BaseModel):
    """Report request outcome."""
    status: str  # "queued", "written", "empty" or "failed"
    task_id: Optional[str] = None
    rep_count: int = 0
    path: Optional[str] = None
    detail: Optional[str] = None
