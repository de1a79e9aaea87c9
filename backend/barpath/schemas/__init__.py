"""Pydantic schemas for API request/response models."""

from barpath.schemas.session import (
    SessionCreate,
    SessionResponse,
    SessionStatsResponse,
    FrameRequest,
    EvaluateRequest,
    DetectionResponse,
    PathResponse,
    FrameResponse,
    ReportResponse,
)
from barpath.schemas.rep_record import (
    RepRecordResponse,
    RepRecordListResponse,
)

__all__ = [
    "SessionCreate",
    "SessionResponse",
    "SessionStatsResponse",
    "FrameRequest",
    "EvaluateRequest",
    "DetectionResponse",
    "PathResponse",
    "FrameResponse",
    "ReportResponse",
    "RepRecordResponse",
    "RepRecordListResponse",
]
