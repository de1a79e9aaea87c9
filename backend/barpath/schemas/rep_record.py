"""Rep record schemas."""

from typing import Dict, List
from pydantic import BaseModel


class RepRecordResponse(BaseModel):
    """Schema for an analyzed rep."""
    rep_number: int
    exercise: str
    tempo: str
    timestamp: int
    point_count: int
    total_distance: float
    vertical_range: float
    duration_s: float
    avg_velocity: float
    peak_velocity: float
    path_deviation: float
    eccentric_s: float
    pause_s: float
    concentric_s: float
    quality_score: float
    grade: str
    sub_scores: Dict[str, float]

    class Config:
        from_attributes = True


class RepRecordListResponse(BaseModel):
    """Schema for a session's analyzed reps."""
    items: List[RepRecordResponse]
    total: int

    # Completed reps the analyzer refused to score
    rejected: int
