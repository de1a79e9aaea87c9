"""Application configuration."""

from functools import lru_cache
from typing import List, Tuple

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Barpath Tracker"
    debug: bool = False
    api_prefix: str = "/api"

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Reports
    report_dir: str = "./reports"
    keep_reports: int = 10  # Older CSV reports beyond this are deleted

    # Detection post-processing
    confidence_threshold: float = 0.2
    iou_threshold: float = 0.3
    max_detections: int = 3
    hold_last_frames: int = 2  # Empty frames bridged with the last accepted detection
    recent_detection_window: int = 5
    max_context_distance: float = 0.2  # Temporal plausibility gate (normalized)
    min_box_area: float = 0.001
    max_box_area: float = 0.5
    min_aspect_ratio: float = 0.2
    max_aspect_ratio: float = 10.0
    min_box_width: float = 0.01
    min_box_height: float = 0.005

    # Path tracking
    max_active_paths: int = 1
    path_max_points: int = 200
    path_keep_ratio: float = 0.7
    max_jump_distance: float = 0.2
    max_speed: float = 2.0  # Normalized units per second
    tracking_tolerance: float = 0.15
    association_window_ms: int = 8000
    path_timeout_ms: int = 8000
    short_path_grace_ms: int = 5000
    cleanup_interval_ms: int = 3000
    max_consecutive_misses: int = 5  # Rejections before the noise gate lets the bar relocate

    # Rep completion
    min_path_points: int = 10
    stability_window_ms: int = 2000
    large_path_points: int = 30
    min_rep_range: float = 0.06
    min_movement: float = 0.03
    min_rep_duration_s: float = 0.5
    max_rep_duration_s: float = 30.0
    min_shape_points: int = 6

    # Rep quality analysis
    min_analysis_points: int = 10
    min_analysis_distance: float = 0.01
    min_analysis_range: float = 0.01
    calibration_cm: float = 60.0  # Vertical frame extent in centimeters
    reversal_noise: float = 0.005
    phase_pause_band: float = 0.01  # Normalized y band treated as the turnaround hold
    completeness_weight: float = 0.3
    efficiency_weight: float = 0.3
    density_weight: float = 0.2
    smoothness_weight: float = 0.2

    # Sub-score tables as [bound, score] pairs; env values are JSON, e.g. [[20, 100], [10, 70]]
    completeness_buckets: List[Tuple[float, float]] = [(20.0, 100.0), (15.0, 85.0), (10.0, 70.0), (5.0, 50.0)]
    completeness_floor: float = 30.0
    efficiency_buckets: List[Tuple[float, float]] = [(0.45, 100.0), (0.35, 80.0), (0.25, 60.0), (0.15, 40.0)]
    efficiency_floor: float = 20.0
    density_buckets: List[Tuple[float, float]] = [(40, 100.0), (25, 85.0), (15, 70.0), (10, 50.0)]
    density_floor: float = 30.0
    smoothness_buckets: List[Tuple[float, float]] = [(0.05, 100.0), (0.10, 80.0), (0.20, 60.0), (0.30, 40.0)]  # Upper bounds
    smoothness_floor: float = 20.0

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
