"""Celery worker for report generation off the frame-processing path."""

import logging
from typing import Any, Dict

from celery import Celery

from barpath.config import get_settings
from barpath.cv.rep_analyzer import QualityThresholds, RepQualityAnalyzer
from barpath.cv.session_controller import ReportRequest, run_report
from barpath.reports import CsvReportManager

settings = get_settings()
logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "barpath",
    broker=settings.redis_url,
    backend=settings.redis_url
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,  # Process one task at a time
)


@celery_app.task(name="generate_report")
def generate_report_task(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Analyze a session snapshot and write its CSV report.

    The payload is ReportRequest.to_payload() captured when the report was
    requested, so later frames or a session reset do not affect it.

    Report I/O failures propagate (ReportGenerationError) and mark the task
    failed; the live session still holds its reps, so the caller can retry.
    """
    request = ReportRequest.from_payload(payload)
    logger.info(f"Generating report: {request.exercise}, {len(request.reps)} completed reps")

    analyzer = RepQualityAnalyzer(QualityThresholds.from_settings(settings))
    reporter = CsvReportManager(settings.report_dir, keep_reports=settings.keep_reports)

    outcome = run_report(request, reporter, analyzer)
    if outcome is None:
        return {"status": "empty"}

    return {
        "status": "written",
        "path": str(outcome.location),
        "rep_count": outcome.rep_count,
    }
