"""
CSV rep analysis reports.

Layout of a report file:
- '#' header lines with session metadata
- one row per analyzed rep
- summary statistics
- quality grade distribution
"""

import csv
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from barpath.cv.rep_analyzer import RepRecord
from barpath.errors import ReportGenerationError

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "Rep_Number",
    "Timestamp_ms",
    "Exercise",
    "Tempo",
    "Total_Distance_cm",
    "Vertical_Range_cm",
    "Avg_Velocity_cm_s",
    "Peak_Velocity_cm_s",
    "Path_Deviation_cm",
    "Duration_sec",
    "Eccentric_Duration_sec",
    "Pause_Duration_sec",
    "Concentric_Duration_sec",
    "Quality_Score",
    "Grade",
]

# (label, lower bound inclusive, upper bound exclusive)
QUALITY_DISTRIBUTION = [
    ("A (90%+)", 90.0, None),
    ("B (70-89%)", 70.0, 90.0),
    ("C (50-69%)", 50.0, 70.0),
    ("D (30-49%)", 30.0, 50.0),
    ("F (<30%)", None, 30.0),
]


def _now_string() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class SessionInfo:
    """Session metadata written into the report header."""
    exercise: str
    tempo: str
    duration: str
    generated_at: str = field(default_factory=_now_string)


def rep_to_row(record: RepRecord) -> List[str]:
    return [
        str(record.rep_number),
        str(record.timestamp),
        record.exercise,
        record.tempo,
        f"{record.total_distance:.2f}",
        f"{record.vertical_range:.2f}",
        f"{record.avg_velocity:.2f}",
        f"{record.peak_velocity:.2f}",
        f"{record.path_deviation:.2f}",
        f"{record.duration_s:.1f}",
        f"{record.eccentric_s:.1f}",
        f"{record.pause_s:.1f}",
        f"{record.concentric_s:.1f}",
        f"{record.quality_score:.0f}",
        record.grade,
    ]


def average(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class CsvReportManager:
    """Writes rep reports to a directory and keeps only the newest few."""

    def __init__(self, report_dir, keep_reports: int = 10):
        self.report_dir = Path(report_dir)
        self.keep_reports = keep_reports

    def generate_report(self, records: Sequence[RepRecord], session_info: SessionInfo) -> Optional[Path]:
        """
        Write a report for the given reps.

        Returns:
            Path of the written file, or None when there are no reps

        Raises:
            ReportGenerationError: The file could not be written
        """
        if not records:
            logger.warning("Cannot create report with no rep data")
            return None

        try:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            file_path = self.report_dir / self._file_name(session_info)
            with open(file_path, "w", newline="") as f:
                self._write(f, records, session_info)
        except OSError as e:
            logger.exception(f"Failed to write report to {self.report_dir}")
            raise ReportGenerationError(f"Failed to write report: {e}", rep_count=len(records)) from e

        logger.info(f"Report written: {file_path} ({len(records)} reps)")
        self.cleanup_old_reports()
        return file_path

    def _file_name(self, session_info: SessionInfo) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S-%f")
        exercise = session_info.exercise.replace(" ", "_").replace("-", "_")
        return f"Barpath_{exercise}_{timestamp}.csv"

    def _write(self, f, records: Sequence[RepRecord], session_info: SessionInfo) -> None:
        scores = [r.quality_score for r in records]
        avg_quality = average(scores)

        f.write("# Barpath Tracker - Rep Analysis Report\n")
        f.write(f"# Generated: {session_info.generated_at}\n")
        f.write(f"# Exercise: {session_info.exercise}\n")
        f.write(f"# Tempo: {session_info.tempo}\n")
        f.write(f"# Total Reps: {len(records)}\n")
        f.write(f"# Session Duration: {session_info.duration}\n")
        f.write(f"# Average Quality Score: {avg_quality:.1f}\n")
        f.write("\n")

        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for record in records:
            writer.writerow(rep_to_row(record))

        f.write("\n# SUMMARY STATISTICS\n")
        writer.writerow(["Metric", "Value"])
        writer.writerow(["Total Reps", len(records)])
        writer.writerow(["Average Quality Score", f"{avg_quality:.1f}"])
        writer.writerow(["Best Rep Quality", f"{max(scores):.1f}"])
        writer.writerow(["Average Total Distance", f"{average([r.total_distance for r in records]):.1f} cm"])
        writer.writerow(["Average Vertical Range", f"{average([r.vertical_range for r in records]):.1f} cm"])

        f.write("\n# QUALITY DISTRIBUTION\n")
        writer.writerow(["Grade", "Count", "Percentage"])
        total = len(records)
        for label, low, high in QUALITY_DISTRIBUTION:
            count = sum(
                1 for s in scores
                if (low is None or s >= low) and (high is None or s < high)
            )
            writer.writerow([label, count, f"{count / total * 100:.1f}%"])

    def saved_reports(self) -> List[Path]:
        """Existing reports, newest first."""
        if not self.report_dir.exists():
            return []
        reports = [p for p in self.report_dir.iterdir() if p.suffix == ".csv"]
        return sorted(reports, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def cleanup_old_reports(self) -> int:
        """Delete reports beyond `keep_reports`. Returns how many were removed."""
        removed = 0
        for old in self.saved_reports()[self.keep_reports:]:
            try:
                old.unlink()
                removed += 1
                logger.debug(f"Deleted old report: {old.name}")
            except OSError as e:
                logger.error(f"Failed to delete old report {old.name}: {e}")
        return removed
