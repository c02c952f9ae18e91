"""
Processing Progress Log - append-only timeline with rate and ETA calculations

The progress log file is advisory: it is written for humans
(`tail -f temp_progress/processing_progress.log`) and is never read back
for control decisions.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from .colored_logging import ColoredLogger

PROGRESS_LOG_FILENAME = "processing_progress.log"


@dataclass
class ProcessingStats:
    """Statistics for a processing run"""
    total_items: int = 0
    already_completed: int = 0
    processed: int = 0
    failed: int = 0
    records_extracted: int = 0
    processing_rate: float = 0.0  # items per minute
    estimated_time_remaining: Optional[str] = None


class ProgressLog:
    """Append-only, human-readable timeline of lifecycle events"""

    def __init__(self, log_file: Path, echo: bool = True):
        self.log_file = Path(log_file)
        self.echo = echo
        self.logger = ColoredLogger("progress_log")

    def write(self, message: str) -> None:
        """Append a timestamped line to the log file and mirror it to the console"""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_file, "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] {message}\n")
        if self.echo:
            self.logger.progress_logger.info(message)


class RunProgress:
    """
    Tracks overall progress of a run across groups

    Provides processing rate (units per minute) and ETA for the units that
    remain, counted against the full unit set so resumed runs report the
    true overall percentage.
    """

    def __init__(self, total_items: int, already_completed: int = 0):
        self.start_time = datetime.now()
        self.stats = ProcessingStats(total_items=total_items, already_completed=already_completed)

    def update(self, processed: int = 0, failed: int = 0, records: int = 0) -> None:
        self.stats.processed += processed
        self.stats.failed += failed
        self.stats.records_extracted += records
        self._calculate_rate_and_eta()

    @property
    def completed_overall(self) -> int:
        return self.stats.already_completed + self.stats.processed

    @property
    def percentage(self) -> float:
        if self.stats.total_items <= 0:
            return 100.0
        return self.completed_overall / self.stats.total_items * 100

    def summary_line(self) -> str:
        line = (f"Overall progress: {self.completed_overall:,}/{self.stats.total_items:,} "
                f"({self.percentage:.1f}%) | Rate: {self.stats.processing_rate:.1f} docs/min | "
                f"ETA: {self.stats.estimated_time_remaining or 'calculating...'}")
        if self.stats.failed:
            line += f" | Failures: {self.stats.failed:,}"
        return line

    def elapsed(self) -> timedelta:
        return datetime.now() - self.start_time

    def _calculate_rate_and_eta(self) -> None:
        elapsed_seconds = self.elapsed().total_seconds()
        attempted = self.stats.processed + self.stats.failed
        if elapsed_seconds <= 0 or attempted == 0:
            self.stats.estimated_time_remaining = "calculating..."
            return

        self.stats.processing_rate = (attempted / elapsed_seconds) * 60
        remaining = max(self.stats.total_items - self.stats.already_completed - attempted, 0)
        eta_minutes = remaining / self.stats.processing_rate
        self.stats.estimated_time_remaining = format_duration(timedelta(minutes=eta_minutes))


def format_duration(duration: timedelta) -> str:
    """Format duration in human-readable format"""
    total_seconds = int(duration.total_seconds())
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m"
    elif minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
