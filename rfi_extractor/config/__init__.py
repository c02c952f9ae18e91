"""
Configuration, logging and progress tracking for the extraction pipeline
"""

from .settings import Settings
from .colored_logging import ColoredLogger, setup_colored_logging
from .progress_logger import ProgressLog, RunProgress

__all__ = [
    "Settings",
    "ColoredLogger",
    "setup_colored_logging",
    "ProgressLog",
    "RunProgress",
]
