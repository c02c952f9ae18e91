"""
Colored console logging for extraction runs

Level colors on the main console stream, plus a separate "progress" logger
whose lines are colored by how far the run has got. File output is always
plain text.
"""

import logging
import re
import sys
from typing import Optional, Tuple

from colorama import Back, Fore, Style, init

init(autoreset=True)

PROGRESS_LOGGER_NAME = "progress"
CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_PERCENT_PATTERN = re.compile(r'\((\d+(?:\.\d+)?)%\)')
_GROUP_PATTERN = re.compile(r'\b(group \d+/\d+)\b', re.IGNORECASE)


class ColoredFormatter(logging.Formatter):
    """Colors whole lines by level, then highlights success markers and group counters"""

    LEVEL_COLORS = {
        'DEBUG': Fore.CYAN + Style.DIM,
        'INFO': Fore.BLUE,
        'WARNING': Fore.YELLOW + Style.BRIGHT,
        'ERROR': Fore.RED + Style.BRIGHT,
        'CRITICAL': Fore.RED + Back.YELLOW + Style.BRIGHT,
    }
    MARKER_COLORS = {
        "✅": Fore.GREEN + Style.BRIGHT,
        "🎉": Fore.MAGENTA + Style.BRIGHT,
    }

    def __init__(self, fmt=CONSOLE_FORMAT, datefmt='%H:%M:%S', use_colors=True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record):
        text = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelname) if self.use_colors else None
        if not color:
            return text

        text = f"{color}{text}{Style.RESET_ALL}"
        for marker, marker_color in self.MARKER_COLORS.items():
            text = text.replace(marker, f"{marker_color}{marker}{Style.RESET_ALL}{color}")
        return _GROUP_PATTERN.sub(f"{Fore.YELLOW}\\1{Style.RESET_ALL}{color}", text)


def progress_color(message: str) -> str:
    """Pick a color for a progress line: red -> yellow -> blue -> green as the run advances"""
    match = _PERCENT_PATTERN.search(message)
    if match:
        percentage = float(match.group(1))
        if percentage < 25:
            return Fore.RED
        if percentage < 50:
            return Fore.YELLOW
        if percentage < 75:
            return Fore.BLUE
        return Fore.GREEN
    if "🎉" in message:
        return Fore.MAGENTA + Style.BRIGHT
    if "⚠️" in message or "❌" in message:
        return Fore.YELLOW
    return Fore.CYAN


class ColoredProgressFormatter(logging.Formatter):
    """Timestamp + message, message colored by `progress_color`"""

    def __init__(self, use_colors=True):
        super().__init__('%(asctime)s - %(message)s')
        self.use_colors = use_colors

    def format(self, record):
        if not self.use_colors:
            return super().format(record)
        message = record.getMessage()
        return (f"{Fore.WHITE}{Style.DIM}{self.formatTime(record)}{Style.RESET_ALL} - "
                f"{progress_color(message)}{message}{Style.RESET_ALL}")


def _stream_handler(level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_colored_logging(log_level: str = "INFO",
                          log_file: Optional[str] = None,
                          use_colors: bool = True) -> Tuple[logging.Logger, logging.Logger]:
    """Configure root + progress loggers; returns both"""
    level = getattr(logging, str(log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(_stream_handler(level, ColoredFormatter(use_colors=use_colors)))

    # Progress lines bypass the root handler so they are not colored twice
    progress_logger = logging.getLogger(PROGRESS_LOGGER_NAME)
    progress_logger.handlers.clear()
    progress_logger.setLevel(logging.INFO)
    progress_logger.propagate = False
    progress_logger.addHandler(_stream_handler(logging.INFO, ColoredProgressFormatter(use_colors)))

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root_logger.addHandler(file_handler)
        progress_logger.addHandler(file_handler)

    return root_logger, progress_logger


class ColoredLogger:
    """Named logger with emoji-prefixed helpers; progress/milestone go to the progress logger"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.progress_logger = logging.getLogger(PROGRESS_LOGGER_NAME)

    def success(self, message: str):
        self.logger.info(f"✅ {message}")

    def error(self, message: str):
        self.logger.error(f"❌ {message}")

    def warning(self, message: str):
        self.logger.warning(f"⚠️  {message}")

    def info(self, message: str):
        self.logger.info(f"ℹ️  {message}")

    def progress(self, message: str):
        self.progress_logger.info(f"📊 {message}")

    def milestone(self, message: str):
        self.progress_logger.info(f"🎉 {message}")
