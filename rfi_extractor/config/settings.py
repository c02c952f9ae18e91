"""
Configuration settings for the RFI recommendation extraction pipeline

Settings are an explicit value passed into the pipeline. Environment variables
(optionally loaded from a .env file by the CLI) are read only when
`Settings.from_env()` is called.
"""
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from ..errors import PlanningError


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    # OpenAI Configuration
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4.1-mini"
    OPENAI_BASE_URL: Optional[str] = None
    MAX_OUTPUT_TOKENS: int = 16000
    TEMPERATURE: float = 0.1

    # Remote call policy
    REQUEST_TIMEOUT_SECONDS: float = 300.0
    MAX_ATTEMPTS: int = 3
    BACKOFF_MIN_SECONDS: float = 2.0
    BACKOFF_MAX_SECONDS: float = 30.0

    # Parallel Processing Configuration
    MAX_PARALLEL_WORKERS: int = 4
    GROUP_SIZE: int = 10               # Checkpoint every N documents
    GROUP_PAUSE_SECONDS: float = 0.0   # Brief pause between groups

    # Checkpoint Configuration
    CHECKPOINT_DIR: str = "temp_progress"

    # Batch API Configuration
    BATCH_POLL_INTERVAL_SECONDS: float = 60.0
    BATCH_COMPLETION_WINDOW: str = "24h"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None
    USE_COLORS: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables, falling back to defaults"""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(f.name)
            if raw is None or raw == "":
                continue
            default = f.default
            try:
                if isinstance(default, bool):
                    values[f.name] = _env_bool(raw)
                elif isinstance(default, int):
                    values[f.name] = int(raw)
                elif isinstance(default, float):
                    values[f.name] = float(raw)
                else:
                    values[f.name] = raw
            except ValueError as e:
                raise PlanningError(f"Invalid value for {f.name}: {raw!r} ({e})") from e
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with non-None overrides applied (CLI flags win over env)"""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def validate(self, require_api_key: bool = True) -> None:
        """Validate configuration; raises PlanningError on the first problem"""
        if require_api_key and not self.OPENAI_API_KEY:
            raise PlanningError("OPENAI_API_KEY is required (set it in the environment or a .env file)")
        if self.GROUP_SIZE < 1:
            raise PlanningError(f"GROUP_SIZE must be at least 1, got: {self.GROUP_SIZE}")
        if self.MAX_PARALLEL_WORKERS < 1:
            raise PlanningError(f"MAX_PARALLEL_WORKERS must be at least 1, got: {self.MAX_PARALLEL_WORKERS}")
        if self.MAX_ATTEMPTS < 1:
            raise PlanningError(f"MAX_ATTEMPTS must be at least 1, got: {self.MAX_ATTEMPTS}")
        if self.REQUEST_TIMEOUT_SECONDS <= 0:
            raise PlanningError("REQUEST_TIMEOUT_SECONDS must be positive")
        if self.BATCH_POLL_INTERVAL_SECONDS <= 0:
            raise PlanningError("BATCH_POLL_INTERVAL_SECONDS must be positive")
        if self.BACKOFF_MIN_SECONDS < 0 or self.BACKOFF_MAX_SECONDS < self.BACKOFF_MIN_SECONDS:
            raise PlanningError("Backoff bounds must satisfy 0 <= BACKOFF_MIN_SECONDS <= BACKOFF_MAX_SECONDS")
        if not self.CHECKPOINT_DIR:
            raise PlanningError("CHECKPOINT_DIR must not be empty")
