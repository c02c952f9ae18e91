"""
Explicit retry policy for remote extraction calls

Wraps tenacity so the attempt cap and backoff are a value handed to the
Unit Processor rather than a decorator fixed at import time. Only
TransientServiceError is retried; every other exception passes through on
the first attempt.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import TransientServiceError

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt cap plus exponential backoff between attempts"""
    max_attempts: int = 3
    backoff_multiplier: float = 1.0
    backoff_min: float = 2.0
    backoff_max: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.MAX_ATTEMPTS,
            backoff_min=settings.BACKOFF_MIN_SECONDS,
            backoff_max=settings.BACKOFF_MAX_SECONDS,
        )

    def retrying(self) -> Retrying:
        """Fresh tenacity controller (Retrying objects keep per-call statistics)"""
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_multiplier,
                                  min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception_type(TransientServiceError),
            sleep=self.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def call(self, fn: Callable[[], T]) -> T:
        """Run `fn` under this policy; re-raises the last error once the cap is hit"""
        return self.retrying()(fn)
