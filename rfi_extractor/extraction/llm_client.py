"""
OpenAI client wrapper for recommendation extraction

Translates SDK exceptions into the pipeline's error taxonomy so the retry
policy can tell transient failures (timeouts, connection drops, 429, 5xx)
from permanent ones (bad request, auth).
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import openai

from ..errors import MalformedResponseError, ServiceRejectedError, TransientServiceError

RETRYABLE_STATUS_CODES = {408, 409, 429}

logger = logging.getLogger(__name__)


@dataclass
class Completion:
    """Raw text returned by the service plus accounting details"""
    text: str
    tokens_used: int = 0
    response_id: Optional[str] = None
    finish_reason: Optional[str] = None


def translate_openai_error(error: Exception) -> Exception:
    """Map an OpenAI SDK exception onto TransientServiceError / ServiceRejectedError"""
    if isinstance(error, openai.APITimeoutError):
        return TransientServiceError(f"Request timed out: {error}")
    if isinstance(error, openai.APIConnectionError):
        return TransientServiceError(f"Connection error: {error}")
    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return TransientServiceError(f"Service returned {status}: {error}", status_code=status)
        return ServiceRejectedError(f"Service rejected request ({status}): {error}", status_code=status)
    return error


class ExtractionClient:
    """Synchronous chat-completions client used by the worker pool"""

    def __init__(self,
                 api_key: Optional[str] = None,
                 model: str = "gpt-4.1-mini",
                 max_tokens: int = 16000,
                 temperature: float = 0.1,
                 timeout: float = 300.0,
                 base_url: Optional[str] = None,
                 client: Optional[Any] = None):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        # Retries are owned by RetryPolicy, so the SDK's own retry loop is disabled
        self.client = client or openai.OpenAI(api_key=api_key, base_url=base_url,
                                              timeout=timeout, max_retries=0)
        self.total_tokens_used = 0
        self.request_count = 0
        self._stats_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, client: Optional[Any] = None) -> "ExtractionClient":
        return cls(
            api_key=settings.OPENAI_API_KEY,
            model=settings.OPENAI_MODEL,
            max_tokens=settings.MAX_OUTPUT_TOKENS,
            temperature=settings.TEMPERATURE,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
            base_url=settings.OPENAI_BASE_URL,
            client=client,
        )

    def request_body(self, prompt: str) -> Dict[str, Any]:
        """Chat-completions request body (shared with the Batch API path)"""
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

    def complete(self, prompt: str) -> Completion:
        """One call to the service. Raises pipeline errors, never SDK errors."""
        try:
            response = self.client.chat.completions.create(**self.request_body(prompt), timeout=self.timeout)
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", 0) or 0
        with self._stats_lock:
            self.request_count += 1
            self.total_tokens_used += tokens_used

        if not response.choices:
            raise MalformedResponseError(f"No choices in response (response_id={response.id})")
        choice = response.choices[0]
        text = choice.message.content or ""
        if choice.finish_reason == "length":
            logger.warning(f"⚠️ Response truncated at max_tokens (response_id={response.id})")

        return Completion(
            text=text,
            tokens_used=tokens_used,
            response_id=getattr(response, "id", None),
            finish_reason=choice.finish_reason,
        )

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get usage statistics for cost monitoring"""
        return {
            "model": self.model,
            "requests": self.request_count,
            "total_tokens": self.total_tokens_used,
        }
