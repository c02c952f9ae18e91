"""
OpenAI Batch API client for the remote-batch execution strategy

Submits many chat-completion requests as one asynchronous job (50% cheaper
than immediate calls, results within the completion window), polls the job,
and downloads the per-request results keyed by `custom_id`.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import openai

from ..config.colored_logging import ColoredLogger
from ..errors import MalformedResponseError
from .llm_client import RETRYABLE_STATUS_CODES, translate_openai_error

BATCH_ENDPOINT = "/v1/chat/completions"

# Provider status -> pipeline status
QUEUED = "queued"
PROCESSING = "processing"
ENDED = "ended"

STATUS_MAP = {
    "validating": QUEUED,
    "in_progress": PROCESSING,
    "finalizing": PROCESSING,
    "cancelling": PROCESSING,
    "completed": ENDED,
    "failed": ENDED,
    "expired": ENDED,
    "cancelled": ENDED,
}

# Entry-level error codes worth resubmitting on a later run
RETRYABLE_ERROR_CODES = {"batch_expired", "batch_cancelled", "rate_limit_exceeded", "server_error"}

logger = logging.getLogger(__name__)


def map_provider_status(status: str) -> str:
    """Map an OpenAI batch status onto queued / processing / ended

    Statuses this client does not know yet are treated as still processing,
    so the job keeps being polled instead of aborting the run.
    """
    if status not in STATUS_MAP:
        logger.warning(f"⚠️ Unknown batch status from provider: {status!r}; treating as processing")
        return PROCESSING
    return STATUS_MAP[status]


@dataclass
class BatchJobInfo:
    """Snapshot of a remote batch job"""
    job_id: str
    state: str
    provider_status: str
    output_file_id: Optional[str] = None
    error_file_id: Optional[str] = None
    request_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def ended(self) -> bool:
        return self.state == ENDED


@dataclass
class BatchEntry:
    """Result of one request inside a batch job"""
    custom_id: str
    text: Optional[str] = None
    tokens_used: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None
    retryable: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.text is not None


def build_request_line(custom_id: str, body: Dict[str, Any]) -> str:
    """One JSONL line of a batch input file"""
    return json.dumps({
        "custom_id": custom_id,
        "method": "POST",
        "url": BATCH_ENDPOINT,
        "body": body,
    }, ensure_ascii=False)


def parse_result_line(line: str) -> BatchEntry:
    """Parse one line of a batch output or error file"""
    data = json.loads(line)
    custom_id = data.get("custom_id")
    if not isinstance(custom_id, str):
        raise MalformedResponseError("Batch result line without custom_id")

    error = data.get("error")
    if error:
        code = error.get("code") if isinstance(error, dict) else None
        message = error.get("message") if isinstance(error, dict) else str(error)
        return BatchEntry(custom_id, error=f"{code or 'error'}: {message}",
                          retryable=code in RETRYABLE_ERROR_CODES)

    response = data.get("response") or {}
    status_code = response.get("status_code")
    body = response.get("body") or {}
    if status_code != 200:
        message = (body.get("error") or {}).get("message", "no error message") if isinstance(body, dict) else body
        retryable = status_code in RETRYABLE_STATUS_CODES or (status_code or 0) >= 500
        return BatchEntry(custom_id, status_code=status_code,
                          error=f"Service returned {status_code}: {message}", retryable=retryable)

    choices = body.get("choices") or []
    if not choices:
        return BatchEntry(custom_id, status_code=status_code, error="No choices in response")
    usage = body.get("usage") or {}
    text = (choices[0].get("message") or {}).get("content") or ""
    return BatchEntry(custom_id, text=text, tokens_used=usage.get("total_tokens", 0) or 0,
                      status_code=status_code)


class BatchJobClient:
    """Manages OpenAI Batch API operations for recommendation extraction"""

    def __init__(self, client: Any, completion_window: str = "24h"):
        self.client = client
        self.completion_window = completion_window
        self.logger = ColoredLogger("batch_api")

    @classmethod
    def from_settings(cls, settings, client: Optional[Any] = None) -> "BatchJobClient":
        client = client or openai.OpenAI(api_key=settings.OPENAI_API_KEY,
                                         base_url=settings.OPENAI_BASE_URL,
                                         timeout=settings.REQUEST_TIMEOUT_SECONDS,
                                         max_retries=0)
        return cls(client, completion_window=settings.BATCH_COMPLETION_WINDOW)

    def submit(self, requests: Iterable[Tuple[str, Dict[str, Any]]]) -> str:
        """Upload a JSONL request file and create the batch job. Returns the job id."""
        lines = [build_request_line(custom_id, body) for custom_id, body in requests]
        if not lines:
            raise ValueError("Refusing to submit an empty batch")
        content = ("\n".join(lines) + "\n").encode("utf-8")

        try:
            self.logger.info(f"📤 Uploading batch file ({len(lines)} requests, {len(content):,} bytes)")
            batch_file = self.client.files.create(file=("batch_requests.jsonl", content), purpose="batch")
            batch_job = self.client.batches.create(
                input_file_id=batch_file.id,
                endpoint=BATCH_ENDPOINT,
                completion_window=self.completion_window,
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

        self.logger.success(f"Batch job created: {batch_job.id}")
        return batch_job.id

    def poll(self, job_id: str) -> BatchJobInfo:
        """Check the status of a batch job"""
        try:
            batch_job = self.client.batches.retrieve(job_id)
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

        counts = getattr(batch_job, "request_counts", None)
        request_counts = {
            "total": getattr(counts, "total", 0) or 0,
            "completed": getattr(counts, "completed", 0) or 0,
            "failed": getattr(counts, "failed", 0) or 0,
        } if counts is not None else {}
        return BatchJobInfo(
            job_id=batch_job.id,
            state=map_provider_status(batch_job.status),
            provider_status=batch_job.status,
            output_file_id=getattr(batch_job, "output_file_id", None),
            error_file_id=getattr(batch_job, "error_file_id", None),
            request_counts=request_counts,
        )

    def download_results(self, info: BatchJobInfo) -> Dict[str, BatchEntry]:
        """Retrieve and parse the result bundle of an ended job, keyed by custom_id"""
        entries: Dict[str, BatchEntry] = {}
        # Error file first so a success for the same custom_id wins
        for file_id in (info.error_file_id, info.output_file_id):
            if not file_id:
                continue
            for line in self._read_lines(file_id):
                try:
                    entry = parse_result_line(line)
                except (ValueError, MalformedResponseError) as e:
                    logger.warning(f"⚠️ Skipping unreadable batch result line: {e}")
                    continue
                entries[entry.custom_id] = entry
        return entries

    def _read_lines(self, file_id: str) -> List[str]:
        try:
            raw = self.client.files.content(file_id).content
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e
        text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        return [line for line in text.splitlines() if line.strip()]
