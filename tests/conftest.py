import json
import sys
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest


# Ensure repository root is on sys.path so `import rfi_extractor...` works in tests
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from rfi_extractor.checkpoint.checkpoint_store import CheckpointStore  # noqa: E402
from rfi_extractor.config.progress_logger import PROGRESS_LOG_FILENAME, ProgressLog  # noqa: E402
from rfi_extractor.config.settings import Settings  # noqa: E402
from rfi_extractor.extraction.retry_policy import RetryPolicy  # noqa: E402
from rfi_extractor.models.extraction_models import Unit, UnitResult  # noqa: E402


def pytest_configure(config):
    # Register custom markers used by this repo's tests
    config.addinivalue_line(
        "markers",
        "llm: live tests that call an LLM API (skipped if OPENAI_API_KEY is missing)",
    )


def response_json(org_type="Academic", recommendations=None, **extra):
    """Service response body in the shape the extraction prompt asks for"""
    if recommendations is None:
        recommendations = [
            {
                "id": 1,
                "recommendation": "Fund open evaluation benchmarks",
                "summary": "The submission asks for public funding of evaluation benchmarks.",
                "justification": "\"Benchmarks drive progress\" (p. 2).",
                "topics": [{"topic_id": 1, "topic": "Evaluation", "topic_justification": "Main ask."}],
                "hcai_values": [{"value_id": 1, "value": "Transparency", "value_justification": "Open."}],
                "hcai_properties": [],
                "hcai_purposes": [],
            },
            {
                "id": 2,
                "recommendation": "Expand compute access for universities",
                "summary": "Shared compute for academic researchers.",
                "justification": "Cost is the main barrier.",
                "topics": [{"topic_id": 1, "topic": "Infrastructure", "topic_justification": "Compute."}],
                "hcai_values": [],
                "hcai_properties": [],
                "hcai_purposes": [],
            },
        ]
    body = {"org_type": org_type, "total_recommendations": len(recommendations),
            "recommendations": recommendations}
    body.update(extra)
    return json.dumps(body)


def make_result(unit_id, record_ids=(1,), org_type="Academic", text="rec"):
    records = [
        {"id": rid, "recommendation": f"{text} {rid}", "summary": "", "justification": "",
         "topics": [], "hcai_values": [], "hcai_properties": [], "hcai_purposes": [],
         "doc_id": unit_id, "org_name": f"Org {unit_id}", "org_type": org_type}
        for rid in record_ids
    ]
    return UnitResult(unit_id=unit_id, records=records, org_type=org_type, tokens_used=10)


class _FakeChatResponse:
    """Simulates an OpenAI chat.completions response object"""
    def __init__(self, content, finish_reason="stop", response_id="chatcmpl_123", total_tokens=42):
        self.id = response_id
        self.choices = [] if content is None else [
            SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)
        ]
        self.usage = SimpleNamespace(total_tokens=total_tokens)


class _FakeCompletions:
    def __init__(self, responder):
        self._responder = responder
        self._lock = threading.Lock()
        self.calls = []

    def create(self, **kwargs):
        with self._lock:
            self.calls.append(kwargs)
        result = self._responder(kwargs)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, _FakeChatResponse):
            return result
        return _FakeChatResponse(result)


class _FakeOpenAIClient:
    """`responder(request_kwargs)` returns response text, a response, or an exception to raise"""
    def __init__(self, responder):
        self.chat = SimpleNamespace(completions=_FakeCompletions(responder))


@pytest.fixture
def fake_openai_client():
    return _FakeOpenAIClient


@pytest.fixture
def fake_chat_response():
    return _FakeChatResponse


@pytest.fixture
def sample_response():
    return response_json


@pytest.fixture
def result_factory():
    return make_result


@pytest.fixture
def make_units():
    def _make(*ids):
        return [Unit(id=uid, organization=f"Org {uid}", payload=f"Full text of submission {uid}.")
                for uid in ids]
    return _make


@pytest.fixture
def checkpoint_dir(tmp_path):
    return tmp_path / "temp_progress"


@pytest.fixture
def store(checkpoint_dir):
    return CheckpointStore(str(checkpoint_dir), ProgressLog(checkpoint_dir / PROGRESS_LOG_FILENAME, echo=False))


@pytest.fixture
def settings(checkpoint_dir):
    return Settings(
        OPENAI_API_KEY="test-key",
        CHECKPOINT_DIR=str(checkpoint_dir),
        GROUP_SIZE=2,
        MAX_PARALLEL_WORKERS=2,
        BATCH_POLL_INTERVAL_SECONDS=0.01,
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def no_sleep_policy(sleeps):
    """Retry policy with the default cap and no real waiting between attempts"""
    return RetryPolicy(max_attempts=3, sleep=sleeps.append)
