"""
Unit Processor

Performs one unit of work: build the prompt, call the service under the
retry policy, parse the response. Always returns a UnitResult or a typed
Failure; nothing raised inside escapes `process()`.
"""

import hashlib
import logging
from typing import Callable, Optional

from ..errors import MalformedResponseError, ServiceRejectedError, TransientServiceError
from ..models.extraction_models import Failure, FailureKind, Unit, UnitOutcome
from .llm_client import Completion, ExtractionClient
from .prompts import build_extraction_prompt
from .response_parser import parse_extraction_response
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


def _content_fingerprint(text: Optional[str]) -> str:
    """Short hash for logs; raw document or response text is never logged"""
    return hashlib.sha256((text or "").encode("utf-8")).hexdigest()[:16]


class UnitProcessor:
    """Turns one Unit into a UnitResult or a Failure"""

    def __init__(self,
                 client: ExtractionClient,
                 retry_policy: Optional[RetryPolicy] = None,
                 prompt_builder: Callable[[Unit], str] = build_extraction_prompt):
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.prompt_builder = prompt_builder

    def process(self, unit: Unit) -> UnitOutcome:
        attempts = 0

        def attempt() -> Completion:
            nonlocal attempts
            attempts += 1
            return self.client.complete(prompt)

        try:
            prompt = self.prompt_builder(unit)
            completion = self.retry_policy.call(attempt)
            result = parse_extraction_response(completion.text, unit, tokens_used=completion.tokens_used)
        except TransientServiceError as e:
            logger.error(f"❌ {unit.id}: service unavailable after {attempts} attempt(s): {e}")
            return Failure(unit.id, FailureKind.TRANSIENT, str(e), attempts)
        except MalformedResponseError as e:
            logger.error(f"❌ {unit.id}: malformed response, will retry on next run: {e}")
            return Failure(unit.id, FailureKind.MALFORMED, str(e), attempts)
        except ServiceRejectedError as e:
            logger.error(f"❌ {unit.id}: request rejected by service: {e}")
            return Failure(unit.id, FailureKind.REJECTED, str(e), attempts)
        except Exception as e:
            logger.exception(f"💥 {unit.id}: unexpected error "
                             f"(payload_sha256_16={_content_fingerprint(unit.payload)})")
            return Failure(unit.id, FailureKind.UNEXPECTED, f"{type(e).__name__}: {e}", attempts)

        logger.info(f"✅ {unit.id}: {len(result.records)} recommendations "
                    f"(attempts: {attempts}, tokens: {result.tokens_used})")
        return result
