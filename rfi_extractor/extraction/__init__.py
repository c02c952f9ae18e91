"""
Extraction package: service clients, retry policy, prompt and response parsing
"""

from .batch_client import BatchJobClient, BatchJobInfo, BatchEntry, map_provider_status
from .llm_client import Completion, ExtractionClient, translate_openai_error
from .prompts import build_extraction_prompt
from .response_parser import parse_extraction_response, strip_code_fences
from .retry_policy import RetryPolicy
from .unit_processor import UnitProcessor

__all__ = [
    'BatchJobClient',
    'BatchJobInfo',
    'BatchEntry',
    'map_provider_status',
    'Completion',
    'ExtractionClient',
    'translate_openai_error',
    'build_extraction_prompt',
    'parse_extraction_response',
    'strip_code_fences',
    'RetryPolicy',
    'UnitProcessor',
]
