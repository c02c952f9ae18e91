"""
Response parsing for the extraction service

The service is asked for a single JSON object but sometimes wraps it in a
fenced code block. Fences are stripped deterministically (first fenced block
wins; no fence is fine), then the object is validated and normalized:

- required top-level keys missing -> MalformedResponseError
- nested nice-to-have fields missing -> accepted with empty defaults
- `recommendations` given as a single object -> normalized to a one-item list
"""

import json
import re
from typing import Any, Dict, List, Optional

from ..errors import MalformedResponseError
from ..models.extraction_models import RECORD_LIST_FIELDS, RECORD_TEXT_FIELDS, Unit, UnitResult

FENCED_BLOCK_PATTERN = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\r?\n(.*?)\r?\n?[ \t]*```", re.DOTALL)

ORG_TYPE_KEYS = ("org_type", "organization_type")
RECOMMENDATIONS_KEY = "recommendations"


def strip_code_fences(text: str) -> str:
    """Return the content of the first fenced block, or the stripped text if there is none"""
    match = FENCED_BLOCK_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Parse one JSON object out of a (possibly fenced) response body"""
    if text is None or not text.strip():
        raise MalformedResponseError("Empty response content")

    body = strip_code_fences(text)
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        # Try to find the outermost object inside surrounding prose
        match = re.search(r"\{.*\}", body, re.DOTALL)
        if not match:
            raise MalformedResponseError(f"No JSON object found (content_len={len(text)})")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Invalid JSON: {e.msg} at line {e.lineno} column {e.colno}") from e

    if not isinstance(parsed, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _normalize_record(raw: Any, position: int, unit: Unit, org_type: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise MalformedResponseError(f"Recommendation #{position} is not an object")

    record = dict(raw)
    record_id = record.get("id")
    record["id"] = record_id if isinstance(record_id, (int, str)) and record_id != "" else position
    for key in RECORD_TEXT_FIELDS:
        value = record.get(key)
        record[key] = "" if value is None else str(value)
    for key in RECORD_LIST_FIELDS:
        record[key] = [item for item in _as_list(record.get(key)) if isinstance(item, dict)]

    # Identity always comes from the unit, never from the model's echo of it
    record["doc_id"] = unit.id
    record["org_name"] = unit.organization
    record["org_type"] = org_type
    return record


def parse_extraction_response(text: Optional[str], unit: Unit, tokens_used: int = 0) -> UnitResult:
    """Turn raw service output into a UnitResult or raise MalformedResponseError"""
    parsed = extract_json_object(text)

    org_type = next((parsed[k] for k in ORG_TYPE_KEYS if k in parsed), None)
    if org_type is None:
        raise MalformedResponseError("Missing required field: org_type")
    if RECOMMENDATIONS_KEY not in parsed:
        raise MalformedResponseError(f"Missing required field: {RECOMMENDATIONS_KEY}")

    raw_recommendations = parsed[RECOMMENDATIONS_KEY]
    if raw_recommendations is not None and not isinstance(raw_recommendations, (list, dict)):
        raise MalformedResponseError(
            f"'{RECOMMENDATIONS_KEY}' must be a list or object, got {type(raw_recommendations).__name__}"
        )

    org_type = str(org_type)
    records = [
        _normalize_record(raw, position, unit, org_type)
        for position, raw in enumerate(_as_list(raw_recommendations), start=1)
    ]
    # Record identity must be unique within a unit for downstream deduplication
    if len({str(r["id"]) for r in records}) != len(records):
        for position, record in enumerate(records, start=1):
            record["id"] = position
    return UnitResult(unit_id=unit.id, records=records, org_type=org_type, tokens_used=tokens_used)
