"""
Extraction data models for the processing pipeline
Contains shared data structures to avoid circular imports
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# Record fields that every recommendation carries after normalization
RECORD_TEXT_FIELDS = ("recommendation", "summary", "justification")
RECORD_LIST_FIELDS = ("topics", "hcai_values", "hcai_properties", "hcai_purposes")


@dataclass(frozen=True)
class Unit:
    """One document to be sent to the extraction service. Identity is `id`."""
    id: str
    organization: str
    payload: str


@dataclass
class UnitResult:
    """Structured extraction result for one unit (records may be empty)"""
    unit_id: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    org_type: str = ""
    tokens_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "org_type": self.org_type,
            "tokens_used": self.tokens_used,
            "records": self.records,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UnitResult":
        unit_id = data["unit_id"]
        records = data.get("records", [])
        if not isinstance(unit_id, str) or not isinstance(records, list):
            raise ValueError(f"Invalid unit result entry: {unit_id!r}")
        return cls(
            unit_id=unit_id,
            records=records,
            org_type=data.get("org_type", "") or "",
            tokens_used=int(data.get("tokens_used", 0) or 0),
        )


class FailureKind(Enum):
    """Why a unit produced no result in this run"""
    TRANSIENT = "transient"      # retries exhausted
    MALFORMED = "malformed"      # parse/schema failure, never retried in-process
    REJECTED = "rejected"        # non-retryable service error
    UNEXPECTED = "unexpected"    # anything else caught at the processor boundary


@dataclass
class Failure:
    """Typed failure for one unit. The unit stays in the remaining set."""
    unit_id: str
    kind: FailureKind
    message: str
    attempts: int = 0


UnitOutcome = Union[UnitResult, Failure]


@dataclass
class StoredGroup:
    """One published checkpoint entry as read back from disk"""
    sequence: int
    saved_at: datetime
    results: List[UnitResult]
    path: Optional[str] = None

    @property
    def unit_ids(self) -> List[str]:
        return [r.unit_id for r in self.results]


@dataclass
class RunReport:
    """Outcome of one execution-engine run"""
    state: str
    total_units: int = 0
    remaining_at_start: int = 0
    groups_planned: int = 0
    groups_saved: int = 0
    succeeded: int = 0
    failures: List[Failure] = field(default_factory=list)
    records_extracted: int = 0

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def failed_unit_ids(self) -> List[str]:
        return [f.unit_id for f in self.failures]
