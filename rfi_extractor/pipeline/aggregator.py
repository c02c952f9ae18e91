"""
Aggregator

Combines every published checkpoint group into one deduplicated result set.

Deduplication is last-write-wins by group recency: when a unit appears in
more than one group (for example after a checkpoint directory was merged from
two machines), the records from the group with the highest sequence replace
that unit's records from older groups. Within the surviving records, one
record is kept per `(unit_id, record id)`. Output order is sorted by unit id,
then record id, independent of file order on disk.
"""

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from ..checkpoint.checkpoint_store import CheckpointStore, atomic_write
from ..config.colored_logging import ColoredLogger
from ..errors import StorageError
from ..models.extraction_models import RECORD_LIST_FIELDS, RECORD_TEXT_FIELDS, UnitResult

CSV_LEADING_COLUMNS = ["doc_id", "org_name", "org_type", "id", *RECORD_TEXT_FIELDS, *RECORD_LIST_FIELDS]
NUMERIC_ID_PATTERN = re.compile(r"-?[0-9]+")


@dataclass
class AggregatedResults:
    """Final deduplicated result set plus summary counts"""
    records: List[Dict[str, Any]] = field(default_factory=list)
    documents_processed: int = 0
    documents_without_records: int = 0
    records_extracted: int = 0

    def summary(self) -> Dict[str, int]:
        return {
            "documents_processed": self.documents_processed,
            "documents_without_records": self.documents_without_records,
            "records_extracted": self.records_extracted,
        }


def _record_sort_key(record_id: Any) -> Tuple[int, Any]:
    # Numeric ids sort numerically and ahead of free-form string ids
    text = str(record_id)
    if NUMERIC_ID_PATTERN.fullmatch(text):
        return (0, int(text))
    return (1, text)


class Aggregator:
    """Reads the checkpoint store and produces the final output"""

    def __init__(self, store: CheckpointStore):
        self.store = store
        self.logger = ColoredLogger("aggregator")

    def latest_results(self) -> Dict[str, UnitResult]:
        """Newest stored result per unit id"""
        latest: Dict[str, UnitResult] = {}
        for group in self.store.load_all():  # ascending sequence
            for result in group.results:
                latest[result.unit_id] = result
        return latest

    def finalize(self) -> AggregatedResults:
        self.store.advise("📦 Combining all saved groups into final output...")
        latest = self.latest_results()

        records: List[Dict[str, Any]] = []
        without_records = 0
        for unit_id in sorted(latest):
            by_record_id: Dict[str, Dict[str, Any]] = {}
            for record in latest[unit_id].records:
                by_record_id[str(record.get("id"))] = record
            if not by_record_id:
                without_records += 1
            for key in sorted(by_record_id, key=_record_sort_key):
                records.append(by_record_id[key])

        results = AggregatedResults(
            records=records,
            documents_processed=len(latest),
            documents_without_records=without_records,
            records_extracted=len(records),
        )
        self.logger.info(f"📊 Total: {results.records_extracted} recommendations from "
                         f"{results.documents_processed} documents "
                         f"({results.documents_without_records} with none)")
        return results

    def export(self, output_path: str,
               results: Optional[AggregatedResults] = None) -> Tuple[Path, Path]:
        """Write the final JSON and CSV files; returns their paths"""
        results = results if results is not None else self.finalize()
        json_path = Path(output_path)
        if json_path.suffix.lower() != ".json":
            json_path = json_path.with_suffix(".json")
        csv_path = json_path.with_suffix(".csv")
        try:
            json_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create output directory {json_path.parent}: {e}") from e

        payload = {"summary": results.summary(), "records": results.records}
        atomic_write(json_path, lambda f: json.dump(payload, f, ensure_ascii=False, indent=2),
                     description="results")
        df = self.to_dataframe(results)
        atomic_write(csv_path, lambda f: df.to_csv(f, index=False), description="results")

        self.store.advise(f"✅ Final results saved to: {json_path} and {csv_path}")
        self.store.advise(f"📊 Total: {results.records_extracted} recommendations from "
                          f"{results.documents_processed} documents")
        return json_path, csv_path

    @staticmethod
    def to_dataframe(results: AggregatedResults) -> pd.DataFrame:
        """Flat table of records; nested lists are serialized as JSON strings"""
        df = pd.DataFrame(results.records)
        for column in CSV_LEADING_COLUMNS:
            if column not in df.columns:
                df[column] = pd.Series(dtype=object)
        for column in RECORD_LIST_FIELDS:
            df[column] = df[column].map(lambda v: json.dumps(v if isinstance(v, list) else [],
                                                            ensure_ascii=False))
        extra = [c for c in df.columns if c not in CSV_LEADING_COLUMNS]
        return df[CSV_LEADING_COLUMNS + extra]
