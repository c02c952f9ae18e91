"""
Unit loader - reads the extracted submission texts into Units

Accepts the table produced by the upstream PDF text extraction step as
CSV, JSON (records) or JSONL. Column names are configurable; the defaults
match the upstream output (`submission_id`, `org_from_filename`,
`full_text`).
"""

import logging
from pathlib import Path
from typing import List, Optional

import pandas as pd

from ..errors import PlanningError
from ..models.extraction_models import Unit

DEFAULT_ID_COLUMN = "submission_id"
DEFAULT_ORG_COLUMN = "org_from_filename"
DEFAULT_TEXT_COLUMN = "full_text"

SUPPORTED_SUFFIXES = (".csv", ".json", ".jsonl")

logger = logging.getLogger(__name__)


def read_table(path: Path) -> pd.DataFrame:
    """Read CSV / JSON / JSONL into a DataFrame of strings"""
    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
        elif suffix == ".jsonl":
            df = pd.read_json(path, lines=True, dtype=False)
        elif suffix == ".json":
            df = pd.read_json(path, dtype=False)
        else:
            raise PlanningError(f"Unsupported input format '{suffix}' (expected one of {', '.join(SUPPORTED_SUFFIXES)})")
    except (OSError, ValueError) as e:
        raise PlanningError(f"Could not read input file {path}: {e}") from e
    return df.fillna("")


def load_units(path: str,
               id_column: str = DEFAULT_ID_COLUMN,
               org_column: str = DEFAULT_ORG_COLUMN,
               text_column: str = DEFAULT_TEXT_COLUMN,
               limit: Optional[int] = None) -> List[Unit]:
    """
    Load documents as Units, in file order.

    Rows without text are skipped with a warning (nothing to extract from).
    A missing column or a row without an id is a PlanningError.
    """
    input_path = Path(path)
    if not input_path.exists():
        raise PlanningError(f"Input file not found: {input_path}")

    df = read_table(input_path)
    missing = [c for c in (id_column, text_column) if c not in df.columns]
    if missing:
        raise PlanningError(f"Input file {input_path.name} is missing column(s): {', '.join(missing)} "
                            f"(available: {', '.join(map(str, df.columns))})")
    if org_column not in df.columns:
        logger.warning(f"⚠️ Column '{org_column}' not found; organization names will be empty")

    units: List[Unit] = []
    skipped = 0
    for position, row in enumerate(df.to_dict(orient="records"), start=1):
        unit_id = str(row[id_column]).strip()
        if not unit_id:
            raise PlanningError(f"Row {position} of {input_path.name} has an empty '{id_column}'")
        text = str(row[text_column] or "")
        if not text.strip():
            skipped += 1
            continue
        organization = str(row.get(org_column, "") or "").strip()
        units.append(Unit(id=unit_id, organization=organization, payload=text))

    if skipped:
        logger.warning(f"⚠️ Skipped {skipped} document(s) with no text")
    if limit is not None:
        units = units[:limit]

    logger.info(f"📂 Loaded {len(units)} documents from {input_path.name}")
    return units
