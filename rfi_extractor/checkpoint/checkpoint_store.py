"""
Checkpoint Store for the Extraction Pipeline

Durable record of which documents are done and what was extracted from them.
Each completed group is published as one immutable JSON file:

    <checkpoint_dir>/group_000001_<first-unit-id>.json

Files are written to a `.tmp` sibling, fsynced, and published with a single
`os.replace`, so a reader sees either the whole group or nothing. The set of
completed unit ids is always derived by scanning the published files; there is
no separate state file that could drift out of sync with them.
"""

import json
import os
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, TextIO

from filelock import FileLock, Timeout

from ..config.colored_logging import ColoredLogger
from ..config.progress_logger import PROGRESS_LOG_FILENAME, ProgressLog
from ..errors import StorageError
from ..models.extraction_models import StoredGroup, UnitResult

CHECKPOINT_FORMAT_VERSION = 1
GROUP_FILE_PATTERN = re.compile(r"^group_(\d{6,})_.*\.json$")
TEMP_SUFFIX = ".tmp"
LOCK_FILENAME = ".checkpoint.lock"
BATCH_JOBS_FILENAME = "batch_jobs.json"
LOCK_TIMEOUT_SECONDS = 30.0

_logger = ColoredLogger("checkpoint_store")


def _safe_fragment(unit_id: str, max_len: int = 40) -> str:
    """Filesystem-safe fragment of a unit id for readable file names"""
    fragment = re.sub(r"[^A-Za-z0-9._-]+", "_", unit_id).strip("._")
    return (fragment or "unit")[:max_len]


def _fsync_directory(directory: Path) -> None:
    # Persist the rename itself; directories cannot be opened this way on Windows
    if os.name != "posix":
        return
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _remove_quietly(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
    except OSError as e:
        _logger.warning(f"Could not remove temp file {path.name}: {e}")


def atomic_write(target: Path, write: Callable[[TextIO], None], description: str = "file") -> None:
    """
    Save data atomically using temp file + rename pattern.

    `write` receives the open temp file. Readers see the old file or the
    complete new one, never a partial write. Failures raise StorageError
    with the temp file removed.
    """
    target = Path(target)
    temp_file = target.with_name(target.name + TEMP_SUFFIX)
    try:
        with open(temp_file, "w", encoding="utf-8", newline="") as f:
            write(f)
            f.flush()             # Flush Python buffers
            os.fsync(f.fileno())  # Force write to disk
        os.replace(temp_file, target)
        _fsync_directory(target.parent)
    except (OSError, TypeError, ValueError) as e:
        _logger.error(f"Atomic save of {target.name} failed: {e}")
        _remove_quietly(temp_file)
        raise StorageError(f"Failed to write {description} {target}: {e}") from e


class CheckpointStore:
    """Append-only set of immutable group files plus an advisory progress log"""

    def __init__(self, checkpoint_dir: str, progress_log: Optional[ProgressLog] = None):
        self.checkpoint_dir = Path(checkpoint_dir)
        self.progress_log = progress_log or ProgressLog(self.checkpoint_dir / PROGRESS_LOG_FILENAME)
        self.lock = FileLock(str(self.checkpoint_dir / LOCK_FILENAME), timeout=LOCK_TIMEOUT_SECONDS)
        self.logger = ColoredLogger("checkpoint_store")

    # ------------------------------------------------------------------
    # Reads (corruption tolerant)
    # ------------------------------------------------------------------

    def list_completed_ids(self) -> Set[str]:
        """Union of unit ids across all readable group files"""
        completed: Set[str] = set()
        for group in self._scan():
            completed.update(group.unit_ids)
        return completed

    def load_all(self) -> List[StoredGroup]:
        """All readable groups ordered by sequence (oldest first)"""
        groups = self._scan()
        if groups:
            total_docs = sum(len(g.results) for g in groups)
            self.logger.info(f"📂 Loaded {len(groups)} checkpoint groups ({total_docs} documents)")
        return groups

    def _group_files(self) -> List[Path]:
        if not self.checkpoint_dir.exists():
            return []
        try:
            candidates = [p for p in self.checkpoint_dir.iterdir()
                          if p.is_file() and GROUP_FILE_PATTERN.match(p.name)]
        except OSError as e:
            raise StorageError(f"Cannot list checkpoint directory {self.checkpoint_dir}: {e}") from e
        return sorted(candidates, key=lambda p: (int(GROUP_FILE_PATTERN.match(p.name).group(1)), p.name))

    def _scan(self) -> List[StoredGroup]:
        groups = []
        for path in self._group_files():
            try:
                groups.append(self._read_group(path))
            except (OSError, ValueError, KeyError, TypeError) as e:
                self._warn(f"Could not read {path.name}: {e}")
        return groups

    def _read_group(self, path: Path) -> StoredGroup:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("checkpoint payload is not an object")

        version = data.get("format_version")
        if version != CHECKPOINT_FORMAT_VERSION:
            raise ValueError(f"unsupported checkpoint format version: {version!r}")

        results = [UnitResult.from_dict(entry) for entry in data["results"]]
        return StoredGroup(
            sequence=int(data["sequence"]),
            saved_at=datetime.fromisoformat(data["saved_at"]),
            results=results,
            path=str(path),
        )

    # ------------------------------------------------------------------
    # Writes (atomic, fatal on failure)
    # ------------------------------------------------------------------

    def save_group(self, group_results: Sequence[UnitResult]) -> Path:
        """
        Durably publish one group of results.

        Either the full group becomes visible to `list_completed_ids` /
        `load_all`, or nothing does. Storage failures raise StorageError.
        """
        results = list(group_results)
        if not results:
            raise ValueError("Refusing to save an empty checkpoint group")
        unit_ids = [r.unit_id for r in results]
        if len(set(unit_ids)) != len(unit_ids):
            raise ValueError(f"Duplicate unit ids within one group: {unit_ids}")

        self._ensure_directory()
        try:
            with self.lock:
                sequence = self._next_sequence()
                filename = f"group_{sequence:06d}_{_safe_fragment(unit_ids[0])}.json"
                target = self.checkpoint_dir / filename
                payload = {
                    "format_version": CHECKPOINT_FORMAT_VERSION,
                    "sequence": sequence,
                    "saved_at": datetime.now().isoformat(),
                    "unit_ids": unit_ids,
                    "results": [r.to_dict() for r in results],
                }
                self._atomic_write_json(target, payload)
        except Timeout as e:
            raise StorageError(
                f"Another process holds the checkpoint lock {self.lock.lock_file}; "
                f"is a second run using the same checkpoint directory?"
            ) from e

        records = sum(len(r.records) for r in results)
        self.advise(f"💾 Saved: {filename} ({len(results)} documents, {records} recommendations)")
        return target

    def _next_sequence(self) -> int:
        sequences = [int(GROUP_FILE_PATTERN.match(p.name).group(1)) for p in self._group_files()]
        return max(sequences, default=0) + 1

    def _ensure_directory(self) -> None:
        try:
            self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create checkpoint directory {self.checkpoint_dir}: {e}") from e

    def _atomic_write_json(self, target: Path, payload: Dict[str, Any]) -> None:
        atomic_write(target, lambda f: json.dump(payload, f, ensure_ascii=False, indent=2),
                     description="checkpoint")

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_partial_files(self) -> int:
        """Remove `.tmp` files left behind by a crash mid-save"""
        if not self.checkpoint_dir.exists():
            return 0
        removed = 0
        for path in self.checkpoint_dir.glob(f"*{TEMP_SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                raise StorageError(f"Cannot remove partial checkpoint {path}: {e}") from e
        if removed:
            self.advise(f"🧹 Removed {removed} partial checkpoint file(s) from an interrupted save")
        return removed

    def discard(self) -> None:
        """Delete the whole store. Every unit becomes eligible for processing again."""
        if not self.checkpoint_dir.exists():
            return
        try:
            shutil.rmtree(self.checkpoint_dir)
        except OSError as e:
            raise StorageError(f"Cannot remove checkpoint directory {self.checkpoint_dir}: {e}") from e
        self.logger.info(f"🗑️ Discarded checkpoint store: {self.checkpoint_dir}")

    def stats(self) -> Dict[str, Any]:
        """Summary of what is on disk (groups, documents, recommendations, damaged files)"""
        files = self._group_files()
        groups = self._scan()
        partial = list(self.checkpoint_dir.glob(f"*{TEMP_SUFFIX}")) if self.checkpoint_dir.exists() else []
        return {
            "checkpoint_dir": str(self.checkpoint_dir),
            "groups": len(groups),
            "unreadable_groups": len(files) - len(groups),
            "partial_files": len(partial),
            "completed_units": len({uid for g in groups for uid in g.unit_ids}),
            "records": sum(len(r.records) for g in groups for r in g.results),
        }

    # ------------------------------------------------------------------
    # Remote batch job registry
    # ------------------------------------------------------------------

    @property
    def batch_jobs_file(self) -> Path:
        return self.checkpoint_dir / BATCH_JOBS_FILENAME

    def read_batch_job(self) -> Optional[Dict[str, Any]]:
        """Return the in-flight remote batch job record, if any"""
        if not self.batch_jobs_file.exists():
            return None
        try:
            with open(self.batch_jobs_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self._warn(f"Could not read {BATCH_JOBS_FILENAME}: {e}")
            return None
        return data if isinstance(data, dict) and data.get("job_id") else None

    def record_batch_job(self, job_id: str, unit_ids: Iterable[str]) -> None:
        self._ensure_directory()
        payload = {
            "job_id": job_id,
            "submitted_at": datetime.now().isoformat(),
            "unit_ids": list(unit_ids),
        }
        self._atomic_write_json(self.batch_jobs_file, payload)
        self.advise(f"📤 Recorded remote batch job {job_id} ({len(payload['unit_ids'])} documents)")

    def clear_batch_job(self) -> None:
        if not self.batch_jobs_file.exists():
            return
        try:
            self.batch_jobs_file.unlink()
        except OSError as e:
            raise StorageError(f"Cannot remove {self.batch_jobs_file}: {e}") from e

    # ------------------------------------------------------------------

    def _warn(self, message: str) -> None:
        self.logger.warning(message)
        self.advise(f"⚠️ {message}")

    def advise(self, message: str) -> None:
        # The progress log is advisory; failing to append to it never fails a save
        try:
            self.progress_log.write(message)
        except OSError as e:
            self.logger.warning(f"Could not append to progress log: {e}")
