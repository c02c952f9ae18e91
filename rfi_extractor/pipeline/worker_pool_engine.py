"""
Worker-Pool Execution Engine

Processes the remaining units group by group. Each group fans out over a
bounded thread pool; the coordinating thread collects every outcome, then
publishes the group's successes with exactly one `save_group` call. Groups
run strictly one after another, so a crash loses at most the group in flight.

State machine:

    PLANNING -> DONE
    PLANNING -> GROUP_RUNNING -> GROUP_SAVED -> (GROUP_RUNNING | DONE)
    any boundary -> STOPPED   (stop requested)
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Dict, List, Sequence

from ..checkpoint.checkpoint_store import CheckpointStore
from ..config.colored_logging import ColoredLogger
from ..config.progress_logger import RunProgress
from ..config.settings import Settings
from ..extraction.unit_processor import UnitProcessor
from ..models.extraction_models import Failure, FailureKind, RunReport, Unit, UnitOutcome, UnitResult
from .work_partitioner import plan


class RunState(str, Enum):
    PLANNING = "planning"
    GROUP_RUNNING = "group_running"
    GROUP_SAVED = "group_saved"
    DONE = "done"
    STOPPED = "stopped"


class WorkerPoolEngine:
    """
    Bounded worker pool with one checkpoint per group

    Features:
    - Configurable worker pool (MAX_PARALLEL_WORKERS)
    - Individual error isolation (a failed unit never stops its group)
    - Progress line with rate and ETA after every saved group
    - Stop requests honored at group boundaries; in-flight units finish
    """

    def __init__(self, store: CheckpointStore, processor: UnitProcessor, settings: Settings):
        self.store = store
        self.processor = processor
        self.settings = settings
        self.logger = ColoredLogger("worker_pool_engine")
        self.state = RunState.PLANNING
        self._stop_event = threading.Event()

    def request_stop(self) -> None:
        """Ask the engine to stop after the group in flight has been saved"""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def run(self, units: Sequence[Unit]) -> RunReport:
        self.state = RunState.PLANNING
        self.store.purge_partial_files()
        completed_ids = self.store.list_completed_ids()
        groups = plan(units, completed_ids, self.settings.GROUP_SIZE)
        remaining = sum(len(g) for g in groups)
        already_done = len(units) - remaining

        report = RunReport(
            state=self.state.value,
            total_units=len(units),
            remaining_at_start=remaining,
            groups_planned=len(groups),
        )

        if not groups:
            self.logger.success(f"All {len(units)} documents already processed - nothing to do")
            self.state = RunState.DONE
            report.state = self.state.value
            return report

        self.logger.info(f"📋 {already_done} already processed, {remaining} remaining "
                         f"in {len(groups)} groups of up to {self.settings.GROUP_SIZE}")
        self.store.advise(
            f"🚀 Started: {remaining} documents remaining of {len(units)} "
            f"({len(groups)} groups, {self.settings.MAX_PARALLEL_WORKERS} workers)"
        )
        progress = RunProgress(total_items=len(units), already_completed=already_done)

        for index, group in enumerate(groups, start=1):
            if self.stop_requested:
                return self._stop(report, index - 1, len(groups))

            self.state = RunState.GROUP_RUNNING
            self.logger.info(f"🔄 Processing group {index}/{len(groups)} ({len(group)} documents)")
            outcomes = self._run_group(group)

            successes = [o for o in outcomes if isinstance(o, UnitResult)]
            failures = [o for o in outcomes if isinstance(o, Failure)]
            records = sum(len(r.records) for r in successes)

            # An all-failed group has nothing to publish; its units stay remaining
            if successes:
                self.store.save_group(successes)
                report.groups_saved += 1
            else:
                self.logger.warning(f"Group {index}/{len(groups)}: every document failed, nothing saved")
            self.state = RunState.GROUP_SAVED

            report.succeeded += len(successes)
            report.failures.extend(failures)
            report.records_extracted += records
            progress.update(processed=len(successes), failed=len(failures), records=records)

            self.logger.progress(f"Group {index}/{len(groups)} done: {len(successes)} ok, "
                                 f"{len(failures)} failed, {records} recommendations")
            self.store.advise(progress.summary_line())

            if index < len(groups) and self.settings.GROUP_PAUSE_SECONDS > 0:
                # Interruptible pause between groups
                self._stop_event.wait(self.settings.GROUP_PAUSE_SECONDS)

        self.state = RunState.DONE
        report.state = self.state.value
        self.logger.milestone(f"Run complete: {report.succeeded} documents, "
                              f"{report.records_extracted} recommendations, {report.failed} failed")
        self.store.advise(
            f"🎉 Run complete: {report.succeeded} processed, {report.failed} failed this run"
        )
        return report

    def _run_group(self, group: List[Unit]) -> List[UnitOutcome]:
        """Fan the group out over the pool; returns one outcome per unit, in input order"""
        outcomes: Dict[str, UnitOutcome] = {}
        workers = min(self.settings.MAX_PARALLEL_WORKERS, len(group))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ExtractWorker") as executor:
            future_to_unit = {executor.submit(self.processor.process, unit): unit for unit in group}
            for future in as_completed(future_to_unit):
                unit = future_to_unit[future]
                try:
                    outcomes[unit.id] = future.result()
                except Exception as e:
                    # The processor never raises; this only guards against a broken processor
                    self.logger.error(f"Failed to get result for {unit.id}: {e}")
                    outcomes[unit.id] = Failure(unit.id, FailureKind.UNEXPECTED, f"{type(e).__name__}: {e}")
        return [outcomes[unit.id] for unit in group]

    def _stop(self, report: RunReport, groups_done: int, groups_total: int) -> RunReport:
        self.state = RunState.STOPPED
        report.state = self.state.value
        self.logger.warning(f"Stopped after {groups_done}/{groups_total} groups; progress is saved")
        self.store.advise(
            f"⏸️ Stopped by request after {groups_done}/{groups_total} groups (resume by re-running)"
        )
        return report
