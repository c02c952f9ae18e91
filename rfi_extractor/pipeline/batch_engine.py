"""
Remote-Batch Execution Engine

Submits every remaining unit as one OpenAI Batch API job, waits for it to
end, and publishes the successes as one checkpoint group. The job id is
recorded in the checkpoint directory before polling starts, so an
interrupted run re-attaches to the job on restart instead of submitting
(and paying for) the same documents twice.
"""

import threading
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..checkpoint.checkpoint_store import CheckpointStore
from ..config.colored_logging import ColoredLogger
from ..config.progress_logger import RunProgress
from ..config.settings import Settings
from ..errors import MalformedResponseError, ServiceRejectedError, TransientServiceError
from ..extraction.batch_client import BatchEntry, BatchJobClient, BatchJobInfo
from ..extraction.llm_client import ExtractionClient
from ..extraction.prompts import build_extraction_prompt
from ..extraction.response_parser import parse_extraction_response
from ..extraction.retry_policy import RetryPolicy
from ..models.extraction_models import Failure, FailureKind, RunReport, Unit, UnitOutcome, UnitResult
from .work_partitioner import remaining_units, validate_unit_ids
from .worker_pool_engine import RunState


class RemoteBatchEngine:
    """Submit / re-attach, poll until ended, download, save once"""

    def __init__(self,
                 store: CheckpointStore,
                 batch_client: BatchJobClient,
                 settings: Settings,
                 request_client: Optional[ExtractionClient] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 prompt_builder: Callable[[Unit], str] = build_extraction_prompt):
        self.store = store
        self.batch_client = batch_client
        self.settings = settings
        # Only used to build request bodies; never called in batch mode
        self.request_client = request_client or ExtractionClient(
            model=settings.OPENAI_MODEL,
            max_tokens=settings.MAX_OUTPUT_TOKENS,
            temperature=settings.TEMPERATURE,
            client=batch_client.client,
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.prompt_builder = prompt_builder
        self.logger = ColoredLogger("batch_engine")
        self.state = RunState.PLANNING
        self._stop_event = threading.Event()

    def request_stop(self) -> None:
        """Stop polling; the remote job keeps running and is picked up on the next run"""
        self._stop_event.set()

    def run(self, units: Sequence[Unit]) -> RunReport:
        self.state = RunState.PLANNING
        validate_unit_ids(units)
        self.store.purge_partial_files()
        completed_ids = self.store.list_completed_ids()
        todo = remaining_units(units, completed_ids)

        report = RunReport(
            state=self.state.value,
            total_units=len(units),
            remaining_at_start=len(todo),
            groups_planned=1 if todo else 0,
        )

        if not todo:
            # A job recorded by a run that saved but crashed before clearing it
            self.store.clear_batch_job()
            self.logger.success(f"All {len(units)} documents already processed - nothing to do")
            return self._finish(report, RunState.DONE)

        by_id = {unit.id: unit for unit in todo}
        attached = self._attach_or_submit(todo, by_id, report)
        if attached is None:
            return self._finish(report, RunState.DONE)
        job_id, job_units = attached

        self.state = RunState.GROUP_RUNNING
        try:
            info = self._wait_for_job(job_id)
            if info is None:
                self.logger.warning("Stopped while the batch job is still running; re-run to pick it up")
                self.store.advise("⏸️ Stopped while waiting for batch job (resume by re-running)")
                return self._finish(report, RunState.STOPPED)
            entries = self.retry_policy.call(lambda: self.batch_client.download_results(info))
        except (ServiceRejectedError, MalformedResponseError) as e:
            # The job can never be picked up again; drop it so the next run resubmits
            self.store.clear_batch_job()
            self.logger.error(f"Batch job {job_id} is unusable ({e}); job record dropped, "
                              f"re-run to resubmit {len(job_units)} documents")
            self.store.advise(f"❌ Dropped batch job {job_id}: {e}")
            report.failures = [Failure(unit.id, FailureKind.REJECTED, f"Batch job {job_id} unusable: {e}")
                               for unit in job_units]
            return self._finish(report, RunState.DONE)

        outcomes = [self._outcome_for(unit, entries.get(unit.id), info) for unit in job_units]
        successes = [o for o in outcomes if isinstance(o, UnitResult)]
        failures = [o for o in outcomes if isinstance(o, Failure)]

        if successes:
            self.store.save_group(successes)
            report.groups_saved = 1
        self.store.clear_batch_job()
        self.state = RunState.GROUP_SAVED

        report.succeeded = len(successes)
        report.failures = failures
        report.records_extracted = sum(len(r.records) for r in successes)

        progress = RunProgress(total_items=len(units), already_completed=len(units) - len(todo))
        progress.update(processed=len(successes), failed=len(failures), records=report.records_extracted)
        self.store.advise(progress.summary_line())

        not_in_job = len(todo) - len(job_units)
        if not_in_job:
            self.logger.warning(f"{not_in_job} documents were not part of the attached job; "
                                f"re-run to submit them")
        self.logger.milestone(f"Batch job {info.job_id} finished: {len(successes)} documents, "
                              f"{report.records_extracted} recommendations, {len(failures)} failed")
        return self._finish(report, RunState.DONE)

    def _attach_or_submit(self, todo: List[Unit], by_id: Dict[str, Unit],
                          report: RunReport) -> Optional[Tuple[str, List[Unit]]]:
        """Job id and the units it covers, submitting a new job if none is recorded"""
        job = self.store.read_batch_job()
        if job:
            job_units = [by_id[uid] for uid in job.get("unit_ids", []) if uid in by_id]
            if job_units:
                self.logger.info(f"🔗 Re-attaching to batch job {job['job_id']} ({len(job_units)} documents)")
                self.store.advise(f"🔗 Re-attached to batch job {job['job_id']}")
                return job["job_id"], job_units
            self.logger.info(f"Recorded batch job {job['job_id']} covers no remaining documents; discarding")
            self.store.clear_batch_job()

        requests = [(unit.id, self.request_client.request_body(self.prompt_builder(unit))) for unit in todo]
        try:
            job_id = self.retry_policy.call(lambda: self.batch_client.submit(requests))
        except (TransientServiceError, ServiceRejectedError) as e:
            kind = FailureKind.TRANSIENT if isinstance(e, TransientServiceError) else FailureKind.REJECTED
            self.logger.error(f"Batch submission failed: {e}")
            report.failures = [Failure(unit.id, kind, f"Batch submission failed: {e}") for unit in todo]
            return None

        self.store.record_batch_job(job_id, [unit.id for unit in todo])
        return job_id, todo

    def _wait_for_job(self, job_id: str) -> Optional[BatchJobInfo]:
        """Poll until the job ends; returns None if a stop was requested first

        Transient poll errors are logged and polling continues. Rejected
        polls (job deleted, wrong account) propagate to the caller.
        """
        interval = self.settings.BATCH_POLL_INTERVAL_SECONDS
        last_status = None
        while True:
            try:
                info = self.retry_policy.call(lambda: self.batch_client.poll(job_id))
            except TransientServiceError as e:
                self.logger.warning(f"Could not check batch job {job_id}: {e}; retrying in {interval:.0f}s")
            else:
                if info.provider_status != last_status:
                    counts = info.request_counts
                    self.logger.progress(
                        f"Batch job {job_id}: {info.provider_status} ({info.state}) "
                        f"{counts.get('completed', 0)}/{counts.get('total', 0)} completed, "
                        f"{counts.get('failed', 0)} failed"
                    )
                    last_status = info.provider_status
                if info.ended:
                    return info
            if self._stop_event.wait(interval):
                return None

    def _outcome_for(self, unit: Unit, entry: Optional[BatchEntry], info: BatchJobInfo) -> UnitOutcome:
        if entry is None:
            return Failure(unit.id, FailureKind.TRANSIENT,
                           f"No result returned for this document (job status: {info.provider_status})")
        if not entry.succeeded:
            kind = FailureKind.TRANSIENT if entry.retryable else FailureKind.REJECTED
            return Failure(unit.id, kind, entry.error or "unknown batch error", attempts=1)
        try:
            return parse_extraction_response(entry.text, unit, tokens_used=entry.tokens_used)
        except MalformedResponseError as e:
            self.logger.error(f"{unit.id}: malformed response in batch result: {e}")
            return Failure(unit.id, FailureKind.MALFORMED, str(e), attempts=1)

    def _finish(self, report: RunReport, state: RunState) -> RunReport:
        self.state = state
        report.state = state.value
        return report
