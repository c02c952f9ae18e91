"""
Extraction Pipeline - wires settings, store, clients and engines together

One object per operator invocation. Holds the engine that is currently
running so a signal handler can forward stop requests to it.
"""

from typing import Any, Dict, Optional, Sequence, Union

from ..checkpoint.checkpoint_store import CheckpointStore
from ..config.colored_logging import ColoredLogger
from ..config.settings import Settings
from ..errors import PlanningError
from ..extraction.batch_client import BatchJobClient
from ..extraction.llm_client import ExtractionClient
from ..extraction.retry_policy import RetryPolicy
from ..extraction.unit_processor import UnitProcessor
from ..models.extraction_models import RunReport, Unit
from .aggregator import AggregatedResults, Aggregator
from .batch_engine import RemoteBatchEngine
from .work_partitioner import count_remaining, validate_unit_ids
from .worker_pool_engine import WorkerPoolEngine

MODE_WORKERS = "workers"
MODE_BATCH = "batch"
MODES = (MODE_WORKERS, MODE_BATCH)

Engine = Union[WorkerPoolEngine, RemoteBatchEngine]


class ExtractionPipeline:
    """Entry point used by the CLI (and by tests with a fake OpenAI client)"""

    def __init__(self,
                 settings: Settings,
                 store: Optional[CheckpointStore] = None,
                 openai_client: Optional[Any] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        self.settings = settings
        self.store = store or CheckpointStore(settings.CHECKPOINT_DIR)
        self.openai_client = openai_client
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.logger = ColoredLogger("extraction_pipeline")
        self.engine: Optional[Engine] = None
        self.extraction_client: Optional[ExtractionClient] = None
        self._stop_requested = False

    def build_engine(self, mode: str) -> Engine:
        if mode == MODE_WORKERS:
            self.extraction_client = ExtractionClient.from_settings(self.settings, client=self.openai_client)
            processor = UnitProcessor(self.extraction_client, self.retry_policy)
            return WorkerPoolEngine(self.store, processor, self.settings)
        if mode == MODE_BATCH:
            batch_client = BatchJobClient.from_settings(self.settings, client=self.openai_client)
            return RemoteBatchEngine(self.store, batch_client, self.settings, retry_policy=self.retry_policy)
        raise PlanningError(f"Unknown mode '{mode}' (expected one of: {', '.join(MODES)})")

    def run(self, units: Sequence[Unit], mode: str = MODE_WORKERS) -> RunReport:
        """Process every unit not yet checkpointed"""
        self.settings.validate(require_api_key=self.openai_client is None)
        self.engine = self.build_engine(mode)
        self.logger.info(f"🚀 Starting extraction: {len(units)} documents, mode={mode}, "
                         f"model={self.settings.OPENAI_MODEL}")
        if self._stop_requested:
            self.engine.request_stop()
        report = self.engine.run(units)

        usage = self.usage_stats()
        if usage and usage["requests"]:
            message = (f"💰 Token usage: {usage['total_tokens']:,} tokens over "
                       f"{usage['requests']:,} requests ({usage['model']})")
            self.logger.info(message)
            self.store.advise(message)
        return report

    def usage_stats(self) -> Optional[Dict[str, Any]]:
        """Token usage of immediate calls made this run (None before a worker-mode run)"""
        if self.extraction_client is None:
            return None
        return self.extraction_client.get_usage_stats()

    def request_stop(self) -> None:
        self._stop_requested = True
        if self.engine is not None:
            self.engine.request_stop()

    def finalize(self, output_path: Optional[str] = None) -> AggregatedResults:
        """Aggregate all checkpoints; also writes JSON + CSV when `output_path` is given"""
        aggregator = Aggregator(self.store)
        results = aggregator.finalize()
        if output_path:
            aggregator.export(output_path, results)
        return results

    def status(self, units: Optional[Sequence[Unit]] = None) -> Dict[str, Any]:
        """Store statistics, plus the remaining count when the input is known"""
        info = self.store.stats()
        batch_job = self.store.read_batch_job()
        info["batch_job"] = batch_job["job_id"] if batch_job else None
        if units is not None:
            validate_unit_ids(units)
            info["total_units"] = len(units)
            info["remaining_units"] = count_remaining(units, self.store.list_completed_ids())
        return info

    def cleanup(self) -> None:
        """Delete the checkpoint store (every document becomes eligible again)"""
        self.store.discard()
