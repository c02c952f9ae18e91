"""
Pipeline package: planning, execution engines, aggregation and orchestration
"""

from .aggregator import AggregatedResults, Aggregator
from .batch_engine import RemoteBatchEngine
from .extraction_pipeline import MODE_BATCH, MODE_WORKERS, MODES, ExtractionPipeline
from .work_partitioner import count_remaining, plan, remaining_units, validate_unit_ids
from .worker_pool_engine import RunState, WorkerPoolEngine

__all__ = [
    'AggregatedResults',
    'Aggregator',
    'RemoteBatchEngine',
    'ExtractionPipeline',
    'MODE_BATCH',
    'MODE_WORKERS',
    'MODES',
    'count_remaining',
    'plan',
    'remaining_units',
    'validate_unit_ids',
    'RunState',
    'WorkerPoolEngine',
]
