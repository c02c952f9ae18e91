"""
Models package for data structures used across the extraction pipeline
"""

from .extraction_models import (
    Failure,
    FailureKind,
    RunReport,
    StoredGroup,
    Unit,
    UnitOutcome,
    UnitResult,
)

__all__ = [
    'Unit',
    'UnitResult',
    'UnitOutcome',
    'Failure',
    'FailureKind',
    'StoredGroup',
    'RunReport',
]
