"""
Work Partitioner

Computes the remaining work from the full unit set and the completed ids, and
slices it into contiguous, order-preserving groups. Pure functions; no I/O.
"""

from collections import Counter
from typing import AbstractSet, List, Sequence

from ..errors import PlanningError
from ..models.extraction_models import Unit


def validate_unit_ids(all_units: Sequence[Unit]) -> None:
    """Raise PlanningError if any unit id appears more than once"""
    counts = Counter(unit.id for unit in all_units)
    duplicates = sorted(uid for uid, n in counts.items() if n > 1)
    if duplicates:
        preview = ", ".join(duplicates[:5])
        more = f" (+{len(duplicates) - 5} more)" if len(duplicates) > 5 else ""
        raise PlanningError(f"Duplicate unit ids in input: {preview}{more}")


def remaining_units(all_units: Sequence[Unit], completed_ids: AbstractSet[str]) -> List[Unit]:
    """Units not yet checkpointed, in their original order"""
    return [unit for unit in all_units if unit.id not in completed_ids]


def plan(all_units: Sequence[Unit],
         completed_ids: AbstractSet[str],
         group_size: int) -> List[List[Unit]]:
    """
    Split the remaining units into groups of at most `group_size`.

    Returns an empty list when nothing remains.
    """
    if not isinstance(group_size, int) or group_size < 1:
        raise PlanningError(f"Group size must be a positive integer, got: {group_size!r}")
    validate_unit_ids(all_units)

    todo = remaining_units(all_units, completed_ids)
    return [todo[start:start + group_size] for start in range(0, len(todo), group_size)]


def count_remaining(all_units: Sequence[Unit], completed_ids: AbstractSet[str]) -> int:
    return sum(1 for unit in all_units if unit.id not in completed_ids)
