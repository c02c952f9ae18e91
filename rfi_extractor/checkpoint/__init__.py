"""
Durable, atomic checkpoint storage for completed extraction groups
"""

from .checkpoint_store import CheckpointStore, atomic_write

__all__ = ["CheckpointStore", "atomic_write"]
