"""Cost tracking and usage ledger."""

from .tracker import CostRecord, CostTracker, TrainingExample, UsageStore
from .store import InMemoryUsageStore

__all__ = [
    "CostRecord",
    "CostTracker",
    "TrainingExample",
    "UsageStore",
    "InMemoryUsageStore",
]
