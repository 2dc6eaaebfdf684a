"""
Recalculation Package

Batch state store, batch recalculation engine, debounced scheduler and
record-change observers.
"""

from app.services.recalculation.state import BatchRunSnapshot, BatchStateStore
from app.services.recalculation.batch_engine import (
    BATCH_SKIPPED,
    BatchRecalculationEngine,
    BatchReport,
    persist_pivot,
)
from app.services.recalculation.scheduler import (
    ALREADY_PENDING,
    DEFERRED,
    SCHEDULED,
    APSchedulerJobScheduler,
    JobScheduler,
    RecalculationScheduler,
)
from app.services.recalculation.observers import RecordChangeObserver, is_relevant_change

__all__ = [
    "BatchRunSnapshot",
    "BatchStateStore",
    "BATCH_SKIPPED",
    "BatchRecalculationEngine",
    "BatchReport",
    "persist_pivot",
    "ALREADY_PENDING",
    "DEFERRED",
    "SCHEDULED",
    "APSchedulerJobScheduler",
    "JobScheduler",
    "RecalculationScheduler",
    "RecordChangeObserver",
    "is_relevant_change",
]
