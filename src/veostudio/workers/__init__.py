"""Background workers for async processing tasks."""

from veostudio.workers.reconcile_worker import (
    SweepResult,
    run_reconcile_worker,
    sweep_processing_jobs,
)

__all__ = [
    "SweepResult",
    "run_reconcile_worker",
    "sweep_processing_jobs",
]
