"""Background workers for AI job processing."""

from wardrobe.workers.dispatcher import DeliveryOutcome, WorkerDispatcher, run_ai_job_worker
from wardrobe.workers.reconciliation_worker import run_reconciliation_worker

__all__ = [
    "WorkerDispatcher",
    "DeliveryOutcome",
    "run_ai_job_worker",
    "run_reconciliation_worker",
]
