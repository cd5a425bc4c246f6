"""Durable AI job queue and per-job processing leases."""

from wardrobe.services.queue.job_queue import (
    Delivery,
    FailureOutcome,
    JobQueue,
    RetryPolicy,
    StallReport,
)
from wardrobe.services.queue.lease import LeaseManager

__all__ = [
    "JobQueue",
    "RetryPolicy",
    "Delivery",
    "FailureOutcome",
    "StallReport",
    "LeaseManager",
]
