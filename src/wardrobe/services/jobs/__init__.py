"""AI job submission and reconciliation services."""

from wardrobe.services.jobs.reconciliation import ReconciliationSweep, SweepReport
from wardrobe.services.jobs.submission import (
    Accepted,
    JobSubmission,
    ModelNames,
    Rejected,
    SubmissionGateway,
)

__all__ = [
    "SubmissionGateway",
    "JobSubmission",
    "Accepted",
    "Rejected",
    "ModelNames",
    "ReconciliationSweep",
    "SweepReport",
]
