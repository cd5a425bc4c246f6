"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from wardrobe.models.ai_job import AIJob, InvalidTransition, JobStatus, JobType
from wardrobe.models.job_lease import JobLease
from wardrobe.models.queue_entry import QueueEntry, QueueState
from wardrobe.models.wardrobe import ImageKind, Item, ItemImage, Outfit, OutfitItem

__all__ = [
    "AIJob",
    "JobType",
    "JobStatus",
    "InvalidTransition",
    "QueueEntry",
    "QueueState",
    "JobLease",
    "Item",
    "ItemImage",
    "ImageKind",
    "Outfit",
    "OutfitItem",
]
