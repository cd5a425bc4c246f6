"""Repository layer for the wardrobe backend.

Provides data access abstractions for the job record store and the
read-only wardrobe lookups. No base classes - each repository is self-contained.
"""

from wardrobe.repositories.ai_job import AIJobRepository
from wardrobe.repositories.wardrobe import OutfitMember, WardrobeRepository

__all__ = [
    "AIJobRepository",
    "WardrobeRepository",
    "OutfitMember",
]
