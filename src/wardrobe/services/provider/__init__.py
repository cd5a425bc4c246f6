"""Generation provider interface and the OpenRouter implementation."""

from wardrobe.services.provider.base import (
    EncodedImage,
    GenerationProvider,
    ItemSummary,
    OutfitContext,
    OutfitItemImage,
)
from wardrobe.services.provider.openrouter_client import OpenRouterClient

__all__ = [
    "GenerationProvider",
    "EncodedImage",
    "OutfitItemImage",
    "ItemSummary",
    "OutfitContext",
    "OpenRouterClient",
]
