"""Image asset loading for AI job handlers."""

from wardrobe.services.images.asset_store import ImageAssetStore

__all__ = ["ImageAssetStore"]
