"""Wardrobe repository - read-only lookups used by the AI job subsystem.

Existence checks by primary key for the submission gateway, and image
resolution for the worker handlers.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wardrobe.models.wardrobe import ImageKind, Item, ItemImage, Outfit, OutfitItem

# Preferred image kinds when an item is shown as part of an outfit
OUTFIT_IMAGE_KINDS = (ImageKind.AI_CATALOG, ImageKind.ORIGINAL_MAIN)


@dataclass
class OutfitMember:
    """An outfit's item together with the image that represents it (if any)."""

    item: Item
    image: ItemImage | None
    role: str | None = None


class WardrobeRepository:
    """Repository for Item/Outfit/ItemImage lookups. Never writes."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_item(self, item_id: UUID) -> Item | None:
        result = await self.session.execute(select(Item).where(Item.id == item_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_outfit(self, outfit_id: UUID) -> Outfit | None:
        result = await self.session.execute(select(Outfit).where(Outfit.id == outfit_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def item_exists(self, item_id: UUID) -> bool:
        return await self.get_item(item_id) is not None

    async def outfit_exists(self, outfit_id: UUID) -> bool:
        return await self.get_outfit(outfit_id) is not None

    async def get_image(self, image_id: UUID) -> ItemImage | None:
        result = await self.session.execute(select(ItemImage).where(ItemImage.id == image_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def get_item_image(self, item_id: UUID, kind: str) -> ItemImage | None:
        """Retrieve the oldest image of ``kind`` for an item."""
        result = await self.session.execute(
            select(ItemImage)
            .where(ItemImage.item_id == item_id)  # type: ignore[arg-type]
            .where(ItemImage.kind == kind)  # type: ignore[arg-type]
            .order_by(ItemImage.created_at.asc())  # type: ignore[attr-defined]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_outfit_members(self, outfit_id: UUID) -> list[OutfitMember]:
        """Retrieve an outfit's items, each paired with its best display image.

        ai_catalog images are preferred over original_main.
        """
        result = await self.session.execute(
            select(Item, OutfitItem.role)
            .join(OutfitItem, OutfitItem.item_id == Item.id)  # type: ignore[arg-type]
            .where(OutfitItem.outfit_id == outfit_id)  # type: ignore[arg-type]
            .order_by(Item.created_at.asc())  # type: ignore[attr-defined]
        )
        rows = result.all()
        if not rows:
            return []

        item_ids = [item.id for item, _ in rows]
        images_result = await self.session.execute(
            select(ItemImage)
            .where(ItemImage.item_id.in_(item_ids))  # type: ignore[attr-defined]
            .where(ItemImage.kind.in_(OUTFIT_IMAGE_KINDS))  # type: ignore[attr-defined]
            .order_by(ItemImage.created_at.asc())  # type: ignore[attr-defined]
        )
        best: dict[UUID, ItemImage] = {}
        for image in images_result.scalars().all():
            current = best.get(image.item_id)
            if current is None or (
                OUTFIT_IMAGE_KINDS.index(image.kind) < OUTFIT_IMAGE_KINDS.index(current.kind)
            ):
                best[image.item_id] = image

        return [OutfitMember(item=item, image=best.get(item.id), role=role) for item, role in rows]

    async def list_available_items(self, limit: int = 200) -> list[Item]:
        """Retrieve items currently available for outfit suggestions."""
        result = await self.session.execute(
            select(Item)
            .where(Item.state == "available")  # type: ignore[arg-type]
            .order_by(Item.created_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())
