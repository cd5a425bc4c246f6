"""Wardrobe entities read by the AI job subsystem.

Items, outfits and their images are owned by the wardrobe CRUD layer. Only the
columns the job handlers read are mapped here.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from wardrobe.core.timezone import utcnow


class ImageKind:
    """Known item image kinds."""

    ORIGINAL_MAIN = "original_main"
    LABEL_BRAND = "label_brand"
    AI_CATALOG = "ai_catalog"


class Item(SQLModel, table=True):
    """A clothing item in the wardrobe."""

    __tablename__ = "items"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    category: Optional[str] = Field(default=None, max_length=100)
    state: str = Field(default="available", max_length=50, index=True)
    color_palette: Optional[list] = Field(default=None, sa_column=Column(JSON))
    attributes: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)


class ItemImage(SQLModel, table=True):
    """An image file belonging to an item, stored relative to DATA_DIR."""

    __tablename__ = "item_images"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    item_id: UUID = Field(foreign_key="items.id", index=True)
    kind: str = Field(max_length=50)
    file_path: str = Field(max_length=1000)
    mime_type: str = Field(default="image/jpeg", max_length=100)
    created_at: datetime = Field(default_factory=utcnow)


class Outfit(SQLModel, table=True):
    """A saved combination of items."""

    __tablename__ = "outfits"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    weather: Optional[str] = Field(default=None, max_length=200)
    vibe: Optional[str] = Field(default=None, max_length=100)
    occasion: Optional[str] = Field(default=None, max_length=200)
    explanation: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)


class OutfitItem(SQLModel, table=True):
    """Membership of an item in an outfit."""

    __tablename__ = "outfit_items"  # type: ignore[assignment]

    outfit_id: UUID = Field(foreign_key="outfits.id", primary_key=True)
    item_id: UUID = Field(foreign_key="items.id", primary_key=True)
    role: Optional[str] = Field(default=None, max_length=50)
