"""Generation provider capability interface and its value types.

Handlers depend on GenerationProvider, never on a concrete client, so tests
can substitute a fake and the HTTP client can be swapped without touching
the worker.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence, runtime_checkable


@dataclass(frozen=True)
class EncodedImage:
    """Image bytes encoded for an inline data URL."""

    base64: str
    mime_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


@dataclass(frozen=True)
class OutfitItemImage:
    """One item of an outfit, with the image sent to the provider."""

    id: str
    image: EncodedImage
    category: str = "unknown"


@dataclass(frozen=True)
class ItemSummary:
    """Text-only description of an available item for outfit suggestions."""

    id: str
    category: str
    tags: list[str] = field(default_factory=list)
    colors: list[str] = field(default_factory=list)
    attributes: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class OutfitContext:
    """Saved outfit details included in visualization prompts."""

    weather: Optional[str] = None
    vibe: Optional[str] = None
    occasion: Optional[str] = None
    explanation: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.weather, self.vibe, self.occasion, self.explanation))


@runtime_checkable
class GenerationProvider(Protocol):
    """Capabilities of the external generation provider.

    Every method is a single request with no internal retry. Failures raise
    ProviderTimeout, ProviderRejected, ProviderMalformedResponse or
    ProviderUnavailable. Image methods return a URL or a data URL.
    """

    image_model: str
    vision_model: str
    text_model: str

    async def generate_catalog_image(self, image: EncodedImage) -> str: ...

    async def infer_item_details(
        self, image: EncodedImage, label_image: EncodedImage | None = None
    ) -> dict[str, Any]: ...

    async def generate_outfits(
        self, items: Sequence[ItemSummary], constraints: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def generate_matching_item(
        self, reference: EncodedImage, target_category: str, style_notes: str | None = None
    ) -> str: ...

    async def generate_coordinated_set(self, anchor: EncodedImage, set_type: str) -> str: ...

    async def generate_outfit_context_variation(
        self,
        items: Sequence[OutfitItemImage],
        target_context: str,
        maintain_pieces: Sequence[str] | None = None,
    ) -> str: ...

    async def apply_style_transfer(
        self, item: EncodedImage, style_reference: EncodedImage, strength: float = 0.6
    ) -> str: ...

    async def generate_outfit_visualization(
        self,
        items: Sequence[OutfitItemImage],
        visualization_type: str,
        context: OutfitContext | None = None,
    ) -> str: ...
