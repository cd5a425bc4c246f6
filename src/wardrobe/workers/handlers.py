"""Job handlers: one per job type.

A handler assembles the provider request from the job's typed input and the
item/outfit images, makes exactly one provider call, and returns the result
to persist. Database reads happen in short units of work that are closed
before the provider call, so no transaction stays open across a slow request.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from wardrobe.models.ai_job import AIJob, JobType
from wardrobe.models.job_inputs import (
    CoordinatedSet,
    ExtractLabelInput,
    GenerateCatalogImageInput,
    GenerateOutfitInput,
    InferItemInput,
    MatchingItem,
    OutfitVisualizationInput,
    StyleTransfer,
    parse_job_input,
)
from wardrobe.models.wardrobe import ImageKind, ItemImage
from wardrobe.repositories.wardrobe import OutfitMember
from wardrobe.services.exceptions import HandlerInputError
from wardrobe.services.images.asset_store import ImageAssetStore
from wardrobe.services.provider.base import (
    GenerationProvider,
    ItemSummary,
    OutfitContext,
    OutfitItemImage,
)
from wardrobe.uow import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass
class HandlerContext:
    """Collaborators shared by all handlers."""

    uow_factory: Callable[[], Awaitable[UnitOfWork]]
    provider: GenerationProvider
    assets: ImageAssetStore


@dataclass
class HandlerResult:
    """Handler output persisted on the job record."""

    result: dict[str, Any]
    model_name: Optional[str] = None


Handler = Callable[[AIJob, Any, HandlerContext], Awaitable[HandlerResult]]


def _require(value: Optional[UUID], name: str, job: AIJob) -> UUID:
    if value is None:
        raise HandlerInputError(f"Job {job.id} has no {name}")
    return value


async def _item_image(ctx: HandlerContext, item_id: UUID, kind: str) -> ItemImage | None:
    async with await ctx.uow_factory() as uow:
        return await uow.wardrobe.get_item_image(item_id, kind)


async def _image_by_id(ctx: HandlerContext, image_id: UUID) -> ItemImage:
    async with await ctx.uow_factory() as uow:
        image = await uow.wardrobe.get_image(image_id)
    if image is None:
        raise HandlerInputError(f"Image {image_id} not found")
    return image


async def _outfit_images(ctx: HandlerContext, members: list[OutfitMember]) -> list[OutfitItemImage]:
    images = []
    for member in members:
        if member.image is None:
            continue
        images.append(
            OutfitItemImage(
                id=str(member.item.id),
                image=await ctx.assets.load(member.image),
                category=member.item.category or "unknown",
            )
        )
    if not images:
        raise HandlerInputError("No images found for outfit items")
    return images


async def handle_generate_catalog_image(
    job: AIJob, job_input: GenerateCatalogImageInput, ctx: HandlerContext
) -> HandlerResult:
    """Catalog cleanup, matching item, coordinated set or style transfer, by transform kind."""
    item_id = _require(job.item_id, "item_id", job)

    if job_input.image_id is not None:
        source = await _image_by_id(ctx, job_input.image_id)
    else:
        source = await _item_image(ctx, item_id, ImageKind.ORIGINAL_MAIN)
        if source is None:
            raise HandlerInputError(f"Item {item_id} has no original image")

    image = await ctx.assets.load(source)
    transform = job_input.transform
    result: dict[str, Any] = {"transform": transform.kind, "sourceImageId": str(source.id)}

    if isinstance(transform, MatchingItem):
        url = await ctx.provider.generate_matching_item(
            image, transform.target_category, transform.style_notes
        )
        result["targetCategory"] = transform.target_category
    elif isinstance(transform, CoordinatedSet):
        url = await ctx.provider.generate_coordinated_set(image, transform.set_type)
        result["setType"] = transform.set_type
    elif isinstance(transform, StyleTransfer):
        reference = await ctx.assets.load(
            await _image_by_id(ctx, transform.style_reference_image_id)
        )
        url = await ctx.provider.apply_style_transfer(image, reference, transform.strength)
        result["strength"] = transform.strength
        result["strengthLevel"] = transform.strength_level
    else:
        url = await ctx.provider.generate_catalog_image(image)

    result["generatedImageUrl"] = url
    return HandlerResult(result=result, model_name=ctx.provider.image_model)


async def handle_infer_item(
    job: AIJob, job_input: InferItemInput, ctx: HandlerContext
) -> HandlerResult:
    item_id = _require(job.item_id, "item_id", job)

    main = await _item_image(ctx, item_id, ImageKind.ORIGINAL_MAIN)
    if main is None:
        raise HandlerInputError(f"Item {item_id} has no original image")
    label = None
    if job_input.include_label:
        label = await _item_image(ctx, item_id, ImageKind.LABEL_BRAND)

    details = await ctx.provider.infer_item_details(
        await ctx.assets.load(main),
        await ctx.assets.load(label) if label is not None else None,
    )
    return HandlerResult(result=details, model_name=ctx.provider.vision_model)


async def handle_extract_label(
    job: AIJob, job_input: ExtractLabelInput, ctx: HandlerContext
) -> HandlerResult:
    """Read brand, size and materials from the label photo (main photo as fallback)."""
    item_id = _require(job.item_id, "item_id", job)

    label = await _item_image(ctx, item_id, ImageKind.LABEL_BRAND)
    if label is None:
        label = await _item_image(ctx, item_id, ImageKind.ORIGINAL_MAIN)
    if label is None:
        raise HandlerInputError(f"Item {item_id} has no label or original image")

    details = await ctx.provider.infer_item_details(await ctx.assets.load(label), None)
    result = {
        "brand": details.get("brand"),
        "sizeText": details.get("sizeText"),
        "materials": details.get("materials"),
        "sourceImageId": str(label.id),
        "details": details,
    }
    return HandlerResult(result=result, model_name=ctx.provider.vision_model)


async def handle_generate_outfit(
    job: AIJob, job_input: GenerateOutfitInput, ctx: HandlerContext
) -> HandlerResult:
    """Outfit suggestions from available items, or a context variation image."""
    outfit_id = _require(job.outfit_id, "outfit_id", job)

    if job_input.target_context:
        async with await ctx.uow_factory() as uow:
            members = await uow.wardrobe.get_outfit_members(outfit_id)
        if not members:
            raise HandlerInputError(f"Outfit {outfit_id} has no items")

        items = await _outfit_images(ctx, members)
        url = await ctx.provider.generate_outfit_context_variation(
            items,
            job_input.target_context,
            [str(piece) for piece in job_input.maintain_pieces],
        )
        return HandlerResult(
            result={
                "generatedImageUrl": url,
                "targetContext": job_input.target_context,
                "maintainPieces": [str(piece) for piece in job_input.maintain_pieces],
            },
            model_name=ctx.provider.image_model,
        )

    async with await ctx.uow_factory() as uow:
        available = await uow.wardrobe.list_available_items()
    if not available:
        raise HandlerInputError("No available items to build outfits from")

    summaries = [
        ItemSummary(
            id=str(item.id),
            category=item.category or "unknown",
            tags=list((item.attributes or {}).get("tags", [])),
            colors=list(item.color_palette or []),
            attributes={k: v for k, v in (item.attributes or {}).items() if k != "tags"} or None,
        )
        for item in available
    ]
    suggestions = await ctx.provider.generate_outfits(
        summaries, job_input.constraints.model_dump(mode="json")
    )
    return HandlerResult(result=suggestions, model_name=ctx.provider.text_model)


async def handle_generate_outfit_visualization(
    job: AIJob, job_input: OutfitVisualizationInput, ctx: HandlerContext
) -> HandlerResult:
    outfit_id = _require(job.outfit_id, "outfit_id", job)

    async with await ctx.uow_factory() as uow:
        outfit = await uow.wardrobe.get_outfit(outfit_id)
        members = await uow.wardrobe.get_outfit_members(outfit_id)
    if outfit is None:
        raise HandlerInputError(f"Outfit {outfit_id} not found")
    if not members:
        raise HandlerInputError(f"Outfit {outfit_id} has no items")

    items = await _outfit_images(ctx, members)
    context = OutfitContext(
        weather=outfit.weather,
        vibe=outfit.vibe,
        occasion=outfit.occasion,
        explanation=outfit.explanation,
    )
    url = await ctx.provider.generate_outfit_visualization(
        items, job_input.visualization_type, context
    )
    return HandlerResult(
        result={
            "generatedImageUrl": url,
            "visualizationType": job_input.visualization_type,
            "itemCount": len(items),
        },
        model_name=ctx.provider.image_model,
    )


HANDLERS: dict[JobType, Handler] = {
    JobType.GENERATE_CATALOG_IMAGE: handle_generate_catalog_image,
    JobType.INFER_ITEM: handle_infer_item,
    JobType.EXTRACT_LABEL: handle_extract_label,
    JobType.GENERATE_OUTFIT: handle_generate_outfit,
    JobType.GENERATE_OUTFIT_VISUALIZATION: handle_generate_outfit_visualization,
}


async def run_handler(job: AIJob, ctx: HandlerContext) -> HandlerResult:
    """Parse the job's input and route it to the handler for its type.

    Raises:
        HandlerInputError: If the stored input does not fit the job type
        ProviderError: If the provider call fails
    """
    job_type = JobType(job.type)
    try:
        job_input = parse_job_input(job_type, job.input_refs)
    except PydanticValidationError as e:
        raise HandlerInputError(f"Stored input does not match {job_type.value}: {e}") from e

    logger.debug("ai_job.handler_started", job_id=str(job.id), job_type=job_type.value)
    return await HANDLERS[job_type](job, job_input, ctx)
