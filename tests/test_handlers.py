"""Tests for the per-type job handlers (provider calls and result shapes)."""

from uuid import uuid4

import pytest

from wardrobe.models.ai_job import AIJob, JobType
from wardrobe.models.wardrobe import ItemImage
from wardrobe.services.exceptions import HandlerInputError
from wardrobe.services.images.asset_store import ImageAssetStore
from wardrobe.workers.handlers import HandlerContext, run_handler


@pytest.fixture
def ctx(uow_factory, fake_provider, assets):
    return HandlerContext(uow_factory=uow_factory, provider=fake_provider, assets=assets)


def item_job(job_type, item, input_refs=None) -> AIJob:
    return AIJob(type=job_type, item_id=item.id, input_refs=input_refs or {})


def outfit_job(job_type, outfit, input_refs=None) -> AIJob:
    return AIJob(type=job_type, outfit_id=outfit.id, input_refs=input_refs or {})


@pytest.mark.asyncio
class TestCatalogImage:
    async def test_catalog_cleanup_uses_main_photo(self, ctx, fake_provider, wardrobe_data):
        outcome = await run_handler(item_job(JobType.GENERATE_CATALOG_IMAGE, wardrobe_data.top), ctx)

        assert outcome.result == {
            "transform": "catalog",
            "sourceImageId": str(wardrobe_data.top_main.id),
            "generatedImageUrl": "https://cdn.test/catalog.png",
        }
        assert outcome.model_name == "test/image-model"
        [call] = fake_provider.called("generate_catalog_image")
        assert call.args[0].mime_type == "image/jpeg"

    async def test_explicit_source_image(self, ctx, wardrobe_data):
        job = item_job(
            JobType.GENERATE_CATALOG_IMAGE,
            wardrobe_data.bottom,
            {"image_id": str(wardrobe_data.bottom_catalog.id)},
        )

        outcome = await run_handler(job, ctx)

        assert outcome.result["sourceImageId"] == str(wardrobe_data.bottom_catalog.id)

    async def test_matching_item(self, ctx, fake_provider, wardrobe_data):
        job = item_job(
            JobType.GENERATE_CATALOG_IMAGE,
            wardrobe_data.top,
            {"transform": {"kind": "matching_item", "targetCategory": "bottom", "styleNotes": "wide leg"}},
        )

        outcome = await run_handler(job, ctx)

        assert outcome.result["transform"] == "matching_item"
        assert outcome.result["targetCategory"] == "bottom"
        assert outcome.result["generatedImageUrl"] == "https://cdn.test/matching.png"
        [call] = fake_provider.called("generate_matching_item")
        assert call.args[1:] == ("bottom", "wide leg")

    async def test_coordinated_set(self, ctx, fake_provider, wardrobe_data):
        job = item_job(
            JobType.GENERATE_CATALOG_IMAGE,
            wardrobe_data.top,
            {"transform": {"kind": "coordinated_set", "setType": "three-piece"}},
        )

        outcome = await run_handler(job, ctx)

        assert outcome.result["setType"] == "three-piece"
        [call] = fake_provider.called("generate_coordinated_set")
        assert call.args[1] == "three-piece"

    async def test_style_transfer(self, ctx, fake_provider, wardrobe_data):
        job = item_job(
            JobType.GENERATE_CATALOG_IMAGE,
            wardrobe_data.top,
            {
                "transform": {
                    "kind": "style_transfer",
                    "styleReferenceImageId": str(wardrobe_data.bottom_catalog.id),
                    "strength": 0.8,
                }
            },
        )

        outcome = await run_handler(job, ctx)

        assert outcome.result["strength"] == 0.8
        assert outcome.result["strengthLevel"] == "strong"
        [call] = fake_provider.called("apply_style_transfer")
        assert call.args[1].mime_type == "image/png"
        assert call.args[2] == 0.8

    async def test_item_without_photo(self, ctx, wardrobe_data):
        with pytest.raises(HandlerInputError):
            await run_handler(item_job(JobType.GENERATE_CATALOG_IMAGE, wardrobe_data.bare_item), ctx)


@pytest.mark.asyncio
class TestItemInference:
    async def test_infer_without_label(self, ctx, fake_provider, wardrobe_data):
        job = item_job(JobType.INFER_ITEM, wardrobe_data.top, {"include_label": False})

        outcome = await run_handler(job, ctx)

        assert outcome.result["category"] == "top"
        assert outcome.model_name == "test/vision-model"
        [call] = fake_provider.called("infer_item_details")
        assert call.args[1] is None

    async def test_extract_label_prefers_label_photo(self, ctx, wardrobe_data):
        outcome = await run_handler(item_job(JobType.EXTRACT_LABEL, wardrobe_data.top), ctx)

        assert outcome.result["brand"] == "Acme"
        assert outcome.result["sizeText"] == "M"
        assert outcome.result["materials"] == ["cotton"]
        assert outcome.result["sourceImageId"] == str(wardrobe_data.top_label.id)

    async def test_extract_label_falls_back_to_main_photo(self, ctx, wardrobe_data):
        outcome = await run_handler(item_job(JobType.EXTRACT_LABEL, wardrobe_data.bottom), ctx)

        assert outcome.result["sourceImageId"] == str(wardrobe_data.bottom_main.id)


@pytest.mark.asyncio
class TestOutfits:
    async def test_outfit_suggestions_from_available_items(self, ctx, fake_provider, wardrobe_data):
        job = outfit_job(
            JobType.GENERATE_OUTFIT,
            wardrobe_data.outfit,
            {"constraints": {"weather": "rainy", "timeBudget": "quick"}},
        )

        outcome = await run_handler(job, ctx)

        assert outcome.result["outfits"][0]["explanation"] == "Easy layers"
        assert outcome.model_name == "test/text-model"
        [call] = fake_provider.called("generate_outfits")
        summaries, constraints = call.args
        top = next(s for s in summaries if s.id == str(wardrobe_data.top.id))
        assert top.tags == ["casual"]
        assert top.colors == ["navy"]
        assert top.attributes == {"fit": "relaxed"}
        assert constraints["weather"] == "rainy"
        assert constraints["time_budget"] == "quick"

    async def test_context_variation(self, ctx, fake_provider, wardrobe_data):
        keep = str(wardrobe_data.top.id)
        job = outfit_job(
            JobType.GENERATE_OUTFIT,
            wardrobe_data.outfit,
            {"targetContext": "job interview", "maintainPieces": [keep]},
        )

        outcome = await run_handler(job, ctx)

        assert outcome.result == {
            "generatedImageUrl": "https://cdn.test/context.png",
            "targetContext": "job interview",
            "maintainPieces": [keep],
        }
        assert outcome.model_name == "test/image-model"
        [call] = fake_provider.called("generate_outfit_context_variation")
        assert len(call.args[0]) == 2

    async def test_visualization(self, ctx, fake_provider, wardrobe_data):
        job = outfit_job(
            JobType.GENERATE_OUTFIT_VISUALIZATION,
            wardrobe_data.outfit,
            {"visualization_type": "person_wearing"},
        )

        outcome = await run_handler(job, ctx)

        assert outcome.result == {
            "generatedImageUrl": "https://cdn.test/board.png",
            "visualizationType": "person_wearing",
            "itemCount": 2,
        }
        [call] = fake_provider.called("generate_outfit_visualization")
        context = call.args[2]
        assert context.occasion == "office"

    async def test_visualization_without_images(self, ctx, wardrobe_data):
        job = outfit_job(JobType.GENERATE_OUTFIT_VISUALIZATION, wardrobe_data.imageless_outfit)

        with pytest.raises(HandlerInputError, match="No images"):
            await run_handler(job, ctx)


@pytest.mark.asyncio
async def test_stored_input_of_wrong_shape(ctx, wardrobe_data):
    job = item_job(JobType.INFER_ITEM, wardrobe_data.top, {"visualization_type": "outfit_board"})

    with pytest.raises(HandlerInputError, match="infer_item"):
        await run_handler(job, ctx)


@pytest.mark.asyncio
async def test_asset_store_rejects_paths_outside_data_dir(wardrobe_data):
    store = ImageAssetStore(wardrobe_data.data_dir)
    image = ItemImage(id=uuid4(), item_id=uuid4(), kind="original_main", file_path="../../etc/passwd")

    with pytest.raises(HandlerInputError):
        await store.load(image)


@pytest.mark.asyncio
async def test_asset_store_missing_file(wardrobe_data):
    store = ImageAssetStore(wardrobe_data.data_dir)
    image = ItemImage(item_id=uuid4(), kind="original_main", file_path="items/missing.jpg")

    with pytest.raises(HandlerInputError, match="not readable"):
        await store.load(image)
