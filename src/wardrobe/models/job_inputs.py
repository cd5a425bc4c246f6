"""Typed input payloads for AI jobs.

``AIJob.input_refs`` holds exactly one of these shapes, discriminated by the
job ``type``. Each shape is validated at submission and re-parsed by the
worker handler, so a job can never reach the provider with a payload that
belongs to another kind.
"""

from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

MIN_STYLE_STRENGTH = 0.3
MAX_STYLE_STRENGTH = 0.9

VisualizationType = Literal["outfit_board", "person_wearing"]
SetType = Literal["two-piece", "three-piece", "complete-outfit"]


class _InputModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# Catalog image transforms


class CatalogCleanup(_InputModel):
    """Turn the source photo into a clean catalog image."""

    kind: Literal["catalog"] = "catalog"


class MatchingItem(_InputModel):
    """Generate a new item that complements the source piece."""

    kind: Literal["matching_item"]
    target_category: str = Field(..., min_length=1, max_length=100)
    style_notes: Optional[str] = Field(default=None, max_length=1000)


class CoordinatedSet(_InputModel):
    """Generate a coordinated set built around the source piece."""

    kind: Literal["coordinated_set"]
    set_type: SetType


class StyleTransfer(_InputModel):
    """Restyle the source piece after a style reference image."""

    kind: Literal["style_transfer"]
    style_reference_image_id: UUID
    strength: float = Field(default=0.6, ge=MIN_STYLE_STRENGTH, le=MAX_STYLE_STRENGTH)

    @property
    def strength_level(self) -> str:
        if self.strength < 0.5:
            return "subtle"
        if self.strength < 0.7:
            return "moderate"
        return "strong"


CatalogTransform = Annotated[
    Union[CatalogCleanup, MatchingItem, CoordinatedSet, StyleTransfer],
    Field(discriminator="kind"),
]


# Job inputs, one per job type


class GenerateCatalogImageInput(_InputModel):
    type: Literal["generate_catalog_image"] = "generate_catalog_image"
    image_id: Optional[UUID] = None  # defaults to the item's original_main image
    transform: CatalogTransform = Field(default_factory=CatalogCleanup)


class InferItemInput(_InputModel):
    type: Literal["infer_item"] = "infer_item"
    include_label: bool = True


class ExtractLabelInput(_InputModel):
    type: Literal["extract_label"] = "extract_label"


class OutfitConstraints(_InputModel):
    weather: Optional[str] = Field(default=None, max_length=200)
    time_budget: Optional[Literal["quick", "normal"]] = None
    vibe: Optional[Literal["dysphoria-safe", "confidence-boost", "dopamine", "neutral"]] = None
    occasion: Optional[str] = Field(default=None, max_length=200)
    fit_principles: list[str] = Field(default_factory=list)


class GenerateOutfitInput(_InputModel):
    """Outfit suggestions, or a context variation image when target_context is set."""

    type: Literal["generate_outfit"] = "generate_outfit"
    constraints: OutfitConstraints = Field(default_factory=OutfitConstraints)
    target_context: Optional[str] = Field(default=None, min_length=1, max_length=500)
    maintain_pieces: list[UUID] = Field(default_factory=list)


class OutfitVisualizationInput(_InputModel):
    type: Literal["generate_outfit_visualization"] = "generate_outfit_visualization"
    visualization_type: VisualizationType = "outfit_board"


JobInput = Annotated[
    Union[
        GenerateCatalogImageInput,
        InferItemInput,
        ExtractLabelInput,
        GenerateOutfitInput,
        OutfitVisualizationInput,
    ],
    Field(discriminator="type"),
]

_job_input_adapter: TypeAdapter[Any] = TypeAdapter(JobInput)


def parse_job_input(job_type: str, input_refs: dict[str, Any] | None) -> Any:
    """Parse raw input refs into the variant for ``job_type``.

    The discriminator always comes from the job type, never from the payload.

    Raises:
        pydantic.ValidationError: If the payload does not fit the job type's shape
    """
    data = dict(input_refs or {})
    data.pop("type", None)
    data["type"] = getattr(job_type, "value", job_type)
    return _job_input_adapter.validate_python(data)


def dump_job_input(job_input: BaseModel) -> dict[str, Any]:
    """Serialize a parsed input variant for the JSON column."""
    return job_input.model_dump(mode="json", exclude={"type"})
