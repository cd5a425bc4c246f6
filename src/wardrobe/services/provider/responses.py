"""Provider response repair and schema validation.

Models wrap JSON in code fences, prepend prose, or return a bare array where an
object was asked for. Responses are repaired first (fences stripped, the
outermost JSON value extracted) and then validated against pydantic schemas.
Anything that still does not fit raises ProviderMalformedResponse.
"""

import json
import re
from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from wardrobe.services.exceptions import ProviderMalformedResponse

CODE_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
IMAGE_URL_RE = re.compile(r"https?://\S+\.(?:jpg|jpeg|png|webp)", re.IGNORECASE)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class _ResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class ItemDetails(_ResponseModel):
    """Attributes inferred for one clothing item."""

    category: str = Field(..., min_length=1)
    sub_type: Optional[str] = None
    colors: list[str] = Field(default_factory=list)
    color_palette: list[str] = Field(default_factory=list)
    pattern: Optional[str] = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    fit_notes: Optional[str] = None
    pairing_tips: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_licensed_merch: bool = False
    franchise: Optional[str] = None
    franchise_type: Optional[str] = None
    confidence: dict[str, Any] = Field(default_factory=dict)
    # Label fields, present when a label image was sent
    brand: Optional[str] = None
    size_text: Optional[str] = None
    materials: Optional[Union[str, list[str]]] = None


class OutfitPiece(_ResponseModel):
    item_id: str
    role: Optional[str] = None


class OutfitSuggestion(_ResponseModel):
    items: list[OutfitPiece] = Field(..., min_length=1)
    explanation: str = ""
    accessory_suggestions: Optional[dict[str, Any]] = None
    fit_analysis: Optional[dict[str, Any]] = None
    fit_tips: list[str] = Field(default_factory=list)
    swaps: list[dict[str, Any]] = Field(default_factory=list)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)


class OutfitSuggestions(_ResponseModel):
    outfits: list[OutfitSuggestion] = Field(..., min_length=1)


def extract_json(text: str) -> Any:
    """Repair a model's text output and decode the outermost JSON value.

    Raises:
        ProviderMalformedResponse: If no JSON value can be decoded
    """
    if not text or not text.strip():
        raise ProviderMalformedResponse("Empty response content")

    fenced = CODE_FENCE_RE.search(text)
    candidate = fenced.group(1) if fenced else text
    candidate = candidate.strip()

    starts = [pos for pos in (candidate.find("{"), candidate.find("[")) if pos != -1]
    if not starts:
        raise ProviderMalformedResponse(f"No JSON value in response: {text[:200]}")

    try:
        # raw_decode ignores any trailing prose after the value
        value, _ = json.JSONDecoder().raw_decode(candidate[min(starts) :])
    except json.JSONDecodeError as e:
        raise ProviderMalformedResponse(f"Invalid JSON in response: {e}") from e
    return value


def parse_structured(text: str, schema: type[SchemaT]) -> SchemaT:
    """Repair, decode and validate a structured response.

    Raises:
        ProviderMalformedResponse: If the value does not match ``schema``
    """
    value = extract_json(text)
    if schema is OutfitSuggestions and isinstance(value, list):
        value = {"outfits": value}

    try:
        return schema.model_validate(value)
    except PydanticValidationError as e:
        raise ProviderMalformedResponse(
            f"Response does not match {schema.__name__}: {e.error_count()} error(s)"
        ) from e


def _image_entry_url(entry: Any) -> str | None:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        for key in ("image_url", "imageUrl"):
            inner = entry.get(key)
            if isinstance(inner, dict) and inner.get("url"):
                return inner["url"]
            if isinstance(inner, str):
                return inner
        if entry.get("url"):
            return entry["url"]
    return None


def extract_image(message: dict[str, Any], context: str = "image generation") -> str:
    """Pull the generated image (URL or data URL) out of a chat message.

    Checks the images array first, then content that is itself an image
    reference, then the first image URL mentioned in the content.

    Raises:
        ProviderMalformedResponse: If the message carries no image
    """
    for entry in message.get("images") or []:
        url = _image_entry_url(entry)
        if url:
            return url

    content = message.get("content")
    if isinstance(content, str):
        stripped = content.strip()
        if stripped.startswith("http") or stripped.startswith("data:image/"):
            return stripped
        match = IMAGE_URL_RE.search(stripped)
        if match:
            return match.group(0)

    raise ProviderMalformedResponse(
        f"No image generated for {context}. Response: {json.dumps(message, default=str)[:200]}"
    )
