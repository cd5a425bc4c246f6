"""OpenRouter chat-completions client for image generation and vision inference."""

import json
from typing import Any, Optional, Sequence

import httpx
import structlog

from wardrobe.services.exceptions import (
    ProviderError,
    ProviderMalformedResponse,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)
from wardrobe.services.provider import prompts
from wardrobe.services.provider.base import (
    EncodedImage,
    ItemSummary,
    OutfitContext,
    OutfitItemImage,
)
from wardrobe.services.provider.responses import (
    ItemDetails,
    OutfitSuggestions,
    extract_image,
    parse_structured,
)

logger = structlog.get_logger(__name__)

TIMEOUT_STATUSES = frozenset({408, 504})
REJECTED_STATUSES = frozenset({400, 401, 403, 413, 422})

SQUARE_IMAGE = {"aspect_ratio": "1:1", "image_size": "1024x1024"}
RESPONSE_HEALING = [{"id": "response-healing"}]


def classify_status(status_code: int, body: str) -> ProviderError:
    """Map an unsuccessful HTTP status to a provider error.

    Classification rules:
        - 408/504 → ProviderTimeout
        - 400/401/403/413/422 → ProviderRejected (retrying cannot help)
        - 429, other 5xx and anything else → ProviderUnavailable
    """
    detail = body[:500]
    if status_code in TIMEOUT_STATUSES:
        return ProviderTimeout(f"Provider timed out ({status_code}): {detail}")
    if status_code in REJECTED_STATUSES:
        if status_code in (401, 403):
            return ProviderRejected(
                f"Provider refused credentials ({status_code}). "
                "Check OPENROUTER_API_KEY configuration in .env file."
            )
        return ProviderRejected(f"Provider rejected request ({status_code}): {detail}")
    if status_code == 429:
        return ProviderUnavailable(f"Rate limit exceeded: {detail}")
    return ProviderUnavailable(f"Provider unavailable ({status_code}): {detail}")


def _image_part(image: EncodedImage) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": image.data_url}}


def _text_part(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


class OpenRouterClient:
    """GenerationProvider backed by the OpenRouter chat-completions API.

    Stateless: each capability is exactly one HTTP request. Retrying is the
    job queue's responsibility.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        image_model: str = "google/gemini-3-pro-image-preview",
        vision_model: str = "google/gemini-3-pro-preview",
        text_model: str = "google/gemini-3-flash-preview",
        referer: str = "http://localhost:3000",
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize OpenRouter client.

        Args:
            api_key: OpenRouter API key (from OPENROUTER_API_KEY env var)
            base_url: API base URL
            image_model: Model used for image generation
            vision_model: Model used for item/label inference
            text_model: Model used for outfit suggestions
            referer: Public app URL sent as HTTP-Referer
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not api_key:
            raise ValueError("OpenRouter API key is required")

        self.base_url = base_url.rstrip("/")
        self.image_model = image_model
        self.vision_model = vision_model
        self.text_model = text_model
        self.timeout = timeout
        self._transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": referer,
            "X-Title": "Wardrobe AI Closet",
        }

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "OpenRouterClient":
        return cls(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            image_model=settings.openrouter_image_model,
            vision_model=settings.openrouter_vision_model,
            text_model=settings.openrouter_text_model,
            referer=settings.public_base_url,
            timeout=settings.handler_timeout_seconds,
            **kwargs,
        )

    async def chat(self, body: dict[str, Any]) -> dict[str, Any]:
        """POST one chat-completions request and return the first choice's message.

        Raises:
            ProviderTimeout: Request timed out (client side, 408 or 504)
            ProviderRejected: Provider refused the request (4xx)
            ProviderUnavailable: Rate limit, server error or network failure
            ProviderMalformedResponse: Response body is not a chat completion
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self.headers,
                    json=body,
                )
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Request timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Network error: {e}") from e

        if response.status_code >= 400:
            error = classify_status(response.status_code, response.text)
            logger.warning(
                "provider.request_failed",
                model=body.get("model"),
                status_code=response.status_code,
                error_type=type(error).__name__,
            )
            raise error

        try:
            data = response.json()
            message = data["choices"][0]["message"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise ProviderMalformedResponse(
                f"Unexpected response shape: {response.text[:200]}"
            ) from e

        if not isinstance(message, dict):
            raise ProviderMalformedResponse("Response message is not an object")

        logger.debug("provider.request_succeeded", model=body.get("model"), usage=data.get("usage"))
        return message

    async def _generate_image(
        self, content: list[dict[str, Any]], temperature: float, context: str
    ) -> str:
        message = await self.chat(
            {
                "model": self.image_model,
                "messages": [{"role": "user", "content": content}],
                "temperature": temperature,
                "max_tokens": 4096,
                "image_config": SQUARE_IMAGE,
            }
        )
        return extract_image(message, context)

    async def _generate_json(
        self,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float,
    ) -> str:
        message = await self.chat(
            {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": 2000,
                "response_format": {"type": "json_object"},
                "plugins": RESPONSE_HEALING,
            }
        )
        content = message.get("content")
        if not isinstance(content, str):
            raise ProviderMalformedResponse("Structured response has no text content")
        return content

    # Image capabilities

    async def generate_catalog_image(self, image: EncodedImage) -> str:
        return await self._generate_image(
            [_text_part(prompts.CATALOG_IMAGE_PROMPT), _image_part(image)],
            temperature=0.3,
            context="catalog image generation",
        )

    async def generate_matching_item(
        self, reference: EncodedImage, target_category: str, style_notes: str | None = None
    ) -> str:
        """Generate an item of ``target_category`` that complements the reference piece."""
        return await self._generate_image(
            [_text_part(prompts.matching_item_prompt(target_category, style_notes)), _image_part(reference)],
            temperature=0.6,
            context="matching item generation",
        )

    async def generate_coordinated_set(self, anchor: EncodedImage, set_type: str) -> str:
        """Generate a coordinated set built around the anchor piece.

        Raises:
            ProviderRejected: If set_type is not a known set
        """
        if set_type not in prompts.SET_GUIDANCE:
            raise ProviderRejected(f"Unknown set type: {set_type}")
        return await self._generate_image(
            [_text_part(prompts.coordinated_set_prompt(set_type)), _image_part(anchor)],
            temperature=0.5,
            context="coordinated set generation",
        )

    async def apply_style_transfer(
        self, item: EncodedImage, style_reference: EncodedImage, strength: float = 0.6
    ) -> str:
        """Restyle an item after a style reference image.

        Args:
            item: Item to restyle
            style_reference: Image with the desired aesthetic
            strength: How much to transform, 0.3 (subtle) to 0.9 (strong)

        Raises:
            ProviderRejected: If strength is outside [0.3, 0.9]
        """
        if not 0.3 <= strength <= 0.9:
            raise ProviderRejected(f"Style transfer strength must be between 0.3 and 0.9, got {strength}")
        return await self._generate_image(
            [
                _text_part(prompts.style_transfer_prompt(strength)),
                _text_part("Item to transform:"),
                _image_part(item),
                _text_part("Style reference to match:"),
                _image_part(style_reference),
            ],
            temperature=0.5 + strength * 0.3,
            context="style transfer",
        )

    async def generate_outfit_context_variation(
        self,
        items: Sequence[OutfitItemImage],
        target_context: str,
        maintain_pieces: Sequence[str] | None = None,
    ) -> str:
        content = [_text_part(prompts.context_variation_prompt(items, target_context, maintain_pieces))]
        content.extend(_image_part(item.image) for item in items)
        return await self._generate_image(content, temperature=0.6, context="outfit context variation")

    async def generate_outfit_visualization(
        self,
        items: Sequence[OutfitItemImage],
        visualization_type: str,
        context: OutfitContext | None = None,
    ) -> str:
        content = [_text_part(prompts.outfit_visualization_prompt(items, visualization_type, context))]
        content.extend(_image_part(item.image) for item in items)
        return await self._generate_image(content, temperature=0.5, context="outfit visualization")

    # Structured capabilities

    async def infer_item_details(
        self, image: EncodedImage, label_image: EncodedImage | None = None
    ) -> dict[str, Any]:
        """Infer category, colors, attributes and tags for an item.

        Args:
            image: Main item photo
            label_image: Optional label photo for brand, size and materials

        Returns:
            ItemDetails dump with camelCase keys
        """
        content = [_text_part(prompts.item_details_prompt(label_image is not None)), _image_part(image)]
        if label_image is not None:
            content.append(_image_part(label_image))

        text = await self._generate_json(
            self.vision_model,
            [
                {"role": "system", "content": prompts.ITEM_DETAILS_SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
            temperature=0.3,
        )
        details = parse_structured(text, ItemDetails)
        return details.model_dump(mode="json", by_alias=True)

    async def generate_outfits(
        self, items: Sequence[ItemSummary], constraints: dict[str, Any]
    ) -> dict[str, Any]:
        """Suggest 1-5 outfits from available items.

        Returns:
            {"outfits": [...]} with camelCase keys, best match first
        """
        text = await self._generate_json(
            self.text_model,
            [
                {"role": "system", "content": prompts.OUTFIT_SYSTEM_PROMPT},
                {"role": "user", "content": prompts.outfits_prompt(items, constraints)},
            ],
            temperature=0.7,
        )
        suggestions = parse_structured(text, OutfitSuggestions)
        return suggestions.model_dump(mode="json", by_alias=True)
