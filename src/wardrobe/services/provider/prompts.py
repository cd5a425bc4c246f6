"""Prompt templates for the generation provider."""

from typing import Any, Sequence

from wardrobe.services.provider.base import ItemSummary, OutfitContext, OutfitItemImage

CATALOG_IMAGE_PROMPT = """Transform this clothing item photo into a professional catalog image:
- Remove or replace background with neutral, clean background
- Center the garment with consistent padding
- Preserve all colors, patterns, and graphic details exactly
- No text overlays or watermarks
- Minimize wrinkles only if it doesn't change the garment's appearance
- Create crisp edges without halos
- Output should be square format, well-lit, and catalog-quality"""

ITEM_DETAILS_SYSTEM_PROMPT = """You are an expert fashion cataloger specializing in emo/goth/alt styles.
Analyze clothing items and provide structured data in JSON format.
Focus on accurate categorization, color identification, relevant style tags, \
and licensed merchandise detection."""

ITEM_CATEGORIES = (
    "tops, bottoms, dresses, outerwear, shoes, accessories, underwear_bras, jewelry, "
    "swimwear, activewear, sleepwear, loungewear, suits_sets"
)

ITEM_DETAILS_PROMPT = f"""Analyze this clothing item and provide detailed information in JSON format:

Required fields:
- category: one of [{ITEM_CATEGORIES}]
- subType: specific sub-type for accessories, jewelry, shoes and bottoms, otherwise null
- colors: array of named colors (e.g., ["black", "dark purple"])
- colorPalette: array of hex codes for dominant colors
- pattern: description (e.g., "solid", "striped", "floral", "graphic print")
- attributes: object with category-relevant attributes (neckline, sleeveLength, rise, fit,
  silhouette, heelHeight, material, visualWeight, ...)
- fitNotes: brief description of how the item fits and its proportions
- pairingTips: array of 1-2 suggestions for what items work well with this piece
- tags: array of style tags relevant to emo/goth/alt fashion
- isLicensedMerch: true if this appears to be official licensed merchandise
- franchise: band, movie, show, game, anime, comic, team or brand name, or null
- franchiseType: one of [band, movie, tv_show, game, anime, comic, sports, brand, other] or null
- confidence: object with confidence scores (0-1) for each field"""

LABEL_FIELDS_PROMPT = """
Also analyze the label image to extract:
- brand: brand name
- sizeText: size information
- materials: materials/fabric composition"""

JSON_ONLY = "\n\nReturn ONLY valid JSON, no additional text."

OUTFIT_SYSTEM_PROMPT = """You are a personal stylist specializing in emo/goth/alt fashion for ADHD users.
Generate outfit combinations that respect emotional constraints and style preferences.
Consider dysphoria-safe options, dopamine-boosting combinations, and confidence-building looks.
Apply fit and proportion principles: visual weight balance, harmonious necklines, \
proportional silhouettes, and minimal awkward horizontal segmentation."""

OUTFIT_RESPONSE_FORMAT = """Return a JSON object {"outfits": [...]} with 1-5 outfits, each containing:
- items: array of {itemId, role} (include role 'accessory', 'jewelry', 'shoes' where used)
- explanation: short 1-2 sentence explanation of why this outfit works
- accessorySuggestions: {included, optional, reasoning}
- fitAnalysis: {visualWeightBalance, proportionHarmony, silhouetteDefinition, horizontalLines, score}
- fitTips: array of 1-2 brief tips
- swaps: optional array of {itemId, reason}
- confidence: 0-1 score for how well this matches constraints

Order outfits by confidence score (best first)."""

SET_GUIDANCE = {
    "two-piece": "Generate one matching piece (top+bottom or jacket+dress)",
    "three-piece": "Generate two coordinating pieces (top+bottom+layer or similar)",
    "complete-outfit": "Generate a full outfit with all necessary pieces",
}


def item_details_prompt(with_label: bool) -> str:
    prompt = ITEM_DETAILS_PROMPT
    if with_label:
        prompt += LABEL_FIELDS_PROMPT
    return prompt + JSON_ONLY


def _describe_item(item: ItemSummary) -> str:
    line = f"- {item.id}: {item.category} ({', '.join(item.colors)}) [{', '.join(item.tags)}]"
    if item.attributes:
        attrs = ", ".join(f"{key}:{value}" for key, value in item.attributes.items())
        line += f" {{{attrs}}}"
    return line


def outfits_prompt(items: Sequence[ItemSummary], constraints: dict[str, Any]) -> str:
    """Build the outfit suggestion prompt.

    Args:
        items: Available items to combine
        constraints: OutfitConstraints dump (snake_case keys)
    """
    lines = []
    if constraints.get("weather"):
        lines.append(f"- Weather: {constraints['weather']}")
    if constraints.get("time_budget"):
        time = "Quick to put on" if constraints["time_budget"] == "quick" else "Normal"
        lines.append(f"- Time: {time}")
    if constraints.get("vibe"):
        lines.append(f"- Vibe: {constraints['vibe']}")
    if constraints.get("occasion"):
        lines.append(f"- Occasion: {constraints['occasion']}")
    if constraints.get("fit_principles"):
        lines.append(f"- Fit Principles: {', '.join(constraints['fit_principles'])}")

    return (
        "Generate 1-5 outfit combinations from these available items:\n\n"
        + "\n".join(_describe_item(item) for item in items)
        + "\n\nConstraints:\n"
        + ("\n".join(lines) if lines else "- None")
        + "\n\nInclude accessories, shoes and jewelry when they balance the outfit. "
        "Each outfit should feel complete without overwhelming choices.\n\n"
        + OUTFIT_RESPONSE_FORMAT
        + JSON_ONLY
    )


def _context_block(context: OutfitContext | None) -> str:
    if context is None or context.is_empty():
        return ""
    lines = ["Context for this outfit:"]
    if context.weather:
        lines.append(f"- Weather: {context.weather}")
    if context.vibe:
        lines.append(f"- Vibe: {context.vibe}")
    if context.occasion:
        lines.append(f"- Occasion: {context.occasion}")
    if context.explanation:
        lines.append(f"- Why it works: {context.explanation}")
    return "\n".join(lines) + "\n"


def outfit_visualization_prompt(
    items: Sequence[OutfitItemImage], visualization_type: str, context: OutfitContext | None
) -> str:
    listing = "\n".join(f"{idx}. {item.category}" for idx, item in enumerate(items, start=1))
    context_block = _context_block(context)

    if visualization_type == "outfit_board":
        return f"""Create a professional outfit board / flat lay showing these clothing items arranged aesthetically:

{listing}
{context_block}
Style guidelines:
- Arrange items in a visually pleasing flat lay composition
- Use a clean, neutral background (white or light gray)
- Maintain consistent lighting and perspective
- Items should be neatly arranged and clearly visible
- Create a cohesive, magazine-quality aesthetic
- Preserve the colors and details of each item exactly as shown
- The layout should feel balanced and intentional"""

    return f"""Create a realistic visualization of a person wearing this complete outfit:

{listing}
{context_block}
Style guidelines:
- Show a full-body view of a person wearing all these items together
- Use natural, flattering lighting
- Preserve colors, patterns, and details exactly as shown in the reference images
- The person should have a neutral expression and pose
- Background should be simple and not distract from the outfit
- Ensure all items are visible and styled appropriately"""


def matching_item_prompt(target_category: str, style_notes: str | None) -> str:
    notes = f"\n- Additional guidance: {style_notes}" if style_notes else ""
    return f"""Generate a {target_category} item that perfectly complements and matches this reference piece:

Style matching requirements:
- Extract and match the color palette from the reference
- Match the aesthetic and style level (casual/formal/edgy/etc.)
- Coordinate patterns (solid with pattern, or complementary patterns)
- Match the visual weight appropriately
- Ensure colors harmonize (complementary, analogous, or matching tones){notes}

Output:
- Professional catalog-quality image
- Clean, neutral background
- Realistic fabric textures
- The item should look like it belongs to the same outfit"""


def style_transfer_prompt(strength: float) -> str:
    if strength < 0.5:
        description = "subtle inspiration"
    elif strength < 0.7:
        description = "moderate transformation"
    else:
        description = "strong transformation"

    return f"""Apply the aesthetic and styling from the style reference to this clothing item:

Style transfer guidance ({description}):
- Adopt the color palette and tones from the style reference
- Match the overall vibe, mood, and aesthetic
- Incorporate similar patterns, textures, or design elements
- Maintain the base garment type and general fit
- Strength: {strength * 100:.0f}% transformation

Output:
- Professional catalog quality
- Clean background
- Preserve garment wearability"""


def context_variation_prompt(
    items: Sequence[OutfitItemImage], target_context: str, maintain_pieces: Sequence[str] | None
) -> str:
    if maintain_pieces:
        maintained = f"Keep these pieces unchanged: {', '.join(maintain_pieces)}"
    else:
        maintained = "You may adapt any pieces as needed"
    listing = "\n".join(
        f"{idx}. {item.category} (ID: {item.id})" for idx, item in enumerate(items, start=1)
    )

    return f"""Adapt this outfit for: {target_context}

Reference outfit pieces:
{listing}

Adaptation guidelines:
- Transform the outfit to be appropriate for: {target_context}
- {maintained}
- Maintain the overall color harmony and aesthetic
- Adjust formality, coverage, or style as needed
- Result should be a cohesive, wearable outfit

Output:
- Show complete outfit suitable for the context
- Clean background
- All items clearly visible"""


def coordinated_set_prompt(set_type: str) -> str:
    return f"""Create a coordinated {set_type} set based on this anchor piece:

Set requirements:
- {SET_GUIDANCE[set_type]}
- Match or complement the color palette
- Coordinate patterns and textures
- Ensure visual balance and harmony
- All pieces should look intentionally coordinated

Output:
- Show all pieces in a flat lay / outfit board style
- Professional catalog quality
- Clean, neutral background
- Should look like a cohesive, ready-to-wear set"""
