"""Metadata prompts and response normalization for stock platforms."""

import json
import logging
import re
from typing import Any, Dict, List

from ..schemas.common import Metadata

logger = logging.getLogger(__name__)

PLATFORMS = ("shutterstock", "adobe_stock")

SHUTTERSTOCK_CATEGORIES = [
    "Abstract", "Animals/Wildlife", "Arts", "Backgrounds/Textures", "Beauty/Fashion",
    "Buildings/Landmarks", "Business/Finance", "Celebrities", "Education", "Food and drink",
    "Healthcare/Medical", "Holidays", "Industrial", "Interiors", "Miscellaneous", "Nature",
    "Objects", "Parks/Outdoor", "People", "Religion", "Science", "Signs/Symbols",
    "Sports/Recreation", "Technology", "Transportation", "Vintage",
]

ADOBE_STOCK_CATEGORIES = [
    "Animals", "Buildings and Architecture", "Business", "Drinks", "The Environment",
    "States of Mind", "Food", "Graphic Resources", "Hobbies and Leisure", "Industry",
    "Landscape", "Lifestyle", "People", "Plants and Flowers", "Culture and Religion",
    "Science", "Social Issues", "Sports", "Technology", "Transport", "Travel",
]

PROMPT_BASE = """
You are writing metadata for a stock photography marketplace.
Describe only what is visible in the image. Be factual and professional.
Do not guess identities, ethnicity, religion or brands. No trademarked names
unless the content is editorial. Avoid filler adjectives such as "beautiful"
or "stunning".

If the filename contains a location or date, use it in the text and keywords.

Keywords: order by relevance, put the most searched, specific subject terms in
the first 10 slots, then context (location, activity), then broader concepts.
Use buyer search phrases, include singular/plural and regional variants.
No duplicates.

Editorial is "yes" when the image shows public figures, logos, recognizable
events or landmarks, or newsworthy content; otherwise "no".
"""

PROMPT_SHUTTERSTOCK = """
Target platform: Shutterstock.
- Description: 6-12 words, capitalized first word and proper nouns.
  Editorial format: "City, Country - Month Day Year: Description".
- Keywords: 7-50 unique keywords.
- Categories: 1-2 from this list only: {categories}

Respond with a single JSON object and nothing else:
{{"Description": "...", "Keywords": "keyword1, keyword2", "Categories": "Category",
 "Editorial": "yes/no", "Mature content": "no", "Illustration": "no"}}
"""

PROMPT_ADOBE_STOCK = """
Target platform: Adobe Stock.
- Title: concise, under 70 characters.
- Keywords: up to 49 keywords.
- Category: one from this list only: {categories}

Respond with a single JSON object and nothing else:
{{"Title": "...", "Keywords": "keyword1, keyword2", "Category": "Category",
 "Releases": ""}}
"""


def build_prompt(platform: str, filename: str) -> str:
    """Build metadata prompt for a platform.

    Args:
        platform: "shutterstock" or "adobe_stock"
        filename: Image filename (may carry location hints)

    Returns:
        Prompt text
    """
    if platform == "adobe_stock":
        tail = PROMPT_ADOBE_STOCK.format(categories=", ".join(ADOBE_STOCK_CATEGORIES))
    elif platform == "shutterstock":
        tail = PROMPT_SHUTTERSTOCK.format(categories=", ".join(SHUTTERSTOCK_CATEGORIES))
    else:
        raise ValueError(f"Unknown platform: {platform}")

    return f"{PROMPT_BASE}{tail}\nFilename: {filename}\n"


def clean_json_fence(text: str) -> str:
    """Remove markdown ```json fence from text, if present."""
    match = re.search(r'```(?:json)?\s*\n?(.*?)\n?```', text, re.DOTALL)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_metadata_text(text: str, filename: str, platform: str) -> Metadata:
    """Parse model output into Metadata.

    Accepts a bare JSON object, a fenced one, or the first {...} block
    embedded in other text.

    Raises:
        ValueError: If no JSON object can be extracted
    """
    cleaned = clean_json_fence(text)

    data: Any = None
    if cleaned.startswith("{"):
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            data = None

    if not isinstance(data, dict):
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise ValueError("No JSON object in model response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in model response: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("Model response JSON is not an object")

    return normalize_metadata(data, filename, platform)


def split_terms(value: Any) -> List[str]:
    """Split a comma-separated string (or list) into trimmed, non-empty terms."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item and item.strip()]


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return ""


def normalize_metadata(data: Dict[str, Any], filename: str, platform: str) -> Metadata:
    """Map a raw metadata dict (model or proxy output) to Metadata.

    Accepts both the model's CSV-style keys ("Description", "Keywords") and
    the proxy's lower-case keys ("description", "keywords").
    """
    if platform == "adobe_stock":
        category = _pick(data, "Category", "category")
        return Metadata(
            filename=filename,
            description=str(_pick(data, "Title", "title", "Description", "description")),
            keywords=split_terms(_pick(data, "Keywords", "keywords")),
            categories=split_terms(category),
            extra={"releases": str(_pick(data, "Releases", "releases"))},
        )

    editorial = str(_pick(data, "Editorial", "editorial")).strip().lower()
    return Metadata(
        filename=filename,
        description=str(_pick(data, "Description", "description")),
        keywords=split_terms(_pick(data, "Keywords", "keywords")),
        categories=split_terms(_pick(data, "Categories", "categories")),
        extra={
            "editorial": "yes" if editorial == "yes" else "no",
            "mature_content": "no",
            "illustration": "no",
        },
    )
