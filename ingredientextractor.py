"""
Ingredient extraction.

Ingredient names come either from label text supplied by the capture layer or,
when no label text exists, from the LLM inferring typical ingredients for the
product. LLM output is decoded leniently and split tokens are stitched back
together before anything downstream sees them.
"""

import logging
import re
from typing import Iterable, List, Optional

import llmprompts
from healthmodels import INGREDIENTS_FROM_LLM, RawIngredientToken
from responsesanitizer import parse_json_object

logger = logging.getLogger(__name__)

# Commas, semicolons, newlines, and periods that are not decimal points.
RAW_SPLIT_PATTERN = re.compile(r"([,;\n]|(?<!\d)\.|\.(?!\d))")


def decode_ingredient_tokens(payload: Optional[dict]) -> List[RawIngredientToken]:
    """Decode the "ingredients" array of an LLM response.

    Entries that are not objects or have no usable name are dropped.
    """
    items = (payload or {}).get("ingredients")
    if not isinstance(items, list):
        return []

    tokens = []
    for item in items:
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            logger.debug("Dropping non-object ingredient entry: %r", item)
            continue

        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            logger.debug("Dropping ingredient entry without a name: %r", item)
            continue

        info = item.get("info")
        level = item.get("safetyLevel")
        if isinstance(level, bool) or not isinstance(level, (int, float, str)):
            level = None
        else:
            try:
                level = int(level)
            except (ValueError, OverflowError):
                level = None

        tokens.append(RawIngredientToken(
            name=name.strip(),
            info=info if isinstance(info, str) else None,
            safety_level=level,
        ))
    return tokens


def repair_fragments(tokens: Iterable[RawIngredientToken]) -> List[RawIngredientToken]:
    """Merge names the LLM split in two around a parenthesis.

    "CAFFEINE(8" followed by "3 mg/100 g)" becomes "CAFFEINE(8 3 mg/100 g)",
    keeping the opening fragment's info and safety level. Only one opening
    fragment is buffered at a time: a second one replaces the first. An
    opening fragment that never meets a closer is kept as it is.
    """
    repaired = []
    pending = None

    for token in tokens:
        if token.is_opening_fragment:
            if pending is not None:
                logger.debug("Replacing unmatched fragment %r with %r", pending.name, token.name)
            pending = token
            continue

        if pending is not None and token.is_closing_fragment:
            repaired.append(RawIngredientToken(
                name=f"{pending.name} {token.name}",
                info=pending.info,
                safety_level=pending.safety_level,
            ))
            pending = None
            continue

        repaired.append(token)

    if pending is not None:
        repaired.append(pending)

    return repaired


def split_raw_ingredients(text: str) -> List[str]:
    """Split label ingredient text into names, first occurrence wins.

    Separators inside parentheses do not split, so
    "Emulsifier (Soy Lecithin, E471)" stays one ingredient. If the text ends
    with a parenthesis still open, the parts it held are kept separately.
    """
    names = []
    seen = set()

    def add(part: str) -> None:
        name = re.sub(r"\s+", " ", part).strip()
        if name and name.lower() not in seen:
            seen.add(name.lower())
            names.append(name)

    # Alternating text and separator pieces of one parenthesised entry.
    group = []
    depth = 0
    for index, piece in enumerate(RAW_SPLIT_PATTERN.split(text or "")):
        if index % 2:
            if depth > 0:
                group.append(piece)
            continue
        group.append(piece)
        depth = max(0, depth + piece.count("(") - piece.count(")"))
        if depth == 0:
            add("".join(group))
            group = []

    for piece in group[::2]:
        add(piece)
    return names


def needs_inference(raw_ingredient_text: Optional[str]) -> bool:
    return (raw_ingredient_text is None
            or not raw_ingredient_text.strip()
            or raw_ingredient_text.strip() == INGREDIENTS_FROM_LLM)


class IngredientExtractor:
    """Produces the canonical ordered ingredient name list for a product."""

    def __init__(self, client):
        self.client = client

    async def resolve(self, product_name: str, description: str,
                      raw_ingredient_text: Optional[str]) -> List[str]:
        """Use supplied label text when present, otherwise ask the LLM."""
        if not needs_inference(raw_ingredient_text):
            return split_raw_ingredients(raw_ingredient_text)

        seed = description.strip() if description and description.strip() else product_name
        return await self.extract(seed)

    async def extract(self, product_name_or_raw_text: str) -> List[str]:
        """Infer ingredient names with the LLM. An empty list is a valid answer."""
        raw = await self.client.complete(llmprompts.extract_ingredients(product_name_or_raw_text))
        tokens = repair_fragments(decode_ingredient_tokens(parse_json_object(raw)))

        names = []
        seen = set()
        for token in tokens:
            # Bare numbers like "8.3" or "100/200" are not ingredients.
            if not re.search(r"[A-Za-z]", token.name):
                logger.debug("Dropping numeric fragment %r", token.name)
                continue
            if token.name.lower() in seen:
                continue
            seen.add(token.name.lower())
            names.append(token.name)

        if not names:
            logger.info("No ingredients apply to %r", product_name_or_raw_text)
        return names
