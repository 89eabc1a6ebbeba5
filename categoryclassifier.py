"""Product category classification. Failures degrade to Unknown, never raise."""

import logging
import re
from typing import Optional

import llmprompts
from errors import InferenceError
from healthmodels import CategoryLabel
from responsesanitizer import parse_json_object

logger = logging.getLogger(__name__)

CATEGORY_ALIASES = {
    "food product": CategoryLabel.FOOD_PRODUCT,
    "food products": CategoryLabel.FOOD_PRODUCT,
    "food": CategoryLabel.FOOD_PRODUCT,
    "beverage": CategoryLabel.FOOD_PRODUCT,
    "cosmetic item": CategoryLabel.COSMETIC_ITEM,
    "cosmetic items": CategoryLabel.COSMETIC_ITEM,
    "cosmetic": CategoryLabel.COSMETIC_ITEM,
    "cosmetics": CategoryLabel.COSMETIC_ITEM,
    "personal care": CategoryLabel.COSMETIC_ITEM,
    "medication": CategoryLabel.MEDICATION,
    "medications": CategoryLabel.MEDICATION,
    "medicine": CategoryLabel.MEDICATION,
    "drug": CategoryLabel.MEDICATION,
    "unknown": CategoryLabel.UNKNOWN,
}


def normalize_category(value) -> CategoryLabel:
    """Map free-text category variants onto the fixed labels."""
    if not isinstance(value, str):
        return CategoryLabel.UNKNOWN
    key = re.sub(r"[\s_\-]+", " ", value).strip().lower()
    return CATEGORY_ALIASES.get(key, CategoryLabel.UNKNOWN)


def decode_category(payload: Optional[dict]) -> CategoryLabel:
    return normalize_category((payload or {}).get("category"))


class CategoryClassifier:

    def __init__(self, client):
        self.client = client

    async def classify(self, name: str, description: str) -> CategoryLabel:
        try:
            raw = await self.client.complete(llmprompts.classify_category(name, description))
        except InferenceError as e:
            logger.warning("Category classification failed for %r, using Unknown: %s", name, e)
            return CategoryLabel.UNKNOWN

        category = decode_category(parse_json_object(raw))
        if category == CategoryLabel.UNKNOWN:
            logger.info("Category for %r resolved to Unknown", name)
        return category
