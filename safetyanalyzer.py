"""
Safety analysis against a user's health profile.

Two LLM calls live here: the safety check (allergy, condition and medication
rules applied to the ingredient list) and the ingredient-info call that
assigns each ingredient a Safe/Caution/Unsafe level. Both responses are kept
verbatim by the pipeline; the decode functions below turn them into typed
values and are reused to re-hydrate stored records.
"""

import logging
from typing import List, Optional, Sequence

import llmprompts
from healthmodels import (
    Ingredient,
    SafetyFinding,
    SafetyLevel,
    SafetyWarning,
    UserHealthProfile,
)
from ingredientextractor import decode_ingredient_tokens, repair_fragments
from responsesanitizer import parse_json_object

logger = logging.getLogger(__name__)


def _decode_score(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or not 0 <= value <= 100:
        return None
    return int(value)


def decode_safety_findings(payload) -> SafetyFinding:
    """Decode a safety-check response (dict or raw JSON text).

    Warnings without both a non-empty ingredient and issue are dropped.
    """
    if isinstance(payload, str):
        payload = parse_json_object(payload)
    payload = payload if isinstance(payload, dict) else {}

    matches = []
    raw_matches = payload.get("allergenMatches")
    if isinstance(raw_matches, list):
        for match in raw_matches:
            if isinstance(match, str) and match.strip() and match.strip() not in matches:
                matches.append(match.strip())

    warnings = []
    raw_warnings = payload.get("warnings")
    if isinstance(raw_warnings, list):
        for entry in raw_warnings:
            if not isinstance(entry, dict):
                continue
            ingredient = entry.get("ingredient")
            issue = entry.get("issue")
            if not isinstance(ingredient, str) or not ingredient.strip():
                logger.debug("Dropping warning without ingredient: %r", entry)
                continue
            if not isinstance(issue, str) or not issue.strip():
                logger.debug("Dropping warning without issue: %r", entry)
                continue
            warnings.append(SafetyWarning(ingredient=ingredient.strip(), issue=issue.strip()))

    category = payload.get("category")
    return SafetyFinding(
        allergen_matches=matches,
        warnings=warnings,
        category=category if isinstance(category, str) else None,
        overall_safety_score=_decode_score(payload.get("overallSafetyScore")),
    )


def decode_ingredient_info(payload, fallback_names: Sequence[str] = ()) -> List[Ingredient]:
    """Decode an ingredient-info response (dict or raw JSON text).

    Split names are repaired first. If the response carries no usable
    entries, the fallback names are returned as Safe with no info.
    """
    if isinstance(payload, str):
        payload = parse_json_object(payload)

    tokens = repair_fragments(decode_ingredient_tokens(payload))
    ingredients = [
        Ingredient(
            name=token.name,
            safety=SafetyLevel.from_code(token.safety_level if token.safety_level is not None else 0),
            info_text=token.info or "",
        )
        for token in tokens
    ]

    if not ingredients and fallback_names:
        logger.warning("Ingredient info returned no entries, defaulting %d ingredients to Safe",
                       len(fallback_names))
        ingredients = [Ingredient(name=name) for name in fallback_names if name]
    return ingredients


def confirm_allergens(finding: SafetyFinding, ingredient_names: Sequence[str],
                      profile: UserHealthProfile) -> SafetyFinding:
    """Add locally matched allergens the LLM missed.

    An allergy matches when it is a case-insensitive substring of an
    ingredient name. Each matching ingredient is listed once, with a paired
    warning unless one already names that ingredient.
    """
    allergies = profile.normalized_allergies()
    if not allergies:
        return finding

    matches = list(finding.allergen_matches)
    warnings = list(finding.warnings)
    known_matches = {m.lower() for m in matches}
    warned = {w.ingredient.lower() for w in warnings}

    for name in ingredient_names:
        lowered = name.lower()
        hit = next((a for a in allergies if a in lowered), None)
        if hit is None:
            continue
        if lowered not in known_matches and hit not in known_matches:
            matches.append(name)
            known_matches.add(lowered)
        if lowered not in warned:
            warnings.append(SafetyWarning(ingredient=name, issue=f"Contains your allergen: {hit.title()}"))
            warned.add(lowered)

    return finding.model_copy(update={"allergen_matches": matches, "warnings": warnings})


class SafetyAnalyzer:
    """Cross-references ingredients with a user's allergies, conditions and medications."""

    def __init__(self, client):
        self.client = client

    async def safety_check(self, ingredient_names: Sequence[str], profile: UserHealthProfile) -> str:
        """Run the safety-check call and return its sanitized JSON text."""
        prompt = llmprompts.safety_check(
            list(ingredient_names),
            profile.allergies,
            profile.medical_conditions,
            profile.medications,
        )
        return await self.client.complete(prompt)

    async def ingredient_info(self, ingredient_names: Sequence[str]) -> str:
        """Run the ingredient-info call and return its sanitized JSON text."""
        return await self.client.complete(llmprompts.ingredient_info(list(ingredient_names)))

    async def analyze(self, ingredient_names: Sequence[str], profile: UserHealthProfile) -> SafetyFinding:
        raw = await self.safety_check(ingredient_names, profile)
        return confirm_allergens(decode_safety_findings(raw), ingredient_names, profile)

    async def describe(self, ingredient_names: Sequence[str]) -> List[Ingredient]:
        raw = await self.ingredient_info(ingredient_names)
        return decode_ingredient_info(raw, fallback_names=ingredient_names)
