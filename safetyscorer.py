"""
Deterministic 0-100 safety score.

This is the only score the pipeline reports. It never calls the LLM, so the
same ingredients and profile always give the same number in any order.
"""

from typing import Iterable, Optional

from healthmodels import Ingredient, SafetyLevel, UserHealthProfile

BASE_POINTS = {
    SafetyLevel.SAFE: 100,
    SafetyLevel.CAUTION: 65,
    SafetyLevel.UNSAFE: 20,
}

EMPTY_INGREDIENT_SCORE = 50
WEIGHT_NUMERATOR, WEIGHT_DENOMINATOR = 7, 10
UNSAFE_PENALTY = 5
ALLERGY_PENALTY = 20


def score(ingredients: Iterable[Ingredient], profile: Optional[UserHealthProfile] = None) -> int:
    """Score a product for a user.

    1. Safe/Caution/Unsafe map to 100/65/20 points.
    2. The mean of those points (50 when there are no ingredients) is
       weighted by 0.7 and floored.
    3. Each Unsafe ingredient costs another 5 points.
    4. Each ingredient whose name contains one of the user's allergies costs
       20 points, once per ingredient however many allergies it matches.
    5. The result is clamped to [0, 100].
    """
    ingredients = list(ingredients)
    allergies = profile.normalized_allergies() if profile else []

    if ingredients:
        points = sum(BASE_POINTS[i.safety] for i in ingredients)
        count = len(ingredients)
    else:
        points, count = EMPTY_INGREDIENT_SCORE, 1

    # floor(mean * 0.7) in integer arithmetic, free of float rounding.
    final_score = (points * WEIGHT_NUMERATOR) // (count * WEIGHT_DENOMINATOR)

    unsafe_count = sum(1 for i in ingredients if i.safety == SafetyLevel.UNSAFE)
    final_score -= unsafe_count * UNSAFE_PENALTY

    for ingredient in ingredients:
        name = ingredient.name.lower()
        if any(allergy in name for allergy in allergies):
            final_score -= ALLERGY_PENALTY

    return max(0, min(100, final_score))
