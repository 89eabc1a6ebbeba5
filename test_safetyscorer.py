import pytest

from healthmodels import Ingredient, ScoreBand, SafetyLevel, UserHealthProfile, band_for_score
from safetyscorer import score

SAFE, CAUTION, UNSAFE = SafetyLevel.SAFE, SafetyLevel.CAUTION, SafetyLevel.UNSAFE


def ingredient(name, safety=SAFE):
    return Ingredient(name=name, safety=safety)


def test_all_safe_scores_seventy():
    assert score([ingredient("Water"), ingredient("Salt"), ingredient("Oats")]) == 70


def test_single_unsafe_ingredient():
    # floor(20 * 0.7) = 14, minus the unsafe penalty.
    assert score([ingredient("Red 3", UNSAFE)]) == 9


def test_mixed_levels_are_floored():
    assert score([ingredient("Water"), ingredient("Sugar", CAUTION)]) == 57


def test_empty_ingredient_list_scores_thirty_five():
    assert score([]) == 35
    assert score([], UserHealthProfile(allergies=["peanut"])) == 35


def test_allergy_substring_match_costs_twenty():
    profile = UserHealthProfile(allergies=["peanut"])
    assert score([ingredient("Peanut Extract")], profile) == 50


def test_allergy_penalty_applies_once_per_ingredient():
    profile = UserHealthProfile(allergies=["peanut", "milk", "PEANUT "])
    assert score([ingredient("Peanut Milk")], profile) == 50
    assert score([ingredient("Peanut Oil"), ingredient("Skim Milk")], profile) == 30


def test_score_is_clamped_at_zero():
    profile = UserHealthProfile(allergies=["peanut"])
    assert score([ingredient("Peanut Oil", UNSAFE)], profile) == 0


def test_score_ignores_ingredient_order():
    items = [ingredient("Water"), ingredient("Sugar", CAUTION), ingredient("Red 3", UNSAFE),
             ingredient("Peanut Oil")]
    profile = UserHealthProfile(allergies=["peanut"])
    assert score(items, profile) == score(list(reversed(items)), profile)


def test_blank_allergies_are_ignored():
    profile = UserHealthProfile(allergies=["", "   "])
    assert score([ingredient("Water")], profile) == 70


@pytest.mark.parametrize("value, band", [
    (0, ScoreBand.SEVERE),
    (29, ScoreBand.SEVERE),
    (30, ScoreBand.CAUTION),
    (59, ScoreBand.CAUTION),
    (60, ScoreBand.ACCEPTABLE),
    (100, ScoreBand.ACCEPTABLE),
])
def test_band_boundaries(value, band):
    assert band_for_score(value) == band
