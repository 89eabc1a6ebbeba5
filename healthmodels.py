"""
Data model shared by every stage of the product safety pipeline.

A lookup reads one UserHealthProfile snapshot and produces one SafetyResult.
Everything in between (raw ingredient tokens, findings, ingredients) is owned
by that single lookup.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Passed as raw ingredient text when the capture layer found no ingredient list
# and the ingredients must be inferred by the LLM.
INGREDIENTS_FROM_LLM = "INGREDIENTS_FROM_LLM"


class UserHealthProfile(BaseModel):
    """Read-only snapshot of a user's allergies, conditions and medications."""

    model_config = ConfigDict(frozen=True)

    allergies: List[str] = Field(default_factory=list)
    medical_conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: Optional[dict]) -> "UserHealthProfile":
        """Build a profile from a stored user record (camelCase storage keys)."""
        record = record or {}

        def _strings(*keys: str) -> List[str]:
            values = next((record[k] for k in keys if k in record), None) or []
            if not isinstance(values, list):
                return []
            return [str(v) for v in values if v is not None]

        return cls(
            allergies=_strings("allergies"),
            medical_conditions=_strings("medicalConditions", "medical_conditions"),
            medications=_strings("medications"),
        )

    def normalized_allergies(self) -> List[str]:
        """Allergies lowercased and trimmed, blank entries dropped."""
        return [a.strip().lower() for a in self.allergies if a and a.strip()]


class SafetyLevel(str, Enum):
    SAFE = "Safe"
    CAUTION = "Caution"
    UNSAFE = "Unsafe"

    @classmethod
    def from_code(cls, code) -> "SafetyLevel":
        """Map the ingredient-info wire code (0 safe, 1 caution, 2 unsafe)."""
        try:
            value = int(code)
        except (TypeError, ValueError):
            return cls.SAFE
        return {0: cls.SAFE, 1: cls.CAUTION, 2: cls.UNSAFE}.get(value, cls.SAFE)


class CategoryLabel(str, Enum):
    FOOD_PRODUCT = "Food Product"
    COSMETIC_ITEM = "Cosmetic Item"
    MEDICATION = "Medication"
    UNKNOWN = "Unknown"


class ScoreBand(str, Enum):
    SEVERE = "severe"
    CAUTION = "caution"
    ACCEPTABLE = "acceptable"


def band_for_score(score: int) -> ScoreBand:
    """Color band used by every display surface: <30, 30-59, >=60."""
    if score < 30:
        return ScoreBand.SEVERE
    if score < 60:
        return ScoreBand.CAUTION
    return ScoreBand.ACCEPTABLE


class RawIngredientToken(BaseModel):
    """One ingredient entry as the LLM emitted it, possibly a fragment."""

    name: str
    info: Optional[str] = None
    safety_level: Optional[int] = None

    @property
    def is_opening_fragment(self) -> bool:
        return "(" in self.name and ")" not in self.name

    @property
    def is_closing_fragment(self) -> bool:
        return ")" in self.name


class Ingredient(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    safety: SafetyLevel = SafetyLevel.SAFE
    info_text: str = ""


class SafetyWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    ingredient: str
    issue: str


class SafetyFinding(BaseModel):
    allergen_matches: List[str] = Field(default_factory=list)
    warnings: List[SafetyWarning] = Field(default_factory=list)
    category: Optional[str] = None
    overall_safety_score: Optional[int] = None

    def alert_lines(self) -> List[str]:
        """Flattened "ingredient: issue" lines for alert display."""
        return [f"{w.ingredient}: {w.issue}" for w in self.warnings]


class SafetyResult(BaseModel):
    """Terminal artifact of a completed lookup."""

    product_name: str
    category: CategoryLabel = CategoryLabel.UNKNOWN
    score: int = Field(ge=0, le=100)
    ingredients: List[Ingredient] = Field(default_factory=list)
    findings: SafetyFinding = Field(default_factory=SafetyFinding)
    ingredients_raw_json: str = ""
    safety_raw_json: str = ""
    # Score embedded by the LLM in the safety response; display only.
    advisory_score: Optional[int] = None

    @property
    def band(self) -> ScoreBand:
        return band_for_score(self.score)

    def to_response(self) -> dict:
        payload = self.model_dump(mode="json")
        payload["band"] = self.band.value
        return payload
