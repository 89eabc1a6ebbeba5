"""Prompt builders for the four LLM calls made during one product lookup."""

import json
from typing import List

STRICT_JSON_PREAMBLE = """You must return ONLY VALID JSON. No text outside the JSON object, no comments, no markdown.

ABSOLUTE RULES:
- The response is exactly one JSON object.
- Every ingredient is returned as ONE dictionary.
- NEVER split a single ingredient name across two entries, such as "CAFFEINE(8" followed by "3 mg/100 g)".
  Produce "CAFFEINE (8.3 mg/100g)" instead.
- When an ingredient entry carries safety data it has ALL 3 keys:
    "name": string
    "safetyLevel": number
    "info": string
- No trailing commas, no duplicate keys, no malformed JSON.
- If unsure, return: {"ingredients": []}

TASK:
"""


def wrap_strict(prompt: str) -> str:
    """Prefix a task prompt with the strict-JSON formatting contract."""
    return STRICT_JSON_PREAMBLE + prompt


def _as_list(values: List[str]) -> str:
    return json.dumps(list(values), ensure_ascii=False)


def classify_category(name: str, description: str) -> str:
    return f"""Classify this product into EXACTLY ONE of the following categories:

- "Food Product"
- "Cosmetic Item"
- "Medication"
- "Unknown"

PRODUCT NAME: "{name}"
PRODUCT DESCRIPTION: "{description}"

HARD RULES:
- If it contains "soap", "body wash", "shampoo", "handwash", "detergent", "cleanser",
  "face wash", "lotion", "cream", "moisturizer", "shaving", "deodorant",
  "dettol", "savlon", "olay", "nivea", "ponds"
  -> ALWAYS "Cosmetic Item".
- If it contains "antiseptic" or "disinfectant" -> ALWAYS "Cosmetic Item".
- If it treats a medical condition (tablet, capsule, syrup, antibiotic, ointment)
  -> ALWAYS "Medication".
- If it is edible or drinkable (any food, beverage, supplement, candy)
  -> ALWAYS "Food Product".
- NEVER classify non-edible items as food.
- If it is none of the above (furniture, electronics, tools, clothing) -> "Unknown".

RETURN VALID JSON ONLY:
{{
  "category": "<Food Product | Cosmetic Item | Medication | Unknown>"
}}
"""


def extract_ingredients(query: str) -> str:
    return f"""The product is: "{query}"

TASK:
- Infer a realistic list of 6-10 ingredients usually found in products of this type.
- DO NOT hallucinate strange or implausible chemicals.
- DO NOT repeat ingredients.
- DO NOT include quantities, numbers, percentages or chemical formulas.
- ONLY include real-world common ingredients.
- If the product is not something that has ingredients (a chair, electronics, a tool),
  return an EMPTY list.

OUTPUT STRICT JSON ONLY:
{{
  "ingredients": [
    {{ "name": "<ingredient>" }}
  ]
}}

NO explanation. NO text outside JSON. ONLY the ingredient list.
"""


def ingredient_info(ingredients: List[str]) -> str:
    return f"""Provide concise safety info for EACH ingredient below:

{_as_list(ingredients)}

RULES:
- Return EXACTLY one entry per ingredient.
- DO NOT mutate or rewrite ingredient names.
- DO NOT add or remove ingredients.
- safetyLevel values:
    0 = safe
    1 = caution
    2 = unsafe
- info MUST be short.

RETURN STRICT JSON ONLY:
{{
  "ingredients": [
    {{ "name": "<ingredient>", "safetyLevel": 0, "info": "<short>" }}
  ]
}}
"""


def safety_check(ingredients: List[str], allergies: List[str],
                 conditions: List[str], medications: List[str]) -> str:
    return f"""You are a medical-grade safety engine.

INGREDIENTS: {_as_list(ingredients)}
USER ALLERGIES: {_as_list(allergies)}
USER CONDITIONS: {_as_list(conditions)}
USER MEDICATIONS: {_as_list(medications)}

RULES FOR ALERTS:

1. ALLERGY MATCHING
   - Case-insensitive.
   - If ANY ingredient contains ANY allergen as a substring -> FLAG IT.

2. CONDITION WARNINGS
   - diabetes -> flag: sugar, high fructose corn syrup, glucose, sucrose
   - hypertension -> flag: sodium, salt, MSG
   - kidney disease -> flag: potassium, creatine
   - GERD -> flag: caffeine, mint
   - pregnancy -> flag: retinol, salicylic acid, benzoyl peroxide

3. MEDICATION INTERACTIONS
   - atorvastatin, simvastatin -> NO grapefruit
   - metformin -> caution with alcohol
   - antihistamines -> avoid alcohol
   - SSRIs -> avoid St. John's Wort
   - blood thinners (warfarin) -> avoid vitamin K rich additives
   - MAOIs -> avoid tyramine (soy sauce, cheese extracts)

IMPORTANT:
- ONLY produce a warning if the ingredient ACTUALLY APPEARS in INGREDIENTS.
- DO NOT invent new ingredients.
- DO NOT hallucinate diseases.

RETURN FORMAT:
{{
  "allergenMatches": ["..."],
  "warnings": [
    {{ "ingredient": "<ingredient>", "issue": "<why flagged>" }}
  ],
  "category": "<Food Product | Cosmetic Item | Medication | Unknown>",
  "overallSafetyScore": <0-100>
}}

JSON ONLY. NO TEXT OUTSIDE JSON.
"""
