"""
Clean up LLM completions before they are parsed as JSON.

Models wrap their JSON in markdown fences or add a sentence of commentary
before and after it even when told not to. `sanitize` keeps only the
outermost {...} span.
"""

import json
import re
from typing import Optional

# Opening fence with an optional language tag, or a bare closing fence.
FENCE_PATTERN = re.compile(r"```[A-Za-z0-9_+-]*")


def sanitize(raw: str) -> str:
    """Strip fences and surrounding prose. Never raises."""
    text = (raw or "").strip()

    # Removing one fence can join stray backticks into a new one.
    while "```" in text:
        text = FENCE_PATTERN.sub("", text).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        text = text[start:end + 1]

    return text


def parse_json_object(raw: str) -> Optional[dict]:
    """Sanitize and parse; None unless the result is a JSON object."""
    try:
        parsed = json.loads(sanitize(raw))
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None
