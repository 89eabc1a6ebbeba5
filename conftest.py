"""Shared fakes for the test modules."""

import json

import pytest
import requests

from responsesanitizer import sanitize

# Marker text identifying which prompt builder produced a prompt.
PROMPT_KINDS = {
    "category": "Classify this product",
    "extraction": "Infer a realistic list",
    "safety": "medical-grade safety engine",
    "info": "Provide concise safety info",
}


def prompt_kind(prompt: str) -> str:
    for kind, marker in PROMPT_KINDS.items():
        if marker in prompt:
            return kind
    raise AssertionError(f"Unrecognised prompt: {prompt[:80]!r}")


class ScriptedInferenceClient:
    """Stands in for TextInferenceClient, answering by prompt kind.

    A scripted value may be a dict (serialized to JSON), a string (returned
    sanitized) or an exception instance (raised).
    """

    def __init__(self, **responses):
        self.responses = responses
        self.calls = []

    async def complete(self, prompt: str) -> str:
        kind = prompt_kind(prompt)
        self.calls.append((kind, prompt))
        response = self.responses[kind]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            response = json.dumps(response)
        return sanitize(response)

    def kinds(self):
        return [kind for kind, _ in self.calls]


class RecordingHistoryStore:
    def __init__(self):
        self.history = []
        self.profiles = {}

    def add_history_item(self, uid, product_id, result):
        self.history.append((uid, product_id, result))

    def fetch_user_profile(self, uid):
        from healthmodels import UserHealthProfile
        return self.profiles.get(uid, UserHealthProfile())


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """requests-style session replaying queued responses or exceptions."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def post(self, url, headers=None, json=None, timeout=None):
        self.requests.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def completion(content: str, status_code: int = 200) -> FakeResponse:
    return FakeResponse({"choices": [{"message": {"content": content}}]}, status_code)


SHAMPOO_INGREDIENTS = [
    "Water",
    "Sodium Laureth Sulfate",
    "Cocamidopropyl Betaine",
    "Glycerin",
    "Fragrance",
    "Citric Acid",
    "Sodium Chloride",
]


@pytest.fixture
def shampoo_client():
    """Scripted answers for the "Generic Shampoo" lookup."""
    return ScriptedInferenceClient(
        category={"category": "Cosmetic Item"},
        extraction="```json\n" + json.dumps(
            {"ingredients": [{"name": n} for n in SHAMPOO_INGREDIENTS]}) + "\n```",
        safety={"allergenMatches": [], "warnings": [], "overallSafetyScore": 82},
        info={"ingredients": [
            {"name": "Water", "safetyLevel": 0, "info": "Solvent."},
            {"name": "Sodium Laureth Sulfate", "safetyLevel": 1, "info": "Surfactant, can irritate."},
            {"name": "Cocamidopropyl Betaine", "safetyLevel": 0, "info": "Mild surfactant."},
            {"name": "Glycerin", "safetyLevel": 0, "info": "Humectant."},
            {"name": "Fragrance", "safetyLevel": 1, "info": "Possible sensitizer."},
            {"name": "Citric Acid", "safetyLevel": 0, "info": "pH adjuster."},
            {"name": "Sodium Chloride", "safetyLevel": 0, "info": "Thickener."},
        ]},
    )


@pytest.fixture
def history_store():
    return RecordingHistoryStore()
