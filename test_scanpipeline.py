import asyncio
import json

import pytest

from conftest import SHAMPOO_INGREDIENTS, FakeSession, ScriptedInferenceClient, completion
from errors import InferenceError, MalformedCompletionError, PipelineAbortError, PipelineStage
from healthmodels import CategoryLabel, SafetyLevel, SafetyWarning, ScoreBand, UserHealthProfile
from inferenceclient import TextInferenceClient
from scanpipeline import ScanPipeline


def exhausted():
    return InferenceError(MalformedCompletionError("not json"), attempts=3)


def run_lookup(pipeline, *args, **kwargs):
    return asyncio.run(pipeline.start_lookup(*args, **kwargs))


def test_generic_shampoo_lookup(shampoo_client):
    result = run_lookup(ScanPipeline(client=shampoo_client), "Generic Shampoo", "")

    assert result.product_name == "Generic Shampoo"
    assert result.category == CategoryLabel.COSMETIC_ITEM
    assert [i.name for i in result.ingredients] == SHAMPOO_INGREDIENTS
    assert result.ingredients[1].safety == SafetyLevel.CAUTION
    # 5 Safe + 2 Caution: floor(630 / 7 * 0.7) = 63
    assert result.score == 63
    assert result.band == ScoreBand.ACCEPTABLE
    assert result.advisory_score == 82
    assert shampoo_client.kinds() == ["extraction", "category", "safety", "info"]


def test_shampoo_with_sulfate_allergy(shampoo_client):
    profile = UserHealthProfile(allergies=["sulfate"])

    result = run_lookup(ScanPipeline(client=shampoo_client), "Generic Shampoo", "", profile=profile)

    assert result.findings.allergen_matches == ["Sodium Laureth Sulfate"]
    assert SafetyWarning(ingredient="Sodium Laureth Sulfate",
                         issue="Contains your allergen: Sulfate") in result.findings.warnings
    assert result.score == 43
    assert result.band == ScoreBand.CAUTION


def test_raw_responses_are_kept_verbatim(shampoo_client):
    result = run_lookup(ScanPipeline(client=shampoo_client), "Generic Shampoo")

    assert json.loads(result.safety_raw_json)["overallSafetyScore"] == 82
    info = json.loads(result.ingredients_raw_json)
    assert [entry["name"] for entry in info["ingredients"]] == SHAMPOO_INGREDIENTS


def test_execute_records_state_trace(shampoo_client):
    final_state = asyncio.run(ScanPipeline(client=shampoo_client).execute("Generic Shampoo"))

    assert final_state["states"] == [
        "Idle", "ExtractingIngredients", "ClassifyingCategory",
        "AnalyzingSafety", "Scoring", "Completed",
    ]
    assert final_state["safety_score"] == final_state["result"].score


def test_unparseable_extraction_aborts_after_three_attempts(history_store):
    session = FakeSession(completion("I am not sure what this product is."))
    client = TextInferenceClient(base_url="https://llm.example/v1", api_key="k", session=session)
    client.retry_delay = 0
    pipeline = ScanPipeline(client=client, history_store=history_store)

    with pytest.raises(PipelineAbortError) as excinfo:
        run_lookup(pipeline, "Mystery Item", "", user_id="user-1")

    assert len(session.requests) == 3
    assert excinfo.value.stage == PipelineStage.EXTRACTION
    assert excinfo.value.reason.value == "extraction"
    assert excinfo.value.states == ["Idle", "ExtractingIngredients", "Failed"]
    assert history_store.history == []


def test_analysis_failure_aborts(history_store):
    client = ScriptedInferenceClient(
        category={"category": "Food Product"},
        extraction={"ingredients": [{"name": "Sugar"}]},
        safety=exhausted(),
        info={"ingredients": []},
    )

    with pytest.raises(PipelineAbortError) as excinfo:
        run_lookup(ScanPipeline(client=client, history_store=history_store), "Candy", user_id="u")

    assert excinfo.value.stage == PipelineStage.ANALYSIS
    assert excinfo.value.states[-2:] == ["AnalyzingSafety", "Failed"]
    assert "info" not in client.kinds()
    assert history_store.history == []


def test_classification_failure_continues_as_unknown():
    client = ScriptedInferenceClient(
        category=exhausted(),
        extraction={"ingredients": [{"name": "Oats"}]},
        safety={"allergenMatches": [], "warnings": []},
        info={"ingredients": [{"name": "Oats", "safetyLevel": 0, "info": "Whole grain."}]},
    )

    result = run_lookup(ScanPipeline(client=client), "Granola")

    assert result.category == CategoryLabel.UNKNOWN
    assert result.score == 70


def test_product_without_ingredients_skips_analysis_calls():
    client = ScriptedInferenceClient(
        category={"category": "Unknown"},
        extraction={"ingredients": []},
    )

    result = run_lookup(ScanPipeline(client=client), "Office Chair")

    assert result.ingredients == []
    assert result.score == 35
    assert result.band == ScoreBand.CAUTION
    assert client.kinds() == ["extraction", "category"]


def test_label_text_skips_extraction_call():
    client = ScriptedInferenceClient(
        category={"category": "Food Product"},
        safety={"allergenMatches": [], "warnings": []},
        info={"ingredients": [
            {"name": "Water", "safetyLevel": 0, "info": ""},
            {"name": "Sugar", "safetyLevel": 1, "info": ""},
        ]},
    )

    result = run_lookup(ScanPipeline(client=client), "Cola", "", "Water, Sugar")

    assert "extraction" not in client.kinds()
    assert [i.name for i in result.ingredients] == ["Water", "Sugar"]
    assert '["Water", "Sugar"]' in client.calls[1][1]


def test_concurrent_classification_gives_same_result(shampoo_client):
    sequential = run_lookup(ScanPipeline(client=shampoo_client), "Generic Shampoo")
    concurrent = run_lookup(ScanPipeline(client=shampoo_client, concurrent_classification=True),
                            "Generic Shampoo")

    assert concurrent == sequential
    final_state = asyncio.run(
        ScanPipeline(client=shampoo_client, concurrent_classification=True).execute("Generic Shampoo"))
    assert sorted(final_state["states"]) == sorted([
        "Idle", "ExtractingIngredients", "ClassifyingCategory",
        "AnalyzingSafety", "Scoring", "Completed",
    ])


def test_completed_lookup_is_written_to_history(shampoo_client, history_store):
    pipeline = ScanPipeline(client=shampoo_client, history_store=history_store)

    result = run_lookup(pipeline, "Generic Shampoo", user_id="user-1", product_id="0123456789")

    assert history_store.history == [("user-1", "0123456789", result)]


def test_history_failure_does_not_fail_lookup(shampoo_client):
    class BrokenStore:
        def add_history_item(self, uid, product_id, result):
            raise RuntimeError("storage offline")

    result = run_lookup(ScanPipeline(client=shampoo_client, history_store=BrokenStore()),
                        "Generic Shampoo", user_id="user-1")

    assert result.score == 63


def test_profile_snapshot_is_isolated(shampoo_client):
    profile = UserHealthProfile(allergies=["sulfate"])
    pipeline = ScanPipeline(client=shampoo_client)

    first = run_lookup(pipeline, "Generic Shampoo", profile=profile)
    second = run_lookup(pipeline, "Generic Shampoo", profile=UserHealthProfile())

    assert first.score == 43
    assert second.score == 63
    assert second.findings.allergen_matches == []


def test_label_sub_ingredients_are_scored_as_one_ingredient():
    client = ScriptedInferenceClient(
        category={"category": "Food Product"},
        safety={"allergenMatches": [], "warnings": []},
        info={"ingredients": []},
    )

    result = run_lookup(ScanPipeline(client=client), "Bar", "", "Sugar, Emulsifier (Soy Lecithin, E471)")

    assert [i.name for i in result.ingredients] == ["Sugar", "Emulsifier (Soy Lecithin, E471)"]
    assert '["Sugar", "Emulsifier (Soy Lecithin, E471)"]' in client.calls[1][1]
    assert result.score == 70


class StallingInferenceClient(ScriptedInferenceClient):
    """Answers normally until the safety check, which never returns."""

    def __init__(self, **responses):
        super().__init__(**responses)
        self.stalled = None

    async def complete(self, prompt):
        if "medical-grade safety engine" in prompt:
            self.stalled.set()
            await asyncio.sleep(60)
        return await super().complete(prompt)


def test_cancelled_lookup_writes_no_history(shampoo_client, history_store):
    client = StallingInferenceClient(**shampoo_client.responses)
    pipeline = ScanPipeline(client=client, history_store=history_store)

    async def cancel_mid_analysis():
        client.stalled = asyncio.Event()
        task = asyncio.create_task(pipeline.start_lookup("Generic Shampoo", user_id="user-1"))
        await asyncio.wait_for(client.stalled.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(cancel_mid_analysis())

    assert history_store.history == []
    assert "info" not in client.kinds()
