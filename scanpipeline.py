"""
Scan pipeline: one product lookup from raw input to a SafetyResult.

The lookup is a LangGraph state machine

    Idle -> ExtractingIngredients -> ClassifyingCategory -> AnalyzingSafety
         -> Scoring -> Completed

with Failed reachable from the extraction and analysis stages. Classification
failures degrade to the Unknown category and the lookup carries on. Retries
belong to the inference client; a stage here either produced its value or
failed.
"""

import asyncio
import json
import logging
import operator
from enum import Enum
from typing import Annotated, List, Optional, TypedDict

from langgraph.graph import END, START, StateGraph

import safetyscorer
from categoryclassifier import CategoryClassifier
from errors import InferenceError, PipelineAbortError, PipelineStage
from healthmodels import (
    CategoryLabel,
    Ingredient,
    SafetyFinding,
    SafetyResult,
    UserHealthProfile,
)
from inferenceclient import TextInferenceClient
from ingredientextractor import IngredientExtractor
from safetyanalyzer import (
    SafetyAnalyzer,
    confirm_allergens,
    decode_ingredient_info,
    decode_safety_findings,
)

logger = logging.getLogger(__name__)

EMPTY_INGREDIENTS_JSON = json.dumps({"ingredients": []})
EMPTY_SAFETY_JSON = json.dumps({"allergenMatches": [], "warnings": []})


class PipelineState(str, Enum):
    IDLE = "Idle"
    EXTRACTING_INGREDIENTS = "ExtractingIngredients"
    CLASSIFYING_CATEGORY = "ClassifyingCategory"
    ANALYZING_SAFETY = "AnalyzingSafety"
    SCORING = "Scoring"
    COMPLETED = "Completed"
    FAILED = "Failed"


# State definition for LangGraph
class LookupState(TypedDict, total=False):
    product_name: str
    description: str
    raw_ingredient_text: Optional[str]
    profile: UserHealthProfile
    states: Annotated[List[str], operator.add]
    ingredient_names: List[str]
    category: CategoryLabel
    findings: SafetyFinding
    safety_json: str
    ingredients: List[Ingredient]
    ingredients_json: str
    safety_score: int
    result: SafetyResult


class ScanPipeline:
    """
    Runs product lookups against an injected inference client.

    Nothing is shared between lookups except the components themselves, which
    hold no per-lookup state, so lookups may run concurrently.
    """

    def __init__(self, client=None, history_store=None, concurrent_classification: bool = False):
        """Initialize the pipeline and compile its graph."""
        self.client = client or TextInferenceClient()
        self.extractor = IngredientExtractor(self.client)
        self.classifier = CategoryClassifier(self.client)
        self.analyzer = SafetyAnalyzer(self.client)
        self.history_store = history_store
        self.concurrent_classification = concurrent_classification
        self.graph = self._create_lookup_graph()

    def _create_lookup_graph(self):
        """Create the LangGraph workflow for one lookup."""
        workflow = StateGraph(LookupState)

        workflow.add_node("extracting_ingredients", self._extract_ingredients_node)
        workflow.add_node("classifying_category", self._classify_category_node)
        workflow.add_node("analyzing_safety", self._analyze_safety_node)
        workflow.add_node("scoring", self._scoring_node)

        if self.concurrent_classification:
            # Classification does not depend on the ingredients.
            workflow.add_edge(START, "extracting_ingredients")
            workflow.add_edge(START, "classifying_category")
            workflow.add_edge(["extracting_ingredients", "classifying_category"], "analyzing_safety")
        else:
            workflow.set_entry_point("extracting_ingredients")
            workflow.add_edge("extracting_ingredients", "classifying_category")
            workflow.add_edge("classifying_category", "analyzing_safety")

        workflow.add_edge("analyzing_safety", "scoring")
        workflow.add_edge("scoring", END)

        return workflow.compile()

    async def _extract_ingredients_node(self, state: LookupState) -> dict:
        visited = [PipelineState.EXTRACTING_INGREDIENTS.value]
        try:
            names = await self.extractor.resolve(
                state["product_name"], state.get("description", ""), state.get("raw_ingredient_text"))
        except InferenceError as e:
            raise PipelineAbortError(
                PipelineStage.EXTRACTION, e,
                states=state.get("states", []) + visited + [PipelineState.FAILED.value]) from e

        logger.info("Extracted %d ingredients for %r", len(names), state["product_name"])
        return {"states": visited, "ingredient_names": names}

    async def _classify_category_node(self, state: LookupState) -> dict:
        category = await self.classifier.classify(state["product_name"], state.get("description", ""))
        return {"states": [PipelineState.CLASSIFYING_CATEGORY.value], "category": category}

    async def _analyze_safety_node(self, state: LookupState) -> dict:
        visited = [PipelineState.ANALYZING_SAFETY.value]
        names = state.get("ingredient_names", [])
        profile = state["profile"]

        if not names:
            # Nothing to analyze: a valid outcome for non-consumable products.
            return {
                "states": visited,
                "findings": SafetyFinding(),
                "safety_json": EMPTY_SAFETY_JSON,
                "ingredients": [],
                "ingredients_json": EMPTY_INGREDIENTS_JSON,
            }

        try:
            safety_json = await self.analyzer.safety_check(names, profile)
            ingredients_json = await self.analyzer.ingredient_info(names)
        except InferenceError as e:
            raise PipelineAbortError(
                PipelineStage.ANALYSIS, e,
                states=state.get("states", []) + visited + [PipelineState.FAILED.value]) from e

        findings = confirm_allergens(decode_safety_findings(safety_json), names, profile)
        return {
            "states": visited,
            "findings": findings,
            "safety_json": safety_json,
            "ingredients": decode_ingredient_info(ingredients_json, fallback_names=names),
            "ingredients_json": ingredients_json,
        }

    async def _scoring_node(self, state: LookupState) -> dict:
        ingredients = state.get("ingredients", [])
        findings = state.get("findings") or SafetyFinding()
        final_score = safetyscorer.score(ingredients, state["profile"])

        result = SafetyResult(
            product_name=state["product_name"],
            category=state.get("category", CategoryLabel.UNKNOWN),
            score=final_score,
            ingredients=ingredients,
            findings=findings,
            ingredients_raw_json=state.get("ingredients_json", EMPTY_INGREDIENTS_JSON),
            safety_raw_json=state.get("safety_json", EMPTY_SAFETY_JSON),
            advisory_score=findings.overall_safety_score,
        )
        return {
            "states": [PipelineState.SCORING.value, PipelineState.COMPLETED.value],
            "safety_score": final_score,
            "result": result,
        }

    async def execute(self, product_name: str, description: str = "",
                      raw_ingredient_text: Optional[str] = None,
                      profile: Optional[UserHealthProfile] = None) -> LookupState:
        """Run the graph and return its final state.

        Raises PipelineAbortError when extraction or analysis fails.
        """
        # Snapshot so profile edits during the lookup cannot leak in.
        snapshot = (profile or UserHealthProfile()).model_copy(deep=True)
        initial_state = {
            "product_name": product_name,
            "description": description or "",
            "raw_ingredient_text": raw_ingredient_text,
            "profile": snapshot,
            "states": [PipelineState.IDLE.value],
        }
        return await self.graph.ainvoke(initial_state)

    async def start_lookup(self, product_name: str, description: str = "",
                           raw_ingredient_text: Optional[str] = None,
                           profile: Optional[UserHealthProfile] = None,
                           user_id: Optional[str] = None,
                           product_id: Optional[str] = None) -> SafetyResult:
        """
        Look up one product for one user.

        Args:
            product_name: Name from the barcode lookup or manual search
            description: Free-text description, may be empty
            raw_ingredient_text: Label ingredient text, or None / INGREDIENTS_FROM_LLM
                to have the ingredients inferred
            profile: The user's health profile snapshot
            user_id: When set (and a history store is configured) the completed
                result is written to the user's history
            product_id: History key, defaults to the product name

        Returns:
            The SafetyResult of the completed lookup
        """
        try:
            final_state = await self.execute(product_name, description, raw_ingredient_text, profile)
        except PipelineAbortError as e:
            logger.error("Lookup for %r failed at %s: %r", product_name, e.stage.value, e.cause)
            raise

        result = final_state["result"]
        logger.info("Lookup for %r completed with score %d (%s)",
                    product_name, result.score, result.band.value)

        if self.history_store is not None and user_id:
            try:
                await asyncio.to_thread(
                    self.history_store.add_history_item, user_id, product_id or product_name, result)
            except Exception as e:
                logger.error("History save failed for %r: %s", product_name, e)

        return result
