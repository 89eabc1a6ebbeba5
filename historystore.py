"""
Supabase-backed storage for lookup history, favorites and user profiles.

Records keep the raw ingredient-info and safety JSON exactly as the pipeline
received them so a stored product can be re-displayed without calling the
LLM again.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dotenv import load_dotenv
from supabase import Client, create_client

from categoryclassifier import normalize_category
from healthmodels import SafetyResult, UserHealthProfile, band_for_score
from safetyanalyzer import decode_ingredient_info, decode_safety_findings

load_dotenv()

logger = logging.getLogger(__name__)

HISTORY_TABLE = "history"
FAVORITES_TABLE = "favorites"
USERS_TABLE = "users"


def build_record(uid: str, product_id: str, result: SafetyResult) -> Dict:
    """Storage row for a completed lookup."""
    return {
        "uid": uid,
        "productId": product_id,
        "name": result.product_name,
        "category": result.category.value,
        "safetyScore": result.score,
        "ingredientInfoJSON": result.ingredients_raw_json,
        "safetyJSON": result.safety_raw_json,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def rehydrate_record(record: Dict) -> Dict:
    """Re-parse the stored raw JSON of a history or favorite row for display."""
    score = record.get("safetyScore")
    score = score if isinstance(score, int) and not isinstance(score, bool) else 0
    ingredients = decode_ingredient_info(record.get("ingredientInfoJSON") or "")
    findings = decode_safety_findings(record.get("safetyJSON") or "")
    return {
        "productId": record.get("productId"),
        "name": record.get("name", ""),
        "category": normalize_category(record.get("category")).value,
        "safetyScore": score,
        "band": band_for_score(score).value,
        "ingredients": [i.model_dump(mode="json") for i in ingredients],
        "findings": findings.model_dump(mode="json"),
        "timestamp": record.get("timestamp"),
    }


class SupabaseHistoryStore:
    """History, favorites and profile reads for the lookup pipeline."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize the store with a Supabase client, created from the environment if absent."""
        self.supabase: Client = client or create_client(
            os.getenv("SUPABASE_URL"),
            os.getenv("SUPABASE_ANON_KEY")
        )

    def add_history_item(self, uid: str, product_id: str, result: SafetyResult) -> Dict:
        record = build_record(uid, product_id, result)
        self.supabase.table(HISTORY_TABLE).upsert(record, on_conflict="uid,productId").execute()
        logger.info("Saved %r to history of %s", product_id, uid)
        return record

    def add_favorite_item(self, uid: str, product_id: str, result: SafetyResult) -> Dict:
        record = build_record(uid, product_id, result)
        self.supabase.table(FAVORITES_TABLE).upsert(record, on_conflict="uid,productId").execute()
        return record

    def remove_favorite_item(self, uid: str, product_id: str) -> None:
        self.supabase.table(FAVORITES_TABLE).delete().eq("uid", uid).eq("productId", product_id).execute()

    def fetch_history_items(self, uid: str) -> List[Dict]:
        """Newest first, re-hydrated."""
        response = (self.supabase.table(HISTORY_TABLE)
                    .select("*")
                    .eq("uid", uid)
                    .order("timestamp", desc=True)
                    .execute())
        return [rehydrate_record(row) for row in response.data or []]

    def fetch_favorite_items(self, uid: str) -> List[Dict]:
        response = self.supabase.table(FAVORITES_TABLE).select("*").eq("uid", uid).execute()
        return [rehydrate_record(row) for row in response.data or []]

    def fetch_user_profile(self, uid: str) -> UserHealthProfile:
        """The user's health profile; empty when the user has no stored record."""
        response = self.supabase.table(USERS_TABLE).select("*").eq("uid", uid).limit(1).execute()
        rows = response.data or []
        return UserHealthProfile.from_record(rows[0] if rows else None)
