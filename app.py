import asyncio
import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from errors import PipelineAbortError
from healthmodels import INGREDIENTS_FROM_LLM, SafetyResult, UserHealthProfile
from historystore import SupabaseHistoryStore
from scanpipeline import ScanPipeline

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

LOOKUP_FAILED_MESSAGE = "Product could not be identified."


def failed(stage: str, message: str, status: int):
    return jsonify({"status": "failed", "stage": stage, "message": message}), status


def create_app(pipeline=None, history_store=None) -> Flask:
    """Build the Flask app around a pipeline and an optional history store."""
    app = Flask(__name__)

    if history_store is None and os.getenv("SUPABASE_URL"):
        history_store = SupabaseHistoryStore()
    pipeline = pipeline or ScanPipeline(history_store=history_store)

    @app.errorhandler(Exception)
    def server_error(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return failed("server_error", "Internal server error", 500)

    @app.route('/', methods=['GET'])
    def home():
        """Root endpoint"""
        return jsonify({
            "message": "Product safety lookup API",
            "endpoints": {
                "health": "GET /health",
                "lookup": "POST /lookup",
                "history": "GET /history/<uid>",
                "favorites": "GET|POST /favorites/<uid>, DELETE /favorites/<uid>/<product_id>",
            },
            "request_format": {
                "product_name": "Generic Shampoo",
                "description": "",
                "raw_ingredients": f"comma separated label text, or {INGREDIENTS_FROM_LLM}",
                "profile": {"allergies": [], "medicalConditions": [], "medications": []},
                "user_id": "optional, saves the result to history",
                "product_id": "optional history key, defaults to product_name",
            }
        }), 200

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({"status": "healthy", "message": "Lookup API is running"}), 200

    @app.route('/lookup', methods=['POST'])
    def lookup():
        """Run one product lookup and return its SafetyResult."""
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return failed("input_validation", "Request body must be a JSON object", 400)

        product_name = data.get("product_name")
        if not isinstance(product_name, str) or not product_name.strip():
            return failed("input_validation", "Missing required field: product_name", 400)

        description = data.get("description") or ""
        raw_ingredients = data.get("raw_ingredients")
        if raw_ingredients is not None and not isinstance(raw_ingredients, str):
            return failed("input_validation", "raw_ingredients must be a string", 400)

        user_id = data.get("user_id")
        if "profile" in data:
            if not isinstance(data["profile"], dict):
                return failed("input_validation", "profile must be an object", 400)
            profile = UserHealthProfile.from_record(data["profile"])
        elif user_id and history_store is not None:
            profile = history_store.fetch_user_profile(user_id)
        else:
            profile = UserHealthProfile()

        try:
            result = asyncio.run(pipeline.start_lookup(
                product_name.strip(),
                description,
                raw_ingredients,
                profile,
                user_id=user_id,
                product_id=data.get("product_id"),
            ))
        except PipelineAbortError as e:
            return failed(e.reason.value, LOOKUP_FAILED_MESSAGE, 502)

        return jsonify({"status": "success", "result": result.to_response()}), 200

    @app.route('/history/<uid>', methods=['GET'])
    def history(uid):
        if history_store is None:
            return failed("storage", "History storage is not configured", 503)
        return jsonify({"status": "success", "items": history_store.fetch_history_items(uid)}), 200

    @app.route('/favorites/<uid>', methods=['GET'])
    def list_favorites(uid):
        if history_store is None:
            return failed("storage", "Favorites storage is not configured", 503)
        return jsonify({"status": "success", "items": history_store.fetch_favorite_items(uid)}), 200

    @app.route('/favorites/<uid>', methods=['POST'])
    def add_favorite(uid):
        if history_store is None:
            return failed("storage", "Favorites storage is not configured", 503)

        data = request.get_json(silent=True) or {}
        try:
            result = SafetyResult.model_validate(data.get("result"))
        except ValidationError:
            return failed("input_validation", "result must be a lookup result", 400)

        product_id = data.get("product_id") or result.product_name
        history_store.add_favorite_item(uid, product_id, result)
        return jsonify({"status": "success", "productId": product_id}), 201

    @app.route('/favorites/<uid>/<product_id>', methods=['DELETE'])
    def remove_favorite(uid, product_id):
        if history_store is None:
            return failed("storage", "Favorites storage is not configured", 503)
        history_store.remove_favorite_item(uid, product_id)
        return jsonify({"status": "success", "productId": product_id}), 200

    return app


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    # Run the Flask app
    create_app().run(host="0.0.0.0", port=int(os.getenv("PORT", 5000)))
