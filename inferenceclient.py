"""
Text inference client for an OpenAI-compatible chat completions endpoint.

One request per attempt, the whole round trip retried as a unit: up to three
attempts with a fixed 300 ms pause between them. An attempt only succeeds if
the envelope parses, the completion is non-empty, and the sanitized
completion parses as a JSON object.
"""

import asyncio
import logging
import os

import requests
from dotenv import load_dotenv

import llmprompts
from errors import InferenceError, MalformedCompletionError, TransientInferenceError
from responsesanitizer import parse_json_object, sanitize

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.1-8b-instant"

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 0.3
TEMPERATURE = 0.1


class TextInferenceClient:
    """Issues prompt completions and returns sanitized JSON object text."""

    def __init__(self, base_url=None, api_key=None, model=None, timeout=None, session=None):
        """Initialize the client from arguments, falling back to the environment."""
        base_url = base_url or os.getenv("LLM_BASE_URL") or DEFAULT_BASE_URL
        self.api_url = base_url.rstrip("/") + "/chat/completions"
        self.api_key = api_key if api_key is not None else os.getenv("LLM_API_KEY", "")
        self.model = model or os.getenv("LLM_MODEL") or DEFAULT_MODEL
        self.timeout = timeout or float(os.getenv("LLM_TIMEOUT", "30"))
        # Anything with a requests-style post(); the requests module by default.
        self.http = session or requests
        self.max_attempts = MAX_ATTEMPTS
        self.retry_delay = RETRY_DELAY_SECONDS

    async def complete(self, prompt: str) -> str:
        """Run one completion, retrying failed round trips.

        Raises InferenceError once every attempt has failed.
        """
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.to_thread(self._complete_once, prompt)
            except (TransientInferenceError, MalformedCompletionError) as e:
                last_error = e
                logger.warning("LLM attempt %d/%d failed: %s", attempt, self.max_attempts, e)
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)

        raise InferenceError(last_error, self.max_attempts)

    def build_request(self, prompt: str) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": llmprompts.wrap_strict(prompt)}],
            "temperature": TEMPERATURE,
        }

    def _complete_once(self, prompt: str) -> str:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        try:
            response = self.http.post(self.api_url, headers=headers, json=self.build_request(prompt),
                                      timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            raise TransientInferenceError(f"API request failed: {e}") from e
        except ValueError as e:
            raise TransientInferenceError(f"Response envelope is not JSON: {e}") from e

        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise TransientInferenceError(f"Malformed response envelope: {e!r}") from e

        if not isinstance(content, str) or not content.strip():
            raise TransientInferenceError("Empty completion")

        cleaned = sanitize(content)
        if parse_json_object(cleaned) is None:
            logger.debug("Unparseable completion: %s", content)
            raise MalformedCompletionError("Completion is not a JSON object", raw_text=content)

        return cleaned
