from __future__ import annotations

import json
import logging
import os
from typing import Any
from urllib import request
from urllib.error import HTTPError, URLError

from listing_pipeline.config import LLMSettings
from listing_pipeline.errors import GenerationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
LISTING_FIELDS = (
    "type",
    "style",
    "bedrooms",
    "bathrooms",
    "squareFootage",
    "yearBuilt",
    "lotSize",
    "features",
    "description",
    "roomDetails",
)


def generate_listing(prompt: str, settings: LLMSettings) -> dict[str, Any]:
    """Ask the configured generative model for a property listing and parse its JSON object."""

    attempts = max(0, settings.max_retries) + 1
    last_error = "no attempt made"

    for attempt in range(1, attempts + 1):
        try:
            response_text = _request_completion(prompt=prompt, settings=settings)
            listing = extract_json_object(response_text)
            return _normalize_listing(listing)
        except (json.JSONDecodeError, ValueError, HTTPError, URLError, TimeoutError, OSError, KeyError, TypeError) as exc:
            last_error = str(exc) or type(exc).__name__
            logger.warning("Listing generation attempt %d/%d failed: %s", attempt, attempts, last_error)
            continue

    raise GenerationError(settings.provider, attempts, last_error)


def extract_json_object(text: str) -> dict[str, Any]:
    """Locate and parse the first JSON object embedded in free text or markdown fences."""

    start = text.find("{")
    if start < 0:
        raise ValueError("Model response does not contain a JSON object.")

    decoder = json.JSONDecoder()
    try:
        parsed, _ = decoder.raw_decode(text, start)
    except json.JSONDecodeError:
        end = text.rfind("}")
        if end <= start:
            raise
        parsed = json.loads(text[start : end + 1])

    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON must be an object.")
    return parsed


def _request_completion(*, prompt: str, settings: LLMSettings) -> str:
    if settings.provider == "ollama":
        return _request_ollama(
            endpoint=settings.endpoint,
            model=settings.model,
            prompt=prompt,
            timeout_seconds=settings.timeout_seconds,
        )
    return _request_gemini(
        model=settings.model,
        prompt=prompt,
        api_key=os.getenv(settings.api_key_env),
    )


def _request_gemini(*, model: str, prompt: str, api_key: str | None) -> str:
    if not api_key:
        raise ValueError("Gemini API key is not set.")

    from google import genai
    from google.genai import errors as genai_errors

    client = genai.Client(api_key=api_key)
    try:
        response = client.models.generate_content(model=model, contents=prompt)
    except genai_errors.APIError as exc:
        raise ConnectionError(f"Gemini request failed: {exc}") from exc
    content = response.text
    if not isinstance(content, str):
        raise ValueError("Gemini response contained no text.")
    return content


def _request_ollama(*, endpoint: str, model: str, prompt: str, timeout_seconds: int) -> str:
    body = json.dumps(
        {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
        }
    ).encode("utf-8")

    req = request.Request(
        f"{endpoint.rstrip('/')}/api/generate",
        data=body,
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        payload = json.loads(response.read().decode("utf-8"))

    content = payload.get("response")
    if not isinstance(content, str):
        raise ValueError("Ollama response missing JSON text in 'response' field.")
    return content


def _normalize_listing(payload: dict[str, Any]) -> dict[str, Any]:
    listing = dict(payload)
    for key in LISTING_FIELDS:
        listing.setdefault(key, [] if key in {"features", "roomDetails"} else "")

    if not isinstance(listing["features"], list):
        raise ValueError("features must be a list.")
    if not isinstance(listing["roomDetails"], list):
        raise ValueError("roomDetails must be a list.")
    return listing
