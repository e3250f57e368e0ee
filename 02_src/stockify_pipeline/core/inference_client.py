"""Inference clients - one metadata-generation call for one image.

Clients do not retry. Every failure is raised as one of the InferenceError
variants so the orchestrator's retry policy can decide what happens next.
"""

import base64
import logging
import re
import time
from typing import Any, Dict, Optional

import requests

from ..schemas.common import ImageRef, Metadata
from ..schemas.config import GEMINI_ENDPOINT, InferenceConfig, ModelCatalog
from .errors import Invalid, RateLimited, Unauthorized, Unavailable
from .prompts import build_prompt, normalize_metadata, parse_metadata_text

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_S = 60.0

BLOCKED_FINISH_REASONS = {
    "SAFETY": "Content blocked by safety filters",
    "RECITATION": "Content blocked due to recitation policy",
    "OTHER": "Content generation failed",
}


class BaseInferenceClient:
    """Base interface for metadata inference clients."""

    def infer(self, image: ImageRef, model: str) -> Metadata:
        """Generate stock metadata for one image.

        Args:
            image: Image handle
            model: Model identifier

        Returns:
            Metadata for the image

        Raises:
            RateLimited: Upstream throttled the call
            Invalid: Input or output cannot be processed
            Unavailable: Transient upstream or network fault
            Unauthorized: Credential missing or rejected
        """
        raise NotImplementedError


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header or a "12s"/"1.5s" duration string."""
    if not value:
        return None
    match = re.match(r"^\s*(\d+(?:\.\d+)?)\s*s?\s*$", str(value))
    if not match:
        return None
    return float(match.group(1))


def raise_for_status(status: int, body: str, retry_after_s: Optional[float] = None) -> None:
    """Map an HTTP status to the inference error taxonomy.

    Raises:
        RateLimited: 429
        Unauthorized: 401, 403
        Unavailable: 408, 5xx
        Invalid: any other 4xx
    """
    if status < 400:
        return

    snippet = body[:400]
    if status == 429:
        raise RateLimited(f"status=429, body={snippet}", retry_after_s=retry_after_s)
    if status in (401, 403):
        raise Unauthorized(f"status={status}, body={snippet}")
    if status == 408 or status >= 500:
        raise Unavailable(f"status={status}, body={snippet}")
    raise Invalid(f"status={status}, body={snippet}")


def _post(url: str, headers: Dict[str, str], payload: Dict[str, Any], timeout: int) -> requests.Response:
    """POST JSON, mapping transport failures to Unavailable."""
    try:
        return requests.post(url, headers=headers, json=payload, timeout=timeout)
    except requests.exceptions.Timeout as e:
        raise Unavailable(f"Request timed out: {e}") from e
    except requests.exceptions.RequestException as e:
        raise Unavailable(f"Network error: {e}") from e


class GeminiInferenceClient(BaseInferenceClient):
    """Gemini REST API client (generateContent with inline image data)."""

    def __init__(self, config: InferenceConfig, catalog: Optional[ModelCatalog] = None):
        """Initialize Gemini inference client.

        Args:
            config: Inference configuration
            catalog: Model catalog for endpoint lookup (public endpoint if omitted)
        """
        self.config = config
        self.catalog = catalog

        if not self.config.api_key:
            logger.warning("Gemini API Key is not set!")

    def _endpoint(self, model: str) -> str:
        if self.catalog is not None and model in self.catalog:
            return self.catalog.get(model).endpoint
        return GEMINI_ENDPOINT.format(model=model)

    def _build_payload(self, image: ImageRef) -> Dict[str, Any]:
        prompt = build_prompt(self.config.platform, image.name)
        return {
            "contents": [{
                "parts": [
                    {"text": prompt},
                    {
                        "inline_data": {
                            "mime_type": image.mime_type,
                            "data": base64.b64encode(image.data).decode("utf-8"),
                        }
                    },
                ]
            }],
            "generationConfig": {
                "temperature": self.config.temperature,
                "topK": 32,
                "topP": 1,
                "maxOutputTokens": self.config.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }

    @staticmethod
    def _retry_delay(response: requests.Response) -> float:
        """Extract retryDelay from a 429 body, falling back to Retry-After."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        details = error.get("details") if isinstance(error, dict) else None

        for detail in details if isinstance(details, list) else []:
            delay = parse_retry_after(detail.get("retryDelay")) if isinstance(detail, dict) else None
            if delay is not None:
                return delay

        header = parse_retry_after(response.headers.get("Retry-After"))
        return header if header is not None else DEFAULT_RETRY_AFTER_S

    def infer(self, image: ImageRef, model: str) -> Metadata:
        if not self.config.api_key:
            raise Unauthorized("Gemini API key is not configured")

        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.config.api_key,
        }

        logger.info(f"Sending {image.name} ({image.size} bytes) to Gemini {model}")

        start_ts = time.monotonic()
        response = _post(self._endpoint(model), headers, self._build_payload(image), self.config.timeout_sec)
        latency = time.monotonic() - start_ts

        status = response.status_code
        if status == 429:
            raise RateLimited(
                f"Gemini rate limit for {model}", retry_after_s=self._retry_delay(response)
            )
        raise_for_status(status, response.text)

        logger.info(f"Gemini responded for {image.name} in {latency:.3f}s")

        try:
            result = response.json()
        except ValueError as e:
            raise Unavailable(f"Non-JSON response from Gemini: {e}") from e

        return self._parse_response(result, image.name)

    def _parse_response(self, result: Dict[str, Any], filename: str) -> Metadata:
        """Parse a generateContent response into Metadata.

        Raises:
            Invalid: If the response was blocked or carries no usable JSON
        """
        candidates = result.get("candidates") or []
        if not candidates:
            raise Invalid("No content generated by AI model")

        candidate = candidates[0]
        reason = candidate.get("finishReason")
        if reason in BLOCKED_FINISH_REASONS:
            raise Invalid(BLOCKED_FINISH_REASONS[reason])

        parts = (candidate.get("content") or {}).get("parts") or []
        text = "\n".join(p["text"] for p in parts if isinstance(p, dict) and p.get("text"))
        if not text:
            raise Invalid("No text content in response")

        try:
            return parse_metadata_text(text, filename, self.config.platform)
        except ValueError as e:
            logger.error(f"Failed to parse Gemini response for {filename}: {e}")
            logger.debug(f"Raw text: {text[:500]}")
            raise Invalid(f"Failed to parse AI response: {e}") from e


class ProxyInferenceClient(BaseInferenceClient):
    """Client for the server-side metadata proxy (POST /api/generate-metadata).

    The proxy holds the Gemini key and answers with
    {"success": true, "metadata": {...}} or
    {"error": str, "errorType": str, "retryAfterSeconds": int}.
    """

    def __init__(self, config: InferenceConfig):
        if not config.proxy_url:
            raise ValueError("proxy_url is required (set STOCKIFY_PROXY_URL or pass explicitly)")
        self.config = config
        self.url = config.proxy_url

    def infer(self, image: ImageRef, model: str) -> Metadata:
        payload = {
            "imageBase64": base64.b64encode(image.data).decode("utf-8"),
            "mimeType": image.mime_type,
            "filename": image.name,
            "model": model,
            "platformId": self.config.platform,
        }

        logger.info(f"Sending {image.name} to metadata proxy (model={model})")
        response = _post(self.url, {"Content-Type": "application/json"}, payload, self.config.timeout_sec)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400:
            self._raise_for_error(response, body)

        metadata = body.get("metadata")
        if not body.get("success") or not isinstance(metadata, dict):
            raise Unavailable(f"Unexpected proxy response: {response.text[:200]}")

        return normalize_metadata(metadata, image.name, self.config.platform)

    @staticmethod
    def _raise_for_error(response: requests.Response, body: Dict[str, Any]) -> None:
        error_type = body.get("errorType")
        message = body.get("error") or response.text[:400]

        if error_type == "rate_limit" or response.status_code == 429:
            retry_after = body.get("retryAfterSeconds")
            if retry_after is None:
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
            raise RateLimited(message, retry_after_s=float(retry_after) if retry_after is not None else None)
        if error_type == "config":
            # Server has no usable credential; every image in the batch would fail
            raise Unauthorized(message)
        if error_type in ("validation", "safety", "parsing"):
            raise Invalid(message)
        if error_type == "api_error":
            raise Unavailable(message)

        raise_for_status(response.status_code, message)
