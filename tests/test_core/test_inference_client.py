"""Unit tests for inference clients."""

import json
from unittest.mock import Mock, patch

import pytest
import requests

from stockify_pipeline.core.errors import Invalid, RateLimited, Unauthorized, Unavailable
from stockify_pipeline.core.inference_client import (
    BaseInferenceClient,
    GeminiInferenceClient,
    ProxyInferenceClient,
    parse_retry_after,
    raise_for_status,
)
from stockify_pipeline.schemas.common import ImageRef
from stockify_pipeline.schemas.config import InferenceConfig, ModelCatalog, ModelConfig


@pytest.fixture
def inference_config():
    """Create inference config for testing."""
    return InferenceConfig(api_key="test_api_key", timeout_sec=10, proxy_url="")


@pytest.fixture
def image():
    return ImageRef(name="paris_2024-05-01.jpg", data=b"\xff\xd8\xff\xe0fake", mime_type="image/jpeg")


def make_response(status_code=200, body=None, text=None, headers=None):
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    if body is None:
        response.json.side_effect = ValueError("no json")
        response.text = text or ""
    else:
        response.json.return_value = body
        response.text = text if text is not None else json.dumps(body)
    return response


def gemini_body(text, finish_reason="STOP"):
    return {
        "candidates": [{
            "content": {"parts": [{"text": text}]},
            "finishReason": finish_reason,
        }]
    }


METADATA_JSON = json.dumps({
    "Description": "Eiffel Tower at sunrise, Paris",
    "Keywords": "eiffel tower, paris, france, landmark",
    "Categories": "Buildings/Landmarks, Holidays",
    "Editorial": "yes",
    "Mature content": "no",
    "Illustration": "no",
})


class TestBaseInferenceClient:
    """Test BaseInferenceClient interface."""

    def test_base_client_is_abstract(self, image):
        """Test that BaseInferenceClient.infer() is not implemented."""
        with pytest.raises(NotImplementedError):
            BaseInferenceClient().infer(image, "m")


class TestHelpers:
    """Test status mapping helpers."""

    @pytest.mark.parametrize("value,expected", [
        ("12", 12.0), ("12s", 12.0), ("1.5s", 1.5), (" 3 ", 3.0),
        (None, None), ("", None), ("Wed, 21 Oct 2015 07:28:00 GMT", None),
    ])
    def test_parse_retry_after(self, value, expected):
        assert parse_retry_after(value) == expected

    @pytest.mark.parametrize("status,error", [
        (429, RateLimited), (401, Unauthorized), (403, Unauthorized),
        (400, Invalid), (413, Invalid), (408, Unavailable),
        (500, Unavailable), (503, Unavailable),
    ])
    def test_raise_for_status(self, status, error):
        with pytest.raises(error):
            raise_for_status(status, "body")

    def test_success_status_passes(self):
        raise_for_status(200, "ok")


class TestGeminiInferenceClient:
    """Test GeminiInferenceClient request building and error mapping."""

    def test_success(self, inference_config, image):
        client = GeminiInferenceClient(inference_config)

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, gemini_body(METADATA_JSON))
            metadata = client.infer(image, "gemini-2.5-flash")

        assert metadata.filename == "paris_2024-05-01.jpg"
        assert metadata.description == "Eiffel Tower at sunrise, Paris"
        assert metadata.keywords == ["eiffel tower", "paris", "france", "landmark"]
        assert metadata.categories == ["Buildings/Landmarks", "Holidays"]
        assert metadata.extra["editorial"] == "yes"

        args, kwargs = mock_post.call_args
        assert args[0].endswith("/models/gemini-2.5-flash:generateContent")
        assert kwargs["headers"]["x-goog-api-key"] == "test_api_key"
        assert kwargs["timeout"] == 10
        parts = kwargs["json"]["contents"][0]["parts"]
        assert "paris_2024-05-01.jpg" in parts[0]["text"]
        assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"

    def test_endpoint_from_catalog(self, inference_config, image):
        catalog = ModelCatalog([ModelConfig("custom", endpoint="https://example.test/custom")])
        client = GeminiInferenceClient(inference_config, catalog)

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, gemini_body(METADATA_JSON))
            client.infer(image, "custom")

        assert mock_post.call_args[0][0] == "https://example.test/custom"

    def test_fenced_json_response(self, inference_config, image):
        client = GeminiInferenceClient(inference_config)
        text = f"Here you go:\n```json\n{METADATA_JSON}\n```"

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, gemini_body(text))
            metadata = client.infer(image, "gemini-2.5-flash")

        assert metadata.keywords[0] == "eiffel tower"

    def test_429_uses_retry_delay(self, inference_config, image):
        client = GeminiInferenceClient(inference_config)
        body = {"error": {"code": 429, "details": [
            {"@type": "type.googleapis.com/google.rpc.QuotaFailure"},
            {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "17s"},
        ]}}

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(429, body)
            with pytest.raises(RateLimited) as exc_info:
                client.infer(image, "gemini-2.5-flash")

        assert exc_info.value.retry_after_s == 17.0

    def test_429_default_delay(self, inference_config, image):
        client = GeminiInferenceClient(inference_config)

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(429, text="Too many requests")
            with pytest.raises(RateLimited) as exc_info:
                client.infer(image, "gemini-2.5-flash")

        assert exc_info.value.retry_after_s == 60.0

    @pytest.mark.parametrize("status,error", [
        (401, Unauthorized), (403, Unauthorized), (400, Invalid), (500, Unavailable), (503, Unavailable),
    ])
    def test_status_mapping(self, inference_config, image, status, error):
        client = GeminiInferenceClient(inference_config)

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(status, text="error body")
            with pytest.raises(error):
                client.infer(image, "gemini-2.5-flash")

    @pytest.mark.parametrize("exc", [
        requests.exceptions.Timeout("slow"),
        requests.exceptions.ConnectionError("refused"),
    ])
    def test_network_errors_unavailable(self, inference_config, image, exc):
        client = GeminiInferenceClient(inference_config)

        with patch("requests.post", side_effect=exc):
            with pytest.raises(Unavailable):
                client.infer(image, "gemini-2.5-flash")

    @pytest.mark.parametrize("reason", ["SAFETY", "RECITATION", "OTHER"])
    def test_blocked_content_invalid(self, inference_config, image, reason):
        client = GeminiInferenceClient(inference_config)

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, gemini_body("", finish_reason=reason))
            with pytest.raises(Invalid):
                client.infer(image, "gemini-2.5-flash")

    def test_no_candidates_invalid(self, inference_config, image):
        client = GeminiInferenceClient(inference_config)

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, {"candidates": []})
            with pytest.raises(Invalid):
                client.infer(image, "gemini-2.5-flash")

    def test_unparseable_text_invalid(self, inference_config, image):
        client = GeminiInferenceClient(inference_config)

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, gemini_body("I cannot describe this image."))
            with pytest.raises(Invalid):
                client.infer(image, "gemini-2.5-flash")

    def test_missing_api_key_unauthorized(self, image):
        client = GeminiInferenceClient(InferenceConfig(api_key="", proxy_url=""))

        with patch("requests.post") as mock_post:
            with pytest.raises(Unauthorized):
                client.infer(image, "gemini-2.5-flash")

        mock_post.assert_not_called()


class TestProxyInferenceClient:
    """Test ProxyInferenceClient request body and errorType mapping."""

    @pytest.fixture
    def client(self):
        return ProxyInferenceClient(
            InferenceConfig(api_key="", platform="adobe_stock", proxy_url="https://proxy.test/api/generate-metadata")
        )

    def test_requires_url(self):
        with pytest.raises(ValueError):
            ProxyInferenceClient(InferenceConfig(api_key="", proxy_url=""))

    def test_success(self, client, image):
        body = {"success": True, "metadata": {
            "title": "Eiffel Tower at sunrise",
            "keywords": "eiffel tower, paris",
            "category": "11",
            "releases": "",
        }}

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, body)
            metadata = client.infer(image, "gemini-2.5-flash")

        assert metadata.description == "Eiffel Tower at sunrise"
        assert metadata.keywords == ["eiffel tower", "paris"]
        assert metadata.categories == ["11"]

        payload = mock_post.call_args.kwargs["json"]
        assert payload["filename"] == "paris_2024-05-01.jpg"
        assert payload["model"] == "gemini-2.5-flash"
        assert payload["platformId"] == "adobe_stock"
        assert payload["mimeType"] == "image/jpeg"
        assert payload["imageBase64"]

    def test_rate_limit_body(self, client, image):
        body = {"error": "Rate limit exceeded", "errorType": "rate_limit", "retryAfterSeconds": 42}

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(429, body)
            with pytest.raises(RateLimited) as exc_info:
                client.infer(image, "gemini-2.5-flash")

        assert exc_info.value.retry_after_s == 42.0

    def test_rate_limit_header(self, client, image):
        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(429, text="slow down", headers={"Retry-After": "9"})
            with pytest.raises(RateLimited) as exc_info:
                client.infer(image, "gemini-2.5-flash")

        assert exc_info.value.retry_after_s == 9.0

    @pytest.mark.parametrize("status,error_type,error", [
        (500, "config", Unauthorized),
        (400, "validation", Invalid),
        (413, "validation", Invalid),
        (422, "safety", Invalid),
        (422, "parsing", Invalid),
        (502, "api_error", Unavailable),
        (500, None, Unavailable),
    ])
    def test_error_type_mapping(self, client, image, status, error_type, error):
        body = {"error": "failed"}
        if error_type:
            body["errorType"] = error_type

        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(status, body)
            with pytest.raises(error):
                client.infer(image, "gemini-2.5-flash")

    def test_unexpected_success_body(self, client, image):
        with patch("requests.post") as mock_post:
            mock_post.return_value = make_response(200, {"success": False})
            with pytest.raises(Unavailable):
                client.infer(image, "gemini-2.5-flash")
