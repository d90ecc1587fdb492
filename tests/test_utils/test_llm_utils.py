"""Tests for the vision provider adapter (requests.post patched)"""
import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from app.core.exceptions import ProviderError
from app.utils.llm_utils import (
    ImagePayload,
    VisionProvider,
    encode_image_bytes_to_base64_data_uri,
    extract_json_from_string,
    guess_image_mime_type,
)
from app.utils.prompt_builder import PromptBuilder

PNG_MAGIC = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def chat_response(content, usage=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {
        "model": "gemini-2.5-flash-lite",
        "choices": [{"message": {"content": content if isinstance(content, str) else json.dumps(content)}}],
        "usage": usage or {
            "prompt_tokens": 1200,
            "completion_tokens": 80,
            "total_tokens": 1280,
            "prompt_tokens_details": {"cached_tokens": 200},
        },
    }
    response.raise_for_status.return_value = None
    return response


@pytest.fixture
def provider():
    return VisionProvider(
        api_key="test-key",
        api_base_url="https://vision.example.com/v1/",
        model_name="gemini-2.5-flash-lite",
        request_timeout=60,
    )


class TestHelpers:

    def test_guess_mime_type_from_magic_bytes(self):
        assert guess_image_mime_type(PNG_MAGIC) == "image/png"
        assert guess_image_mime_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
        assert guess_image_mime_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
        assert guess_image_mime_type(b"unknown") == "image/jpeg"

    def test_data_uri(self):
        uri = encode_image_bytes_to_base64_data_uri(PNG_MAGIC)
        assert uri.startswith("data:image/png;base64,")

    def test_extract_json_from_fenced_block(self):
        text = 'Here you go:\n```json\n{"tags": []}\n```'
        assert json.loads(extract_json_from_string(text)) == {"tags": []}

    def test_extract_json_returns_none_without_object(self):
        assert extract_json_from_string("no json here") is None
        assert extract_json_from_string(None) is None


class TestAnalyzeSingle:

    def test_returns_tags_and_usage(self, provider):
        content = {"tags": [
            {"key": "Character", "value": "Woody", "confidence": 0.95},
            {"key": "quantity", "value": 3, "confidence": 0.8},
        ]}
        with patch("app.utils.llm_utils.requests.post", return_value=chat_response(content)) as mock_post:
            result = provider.analyze_single(PNG_MAGIC, PromptBuilder().build_prompt())

        assert [(t.key, t.value) for t in result.tags] == [("Character", "Woody"), ("quantity", "3")]
        assert result.usage.prompt_tokens == 1200
        assert result.usage.completion_tokens == 80
        assert result.usage.cached_tokens == 200

        args, kwargs = mock_post.call_args
        assert args[0] == "https://vision.example.com/v1/chat/completions"
        assert kwargs["timeout"] == 60
        assert kwargs["headers"]["Authorization"] == "Bearer test-key"
        payload = kwargs["json"]
        assert payload["response_format"]["type"] == "json_schema"
        assert payload["response_format"]["json_schema"]["schema"]["required"] == ["tags"]
        image_part = payload["messages"][1]["content"][1]
        assert image_part["image_url"]["url"].startswith("data:image/png;base64,")

    def test_malformed_tags_are_skipped(self, provider):
        content = {"tags": [
            {"key": "color", "value": "red", "confidence": 0.9},
            {"key": "color", "value": "", "confidence": 0.9},
            {"key": "size", "value": "10cm", "confidence": 7},
        ]}
        with patch("app.utils.llm_utils.requests.post", return_value=chat_response(content)):
            result = provider.analyze_single(PNG_MAGIC, PromptBuilder().build_prompt())

        assert [(t.key, t.value) for t in result.tags] == [("color", "red")]

    def test_missing_tags_field_raises(self, provider):
        with patch("app.utils.llm_utils.requests.post", return_value=chat_response({"labels": []})):
            with pytest.raises(ProviderError):
                provider.analyze_single(PNG_MAGIC, PromptBuilder().build_prompt())

    def test_non_json_model_output_raises(self, provider):
        with patch("app.utils.llm_utils.requests.post", return_value=chat_response("I cannot help with that")):
            with pytest.raises(ProviderError, match="no JSON object"):
                provider.analyze_single(PNG_MAGIC, PromptBuilder().build_prompt())

    def test_http_error_carries_status_and_body(self, provider):
        response = MagicMock()
        response.status_code = 429
        response.text = "rate limited"
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
        with patch("app.utils.llm_utils.requests.post", return_value=response):
            with pytest.raises(ProviderError) as exc_info:
                provider.analyze_single(PNG_MAGIC, PromptBuilder().build_prompt())

        assert exc_info.value.status_code == 429
        assert exc_info.value.response_text == "rate limited"

    def test_timeout_becomes_provider_error(self, provider):
        with patch("app.utils.llm_utils.requests.post", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(ProviderError, match="timed out"):
                provider.analyze_single(PNG_MAGIC, PromptBuilder().build_prompt())

    def test_unexpected_envelope_raises(self, provider):
        response = MagicMock()
        response.raise_for_status.return_value = None
        response.json.return_value = {"error": "nope"}
        with patch("app.utils.llm_utils.requests.post", return_value=response):
            with pytest.raises(ProviderError, match="unexpected response format"):
                provider.analyze_single(PNG_MAGIC, PromptBuilder().build_prompt())


class TestAnalyzeBatch:

    def test_results_keyed_by_caller_ids(self, provider):
        content = {"images": [
            {"image_id": "2", "tags": [{"key": "color", "value": "blue", "confidence": 0.9}]},
            {"image_id": "1", "tags": [{"key": "title", "value": "the matrix", "confidence": 0.9}]},
        ]}
        items = [ImagePayload(id=1, data=PNG_MAGIC), ImagePayload(id=2, data=PNG_MAGIC)]
        with patch("app.utils.llm_utils.requests.post", return_value=chat_response(content)) as mock_post:
            result = provider.analyze_batch(items)

        assert set(result.results) == {1, 2}
        assert result.results[1][0].value == "the matrix"
        parts = mock_post.call_args.kwargs["json"]["messages"][1]["content"]
        assert {"type": "text", "text": "Image identifier: 1"} in parts
        assert {"type": "text", "text": "Image identifier: 2"} in parts
        assert sum(1 for p in parts if p["type"] == "image_url") == 2

    def test_missing_and_unknown_ids_do_not_raise(self, provider):
        content = {"images": [
            {"image_id": "1", "tags": [{"key": "color", "value": "red", "confidence": 0.9}]},
            {"image_id": "99", "tags": [{"key": "color", "value": "green", "confidence": 0.9}]},
            {"tags": []},
        ]}
        items = [ImagePayload(id=1, data=PNG_MAGIC), ImagePayload(id=2, data=PNG_MAGIC)]
        with patch("app.utils.llm_utils.requests.post", return_value=chat_response(content)):
            result = provider.analyze_batch(items)

        assert 1 in result.results
        assert 2 not in result.results
        assert "99" in result.results

    def test_missing_images_array_raises(self, provider):
        items = [ImagePayload(id=1, data=PNG_MAGIC)]
        with patch("app.utils.llm_utils.requests.post", return_value=chat_response({"tags": []})):
            with pytest.raises(ProviderError):
                provider.analyze_batch(items)

    def test_empty_batch_is_rejected(self, provider):
        with pytest.raises(ValueError):
            provider.analyze_batch([])
