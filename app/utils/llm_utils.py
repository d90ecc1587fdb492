# app/utils/llm_utils.py
import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Hashable

import requests
from pydantic import ValidationError as PydanticValidationError

from app.core.config import settings
from app.core.exceptions import ProviderError
from app.schemas.tag_schema import TagCandidate, ProviderUsage, VisionResult, BatchVisionResult
from app.utils.prompt_builder import PromptBuilder

logger = logging.getLogger(__name__)

_MAGIC_MIME_TYPES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


@dataclass
class ImagePayload:
    """One image in a batch request, tagged with the caller's identifier."""
    id: Hashable
    data: bytes
    mime_type: Optional[str] = None


def guess_image_mime_type(image_bytes: bytes, fallback: str = "image/jpeg") -> str:
    for magic, mime_type in _MAGIC_MIME_TYPES:
        if image_bytes.startswith(magic):
            return mime_type
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return fallback


def encode_image_bytes_to_base64_data_uri(image_bytes: bytes, mime_type: Optional[str] = None) -> str:
    """Encode image bytes as a base64 data URI for an image_url content part."""
    mime_type = mime_type or guess_image_mime_type(image_bytes)
    encoded_string = base64.b64encode(image_bytes).decode('utf-8')
    return f"data:{mime_type};base64,{encoded_string}"


def extract_json_from_string(text_content: Optional[str]) -> Optional[str]:
    """Pull a JSON object out of a response that may be wrapped in Markdown fences."""
    if not text_content or not isinstance(text_content, str):
        return None
    match = re.search(r"```(?:json)?\s*(\{[\s\S]*\})\s*```", text_content, re.DOTALL | re.IGNORECASE)
    if match:
        return match.group(1).strip()

    first_brace = text_content.find('{')
    last_brace = text_content.rfind('}')
    if first_brace != -1 and last_brace > first_brace:
        return text_content[first_brace : last_brace + 1]
    return None


def parse_tag_candidates(raw_tags: Any, log_prefix: str) -> List[TagCandidate]:
    """Validate raw tag dicts, dropping entries the model got wrong."""
    if not isinstance(raw_tags, list):
        raise ProviderError(f"{log_prefix}: expected a list of tags, got {type(raw_tags).__name__}")
    candidates = []
    for raw in raw_tags:
        try:
            candidates.append(TagCandidate.model_validate(raw))
        except PydanticValidationError as e:
            logger.warning(f"{log_prefix}: skipping malformed tag {raw!r}: {e.errors()[0].get('msg')}")
    return candidates


class VisionProvider:
    """
    Adapter for a multimodal model behind an OpenAI-compatible chat completions API.

    Every call passes a JSON-schema response constraint; every failure (timeout,
    connection error, non-2xx status, unparseable or mis-shaped body) surfaces as
    ProviderError.
    """

    def __init__(
        self,
        api_key: str = None,
        api_base_url: str = None,
        model_name: str = None,
        request_timeout: int = None,
        prompt_builder: PromptBuilder = None,
    ):
        self.api_key = api_key or settings.VISION_API_KEY
        self.api_base_url = api_base_url or settings.VISION_API_BASE_URL
        self.model_name = model_name or settings.VISION_MODEL_NAME
        self.request_timeout = request_timeout or settings.VISION_REQUEST_TIMEOUT
        self.prompt_builder = prompt_builder or PromptBuilder()

    def analyze_single(self, image_bytes: bytes, prompt: Dict[str, Any], mime_type: Optional[str] = None) -> VisionResult:
        content = [
            {"type": "text", "text": prompt["user"]},
            {"type": "image_url", "image_url": {"url": encode_image_bytes_to_base64_data_uri(image_bytes, mime_type)}},
        ]
        parsed, usage = self._call(prompt["system"], content, prompt["schema"], "analyze_single")
        if "tags" not in parsed:
            raise ProviderError(f"Vision response missing 'tags': {json.dumps(parsed)[:200]}")
        return VisionResult(tags=parse_tag_candidates(parsed["tags"], "analyze_single"), usage=usage)

    def analyze_batch(self, items: List[ImagePayload], prompt: Optional[Dict[str, Any]] = None) -> BatchVisionResult:
        """
        Tag several images in one request. Results are keyed by the caller's ids;
        images the model skipped are simply absent, echoed ids that match nothing
        are kept under their raw string so the caller can see and ignore them.
        """
        if not items:
            raise ValueError("analyze_batch requires at least one image")

        id_lookup = {str(item.id): item.id for item in items}
        if prompt is None:
            prompt = self.prompt_builder.build_batch_prompt(list(id_lookup.keys()))

        content = [{"type": "text", "text": prompt["user"]}]
        for item in items:
            content.append({"type": "text", "text": f"Image identifier: {item.id}"})
            content.append({
                "type": "image_url",
                "image_url": {"url": encode_image_bytes_to_base64_data_uri(item.data, item.mime_type)}
            })

        parsed, usage = self._call(prompt["system"], content, prompt["schema"], f"analyze_batch[{len(items)}]")
        entries = parsed.get("images")
        if not isinstance(entries, list):
            raise ProviderError(f"Vision batch response missing 'images' array: {json.dumps(parsed)[:200]}")

        results: Dict[Hashable, List[TagCandidate]] = {}
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("image_id") is None:
                logger.warning(f"Vision batch response entry without image_id ignored: {str(entry)[:100]}")
                continue
            echoed = str(entry["image_id"]).strip()
            key = id_lookup.get(echoed, echoed)
            if echoed not in id_lookup:
                logger.warning(f"Vision batch response echoed unknown image identifier '{echoed}'")
            if not isinstance(entry.get("tags", []), list):
                logger.warning(f"Vision batch response for image '{echoed}' has non-list tags, ignored")
                continue
            tags = parse_tag_candidates(entry.get("tags", []), f"analyze_batch image {echoed}")
            results.setdefault(key, []).extend(tags)

        missing = [str(i) for i in id_lookup if id_lookup[i] not in results]
        if missing:
            logger.warning(f"Vision batch response omitted image identifiers: {', '.join(missing)}")

        return BatchVisionResult(results=results, usage=usage)

    def generate_text(self, prompt: Dict[str, Any]) -> VisionResult:
        """Text-only call with the same tag schema, used for search query extraction."""
        parsed, usage = self._call(prompt["system"], [{"type": "text", "text": prompt["user"]}], prompt["schema"], "generate_text")
        return VisionResult(tags=parse_tag_candidates(parsed.get("tags", []), "generate_text"), usage=usage)

    def _call(self, system_prompt: str, user_content: List[Dict[str, Any]], schema: Dict[str, Any], log_label: str):
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }
        payload = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "max_tokens": settings.VISION_MAX_TOKENS,
            "temperature": settings.VISION_TEMPERATURE,
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": "image_tags", "schema": schema},
            },
        }
        api_url = f"{self.api_base_url.rstrip('/')}/chat/completions"
        log_prefix = f"Vision API Call ({self.model_name} - {log_label})"

        try:
            response = requests.post(api_url, headers=headers, json=payload, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise ProviderError(f"{log_prefix}: request timed out after {self.request_timeout}s") from e
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            body = e.response.text[:500] if e.response is not None and e.response.text else "No response body"
            raise ProviderError(f"{log_prefix}: HTTP {status_code} - {body}", status_code=status_code, response_text=body) from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"{log_prefix}: network error: {e}") from e

        try:
            api_response_json = response.json()
        except ValueError as e: # Includes requests.JSONDecodeError
            raise ProviderError(f"{log_prefix}: response body is not JSON") from e

        if settings.VISION_DEBUG_MODE:
            logger.debug(f"{log_prefix} raw response: {json.dumps(api_response_json, ensure_ascii=False)[:2000]}")

        try:
            message_content = api_response_json["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"{log_prefix}: unexpected response format: {json.dumps(api_response_json)[:200]}") from e

        json_text = extract_json_from_string(message_content)
        if not json_text:
            raise ProviderError(f"{log_prefix}: no JSON object in model output: {str(message_content)[:100]}")
        try:
            parsed = json.loads(json_text)
        except json.JSONDecodeError as e:
            raise ProviderError(f"{log_prefix}: model output is not valid JSON: {json_text[:100]}") from e
        if not isinstance(parsed, dict):
            raise ProviderError(f"{log_prefix}: model output is not a JSON object")

        return parsed, self._parse_usage(api_response_json)

    def _parse_usage(self, api_response_json: Dict[str, Any]) -> ProviderUsage:
        usage = api_response_json.get("usage") or {}
        details = usage.get("prompt_tokens_details") or {}
        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)
        return ProviderUsage(
            model=api_response_json.get("model") or self.model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=int(usage.get("total_tokens") or prompt_tokens + completion_tokens),
            cached_tokens=details.get("cached_tokens"),
        )
