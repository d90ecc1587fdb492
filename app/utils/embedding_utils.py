import logging
from typing import List, Union

import numpy as np
import requests

from app.core.config import settings
from app.core.exceptions import ProviderError
from app.schemas.tag_schema import EmbeddingResult, ProviderUsage

logger = logging.getLogger(__name__)

# Provider-side input types. Documents and queries are embedded asymmetrically,
# so a query vector is only ever compared against document vectors.
PURPOSE_INPUT_TYPES = {
    "document": "search_document",
    "query": "search_query",
}

def normalize_vector(vector: List[float]) -> List[float]:
    """
    Performs L2 normalization on a vector.
    """
    if not vector:
        return []
    np_vector = np.array(vector, dtype=np.float32)
    norm = np.linalg.norm(np_vector)
    if norm == 0:
        logger.warning("Zero norm vector encountered during normalization.")
        return list(vector)
    return (np_vector / norm).tolist()


class EmbeddingProvider:
    """
    Adapter for a Cohere-style v2 /embed endpoint.

    embed() accepts one string or a list, and returns one vector per input in
    input order. Any HTTP, format or dimension problem raises ProviderError.
    """

    def __init__(
        self,
        api_key: str = None,
        api_base_url: str = None,
        model_name: str = None,
        dimension: int = None,
        request_timeout: int = None,
    ):
        self.api_key = api_key or settings.EMBEDDING_API_KEY
        self.api_base_url = api_base_url or settings.EMBEDDING_API_BASE_URL
        self.model_name = model_name or settings.EMBEDDING_MODEL_NAME
        self.dimension = dimension or settings.EMBEDDING_DIMENSION
        self.request_timeout = request_timeout or settings.EMBEDDING_REQUEST_TIMEOUT

    def embed(self, texts: Union[str, List[str]], purpose: str = "document") -> EmbeddingResult:
        if purpose not in PURPOSE_INPUT_TYPES:
            raise ValueError(f"Unknown embedding purpose '{purpose}', expected one of {sorted(PURPOSE_INPUT_TYPES)}")
        texts = [texts] if isinstance(texts, str) else list(texts)
        if not texts:
            raise ValueError("embed() requires at least one text")

        endpoint_url = f"{self.api_base_url.rstrip('/')}/embed"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }
        payload = {
            "model": self.model_name,
            "texts": texts,
            "input_type": PURPOSE_INPUT_TYPES[purpose],
            "embedding_types": ["float"],
        }

        logger.debug(f"Calling Embedding API {endpoint_url} with model {self.model_name} for {len(texts)} text(s), purpose={purpose}")

        try:
            response = requests.post(endpoint_url, headers=headers, json=payload, timeout=self.request_timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise ProviderError(f"Embedding API request timed out ({self.request_timeout}s). URL: {endpoint_url}") from e
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else None
            body = e.response.text[:500] if e.response is not None and e.response.text else "No response body"
            raise ProviderError(f"Embedding API error: {status_code} - {body}", status_code=status_code, response_text=body) from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Embedding API network error: {e}") from e

        try:
            response_json = response.json()
        except ValueError as e:
            raise ProviderError("Embedding API response body is not JSON") from e

        vectors = (response_json.get("embeddings") or {}).get("float")
        if not isinstance(vectors, list) or len(vectors) != len(texts):
            raise ProviderError(
                f"Unexpected Embedding API response format: expected {len(texts)} float embeddings, "
                f"got {len(vectors) if isinstance(vectors, list) else type(vectors).__name__}"
            )

        normalized = []
        for index, vector in enumerate(vectors):
            if not isinstance(vector, list) or not all(isinstance(n, (int, float)) for n in vector):
                raise ProviderError(f"Embedding {index} is not a list of numbers")
            if len(vector) != self.dimension:
                raise ProviderError(
                    f"Embedding dimension mismatch: got {len(vector)}, expected {self.dimension} for {self.model_name}"
                )
            normalized.append(normalize_vector(vector))

        billed_units = (response_json.get("meta") or {}).get("billed_units") or {}
        input_tokens = int(billed_units.get("input_tokens") or 0)
        usage = ProviderUsage(
            model=self.model_name,
            prompt_tokens=input_tokens,
            total_tokens=input_tokens,
        )
        return EmbeddingResult(vectors=normalized, usage=usage)
