from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any

class TagCandidate(BaseModel):
    """One {key, value, confidence} triple returned by the vision model."""
    key: str = Field(min_length=1)
    value: str = Field(min_length=1)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)

    @field_validator("key", "value", mode="before")
    @classmethod
    def _coerce_to_str(cls, v: Any) -> Any:
        # Models occasionally emit numbers for values like quantity or year
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

class ProviderUsage(BaseModel):
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: Optional[int] = None

class VisionResult(BaseModel):
    tags: List[TagCandidate] = Field(default_factory=list)
    usage: ProviderUsage

class BatchVisionResult(BaseModel):
    # Keyed by the caller-supplied identifier when the echoed id matched one,
    # otherwise by the raw echoed string.
    results: Dict[Any, List[TagCandidate]] = Field(default_factory=dict)
    usage: ProviderUsage

class EmbeddingResult(BaseModel):
    vectors: List[List[float]]
    usage: ProviderUsage
