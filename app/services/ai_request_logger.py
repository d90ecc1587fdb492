import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.ai_request import AiRequest
from app.schemas.tag_schema import ProviderUsage

logger = logging.getLogger(__name__)

# Embedding calls bill input tokens only and are not costed here
EMBEDDING_ACTIONS = frozenset({"generate_embedding", "generate_embeddings_batch"})


def log_ai_request(db: Session, action: str, usage: ProviderUsage, metadata: Optional[Dict[str, Any]] = None) -> AiRequest:
    """Append one AiRequest row for an external model call and commit it."""
    if action in EMBEDDING_ACTIONS:
        record = AiRequest(
            model=usage.model,
            action=action,
            prompt_tokens=0,
            completion_tokens=0,
            total_tokens=usage.total_tokens,
            cached_tokens=None,
            cost_estimate=0,
            metadata_=metadata or {},
        )
    else:
        record = AiRequest(
            model=usage.model,
            action=action,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            cached_tokens=usage.cached_tokens,
            cost_estimate=AiRequest.calculate_cost(
                usage.prompt_tokens, usage.completion_tokens, usage.cached_tokens or 0
            ),
            metadata_=metadata or {},
        )
    db.add(record)
    db.commit()
    logger.debug(f"[AiRequest] {action} via {usage.model}: {usage.total_tokens} tokens, cost {record.cost_estimate}")
    return record
