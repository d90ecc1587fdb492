from sqlalchemy import Column, Integer, String, Numeric, DateTime, JSON
from sqlalchemy.sql import func

from app.core.config import settings
from app.core.db import Base

class AiRequest(Base):
    """Append-only record of one external model call."""
    __tablename__ = "ai_requests"

    id = Column(Integer, primary_key=True, index=True)
    model = Column(String(255), nullable=False, index=True)
    action = Column(String(100), nullable=False, index=True)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    completion_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    cached_tokens = Column(Integer, nullable=True)
    cost_estimate = Column(Numeric(12, 6), nullable=False, default=0)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @staticmethod
    def calculate_cost(prompt_tokens: int, completion_tokens: int, cached_tokens: int = 0) -> float:
        prompt_cost = (prompt_tokens / 1_000_000) * settings.COST_PER_MILLION_PROMPT_TOKENS
        completion_cost = (completion_tokens / 1_000_000) * settings.COST_PER_MILLION_COMPLETION_TOKENS
        cached_cost = (cached_tokens / 1_000_000) * settings.COST_PER_MILLION_CACHED_TOKENS
        return prompt_cost + completion_cost + cached_cost

    def __repr__(self):
        return f"<AiRequest(id={self.id}, model='{self.model}', action='{self.action}', total_tokens={self.total_tokens})>"
