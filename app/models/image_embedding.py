import enum

from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, JSON, UniqueConstraint, Enum as SAEnum
from sqlalchemy.sql import func

from app.core.db import Base

class EmbeddingTypeEnum(str, enum.Enum):
    SEMANTIC = "semantic"
    VISUAL = "visual"

class ImageEmbedding(Base):
    __tablename__ = "image_embeddings"
    __table_args__ = (
        UniqueConstraint(
            "image_id", "embedding_configuration_id", "embedding_type",
            name="uq_image_embeddings_image_config_type"
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    image_id = Column(Integer, ForeignKey("images.id", ondelete="CASCADE"), nullable=False, index=True)
    embedding_configuration_id = Column(
        Integer, ForeignKey("embedding_configurations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    embedding_type = Column(
        SAEnum(EmbeddingTypeEnum, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=EmbeddingTypeEnum.SEMANTIC
    )
    vector = Column(JSON, nullable=False) # List[float], EMBEDDING_DIMENSION long
    source_text = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<ImageEmbedding(image_id={self.image_id}, config_id={self.embedding_configuration_id}, type='{self.embedding_type}')>"
