import enum

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, UniqueConstraint, Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.db import Base

class TagSourceEnum(str, enum.Enum):
    PROVIDED = "provided"   # Supplied by the user
    GENERATED = "generated" # Inferred by the vision model
    REQUESTED = "requested" # Explicitly asked of the vision model

class Tag(Base):
    """Normalized (key, value) pair. Rows are only created through TagService."""
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("key", "value", name="uq_tags_key_value"),)

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(255), nullable=False, index=True)
    value = Column(String(1024), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Tag(id={self.id}, key='{self.key}', value='{self.value}')>"

class ImageTag(Base):
    """Association between an image and a tag; at most one row per (image, tag)."""
    __tablename__ = "image_tag"

    image_id = Column(Integer, ForeignKey("images.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)
    confidence = Column(Float, nullable=False, default=1.0)
    source = Column(
        SAEnum(TagSourceEnum, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=TagSourceEnum.PROVIDED
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    tag = relationship("Tag", lazy="joined")

    def __repr__(self):
        return f"<ImageTag(image_id={self.image_id}, tag_id={self.tag_id}, source='{self.source}')>"
