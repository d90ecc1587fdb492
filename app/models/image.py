import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.db import Base

class ProcessingStatusEnum(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

class ImageTypeEnum(str, enum.Enum):
    ORIGINAL = "original"
    DERIVED = "derived"

class Image(Base):
    __tablename__ = "images"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True, index=True)
    filename = Column(String(255), nullable=True)
    path = Column(String(512), nullable=False) # Object path in the blob store
    thumbnail_path = Column(String(512), nullable=True)
    mime_type = Column(String(100), nullable=True)
    size = Column(Integer, nullable=True) # Bytes
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    hash = Column(String(64), nullable=True, index=True) # SHA256 of the original bytes

    processing_status = Column(
        SAEnum(ProcessingStatusEnum, values_callable=lambda e: [m.value for m in e]),
        default=ProcessingStatusEnum.PENDING,
        nullable=False,
        index=True
    )
    type = Column(
        SAEnum(ImageTypeEnum, values_callable=lambda e: [m.value for m in e]),
        default=ImageTypeEnum.ORIGINAL,
        nullable=False
    )
    parent_id = Column(Integer, ForeignKey("images.id", ondelete="CASCADE"), nullable=True, index=True)

    # Non-null only while the image is claimed by an in-flight batch
    batch_id = Column(String(36), nullable=True, index=True)

    # Free-form; carries "error" and "failed_at" when processing fails
    metadata_ = Column("metadata", JSON, nullable=True)
    description = Column(String(1024), nullable=True) # Optional user-provided context for tagging

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    parent = relationship("Image", remote_side=[id], back_populates="children")
    children = relationship("Image", back_populates="parent")

    def mark_failed(self, error: str, failed_at: str) -> None:
        """Move to failed, merging the error into the existing metadata map."""
        self.processing_status = ProcessingStatusEnum.FAILED
        self.metadata_ = {**(self.metadata_ or {}), "error": error, "failed_at": failed_at}

    def __repr__(self):
        return f"<Image(id={self.id}, path='{self.path}', status='{self.processing_status}')>"
