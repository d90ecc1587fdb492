import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Enum as SAEnum
from sqlalchemy.sql import func

from app.core.db import Base

class ConfigurationScopeEnum(str, enum.Enum):
    SYSTEM_DEFAULT = "system_default"
    APP_LEVEL = "app_level"
    ON_DEMAND = "on_demand"

class EmbeddingConfiguration(Base):
    __tablename__ = "embedding_configurations"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=True, index=True) # NULL = system-wide
    name = Column(String(255), nullable=False)
    tag_keys = Column(JSON, nullable=False, default=list) # Ordered list of allowed keys
    tag_definitions = Column(JSON, nullable=True) # Optional {key: definition}
    scope = Column(
        SAEnum(ConfigurationScopeEnum, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ConfigurationScopeEnum.ON_DEMAND,
        index=True
    )
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<EmbeddingConfiguration(id={self.id}, name='{self.name}', scope='{self.scope}')>"
