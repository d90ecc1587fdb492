import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.embedding_configuration import EmbeddingConfiguration, ConfigurationScopeEnum

logger = logging.getLogger(__name__)

SYSTEM_DEFAULT_NAME = "System Default"

SYSTEM_DEFAULT_TAG_KEYS = [
    # Core identifiers
    "title", "name", "subject", "category",
    # Product/item descriptors
    "product type", "product subtype", "brand", "model", "edition",
    # Living things
    "character", "animal", "person", "plant",
    # Physical attributes
    "color", "size", "shape", "material", "texture", "pattern", "finish", "weight",
    # Quantity and condition
    "quantity", "condition", "age", "quality",
    # Visual
    "style", "aesthetic", "theme", "mood",
    # Setting
    "scene", "setting", "location", "environment", "background",
    # Purpose
    "purpose", "function", "use case", "feature", "activity",
    # Media/format
    "format", "technology", "year", "era",
    # Text/labels
    "text", "label", "logo", "symbol",
]


def seed_system_default_config(db: Session) -> EmbeddingConfiguration:
    """Create the system_default configuration unless one already exists. Safe to call repeatedly."""
    existing = (
        db.query(EmbeddingConfiguration)
        .filter(EmbeddingConfiguration.scope == ConfigurationScopeEnum.SYSTEM_DEFAULT)
        .first()
    )
    if existing is not None:
        logger.info(f"System default embedding configuration already exists (id={existing.id}).")
        return existing

    config = EmbeddingConfiguration(
        owner_id=None,
        name=SYSTEM_DEFAULT_NAME,
        tag_keys=list(SYSTEM_DEFAULT_TAG_KEYS),
        tag_definitions=None,
        scope=ConfigurationScopeEnum.SYSTEM_DEFAULT,
        is_default=True,
        is_active=True,
    )
    db.add(config)
    db.commit()
    db.refresh(config)
    logger.info(f"System default embedding configuration created (id={config.id}).")
    return config


def get_active_configurations(db: Session) -> List[EmbeddingConfiguration]:
    return (
        db.query(EmbeddingConfiguration)
        .filter(EmbeddingConfiguration.is_active.is_(True))
        .order_by(EmbeddingConfiguration.id)
        .all()
    )


def get_default_configuration(db: Session) -> Optional[EmbeddingConfiguration]:
    """The active system_default configuration, falling back to any active is_default one."""
    config = (
        db.query(EmbeddingConfiguration)
        .filter(
            EmbeddingConfiguration.scope == ConfigurationScopeEnum.SYSTEM_DEFAULT,
            EmbeddingConfiguration.is_active.is_(True),
        )
        .first()
    )
    if config is None:
        config = (
            db.query(EmbeddingConfiguration)
            .filter(EmbeddingConfiguration.is_default.is_(True), EmbeddingConfiguration.is_active.is_(True))
            .order_by(EmbeddingConfiguration.id)
            .first()
        )
    return config
