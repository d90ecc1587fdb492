import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import EmptyInputError
from app.models.embedding_configuration import EmbeddingConfiguration
from app.models.image import Image
from app.models.image_embedding import ImageEmbedding, EmbeddingTypeEnum
from app.models.tag import ImageTag, Tag
from app.services.ai_request_logger import log_ai_request
from app.services.embedding_config_service import get_active_configurations
from app.utils.embedding_utils import EmbeddingProvider
from app.utils.tag_normalizer import normalize_key

logger = logging.getLogger(__name__)


def format_tags_as_text(tags: Dict[str, str]) -> str:
    """Render {key: value} as "k1: v1, k2: v2", keys sorted ascending."""
    return ", ".join(f"{key}: {tags[key]}" for key in sorted(tags))


class EmbeddingService:
    def __init__(self, db: Session, embedding_provider: EmbeddingProvider):
        self.db = db
        self.embedding_provider = embedding_provider

    def build_text_from_tags(self, image: Image, config: EmbeddingConfiguration) -> str:
        """
        Canonical text for one image under one configuration. Only the configuration's
        keys are used; keys the image has no tag for are left out entirely.
        """
        image_tags = self._load_tag_pairs(image.id)
        pairs: Dict[str, str] = {}
        for requested_key in config.tag_keys or []:
            key = normalize_key(requested_key)
            if key and key in image_tags and key not in pairs:
                pairs[key] = image_tags[key]
        return format_tags_as_text(pairs)

    def generate_embedding(self, image: Image, config: EmbeddingConfiguration) -> ImageEmbedding:
        source_text = self.build_text_from_tags(image, config)
        if not source_text:
            raise EmptyInputError(
                f"Cannot generate embedding for image {image.id}: no tags available for configuration {config.id}"
            )

        result = self.embedding_provider.embed(source_text, purpose="document")
        embedding = self._upsert(image.id, config.id, result.vectors[0], source_text)
        self.db.commit()

        log_ai_request(self.db, "generate_embedding", result.usage, {
            "image_id": image.id,
            "configuration_id": config.id,
            "source_text_length": len(source_text),
        })
        return embedding

    def generate_embeddings_for_batch(self, images: List[Image], configs: Optional[List[EmbeddingConfiguration]] = None) -> Dict[int, List[ImageEmbedding]]:
        """
        Embed many images with one provider call per active configuration.
        Images with no usable text for a configuration are skipped, not failed.
        """
        if not images:
            return {}

        configs = configs if configs is not None else get_active_configurations(self.db)
        if not configs:
            logger.warning("[EmbeddingService] No active embedding configurations found")
            return {}

        results: Dict[int, List[ImageEmbedding]] = {}
        for config in configs:
            texts: List[str] = []
            image_ids: List[int] = []
            for image in images:
                text = self.build_text_from_tags(image, config)
                if not text:
                    logger.info(f"[EmbeddingService] Skipping image {image.id}: no tags available for configuration {config.id}")
                    continue
                texts.append(text)
                image_ids.append(image.id)

            if not texts:
                logger.info(f"[EmbeddingService] No texts to embed for configuration {config.id}")
                continue

            result = self.embedding_provider.embed(texts, purpose="document")
            for image_id, text, vector in zip(image_ids, texts, result.vectors):
                results.setdefault(image_id, []).append(self._upsert(image_id, config.id, vector, text))
            self.db.commit()

            log_ai_request(self.db, "generate_embeddings_batch", result.usage, {
                "configuration_id": config.id,
                "image_count": len(texts),
                "total_text_length": sum(len(t) for t in texts),
            })
            logger.info(f"[EmbeddingService] Generated '{config.name}' embeddings for {len(texts)} images")

        return results

    def generate_query_embedding(self, query_text: str) -> List[float]:
        if not query_text or not query_text.strip():
            raise EmptyInputError("Cannot embed an empty query")
        result = self.embedding_provider.embed(query_text, purpose="query")
        return result.vectors[0]

    def _load_tag_pairs(self, image_id: int) -> Dict[str, str]:
        # Fresh read of the join table; first attached value wins for multi-value keys
        rows = (
            self.db.query(Tag.key, Tag.value)
            .join(ImageTag, ImageTag.tag_id == Tag.id)
            .filter(ImageTag.image_id == image_id)
            .order_by(ImageTag.created_at, ImageTag.tag_id)
            .all()
        )
        pairs: Dict[str, str] = {}
        for key, value in rows:
            pairs.setdefault(key, value)
        return pairs

    def _upsert(self, image_id: int, config_id: int, vector: List[float], source_text: str) -> ImageEmbedding:
        embedding = (
            self.db.query(ImageEmbedding)
            .filter(
                ImageEmbedding.image_id == image_id,
                ImageEmbedding.embedding_configuration_id == config_id,
                ImageEmbedding.embedding_type == EmbeddingTypeEnum.SEMANTIC,
            )
            .first()
        )
        if embedding is None:
            embedding = ImageEmbedding(
                image_id=image_id,
                embedding_configuration_id=config_id,
                embedding_type=EmbeddingTypeEnum.SEMANTIC,
            )
            self.db.add(embedding)
        embedding.vector = list(vector)
        embedding.source_text = source_text
        self.db.flush()
        return embedding
