import logging
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.models.embedding_configuration import EmbeddingConfiguration
from app.models.image import Image
from app.models.image_embedding import ImageEmbedding, EmbeddingTypeEnum
from app.schemas.search_schema import SimilarityResult, HydratedResult
from app.services.embedding_config_service import get_default_configuration
from app.services.embedding_service import EmbeddingService, format_tags_as_text
from app.services.tag_service import TagService

logger = logging.getLogger(__name__)


def cosine_distances(query_vector: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine distance (1 - cos) of each row of matrix to query_vector, in [0, 2]."""
    query = np.asarray(query_vector, dtype=np.float64)
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denominators = row_norms * query_norm
    cosines = np.zeros(matrix.shape[0], dtype=np.float64)
    nonzero = denominators > 0
    cosines[nonzero] = (matrix[nonzero] @ query) / denominators[nonzero]
    # Float error can push |cos| slightly past 1
    return 1.0 - np.clip(cosines, -1.0, 1.0)


class SemanticSearchService:
    """
    Ranks stored image embeddings against a query.

    Every search is a full scan of the embeddings stored for one configuration and
    embedding type. Similarity is 1 - distance / 2, which maps cosine distance
    in [0, 2] linearly onto [0, 1].
    """

    def __init__(self, db: Session, embedding_service: EmbeddingService, tag_service: Optional[TagService] = None):
        self.db = db
        self.embedding_service = embedding_service
        self.tag_service = tag_service

    def _resolve_config(self, config: Optional[EmbeddingConfiguration]) -> EmbeddingConfiguration:
        if config is not None:
            return config
        config = get_default_configuration(self.db)
        if config is None:
            raise NotFoundError("No active default embedding configuration")
        return config

    def find_similar_by_query(
        self,
        query_text: str,
        config: Optional[EmbeddingConfiguration] = None,
        limit: int = None,
        min_similarity: float = None,
        extract_tags: bool = True,
    ) -> List[SimilarityResult]:
        config = self._resolve_config(config)
        limit = settings.SEARCH_DEFAULT_LIMIT if limit is None else limit
        min_similarity = settings.SEARCH_DEFAULT_MIN_SIMILARITY if min_similarity is None else min_similarity

        text_to_embed = query_text
        if extract_tags and self.tag_service is not None:
            extracted = self.tag_service.extract_tags_from_query(query_text, config)
            if extracted:
                text_to_embed = format_tags_as_text(extracted)
                logger.info(f"[SemanticSearch] Query '{query_text}' -> '{text_to_embed}'")
            else:
                logger.info(f"[SemanticSearch] No tags extracted from '{query_text}', embedding raw query")

        query_vector = self.embedding_service.generate_query_embedding(text_to_embed)
        return self.find_similar_by_vector(query_vector, config, None, limit, min_similarity, EmbeddingTypeEnum.SEMANTIC)

    def find_similar_images(
        self,
        source_image: Image,
        config: Optional[EmbeddingConfiguration] = None,
        limit: int = None,
        min_similarity: float = None,
        embedding_type: EmbeddingTypeEnum = EmbeddingTypeEnum.SEMANTIC,
    ) -> List[SimilarityResult]:
        """Images closest to source_image's own stored vector, excluding source_image itself."""
        config = self._resolve_config(config)
        limit = settings.SEARCH_DEFAULT_LIMIT if limit is None else limit
        min_similarity = settings.SEARCH_DEFAULT_MIN_SIMILARITY if min_similarity is None else min_similarity
        embedding_type = EmbeddingTypeEnum(embedding_type)

        source_embedding = (
            self.db.query(ImageEmbedding)
            .filter(
                ImageEmbedding.image_id == source_image.id,
                ImageEmbedding.embedding_configuration_id == config.id,
                ImageEmbedding.embedding_type == embedding_type,
            )
            .first()
        )
        if source_embedding is None:
            raise NotFoundError(
                f"No {embedding_type.value} embedding found for image {source_image.id} with configuration {config.id}"
            )

        return self.find_similar_by_vector(source_embedding.vector, config, source_image.id, limit, min_similarity, embedding_type)

    def find_similar_by_vector(
        self,
        vector: Sequence[float],
        config: EmbeddingConfiguration,
        exclude_image_id: Optional[int],
        limit: int,
        min_similarity: float,
        embedding_type: EmbeddingTypeEnum = EmbeddingTypeEnum.SEMANTIC,
    ) -> List[SimilarityResult]:
        query = self.db.query(ImageEmbedding.image_id, ImageEmbedding.vector).filter(
            ImageEmbedding.embedding_configuration_id == config.id,
            ImageEmbedding.embedding_type == EmbeddingTypeEnum(embedding_type),
        )
        if exclude_image_id is not None:
            query = query.filter(ImageEmbedding.image_id != exclude_image_id)

        rows = [(image_id, stored) for image_id, stored in query.all() if stored and len(stored) == len(vector)]
        if not rows or limit <= 0:
            return []

        matrix = np.asarray([stored for _, stored in rows], dtype=np.float64)
        distances = cosine_distances(vector, matrix)
        similarities = 1.0 - distances / 2.0

        # Stable sort keeps storage order among equal distances
        order = np.argsort(distances, kind="stable")
        results = []
        for index in order:
            if similarities[index] < min_similarity:
                continue
            results.append(SimilarityResult(
                image_id=rows[index][0],
                similarity=float(similarities[index]),
                distance=float(distances[index]),
            ))
            if len(results) >= limit:
                break
        return results

    def hydrate_results(self, results: List[SimilarityResult]) -> List[HydratedResult]:
        """Attach Image rows in ranking order; ids that no longer resolve are dropped."""
        if not results:
            return []
        ids = [r.image_id for r in results]
        images = {image.id: image for image in self.db.query(Image).filter(Image.id.in_(ids)).all()}

        hydrated = []
        for result in results:
            image = images.get(result.image_id)
            if image is None:
                logger.debug(f"[SemanticSearch] Image {result.image_id} vanished before hydration, dropped")
                continue
            hydrated.append(HydratedResult(image=image, similarity=result.similarity, distance=result.distance))
        return hydrated
