import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.models.embedding_configuration import EmbeddingConfiguration
from app.models.image import Image
from app.models.tag import Tag, ImageTag, TagSourceEnum
from app.schemas.tag_schema import TagCandidate
from app.services.ai_request_logger import log_ai_request
from app.utils.llm_utils import VisionProvider, ImagePayload, guess_image_mime_type
from app.utils.prompt_builder import PromptBuilder
from app.utils.tag_normalizer import normalize_key, normalize_value

logger = logging.getLogger(__name__)


class TagService:
    """
    Attaches normalized tags to images and asks the vision model for new ones.

    Tag rows are only ever created here, always from normalized key/value, so
    two spellings of the same tag resolve to one row.
    """

    def __init__(self, db: Session, vision_provider: Optional[VisionProvider] = None, prompt_builder: Optional[PromptBuilder] = None):
        self.db = db
        self.vision_provider = vision_provider
        self.prompt_builder = prompt_builder or PromptBuilder()

    def find_or_create_tag(self, key: str, value: str) -> Tag:
        normalized_key = normalize_key(key)
        normalized_value = normalize_value(value)
        if not normalized_key or not normalized_value:
            raise ValidationError(f"Tag key and value must be non-empty (got key={key!r}, value={value!r})")

        tag = self.db.query(Tag).filter(Tag.key == normalized_key, Tag.value == normalized_value).first()
        if tag is None:
            tag = Tag(key=normalized_key, value=normalized_value)
            self.db.add(tag)
            self.db.flush()
        return tag

    def attach(
        self,
        image: Image,
        key: str,
        value: str,
        confidence: float = 1.0,
        source: TagSourceEnum = TagSourceEnum.PROVIDED,
    ) -> ImageTag:
        """
        Attach one tag. An existing (image, tag) association is returned unchanged,
        whatever its confidence or source.
        """
        tag = self.find_or_create_tag(key, value)
        association = self.db.get(ImageTag, (image.id, tag.id))
        if association is not None:
            return association

        association = ImageTag(image_id=image.id, tag_id=tag.id, confidence=confidence, source=TagSourceEnum(source))
        association.tag = tag
        self.db.add(association)
        self.db.flush()
        return association

    def attach_many(
        self,
        image: Image,
        tags: Dict[str, Union[str, List[str]]],
        confidence: float = 1.0,
        source: TagSourceEnum = TagSourceEnum.PROVIDED,
    ) -> List[ImageTag]:
        """Attach {key: value} or {key: [values]}; one association per distinct normalized value."""
        attached = []
        for key, values in tags.items():
            if isinstance(values, (list, tuple, set)):
                value_list = list(values)
            else:
                value_list = [values]
            for value in value_list:
                if value is None or str(value).strip() == "":
                    continue
                attached.append(self.attach(image, key, str(value), confidence, source))
        self.db.commit()
        # Duplicate input values resolve to the same association
        return list({(a.image_id, a.tag_id): a for a in attached}.values())

    def attach_candidates(
        self,
        image: Image,
        candidates: Iterable[TagCandidate],
        requested_keys: Optional[Iterable[str]] = None,
    ) -> int:
        """
        Attach model output. Keys in requested_keys get source=requested, the rest
        source=generated. Returns the number of new associations.
        """
        requested = {normalize_key(k) for k in (requested_keys or []) if normalize_key(k)}
        before = self._association_count(image)
        for candidate in candidates:
            source = TagSourceEnum.REQUESTED if normalize_key(candidate.key) in requested else TagSourceEnum.GENERATED
            self.attach(image, candidate.key, candidate.value, candidate.confidence, source)
        return self._association_count(image) - before

    def detach(self, image: Image, tag_ids: Iterable[int]) -> int:
        tag_ids = list(tag_ids)
        if not tag_ids:
            return 0
        removed = (
            self.db.query(ImageTag)
            .filter(ImageTag.image_id == image.id, ImageTag.tag_id.in_(tag_ids))
            .delete(synchronize_session="fetch")
        )
        self.db.commit()
        return removed

    def get_image_tags(self, image: Image) -> List[ImageTag]:
        """Read the image's associations straight from the join table, bypassing any cached state."""
        return (
            self.db.query(ImageTag)
            .join(Tag, ImageTag.tag_id == Tag.id)
            .filter(ImageTag.image_id == image.id)
            .order_by(ImageTag.created_at, ImageTag.tag_id)
            .populate_existing()
            .all()
        )

    def get_tag_map(self, image: Image) -> Dict[str, str]:
        """{key: value} for the image. With several values under one key, the first attached wins."""
        tag_map: Dict[str, str] = {}
        for association in self.get_image_tags(image):
            tag_map.setdefault(association.tag.key, association.tag.value)
        return tag_map

    def analyze_batch(self, images: List[Image], image_bytes: Dict[int, bytes], batch_id: Optional[str] = None) -> Dict[int, List[TagCandidate]]:
        """
        One vision call for all images. Returns tag candidates keyed by image id for
        the images the model answered for; ids it invented are dropped here.
        ProviderError propagates to the caller.
        """
        if self.vision_provider is None:
            raise ValueError("TagService.analyze_batch requires a vision provider")

        payloads = [
            ImagePayload(id=image.id, data=image_bytes[image.id], mime_type=image.mime_type or guess_image_mime_type(image_bytes[image.id]))
            for image in images
        ]
        result = self.vision_provider.analyze_batch(payloads)

        claimed_ids = {image.id for image in images}
        answered: Dict[int, List[TagCandidate]] = {}
        for image_id, candidates in result.results.items():
            if image_id not in claimed_ids:
                logger.warning(f"[TagService batch {batch_id}] Ignoring results for unclaimed image id {image_id!r}")
                continue
            answered[image_id] = candidates

        log_ai_request(self.db, "batch_analyze_images", result.usage, {
            "batch_id": batch_id,
            "image_ids": sorted(claimed_ids),
            "batch_size": len(images),
            "answered": len(answered),
        })
        return answered

    def generate_tags(self, image: Image, blob_store: Any, requested_keys: Optional[List[str]] = None) -> List[ImageTag]:
        """Single-image flow: tag one image, honoring an optional list of requested keys."""
        if self.vision_provider is None:
            raise ValueError("TagService.generate_tags requires a vision provider")
        if not blob_store.exists(image.path):
            raise NotFoundError(f"Image file not found in blob store: {image.path}")

        image_bytes = blob_store.get(image.path)
        prompt = self.prompt_builder.build_prompt(description=image.description, requested_keys=requested_keys)
        result = self.vision_provider.analyze_single(image_bytes, prompt, mime_type=image.mime_type)

        added = self.attach_candidates(image, result.tags, requested_keys)
        log_ai_request(self.db, "generate_tags", result.usage, {
            "image_id": image.id,
            "requested_keys": requested_keys or [],
            "tag_count": len(result.tags),
        })
        logger.info(f"[TagService] Image {image.id}: {len(result.tags)} tags returned, {added} new associations")
        return self.get_image_tags(image)

    def extract_tags_from_query(self, query: str, config: EmbeddingConfiguration) -> Dict[str, str]:
        """
        Turn a free-text search query into normalized {key: value} tags limited to the
        configuration's keys. When the model repeats a key the last value is kept.
        """
        if self.vision_provider is None:
            raise ValueError("TagService.extract_tags_from_query requires a vision provider")

        tag_keys = list(config.tag_keys or [])
        prompt = self.prompt_builder.build_query_prompt(query, tag_keys, config.tag_definitions)
        result = self.vision_provider.generate_text(prompt)

        allowed = {normalize_key(k) for k in tag_keys}
        extracted: Dict[str, str] = {}
        for candidate in result.tags:
            key = normalize_key(candidate.key)
            if key not in allowed:
                logger.debug(f"[TagService] Dropping extracted key '{key}' not in configuration {config.id}")
                continue
            extracted[key] = normalize_value(candidate.value)

        log_ai_request(self.db, "extract_query_tags", result.usage, {
            "query": query,
            "configuration_id": config.id,
            "extracted_count": len(extracted),
        })
        return extracted

    def _association_count(self, image: Image) -> int:
        return self.db.query(ImageTag).filter(ImageTag.image_id == image.id).count()
