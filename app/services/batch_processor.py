"""
Batch engine for image tagging.

One run claims up to max_batch_size pending images under a fresh batch id,
extracts metadata per image, tags the survivors with a single vision call,
embeds the ones that got tags, settles each image as completed or failed and
then decides whether to enqueue another run.

Per-image problems are recorded on the image and never stop its siblings.
A failure of a whole phase (the claim transaction, the vision call, the
embedding calls) marks every image still in the working set as failed and is
re-raised for the queue to retry.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.models.image import Image, ProcessingStatusEnum
from app.services.embedding_service import EmbeddingService
from app.services.image_service import ImageService
from app.services.tag_service import TagService

logger = logging.getLogger(__name__)


@dataclass
class ItemOutcome:
    """Working-set entry for one claimed image."""
    image: Image
    ok: bool = True
    error: Optional[str] = None
    tag_count: int = 0
    embedding_count: int = 0


@dataclass
class BatchReport:
    batch_id: Optional[str]
    claimed: List[int] = field(default_factory=list)
    completed: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    redispatched: bool = False


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class BatchImageProcessor:
    def __init__(
        self,
        db: Session,
        image_service: ImageService,
        tag_service: TagService,
        embedding_service: EmbeddingService,
        dispatcher: Any = None,
        max_batch_size: int = None,
        max_queued_jobs: int = None,
    ):
        self.db = db
        self.image_service = image_service
        self.tag_service = tag_service
        self.embedding_service = embedding_service
        self.dispatcher = dispatcher
        self.max_batch_size = max_batch_size or settings.BATCH_MAX_SIZE
        self.max_queued_jobs = max_queued_jobs or settings.BATCH_MAX_QUEUED_JOBS

    def claim_batch(self) -> Tuple[str, List[Image]]:
        """
        Lease up to max_batch_size pending, unowned images under a new batch id.

        The candidate rows are locked and then moved with one conditional UPDATE
        that re-checks status and batch_id, so a concurrent claimer that lost the
        race simply ends up with fewer (or zero) images.
        """
        batch_id = str(uuid.uuid4())
        try:
            candidate_ids = [
                row.id for row in (
                    self.db.query(Image.id)
                    .filter(
                        Image.processing_status == ProcessingStatusEnum.PENDING,
                        Image.batch_id.is_(None),
                    )
                    .order_by(Image.id)
                    .limit(self.max_batch_size)
                    .with_for_update()
                    .all()
                )
            ]
            if not candidate_ids:
                self.db.rollback()
                return batch_id, []

            self.db.query(Image).filter(
                Image.id.in_(candidate_ids),
                Image.processing_status == ProcessingStatusEnum.PENDING,
                Image.batch_id.is_(None),
            ).update(
                {Image.processing_status: ProcessingStatusEnum.PROCESSING, Image.batch_id: batch_id},
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"[BatchProcessor {batch_id}] Claim transaction failed")
            raise

        images = (
            self.db.query(Image)
            .filter(Image.batch_id == batch_id)
            .order_by(Image.id)
            .populate_existing()
            .all()
        )
        return batch_id, images

    def run(self) -> BatchReport:
        batch_id, images = self.claim_batch()
        if not images:
            logger.info("[BatchProcessor] No pending images found")
            return BatchReport(batch_id=None)

        log_prefix = f"[BatchProcessor {batch_id}]"
        logger.info(f"{log_prefix} Processing {len(images)} images: {[image.id for image in images]}")
        outcomes = [ItemOutcome(image=image) for image in images]

        image_bytes = self._metadata_phase(outcomes, log_prefix)
        working = [o for o in outcomes if o.ok]

        if working:
            self._tag_and_embed(working, image_bytes, batch_id, log_prefix)
        else:
            logger.info(f"{log_prefix} All images failed metadata processing")

        report = BatchReport(
            batch_id=batch_id,
            claimed=[o.image.id for o in outcomes],
            completed=[o.image.id for o in outcomes if o.ok],
            failed=[o.image.id for o in outcomes if not o.ok],
        )
        logger.info(f"{log_prefix} Finished: {len(report.completed)} completed, {len(report.failed)} failed")

        report.redispatched = self.redispatch()
        return report

    def _metadata_phase(self, outcomes: List[ItemOutcome], log_prefix: str) -> Dict[int, bytes]:
        image_bytes: Dict[int, bytes] = {}
        blob_store = self.image_service.blob_store
        for outcome in outcomes:
            image = outcome.image
            try:
                if not blob_store.exists(image.path):
                    raise NotFoundError(f"Image file not found: {image.path}")
                data = blob_store.get(image.path)
                self.image_service.process_image(image, data)
                self.db.commit()
                image_bytes[image.id] = data
                logger.info(f"{log_prefix} Metadata processed for image {image.id}")
            except Exception as e:  # Isolated per image
                self.db.rollback()
                self._fail(outcome, f"Metadata processing failed: {e}")
                self.db.commit()
                logger.error(f"{log_prefix} Metadata processing failed for image {image.id}: {e}")
        return image_bytes

    def _tag_and_embed(self, working: List[ItemOutcome], image_bytes: Dict[int, bytes], batch_id: str, log_prefix: str) -> None:
        try:
            answered = self.tag_service.analyze_batch([o.image for o in working], image_bytes, batch_id)

            for outcome in working:
                candidates = answered.get(outcome.image.id)
                if candidates is None:
                    continue
                self.tag_service.attach_candidates(outcome.image, candidates)
            self.db.commit()

            successful = [o for o in working if o.image.id in answered]
            embeddings: Dict[int, list] = {}
            if successful:
                # Fresh read of the join table so the just-attached tags are included
                for outcome in successful:
                    outcome.tag_count = len(self.tag_service.get_image_tags(outcome.image))
                embeddings = self.embedding_service.generate_embeddings_for_batch([o.image for o in successful])

            for outcome in working:
                image = outcome.image
                if image.id in answered:
                    outcome.embedding_count = len(embeddings.get(image.id, []))
                    image.processing_status = ProcessingStatusEnum.COMPLETED
                    image.batch_id = None
                    logger.info(
                        f"{log_prefix} Successfully processed image {image.id} with "
                        f"{outcome.tag_count} tags and {outcome.embedding_count} embeddings"
                    )
                else:
                    self._fail(outcome, "Image not found in batch results")
                    logger.error(f"{log_prefix} Image {image.id} not found in batch results")
            self.db.commit()
        except Exception as e:
            logger.error(f"{log_prefix} Batch processing failed: {e}")
            self.db.rollback()
            for outcome in working:
                self._fail(outcome, f"Batch processing failed: {e}")
            self.db.commit()
            raise

    def _fail(self, outcome: ItemOutcome, error: str) -> None:
        outcome.ok = False
        outcome.error = error
        outcome.image.mark_failed(error, _utc_now_iso())
        outcome.image.batch_id = None

    def redispatch(self) -> bool:
        """
        Enqueue another run when pending work remains and the processing queue is
        below max_queued_jobs. The depth check is read-then-decide, so concurrent
        runs can overshoot the limit slightly. Broker errors here are logged and
        mean no re-dispatch; the batch itself is already settled.
        """
        pending_count = (
            self.db.query(Image)
            .filter(Image.processing_status == ProcessingStatusEnum.PENDING)
            .count()
        )
        if pending_count == 0:
            logger.info("[BatchProcessor] No more pending images")
            return False

        if self.dispatcher is None:
            logger.info(f"[BatchProcessor] {pending_count} pending images remain, no dispatcher configured")
            return False

        try:
            queued_jobs = self.dispatcher.queue_depth()
        except Exception as e:
            logger.warning(f"[BatchProcessor] Could not read queue depth, not re-dispatching: {e}")
            return False
        if queued_jobs >= self.max_queued_jobs:
            logger.info(f"[BatchProcessor] Queue depth limit reached ({queued_jobs} jobs), not re-dispatching")
            return False

        logger.info(f"[BatchProcessor] Re-dispatching for {pending_count} pending images (queue depth: {queued_jobs})")
        try:
            self.dispatcher.enqueue()
        except Exception as e:
            logger.error(f"[BatchProcessor] Re-dispatch failed, pending images wait for the next run: {e}")
            return False
        return True
