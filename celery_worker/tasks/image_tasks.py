# celery_worker/tasks/image_tasks.py
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from celery_worker.celery_setup import celery_app
from celery_worker.dispatcher import CeleryBatchDispatcher
from app.core.config import settings
from app.core.db import SessionLocal
from app.core.exceptions import NotFoundError
from app.core.minio_handler import MinioBlobStore
from app.models.image import Image
from app.services.batch_processor import BatchImageProcessor
from app.services.embedding_service import EmbeddingService
from app.services.image_service import ImageService
from app.services.tag_service import TagService
from app.utils.embedding_utils import EmbeddingProvider
from app.utils.llm_utils import VisionProvider

logger = logging.getLogger(__name__)


def build_batch_processor(db: Session, blob_store=None, dispatcher=None) -> BatchImageProcessor:
    """Wire the batch engine from settings."""
    blob_store = blob_store or MinioBlobStore()
    return BatchImageProcessor(
        db=db,
        image_service=ImageService(db, blob_store),
        tag_service=TagService(db, vision_provider=VisionProvider()),
        embedding_service=EmbeddingService(db, EmbeddingProvider()),
        dispatcher=dispatcher or CeleryBatchDispatcher(celery_app),
        max_batch_size=settings.BATCH_MAX_SIZE,
        max_queued_jobs=settings.BATCH_MAX_QUEUED_JOBS,
    )


@celery_app.task(
    bind=True,
    name="tasks.image.batch_process_images",
    time_limit=settings.BATCH_TASK_TIME_LIMIT_SECONDS,
)
def batch_process_images_task(self):
    """
    Claim and process one batch of pending images. Failures propagate so the
    task is recorded as failed; the affected images are already marked failed.
    """
    task_id_log = f"[Celery Task {self.request.id}]"
    db = SessionLocal()
    try:
        report = build_batch_processor(db).run()
        logger.info(
            f"{task_id_log} Batch {report.batch_id}: claimed {len(report.claimed)}, "
            f"completed {len(report.completed)}, failed {len(report.failed)}, redispatched={report.redispatched}"
        )
        return {
            "status": "success",
            "batch_id": report.batch_id,
            "completed": report.completed,
            "failed": report.failed,
            "redispatched": report.redispatched,
        }
    except Exception as e:
        logger.error(f"{task_id_log} Batch processing task failed: {e}")
        raise
    finally:
        db.close()


@celery_app.task(bind=True, name="tasks.image.generate_tags")
def generate_tags_task(self, image_id: int, requested_keys: Optional[List[str]] = None):
    """Tag a single image, optionally asking only for requested_keys."""
    task_id_log = f"[Celery Task {self.request.id}]"
    db = SessionLocal()
    try:
        image = db.query(Image).filter(Image.id == image_id).first()
        if not image:
            raise NotFoundError(f"Image with id {image_id} not found.")

        tag_service = TagService(db, vision_provider=VisionProvider())
        associations = tag_service.generate_tags(image, MinioBlobStore(), requested_keys)
        logger.info(f"{task_id_log} Image {image_id} now has {len(associations)} tags")
        return {
            "status": "success",
            "image_id": image_id,
            "tags": [
                {"key": a.tag.key, "value": a.tag.value, "confidence": a.confidence, "source": a.source.value}
                for a in associations
            ],
        }
    except Exception as e:
        db.rollback()
        logger.error(f"{task_id_log} Tag generation failed for image {image_id}: {e}")
        raise
    finally:
        db.close()
