import logging
from datetime import datetime, timedelta, timezone
from typing import List

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.image import Image, ProcessingStatusEnum

logger = logging.getLogger(__name__)


def reset_orphaned_images(db: Session, threshold_minutes: int = None) -> List[int]:
    """
    Put images stuck in processing longer than threshold_minutes back to pending
    with no batch id. Returns the ids that were reset.
    """
    threshold_minutes = settings.ORPHAN_THRESHOLD_MINUTES if threshold_minutes is None else threshold_minutes
    # Naive UTC, matching what CURRENT_TIMESTAMP stores
    cutoff = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(minutes=threshold_minutes)

    orphaned = (
        db.query(Image)
        .filter(
            Image.processing_status == ProcessingStatusEnum.PROCESSING,
            Image.updated_at < cutoff,
        )
        .order_by(Image.id)
        .all()
    )
    if not orphaned:
        logger.info(f"[OrphanSweep] No images stuck in processing for more than {threshold_minutes} minutes")
        return []

    reset_ids = []
    for image in orphaned:
        logger.warning(
            f"[OrphanSweep] Resetting image {image.id} to pending "
            f"(stuck since {image.updated_at}, batch_id={image.batch_id})"
        )
        image.processing_status = ProcessingStatusEnum.PENDING
        image.batch_id = None
        reset_ids.append(image.id)
    db.commit()

    logger.info(f"[OrphanSweep] Reset {len(reset_ids)} images to pending")
    return reset_ids
