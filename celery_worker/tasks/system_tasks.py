import logging
from datetime import datetime, timezone

from celery_worker.celery_setup import celery_app
from celery_worker.dispatcher import CeleryBatchDispatcher
from app.core.config import settings
from app.core.db import SessionLocal
from app.services.orphan_service import reset_orphaned_images

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.system.reset_orphaned_images_beat")
def reset_orphaned_images_beat(threshold_minutes: int = None, dispatch: bool = None):
    """
    Celery Beat task: reset images stuck in processing back to pending, then
    optionally start a batch run to pick them up.
    """
    task_name_log = f"[BeatTask ResetOrphans - {datetime.now(timezone.utc).isoformat()}]"
    dispatch = settings.ORPHAN_SWEEP_DISPATCH if dispatch is None else dispatch

    db = SessionLocal()
    try:
        reset_ids = reset_orphaned_images(db, threshold_minutes)
        dispatched = False
        if reset_ids and dispatch:
            CeleryBatchDispatcher(celery_app).enqueue()
            dispatched = True
        logger.info(f"{task_name_log} Reset {len(reset_ids)} images, dispatched={dispatched}")
        return {"status": "success", "reset_image_ids": reset_ids, "dispatched": dispatched}
    except Exception as e:
        db.rollback()
        logger.error(f"{task_name_log} Orphan sweep failed: {e}")
        raise
    finally:
        db.close()
