"""
Reset images stuck in 'processing' back to 'pending'.

Usage (from the project root):
    python -m scripts.reset_orphaned_images --threshold 15 --dispatch
"""
import argparse
import logging
import sys

from app.core.config import settings
from app.core.db import SessionLocal, create_db_tables
from app.core.logging_config import setup_logging
from app.services.orphan_service import reset_orphaned_images

logger = logging.getLogger("scripts.reset_orphaned_images")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Reset orphaned images stuck in processing status and optionally trigger batch processing"
    )
    parser.add_argument(
        "--threshold",
        type=int,
        default=settings.ORPHAN_THRESHOLD_MINUTES,
        help="Minutes after which processing images are considered orphaned",
    )
    parser.add_argument(
        "--dispatch",
        action="store_true",
        help="Enqueue a batch processing run after resetting orphaned images",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    create_db_tables()

    logger.info(f"Checking for images stuck in 'processing' for more than {args.threshold} minutes...")
    db = SessionLocal()
    try:
        reset_ids = reset_orphaned_images(db, args.threshold)
    finally:
        db.close()

    if reset_ids and args.dispatch:
        # Imported here so a plain reset does not need a reachable broker
        from celery_worker.celery_setup import celery_app
        from celery_worker.dispatcher import CeleryBatchDispatcher

        task_id = CeleryBatchDispatcher(celery_app).enqueue()
        logger.info(f"Dispatched batch processing run {task_id} for {len(reset_ids)} reset images.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
