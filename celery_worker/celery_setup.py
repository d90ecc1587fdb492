# celery_worker/celery_setup.py
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging_signal, worker_ready
from kombu import Queue, Exchange
# The worker must be started from the project root so that 'app' is importable.
from app.core.config import settings
from app.core.db import SessionLocal, create_db_tables
from app.core.logging_config import setup_logging
from app.services.embedding_config_service import seed_system_default_config

# Create Celery application instance
celery_app = Celery(
    "image_tagger_tasks",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        'celery_worker.tasks.image_tasks',
        'celery_worker.tasks.system_tasks',
    ]
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone=settings.APP_TIMEZONE,
    enable_utc=True,
    task_acks_late=True, # Long-running batch tasks
    broker_heartbeat=30,
    broker_heartbeat_checkrate=10,
)

default_exchange = Exchange('tasks', type='direct')

celery_app.conf.task_queues = (
    Queue('default', default_exchange, routing_key='default'),
    Queue('beat_scheduler_tasks_queue', default_exchange, routing_key='beat.scheduler'),
    Queue(settings.IMAGE_PROCESSING_QUEUE, default_exchange, routing_key='image.processing'),
)
celery_app.conf.task_default_queue = 'default'
celery_app.conf.task_default_exchange = 'tasks'
celery_app.conf.task_default_routing_key = 'default'

# Batch work is routed explicitly; the continuation is sent by CeleryBatchDispatcher.
celery_app.conf.task_routes = {
    'tasks.image.batch_process_images': {'queue': settings.IMAGE_PROCESSING_QUEUE},
    'tasks.image.generate_tags': {'queue': settings.IMAGE_PROCESSING_QUEUE},
}

# Celery Beat Schedule
celery_app.conf.beat_schedule = {
    'reset-orphaned-images-regularly': {
        'task': 'tasks.system.reset_orphaned_images_beat',
        'schedule': crontab(minute=f'*/{settings.BEAT_SCHEDULE_ORPHAN_SWEEP_MINUTES}'),
        'options': {'queue': 'beat_scheduler_tasks_queue'}
    },
}


@celery_setup_logging_signal.connect
def configure_worker_logging(**kwargs):
    # Connecting to this signal stops Celery from installing its own root handlers
    setup_logging()


@worker_ready.connect
def prepare_database(**kwargs):
    create_db_tables()
    db = SessionLocal()
    try:
        seed_system_default_config(db)
    finally:
        db.close()


if __name__ == '__main__':
    # celery -A celery_worker.celery_setup.celery_app worker -Q default,image_processing_queue -l info
    # celery -A celery_worker.celery_setup.celery_app beat -l info
    celery_app.start()
