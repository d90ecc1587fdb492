# celery_worker/dispatcher.py
import logging

from celery import Celery
from kombu.exceptions import ChannelError

from app.core.config import settings

logger = logging.getLogger(__name__)

BATCH_TASK_NAME = "tasks.image.batch_process_images"


class CeleryBatchDispatcher:
    """
    enqueue()/queue_depth() over a Celery broker, used by the batch engine to
    schedule its own continuation.
    """

    def __init__(self, celery_app: Celery, queue_name: str = None, task_name: str = BATCH_TASK_NAME):
        self.celery_app = celery_app
        self.queue_name = queue_name or settings.IMAGE_PROCESSING_QUEUE
        self.task_name = task_name

    def enqueue(self) -> str:
        result = self.celery_app.send_task(self.task_name, queue=self.queue_name)
        logger.info(f"[Dispatcher] Sent {self.task_name} to '{self.queue_name}' (task id {result.id})")
        return result.id

    def queue_depth(self) -> int:
        """
        Messages waiting in the processing queue, per a passive declare on the broker.
        A queue the broker does not know counts as empty: the Redis transport drops
        the list key once the last message is popped.
        """
        with self.celery_app.connection_or_acquire() as conn:
            channel = conn.default_channel
            try:
                declared = channel.queue_declare(queue=self.queue_name, passive=True)
            except (ChannelError,) + tuple(conn.channel_errors) as e:
                logger.debug(f"[Dispatcher] Queue '{self.queue_name}' not found on broker, depth 0 ({e})")
                return 0
            return declared.message_count
