# formflow/cache/tasks.py

from celery import shared_task

from formflow.cache.manager import get_cache_manager
from formflow.utils.logger import get_logger

logger = get_logger(__name__)


@shared_task(bind=True, name="formflow.cache.tasks.cleanup_expired_cache")
def cleanup_expired_cache(self):
    """Sweep expired rows out of the database cache tier"""
    removed = get_cache_manager().cleanup_expired()
    logger.info("Cache sweep finished", task_id=self.request.id, removed=removed)
    return removed
