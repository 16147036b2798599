# formflow/esign/tasks.py

from typing import Optional

from celery import shared_task

from formflow.cache.manager import get_cache_manager
from formflow.core.db import SessionLocal
from formflow.esign.autentique_client import AutentiqueClient
from formflow.esign.services import SignatureOrchestrator
from formflow.esign.webhooks import WebhookGateway
from formflow.utils.logger import get_logger
from formflow.utils.storage import get_file_storage

logger = get_logger(__name__)


@shared_task(bind=True, name="formflow.esign.tasks.prune_webhook_logs")
def prune_webhook_logs(self, days: Optional[int] = None):
    """Delete webhook audit rows past the retention window"""
    db = SessionLocal()
    try:
        orchestrator = SignatureOrchestrator(
            db=db,
            cache=get_cache_manager(),
            client=AutentiqueClient(),
            storage=get_file_storage(),
        )
        removed = WebhookGateway(db, orchestrator).prune_older_than(days)
        logger.info("Webhook log pruning finished", task_id=self.request.id, removed=removed)
        return removed
    finally:
        db.close()
