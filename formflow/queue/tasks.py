# formflow/queue/tasks.py

"""
Celery consumer for the signature job types.

Each job is claimed through the lease protocol before it runs, so several
workers can drain the queue at once without executing a row twice.
"""

import os
import socket
from typing import Dict, Optional, Tuple

from celery import shared_task
from sqlalchemy.orm import Session

from formflow.cache.manager import get_cache_manager
from formflow.core.config import settings
from formflow.core.db import SessionLocal
from formflow.esign.autentique_client import AutentiqueClient
from formflow.esign.services import SignatureOrchestrator
from formflow.queue.models import QueueJob
from formflow.queue.repository import QueueRepository
from formflow.queue.schemas import SIGNATURE_JOB_TYPES, JobType
from formflow.utils.logger import get_logger
from formflow.utils.storage import get_file_storage

logger = get_logger(__name__)


def execute_signature_job(orchestrator: SignatureOrchestrator, job: QueueJob) -> Tuple[bool, Optional[str]]:
    """Run one claimed job and report success plus an error message"""
    payload = job.payload or {}
    job_type = JobType(job.job_type)

    if job_type == JobType.SEND_AUTENTIQUE:
        result = orchestrator.create_document_from_submission(payload["submission_id"])
        return result.success, result.error

    if job_type == JobType.AUTENTIQUE_STATUS_CHECK:
        status = orchestrator.check_document_status(payload["document_id"])
        if isinstance(status, dict) and status.get("success") is False:
            return False, status.get("error")
        return True, None

    if job_type == JobType.AUTENTIQUE_DOWNLOAD:
        result = orchestrator.download_signed_document(payload["document_id"])
        return result.success, result.error

    return False, f"Unsupported job type {job.job_type}"


def run_signature_jobs(
    db: Session,
    orchestrator: SignatureOrchestrator,
    worker_id: str,
    batch_size: Optional[int] = None,
) -> Dict[str, int]:
    """
    Claim and execute up to ``batch_size`` due signature jobs.
    """
    queue = QueueRepository(db)
    counts = {"claimed": 0, "completed": 0, "failed": 0}

    for _ in range(batch_size or settings.queue_batch_size):
        job = queue.claim_next(worker_id, job_types=SIGNATURE_JOB_TYPES)
        db.commit()
        if job is None:
            break

        counts["claimed"] += 1
        job_id, job_type = job.id, job.job_type
        try:
            success, error = execute_signature_job(orchestrator, job)
        except Exception as e:
            logger.error("Job raised", job_id=job_id, job_type=job_type, error=str(e), exc_info=True)
            db.rollback()
            success, error = False, str(e)

        if success:
            queue.complete(job_id, worker_id)
            counts["completed"] += 1
        else:
            queue.fail(job_id, worker_id, error or "Unknown error")
            counts["failed"] += 1
        db.commit()

    return counts


@shared_task(bind=True, name="formflow.queue.tasks.process_signature_jobs")
def process_signature_jobs(self, batch_size: Optional[int] = None):
    """
    Drain due send_autentique, status check and download jobs.

    Scheduled every minute by beat; generate_pdf and send_email rows are
    left for their own consumers.
    """
    worker_id = f"{self.request.hostname or socket.gethostname()}:{os.getpid()}"
    logger.info("Signature job run started", task_id=self.request.id, worker_id=worker_id)

    db = SessionLocal()
    try:
        orchestrator = SignatureOrchestrator(
            db=db,
            cache=get_cache_manager(),
            client=AutentiqueClient(),
            storage=get_file_storage(),
        )
        counts = run_signature_jobs(db, orchestrator, worker_id, batch_size)
        logger.info("Signature job run finished", task_id=self.request.id, **counts)
        return counts
    except Exception as e:
        db.rollback()
        logger.error("Signature job run failed", task_id=self.request.id, error=str(e), exc_info=True)
        raise
    finally:
        db.close()
