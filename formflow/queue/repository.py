# formflow/queue/repository.py

"""
Producer side of the job queue plus the claim/lease protocol consumers
use to take ownership of a row before executing it.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from formflow.core.config import settings
from formflow.core.exceptions import SubmissionValidationException
from formflow.queue.models import QueueJob
from formflow.queue.schemas import JOB_PAYLOAD_KEYS, JobPriority, JobStatus, JobType
from formflow.utils.general import generate_uuid, utcnow
from formflow.utils.logger import get_logger

logger = get_logger(__name__)


class QueueRepository:
    """Repository for QueueJob rows. Callers own the transaction."""

    def __init__(self, db: Session):
        self.db = db

    # ==== Producer ====

    def enqueue(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        submission_id: Optional[str] = None,
        priority: int = JobPriority.MEDIUM,
        delay_seconds: int = 0,
        now: Optional[datetime] = None,
    ) -> QueueJob:
        """Validate the payload against its job type and insert a pending row."""
        job_type = JobType(job_type)
        missing = JOB_PAYLOAD_KEYS[job_type] - set(payload)
        if missing:
            raise SubmissionValidationException(
                f"Payload for {job_type.value} is missing {', '.join(sorted(missing))}",
                {"job_type": job_type.value, "missing": sorted(missing)},
            )

        now = now or utcnow()
        job = QueueJob(
            id=generate_uuid(),
            submission_id=submission_id,
            job_type=job_type.value,
            payload=dict(payload),
            priority=int(priority),
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=settings.queue_max_attempts,
            scheduled_at=now + timedelta(seconds=delay_seconds),
            created_at=now,
        )
        self.db.add(job)
        self.db.flush()
        logger.info(
            "Job enqueued",
            job_id=job.id,
            job_type=job.job_type,
            submission_id=submission_id,
            priority=job.priority,
            delay_seconds=delay_seconds,
        )
        return job

    # ==== Consumer claim protocol ====

    def claim_next(
        self,
        worker_id: str,
        job_types: Optional[Iterable[JobType]] = None,
        lease_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
        candidates: int = 5,
    ) -> Optional[QueueJob]:
        """
        Atomically move one due job to processing for this worker.

        A due job is pending and scheduled in the past, or processing with an
        expired lease and attempts left. The claim is a compare-and-set on the
        status (and lease), so only one worker can win a given row.
        """
        now = now or utcnow()
        lease_seconds = lease_seconds or settings.queue_lease_seconds
        self.fail_abandoned(now=now)

        due = or_(
            and_(
                QueueJob.status == JobStatus.PENDING.value,
                QueueJob.scheduled_at <= now,
            ),
            and_(
                QueueJob.status == JobStatus.PROCESSING.value,
                QueueJob.lease_expires_at <= now,
                QueueJob.attempts < QueueJob.max_attempts,
            ),
        )
        stmt = select(QueueJob.id, QueueJob.status).where(due)
        if job_types:
            stmt = stmt.where(QueueJob.job_type.in_([JobType(t).value for t in job_types]))
        stmt = stmt.order_by(
            QueueJob.priority.desc(), QueueJob.scheduled_at.asc(), QueueJob.created_at.asc()
        ).limit(candidates)

        for job_id, observed_status in self.db.execute(stmt).all():
            conditions = [QueueJob.id == job_id, QueueJob.status == observed_status]
            if observed_status == JobStatus.PROCESSING.value:
                conditions.append(QueueJob.lease_expires_at <= now)

            result = self.db.execute(
                update(QueueJob)
                .where(*conditions)
                .values(
                    status=JobStatus.PROCESSING.value,
                    claimed_by=worker_id,
                    lease_expires_at=now + timedelta(seconds=lease_seconds),
                    attempts=QueueJob.attempts + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                job = self._reload(job_id)
                logger.info("Job claimed", job_id=job_id, job_type=job.job_type, worker_id=worker_id)
                return job

        return None

    def fail_abandoned(self, now: Optional[datetime] = None) -> int:
        """Fail processing jobs whose lease ran out on their last attempt."""
        now = now or utcnow()
        result = self.db.execute(
            update(QueueJob)
            .where(
                QueueJob.status == JobStatus.PROCESSING.value,
                QueueJob.lease_expires_at <= now,
                QueueJob.attempts >= QueueJob.max_attempts,
            )
            .values(
                status=JobStatus.FAILED.value,
                completed_at=now,
                lease_expires_at=None,
                last_error="Lease expired on final attempt",
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.warning("Abandoned jobs failed", count=result.rowcount)
        return result.rowcount

    def complete(self, job_id: str, worker_id: str, now: Optional[datetime] = None) -> bool:
        """Mark a job done if this worker still holds it."""
        result = self.db.execute(
            update(QueueJob)
            .where(
                QueueJob.id == job_id,
                QueueJob.status == JobStatus.PROCESSING.value,
                QueueJob.claimed_by == worker_id,
            )
            .values(
                status=JobStatus.COMPLETED.value,
                completed_at=now or utcnow(),
                lease_expires_at=None,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def fail(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        retry_delay_seconds: int = 60,
        now: Optional[datetime] = None,
    ) -> Optional[JobStatus]:
        """
        Release a job after a failed attempt. It goes back to pending until
        max_attempts is reached, then it is failed for good.
        """
        now = now or utcnow()
        row = self.db.execute(
            select(QueueJob.attempts, QueueJob.max_attempts).where(
                QueueJob.id == job_id,
                QueueJob.status == JobStatus.PROCESSING.value,
                QueueJob.claimed_by == worker_id,
            )
        ).one_or_none()
        if row is None:
            return None

        attempts, max_attempts = row
        if attempts >= max_attempts:
            new_status = JobStatus.FAILED
            values = {"status": new_status.value, "completed_at": now}
        else:
            new_status = JobStatus.PENDING
            values = {
                "status": new_status.value,
                "scheduled_at": now + timedelta(seconds=retry_delay_seconds),
                "claimed_by": None,
            }

        result = self.db.execute(
            update(QueueJob)
            .where(
                QueueJob.id == job_id,
                QueueJob.status == JobStatus.PROCESSING.value,
                QueueJob.claimed_by == worker_id,
            )
            .values(lease_expires_at=None, last_error=(error or "")[:2000], **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        logger.warning(
            "Job attempt failed",
            job_id=job_id,
            attempts=attempts,
            max_attempts=max_attempts,
            new_status=new_status.value,
            error=error,
        )
        return new_status

    # ==== Queries ====

    def get_job(self, job_id: str) -> Optional[QueueJob]:
        return self._reload(job_id)

    def list_for_submission(self, submission_id: str) -> List[QueueJob]:
        """Jobs produced for a submission in creation order."""
        stmt = (
            select(QueueJob)
            .where(QueueJob.submission_id == submission_id)
            .order_by(QueueJob.created_at.asc(), QueueJob.priority.desc())
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().all()

    def count_by_status(self) -> Dict[str, int]:
        rows = self.db.execute(
            select(QueueJob.status, func.count(QueueJob.id)).group_by(QueueJob.status)
        ).all()
        return {status: count for status, count in rows}

    def _reload(self, job_id: str) -> Optional[QueueJob]:
        stmt = (
            select(QueueJob)
            .where(QueueJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()
