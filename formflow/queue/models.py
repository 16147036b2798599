# formflow/queue/models.py

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from formflow.core.db import Base
from formflow.queue.schemas import JobStatus
from formflow.utils.general import utcnow


class QueueJob(Base):
    """
    Durable record of deferred work.

    Consumers must claim a row (pending -> processing with a lease) before
    executing it; see QueueRepository.claim_next.
    """
    __tablename__ = "queue_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    submission_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    job_type: Mapped[str] = mapped_column(String(64), index=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    priority: Mapped[int] = mapped_column(Integer, default=50, index=True)
    status: Mapped[str] = mapped_column(String(16), default=JobStatus.PENDING.value, index=True)

    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)

    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    claimed_by: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    lease_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<QueueJob(id={self.id}, job_type={self.job_type}, "
            f"status={self.status}, priority={self.priority})>"
        )
