# formflow/submissions/repository.py

"""
Data access layer for submissions and their metadata.
Nothing in here commits; callers own the transaction.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from formflow.core.exceptions import (
    ConcurrentUpdateException,
    InvalidStatusTransitionException,
    SubmissionNotFoundException,
)
from formflow.submissions.models import Submission, SubmissionMeta
from formflow.submissions.schemas import SubmissionStatus, can_transition
from formflow.submissions.utils import decode_payload
from formflow.utils.general import to_meta_value, utcnow
from formflow.utils.logger import get_logger

logger = get_logger(__name__)


class SubmissionRepository:
    """Repository for Submission and SubmissionMeta rows."""

    def __init__(self, db: Session):
        self.db = db

    # ==== Submission Operations ====

    def create_submission(self, submission: Submission) -> Submission:
        """Add a new submission and flush it so the row exists."""
        self.db.add(submission)
        self.db.flush()
        return submission

    def get_submission(self, submission_id: str) -> Optional[Submission]:
        """Get a submission by id."""
        stmt = (
            select(Submission)
            .where(Submission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_snapshot(self, submission_id: str) -> Optional[Dict[str, Any]]:
        """
        Cacheable view of a submission with its payload decoded.
        """
        submission = self.get_submission(submission_id)
        if not submission:
            return None
        return {
            "id": submission.id,
            "form_id": submission.form_id,
            "status": submission.status,
            "data": decode_payload(submission.payload, submission.payload_compressed),
            "ip_address": submission.ip_address,
            "created_on": submission.created_on.isoformat() if submission.created_on else None,
            "version": submission.version,
        }

    def transition_status(
        self,
        submission_id: str,
        target: SubmissionStatus,
        processing_time_ms: Optional[float] = None,
    ) -> SubmissionStatus:
        """
        Move a submission forward along the status graph.

        The update is conditional on the status and version read here, so a
        concurrent writer makes this raise instead of silently overwriting.
        """
        row = self.db.execute(
            select(Submission.status, Submission.version).where(Submission.id == submission_id)
        ).one_or_none()
        if row is None:
            raise SubmissionNotFoundException(submission_id)

        current_status, version = row
        if not can_transition(current_status, target.value):
            raise InvalidStatusTransitionException(current_status, target.value)

        values: Dict[str, Any] = {
            "status": target.value,
            "version": version + 1,
            "updated_on": utcnow(),
        }
        if target == SubmissionStatus.COMPLETED:
            values["processed_at"] = utcnow()
        if processing_time_ms is not None:
            values["processing_time_ms"] = processing_time_ms

        result = self.db.execute(
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.status == current_status,
                Submission.version == version,
            )
            .values(**values)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateException("Submission", submission_id)

        logger.info(
            "Submission status changed",
            submission_id=submission_id,
            from_status=current_status,
            to_status=target.value,
        )
        return target

    def set_processing_time(self, submission_id: str, processing_time_ms: float) -> None:
        """Record how long ingestion took."""
        self.db.execute(
            update(Submission)
            .where(Submission.id == submission_id)
            .values(processing_time_ms=processing_time_ms)
        )

    # ==== Meta Operations ====

    def add_meta(self, submission_id: str, key: str, value: Any) -> SubmissionMeta:
        """Append a meta entry."""
        meta = SubmissionMeta(
            submission_id=submission_id,
            meta_key=key,
            meta_value=to_meta_value(value),
        )
        self.db.add(meta)
        self.db.flush()
        return meta

    def upsert_meta(self, submission_id: str, key: str, value: Any) -> SubmissionMeta:
        """Update the first entry for a key or create it."""
        meta = self.db.execute(
            select(SubmissionMeta)
            .where(SubmissionMeta.submission_id == submission_id, SubmissionMeta.meta_key == key)
            .order_by(SubmissionMeta.id)
            .limit(1)
        ).scalar_one_or_none()
        if meta is None:
            return self.add_meta(submission_id, key, value)
        meta.meta_value = to_meta_value(value)
        self.db.flush()
        return meta

    def get_meta_value(self, submission_id: str, key: str) -> Optional[str]:
        """Latest value recorded for a key."""
        return self.db.execute(
            select(SubmissionMeta.meta_value)
            .where(SubmissionMeta.submission_id == submission_id, SubmissionMeta.meta_key == key)
            .order_by(SubmissionMeta.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def list_meta(self, submission_id: str) -> List[SubmissionMeta]:
        """All meta entries for a submission in insertion order."""
        return self.db.execute(
            select(SubmissionMeta)
            .where(SubmissionMeta.submission_id == submission_id)
            .order_by(SubmissionMeta.id)
        ).scalars().all()

    def find_submission_id_by_meta(self, key: str, value: str) -> Optional[str]:
        """Resolve the submission owning a meta value, e.g. a provider document id."""
        return self.db.execute(
            select(SubmissionMeta.submission_id)
            .where(SubmissionMeta.meta_key == key, SubmissionMeta.meta_value == value)
            .limit(1)
        ).scalar_one_or_none()
