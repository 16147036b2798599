# formflow/submissions/services.py

"""
Submission ingestion pipeline: resolve the form, sanitize and validate the
data, persist it compressed, record metadata and enqueue downstream work.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formflow.audit_trail.schemas import ActivityCategory, ActivityLevel
from formflow.audit_trail.services import activity_service
from formflow.cache.manager import CacheManager
from formflow.core.exceptions import (
    FormFlowBaseException,
    FormNotFoundException,
    SubmissionValidationException,
)
from formflow.forms.models import FormStatus
from formflow.forms.repository import FormRepository
from formflow.queue.repository import QueueRepository
from formflow.queue.schemas import JobPriority, JobType
from formflow.submissions.models import Submission
from formflow.submissions.repository import SubmissionRepository
from formflow.submissions.schemas import ClientContext, SubmissionResult, SubmissionStatus
from formflow.submissions.utils import decode_payload, encode_payload
from formflow.utils.general import elapsed_ms, generate_uuid, is_scalar
from formflow.utils.logger import get_logger
from formflow.utils.sanitize import sanitize_key, sanitize_text, sanitize_url, sanitize_value

logger = get_logger(__name__)

FORM_CACHE_TTL = 1800

Validator = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


class SubmissionIngestor:
    """
    Entry point for new submissions. ``process_submission`` never raises;
    every outcome is reported through a SubmissionResult.
    """

    def __init__(
        self,
        db: Session,
        cache: CacheManager,
        validators: Optional[List[Validator]] = None,
    ):
        self.db = db
        self.cache = cache
        self.validators = list(validators or [])
        self.submission_repo = SubmissionRepository(db)
        self.form_repo = FormRepository(db)
        self.queue_repo = QueueRepository(db)

    def process_submission(
        self,
        form_id,
        data: Dict[str, Any],
        meta: Optional[Dict[str, Any]] = None,
        client: Optional[ClientContext] = None,
    ) -> SubmissionResult:
        start = time.perf_counter()
        submission_id = generate_uuid()
        persisted = False

        try:
            form = self._get_form(form_id)
            validated = self._validate_data(data, form)

            self._store_submission(submission_id, form, validated, client or ClientContext())
            self.db.commit()
            persisted = True

            if meta:
                self._store_meta(submission_id, meta)

            self._queue_processing_jobs(submission_id, form)

            processing_time_ms = elapsed_ms(start, time.perf_counter())
            self.submission_repo.set_processing_time(submission_id, processing_time_ms)
            activity_service.log(
                self.db,
                "Submission processed successfully",
                ActivityCategory.PROCESSING,
                submission_id=submission_id,
                context={"form_id": form_id, "processing_time_ms": processing_time_ms},
            )
            self.db.commit()

            logger.info(
                "Submission processed successfully",
                submission_id=submission_id,
                form_id=form_id,
                processing_time_ms=processing_time_ms,
            )
            return SubmissionResult(
                success=True,
                submission_id=submission_id,
                status=SubmissionStatus.PENDING,
                message="Submission received and queued for processing",
            )
        except Exception as e:
            self.db.rollback()
            processing_time_ms = elapsed_ms(start, time.perf_counter())
            error = e.message if isinstance(e, FormFlowBaseException) else str(e)

            if persisted:
                self._mark_failed(submission_id, processing_time_ms)

            logger.error(
                "Submission processing failed",
                submission_id=submission_id,
                form_id=form_id,
                processing_time_ms=processing_time_ms,
                error=error,
                exc_info=not isinstance(e, FormFlowBaseException),
            )
            self._log_failure(submission_id if persisted else None, form_id, error, processing_time_ms)

            return SubmissionResult(
                success=False,
                submission_id=submission_id,
                status=SubmissionStatus.FAILED,
                message="Submission processing failed",
                error=error,
            )

    def get_submission_data(self, submission: Submission) -> Dict[str, Any]:
        """Decoded payload of a stored submission"""
        return decode_payload(submission.payload, submission.payload_compressed)

    def sanitize_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Sanitize keys and values of raw submitted data"""
        return {sanitize_key(key): sanitize_value(value) for key, value in data.items()}

    # ==== Pipeline steps ====

    def _get_form(self, form_id) -> Dict[str, Any]:
        def load_form():
            form = self.form_repo.get_active_form(form_id)
            return form.to_dict() if form else None

        form = self.cache.remember(f"form_{form_id}", load_form, FORM_CACHE_TTL)
        if not form or form.get("status") != FormStatus.ACTIVE:
            raise FormNotFoundException(form_id)
        return form

    def _validate_data(self, data: Dict[str, Any], form: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(data, dict) or not data:
            raise SubmissionValidationException("Submission data is empty", {"form_id": form["id"]})

        validated = self.sanitize_data(data)
        for validator in self.validators:
            result = validator(validated, form)
            if result is not None:
                validated = result
        return validated

    def _store_submission(
        self,
        submission_id: str,
        form: Dict[str, Any],
        data: Dict[str, Any],
        client: ClientContext,
    ) -> Submission:
        payload, compressed = encode_payload(data)
        submission = Submission(
            id=submission_id,
            form_id=form["id"],
            status=SubmissionStatus.PENDING.value,
            payload=payload,
            payload_compressed=compressed,
            ip_address=client.ip_address,
            user_agent=sanitize_text(client.user_agent)[:500],
            referrer_url=sanitize_url(client.referrer_url) if client.referrer_url else None,
            version=1,
        )
        return self.submission_repo.create_submission(submission)

    def _store_meta(self, submission_id: str, meta: Dict[str, Any]) -> None:
        for key, value in meta.items():
            value = sanitize_text(value) if is_scalar(value) else value
            self.submission_repo.add_meta(submission_id, sanitize_key(key), value)

    def _queue_processing_jobs(self, submission_id: str, form: Dict[str, Any]) -> None:
        settings = form.get("settings") or {}

        if form.get("pdf_template_id"):
            self.queue_repo.enqueue(
                JobType.GENERATE_PDF,
                {"submission_id": submission_id, "template_id": form["pdf_template_id"]},
                submission_id=submission_id,
                priority=JobPriority.HIGH,
            )

        if form.get("autentique_enabled") and settings.get("autentique_enabled"):
            self.queue_repo.enqueue(
                JobType.SEND_AUTENTIQUE,
                {"submission_id": submission_id},
                submission_id=submission_id,
                priority=JobPriority.HIGH,
            )

        if form.get("email_template_id"):
            self.queue_repo.enqueue(
                JobType.SEND_EMAIL,
                {"submission_id": submission_id, "template_id": form["email_template_id"]},
                submission_id=submission_id,
                priority=JobPriority.MEDIUM,
            )

    def _mark_failed(self, submission_id: str, processing_time_ms: float) -> None:
        try:
            self.submission_repo.transition_status(
                submission_id, SubmissionStatus.FAILED, processing_time_ms=processing_time_ms
            )
            self.db.commit()
        except (FormFlowBaseException, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error("Could not mark submission as failed", submission_id=submission_id, error=str(e))

    def _log_failure(self, submission_id: Optional[str], form_id, error: str, processing_time_ms: float) -> None:
        try:
            activity_service.log(
                self.db,
                error,
                ActivityCategory.PROCESSING,
                level=ActivityLevel.ERROR,
                submission_id=submission_id,
                context={"form_id": form_id, "processing_time_ms": processing_time_ms},
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not record failure activity", form_id=form_id, error=str(e))
