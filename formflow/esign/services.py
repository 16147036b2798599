# formflow/esign/services.py

"""
Signature orchestration against Autentique.

Creates provider documents from submissions, applies webhook events to the
submission state machine and stores signed artifacts. Public methods report
failures through result models instead of raising.
"""

import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formflow.audit_trail.schemas import ActivityCategory, ActivityLevel
from formflow.audit_trail.services import activity_service
from formflow.cache.manager import CacheManager
from formflow.core.exceptions import (
    DocumentNotFoundException,
    ExternalServiceException,
    FormFlowBaseException,
    FormNotFoundException,
    InvalidStatusTransitionException,
    SubmissionNotFoundException,
    SubmissionValidationException,
)
from formflow.esign.autentique_client import AutentiqueClient
from formflow.esign.documents import (
    TemplateRenderer,
    build_submission_pdf,
    encode_file_to_base64,
    write_temp_file,
)
from formflow.esign.schemas import SignatureResult, WebhookEvent, WebhookPayload, WebhookResult
from formflow.esign.utils import extract_signers
from formflow.forms.repository import FormRepository
from formflow.queue.repository import QueueRepository
from formflow.queue.schemas import STATUS_CHECK_DELAY_SECONDS, JobPriority, JobType
from formflow.submissions.repository import SubmissionRepository
from formflow.submissions.schemas import SubmissionStatus, can_transition
from formflow.utils.general import utcnow
from formflow.utils.logger import get_logger
from formflow.utils.storage import FileStorage

logger = get_logger(__name__)

SUBMISSION_CACHE_TTL = 300
FORM_CACHE_TTL = 600
STATUS_CACHE_TTL = 300

META_DOCUMENT_ID = "autentique_document_id"
META_DOCUMENT_DATA = "autentique_document_data"
META_STATUS = "autentique_status"
META_SIGNED_URL = "signed_document_url"
META_SIGNED_PATH = "signed_document_path"

SIGNED_DOCUMENT_PATH = "formflow-signed/signed-{submission_id}-{document_id}.pdf"

DocumentCompletedHook = Callable[[str, str, Dict[str, Any]], None]


class SignatureOrchestrator:
    """Drives a submission through document creation, signing and download."""

    def __init__(
        self,
        db: Session,
        cache: CacheManager,
        client: AutentiqueClient,
        storage: FileStorage,
        renderer: Optional[TemplateRenderer] = None,
        queue: Optional[QueueRepository] = None,
        on_document_completed: Optional[List[DocumentCompletedHook]] = None,
    ):
        self.db = db
        self.cache = cache
        self.client = client
        self.storage = storage
        self.renderer = renderer
        self.queue = queue or QueueRepository(db)
        self.on_document_completed = list(on_document_completed or [])
        self.submission_repo = SubmissionRepository(db)
        self.form_repo = FormRepository(db)

    # ==== Document creation ====

    def create_document_from_submission(self, submission_id: str) -> SignatureResult:
        """
        Render the submission, send it to the provider and move the
        submission to pending_signature.
        """
        temp_path = None
        try:
            existing_id = self.submission_repo.get_meta_value(submission_id, META_DOCUMENT_ID)
            if existing_id:
                logger.info(
                    "Autentique document already created",
                    submission_id=submission_id,
                    document_id=existing_id,
                )
                current = self.submission_repo.get_submission(submission_id)
                return SignatureResult(
                    success=True,
                    document_id=existing_id,
                    submission_id=submission_id,
                    status=current.status if current is not None else None,
                    message="Document already sent for signature",
                )

            submission = self._get_submission(submission_id)
            current = self.submission_repo.get_submission(submission_id)
            if current is not None and not can_transition(current.status, SubmissionStatus.PENDING_SIGNATURE.value):
                raise InvalidStatusTransitionException(current.status, SubmissionStatus.PENDING_SIGNATURE.value)
            form = self._get_form(submission["form_id"])
            form_settings = form.get("settings") or {}
            if not form_settings.get("autentique_enabled"):
                raise SubmissionValidationException(
                    "Autentique is not enabled for this form", {"form_id": form["id"]}
                )

            data = submission["data"]
            temp_path = write_temp_file(self._generate_pdf(submission, data, form))
            file_base64 = encode_file_to_base64(temp_path)
            signers = extract_signers(data, form_settings)

            response = self.client.create_document(
                name=self._document_name(submission, form),
                file=file_base64,
                signers=[signer.model_dump(exclude_none=True) for signer in signers],
                sandbox=bool(form_settings.get("autentique_sandbox", False)),
                auto_close=bool(form_settings.get("autentique_auto_close", True)),
                send_automatic_email=bool(form_settings.get("autentique_send_email", True)),
            )
            document_id = response.get("id") if isinstance(response, dict) else None
            if not document_id:
                raise ExternalServiceException("Autentique response did not include a document id")
            document_id = str(document_id)

            self.submission_repo.add_meta(submission_id, META_DOCUMENT_ID, document_id)
            self.submission_repo.add_meta(submission_id, META_DOCUMENT_DATA, response)
            self.submission_repo.transition_status(submission_id, SubmissionStatus.PENDING_SIGNATURE)
            self.queue.enqueue(
                JobType.AUTENTIQUE_STATUS_CHECK,
                {"document_id": document_id},
                submission_id=submission_id,
                priority=JobPriority.MEDIUM,
                delay_seconds=STATUS_CHECK_DELAY_SECONDS,
            )
            self._log_activity(
                submission_id,
                "Document sent for signature",
                context={"document_id": document_id, "signers": len(signers)},
            )
            self.db.commit()
            self.cache.delete(f"submission_{submission_id}")

            logger.info(
                "Autentique document created",
                submission_id=submission_id,
                document_id=document_id,
                signers=len(signers),
            )
            return SignatureResult(
                success=True,
                document_id=document_id,
                submission_id=submission_id,
                status=SubmissionStatus.PENDING_SIGNATURE.value,
                message="Document sent for signature",
            )
        except Exception as e:
            return self._failure(submission_id, "Failed to create Autentique document", e)
        finally:
            if temp_path and os.path.exists(temp_path):
                os.remove(temp_path)

    # ==== Webhooks ====

    def process_signature_webhook(self, payload: Dict[str, Any]) -> WebhookResult:
        """
        Apply a provider callback. Always acknowledges so the provider does
        not retry; problems are reported in ``error``.
        """
        try:
            webhook = WebhookPayload.model_validate(payload)
            if not webhook.document_id or not webhook.event:
                raise SubmissionValidationException("Missing required webhook data")

            submission_id = self.submission_repo.find_submission_id_by_meta(
                META_DOCUMENT_ID, webhook.document_id
            )
            if not submission_id:
                raise SubmissionNotFoundException(document_id=webhook.document_id)

            handlers = {
                WebhookEvent.DOCUMENT_SIGNED.value: self._handle_document_signed,
                WebhookEvent.DOCUMENT_COMPLETED.value: self._handle_document_completed,
                WebhookEvent.DOCUMENT_REFUSED.value: self._handle_document_refused,
                WebhookEvent.DOCUMENT_VIEWED.value: self._handle_document_viewed,
            }
            handler = handlers.get(webhook.event, self._handle_unknown_event)
            error = handler(submission_id, webhook)
            return WebhookResult(error=error)
        except Exception as e:
            self.db.rollback()
            message = e.message if isinstance(e, FormFlowBaseException) else str(e)
            logger.error(
                "Autentique webhook processing failed",
                event=payload.get("event") if isinstance(payload, dict) else None,
                document_id=payload.get("document_id") if isinstance(payload, dict) else None,
                error=message,
                exc_info=not isinstance(e, FormFlowBaseException),
            )
            return WebhookResult(error=message)

    def _handle_document_signed(self, submission_id: str, webhook: WebhookPayload) -> Optional[str]:
        self._log_activity(
            submission_id,
            "Document signed by user",
            context={
                "document_id": webhook.document_id,
                "signer_email": (webhook.signer or {}).get("email", "unknown"),
                "signed_at": webhook.signed_at or utcnow().isoformat(),
            },
        )
        if webhook.all_signed and self._advance(submission_id, SubmissionStatus.FULLY_SIGNED):
            self.queue.enqueue(
                JobType.AUTENTIQUE_DOWNLOAD,
                {"document_id": webhook.document_id},
                submission_id=submission_id,
                priority=JobPriority.HIGH,
            )
        self.db.commit()
        self.cache.delete(f"submission_{submission_id}")
        return None

    def _handle_document_completed(self, submission_id: str, webhook: WebhookPayload) -> Optional[str]:
        self._log_activity(
            submission_id,
            "Document signing completed",
            context={"document_id": webhook.document_id},
        )
        self.db.commit()

        result = self.download_signed_document(webhook.document_id)
        for hook in self.on_document_completed:
            hook(submission_id, webhook.document_id, webhook.model_dump())
        return result.error

    def _handle_document_refused(self, submission_id: str, webhook: WebhookPayload) -> Optional[str]:
        self._advance(submission_id, SubmissionStatus.SIGNATURE_REFUSED)
        self._log_activity(
            submission_id,
            "Document signing refused",
            level=ActivityLevel.WARNING,
            context={
                "document_id": webhook.document_id,
                "reason": webhook.reason or "No reason provided",
            },
        )
        self.db.commit()
        self.cache.delete(f"submission_{submission_id}")
        return None

    def _handle_document_viewed(self, submission_id: str, webhook: WebhookPayload) -> Optional[str]:
        self._log_activity(
            submission_id,
            "Document viewed",
            context={
                "document_id": webhook.document_id,
                "viewer_email": webhook.viewer_email or "unknown",
            },
        )
        self.db.commit()
        return None

    def _handle_unknown_event(self, submission_id: str, webhook: WebhookPayload) -> Optional[str]:
        self._log_activity(
            submission_id,
            "Unhandled webhook event",
            context={"event": webhook.event, "document_id": webhook.document_id},
        )
        self.db.commit()
        return None

    # ==== Status and artifacts ====

    def check_document_status(self, document_id: str) -> Dict[str, Any]:
        """
        Provider status for a document, cached for five minutes. A fresh
        fetch is mirrored into the submission's status meta.
        """
        cache_key = f"autentique_status_{document_id}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            status = self.client.get_document_status(document_id)
            self.cache.set(cache_key, status, STATUS_CACHE_TTL)

            submission_id = self.submission_repo.find_submission_id_by_meta(META_DOCUMENT_ID, document_id)
            if submission_id:
                self.submission_repo.upsert_meta(submission_id, META_STATUS, status)
                self.db.commit()
            return status
        except (FormFlowBaseException, SQLAlchemyError) as e:
            self.db.rollback()
            message = e.message if isinstance(e, FormFlowBaseException) else str(e)
            logger.error("Autentique status check failed", document_id=document_id, error=message)
            return {"success": False, "error": message}

    def download_signed_document(self, document_id: str) -> SignatureResult:
        """
        Fetch the signed PDF, store it and complete the submission.

        A submission that is already completed with a stored document is
        returned as is without downloading again.
        """
        submission_id = None
        try:
            submission_id = self.submission_repo.find_submission_id_by_meta(META_DOCUMENT_ID, document_id)
            if not submission_id:
                raise DocumentNotFoundException(document_id)

            submission = self.submission_repo.get_submission(submission_id)
            existing_url = self.submission_repo.get_meta_value(submission_id, META_SIGNED_URL)
            if submission.status == SubmissionStatus.COMPLETED.value and existing_url:
                logger.info(
                    "Signed document already stored",
                    submission_id=submission_id,
                    document_id=document_id,
                )
                return SignatureResult(
                    success=True,
                    document_id=document_id,
                    submission_id=submission_id,
                    status=SubmissionStatus.COMPLETED.value,
                    file_url=existing_url,
                    file_path=self.submission_repo.get_meta_value(submission_id, META_SIGNED_PATH),
                    message="Signed document already downloaded",
                )

            content = self.client.download_document(document_id)
            stored = self.storage.save(
                SIGNED_DOCUMENT_PATH.format(submission_id=submission_id, document_id=document_id),
                content,
                "application/pdf",
            )
            self.submission_repo.upsert_meta(submission_id, META_SIGNED_URL, stored.url)
            self.submission_repo.upsert_meta(submission_id, META_SIGNED_PATH, stored.path)
            self._advance(submission_id, SubmissionStatus.COMPLETED)
            self._log_activity(
                submission_id,
                "Signed document downloaded",
                context={"document_id": document_id, "file_url": stored.url},
            )
            self.db.commit()
            self.cache.delete(f"submission_{submission_id}")

            logger.info(
                "Signed document stored",
                submission_id=submission_id,
                document_id=document_id,
                file_path=stored.path,
            )
            return SignatureResult(
                success=True,
                document_id=document_id,
                submission_id=submission_id,
                status=SubmissionStatus.COMPLETED.value,
                file_url=stored.url,
                file_path=stored.path,
                message="Signed document downloaded",
            )
        except Exception as e:
            return self._failure(submission_id, "Failed to download signed document", e, document_id)

    def cancel_document(self, document_id: str, reason: str = "") -> SignatureResult:
        """Cancel a pending document at the provider"""
        try:
            self.client.cancel_document(document_id, reason)
        except ExternalServiceException as e:
            logger.error("Autentique cancel failed", document_id=document_id, error=e.message)
            return SignatureResult(success=False, document_id=document_id, error=e.message)

        submission_id = self.submission_repo.find_submission_id_by_meta(META_DOCUMENT_ID, document_id)
        self._log_activity(
            submission_id,
            "Document cancelled",
            level=ActivityLevel.WARNING,
            context={"document_id": document_id, "reason": reason},
        )
        self.db.commit()
        self.cache.delete(f"autentique_status_{document_id}")
        return SignatureResult(
            success=True, document_id=document_id, submission_id=submission_id, message="Document cancelled"
        )

    def resend_signature_email(self, document_id: str, email: str) -> SignatureResult:
        """Ask the provider to notify a signer again"""
        try:
            self.client.resend_email(document_id, email)
        except ExternalServiceException as e:
            logger.error("Autentique resend failed", document_id=document_id, error=e.message)
            return SignatureResult(success=False, document_id=document_id, error=e.message)

        logger.info("Signature email resent", document_id=document_id, email=email)
        return SignatureResult(success=True, document_id=document_id, message="Signature email resent")

    # ==== Helpers ====

    def _get_submission(self, submission_id: str) -> Dict[str, Any]:
        submission = self.cache.remember(
            f"submission_{submission_id}",
            lambda: self.submission_repo.get_snapshot(submission_id),
            SUBMISSION_CACHE_TTL,
        )
        if not submission:
            raise SubmissionNotFoundException(submission_id)
        return submission

    def _get_form(self, form_id) -> Dict[str, Any]:
        def load_form():
            form = self.form_repo.get_form(form_id)
            return form.to_dict() if form else None

        form = self.cache.remember(f"form_{form_id}", load_form, FORM_CACHE_TTL)
        if not form:
            raise FormNotFoundException(form_id)
        return form

    def _generate_pdf(self, submission: Dict[str, Any], data: Dict[str, Any], form: Dict[str, Any]) -> bytes:
        template_id = (form.get("settings") or {}).get("autentique_pdf_template")
        if template_id:
            if self.renderer is None:
                raise SubmissionValidationException(
                    "PDF template configured but no template renderer available",
                    {"template_id": template_id},
                )
            return self.renderer.render(template_id, data)

        return build_submission_pdf(form["name"], data, subtitle=f"Submission {submission['id']}")

    @staticmethod
    def _document_name(submission: Dict[str, Any], form: Dict[str, Any]) -> str:
        created = submission.get("created_on")
        if created:
            created = datetime.fromisoformat(created).strftime("%Y-%m-%d %H:%M:%S")
        return f"{form['name']} - {submission['id']} - {created or ''}"

    def _advance(self, submission_id: str, target: SubmissionStatus) -> bool:
        """Transition unless the submission already reached ``target``"""
        submission = self.submission_repo.get_submission(submission_id)
        if submission is not None and submission.status == target.value:
            logger.info("Submission already in status", submission_id=submission_id, status=target.value)
            return False
        self.submission_repo.transition_status(submission_id, target)
        return True

    def _log_activity(
        self,
        submission_id: Optional[str],
        message: str,
        level: ActivityLevel = ActivityLevel.INFO,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        activity_service.log(
            self.db,
            message,
            ActivityCategory.SIGNATURE,
            level=level,
            submission_id=submission_id,
            context=context,
        )

    def _failure(
        self,
        submission_id: Optional[str],
        message: str,
        exc: Exception,
        document_id: Optional[str] = None,
    ) -> SignatureResult:
        self.db.rollback()
        error = exc.message if isinstance(exc, FormFlowBaseException) else str(exc)
        logger.error(
            message,
            submission_id=submission_id,
            document_id=document_id,
            error=error,
            exc_info=not isinstance(exc, FormFlowBaseException),
        )
        try:
            self._log_activity(
                submission_id,
                message,
                level=ActivityLevel.ERROR,
                context={"document_id": document_id, "error": error},
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not record signature activity", submission_id=submission_id, error=str(e))
        return SignatureResult(
            success=False,
            submission_id=submission_id,
            document_id=document_id,
            message=message,
            error=error,
        )
