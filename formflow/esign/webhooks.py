# formflow/esign/webhooks.py

"""
Inbound Autentique webhook handling: authentication, audit logging and
delegation to the signature orchestrator.
"""

import json
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formflow.audit_trail.schemas import ActivityCategory, ActivityLevel
from formflow.audit_trail.services import activity_service
from formflow.core.config import settings
from formflow.core.exceptions import (
    FormFlowBaseException,
    SignatureVerificationException,
    SubmissionValidationException,
)
from formflow.esign.models import WebhookLog
from formflow.esign.schemas import WebhookLogStatus
from formflow.esign.services import SignatureOrchestrator
from formflow.esign.utils import verify_signature
from formflow.utils.general import elapsed_ms, generate_uuid, utcnow
from formflow.utils.logger import get_logger

logger = get_logger(__name__)

INTEGRATION = "autentique"
FAILED_STATUSES = (WebhookLogStatus.ERROR.value, WebhookLogStatus.REJECTED.value)


class WebhookGateway:
    """Entry point for provider callbacks."""

    def __init__(
        self,
        db: Session,
        orchestrator: SignatureOrchestrator,
        secret: Optional[str] = None,
        require_signature: Optional[bool] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.orchestrator = orchestrator
        self.secret = secret if secret is not None else settings.autentique_webhook_secret
        self.require_signature = (
            settings.autentique_require_signature if require_signature is None else require_signature
        )
        self.clock = clock

    def handle(self, raw_body: bytes, signature: Optional[str]) -> Tuple[int, Dict[str, Any]]:
        """
        Process one delivery and return the HTTP status and body to send
        back. Logical failures inside the orchestrator still answer 200.
        """
        start = time.perf_counter()
        data: Dict[str, Any] = {}
        try:
            data = self._parse(raw_body)
            self._record(WebhookLogStatus.RECEIVED, data)
            self.db.commit()

            if not verify_signature(raw_body, signature, self.secret, self.require_signature):
                raise SignatureVerificationException("Invalid signature")

            result = self.orchestrator.process_signature_webhook(data)
            processing_time_ms = elapsed_ms(start, time.perf_counter())
            self._record(
                WebhookLogStatus.PROCESSED,
                data,
                context={"processing_time_ms": processing_time_ms, "result": result.model_dump()},
                processing_time_ms=processing_time_ms,
            )
            self.db.commit()

            return 200, {
                "success": True,
                "message": "Webhook processed",
                "processing_time_ms": processing_time_ms,
            }
        except SignatureVerificationException as e:
            self.db.rollback()
            logger.warning("Autentique webhook rejected", event=data.get("event"), error=e.message)
            self._record_safely(WebhookLogStatus.REJECTED, data, e.message)
            return 401, {"success": False, "error": e.message}
        except Exception as e:
            self.db.rollback()
            message = e.message if isinstance(e, FormFlowBaseException) else str(e)
            logger.error(
                "Autentique webhook failed",
                event=data.get("event"),
                error=message,
                exc_info=not isinstance(e, FormFlowBaseException),
            )
            self._record_safely(WebhookLogStatus.ERROR, data, message)
            return 500, {"success": False, "error": message}

    def stats(self, days: int = 7) -> Dict[str, Any]:
        """Delivery counts and success rate over the last ``days``"""
        since = self.clock() - timedelta(days=days)
        window = (WebhookLog.integration == INTEGRATION, WebhookLog.created_at >= since)

        count = func.count(WebhookLog.id)
        grouped = self.db.execute(
            select(WebhookLog.status, WebhookLog.webhook_type, count)
            .where(*window)
            .group_by(WebhookLog.status, WebhookLog.webhook_type)
            .order_by(count.desc())
        ).all()
        total = self.db.execute(select(func.count(WebhookLog.id)).where(*window)).scalar_one()
        errors = self.db.execute(
            select(func.count(WebhookLog.id)).where(*window, WebhookLog.status.in_(FAILED_STATUSES))
        ).scalar_one()
        recent = self.db.execute(
            select(WebhookLog)
            .where(WebhookLog.integration == INTEGRATION)
            .order_by(WebhookLog.created_at.desc())
            .limit(10)
        ).scalars().all()

        return {
            "period_days": days,
            "total_webhooks": total,
            "errors": errors,
            "success_rate": round((total - errors) / total * 100, 2) if total else 100,
            "by_status": [
                {"status": status, "webhook_type": webhook_type, "count": deliveries}
                for status, webhook_type, deliveries in grouped
            ],
            "recent_webhooks": [log.to_dict() for log in recent],
        }

    def retry(self, webhook_id: str) -> Dict[str, Any]:
        """Re-run a delivery that previously failed or was rejected"""
        webhook = self.db.get(WebhookLog, webhook_id)
        if webhook is None:
            return {"success": False, "error": "Webhook not found"}
        if webhook.status not in FAILED_STATUSES:
            return {"success": False, "error": "Can only retry failed webhooks"}

        result = self.orchestrator.process_signature_webhook(webhook.payload or {})
        try:
            webhook.status = WebhookLogStatus.PROCESSED.value
            webhook.context = {"retried_at": self.clock().isoformat(), "result": result.model_dump()}
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not update retried webhook", webhook_id=webhook_id, error=str(e))
            return {"success": False, "error": str(e)}

        logger.info("Autentique webhook retried", webhook_id=webhook_id, error=result.error)
        return {"success": True, "result": result.model_dump()}

    def prune_older_than(self, days: Optional[int] = None) -> int:
        """Delete audit rows older than the retention window"""
        days = settings.webhook_retention_days if days is None else days
        before = self.clock() - timedelta(days=days)
        result = self.db.execute(
            delete(WebhookLog).where(
                WebhookLog.integration == INTEGRATION,
                WebhookLog.created_at < before,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Old webhook logs removed", removed=result.rowcount, retention_days=days)
        return result.rowcount

    # ==== Helpers ====

    @staticmethod
    def _parse(raw_body: bytes) -> Dict[str, Any]:
        try:
            data = json.loads(raw_body)
        except (TypeError, ValueError) as e:
            raise SubmissionValidationException("Invalid JSON payload") from e
        if not isinstance(data, dict):
            raise SubmissionValidationException("Invalid JSON payload")
        return data

    def _record(
        self,
        status: WebhookLogStatus,
        data: Dict[str, Any],
        error: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        processing_time_ms: Optional[float] = None,
    ) -> WebhookLog:
        event = data.get("event") or "unknown"
        log = WebhookLog(
            id=generate_uuid(),
            integration=INTEGRATION,
            webhook_type=str(event)[:64],
            status=status.value,
            payload=data,
            error=error,
            context=context,
            processing_time_ms=processing_time_ms,
            created_at=self.clock(),
        )
        self.db.add(log)

        submission_id = data.get("submission_id")
        activity_service.log(
            self.db,
            f"Autentique webhook {status.value}: {event}",
            ActivityCategory.WEBHOOK,
            level=ActivityLevel.ERROR if status.value in FAILED_STATUSES else ActivityLevel.INFO,
            submission_id=submission_id if isinstance(submission_id, str) else None,
            context={**data, **(context or {}), **({"error": error} if error else {})},
        )
        return log

    def _record_safely(self, status: WebhookLogStatus, data: Dict[str, Any], error: str) -> None:
        try:
            self._record(status, data, error=error)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Could not record webhook audit row", status=status.value, error=str(e))
