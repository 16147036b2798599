# formflow/esign/models.py

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Float, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from formflow.core.db import Base
from formflow.utils.general import utcnow


class WebhookLog(Base):
    """
    Audit row for every inbound provider callback and what became of it.
    """
    __tablename__ = "webhook_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    integration: Mapped[str] = mapped_column(String(32), default="autentique", index=True)
    # Event name from the payload, e.g. document.signed
    webhook_type: Mapped[str] = mapped_column(String(64), default="unknown")
    # received, processed, rejected or error
    status: Mapped[str] = mapped_column(String(16), index=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    context: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    processing_time_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "integration": self.integration,
            "webhook_type": self.webhook_type,
            "status": self.status,
            "payload": self.payload,
            "error": self.error,
            "context": self.context,
            "processing_time_ms": self.processing_time_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<WebhookLog(id={self.id}, webhook_type={self.webhook_type}, status={self.status})>"
