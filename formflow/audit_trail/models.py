## formflow/audit_trail/models.py

# Standard library imports
from datetime import datetime
from typing import Any, Dict, Optional

# Third party imports
from sqlalchemy import DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

# Local imports
from formflow.core.db import Base
from formflow.audit_trail.schemas import ActivityLevel
from formflow.utils.general import utcnow


class ActivityLog(Base):
    """General activity log mirrored by ingestion, signatures and webhooks"""
    __tablename__ = "activity_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    submission_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    level: Mapped[str] = mapped_column(String(16), default=ActivityLevel.INFO.value)
    category: Mapped[str] = mapped_column(String(32), index=True)
    message: Mapped[str] = mapped_column(Text)
    context: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id}, category={self.category}, level={self.level})>"
