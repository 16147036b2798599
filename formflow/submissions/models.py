# formflow/submissions/models.py

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, LargeBinary, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formflow.core.db import Base
from formflow.core.mixins import AuditMixin
from formflow.submissions.schemas import SubmissionStatus


class Submission(Base, AuditMixin):
    """
    One persisted instance of form data submitted by an end user.

    Rows are created once by the ingestion pipeline and afterwards only
    change through status transitions guarded by ``version``.
    """
    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="UUIDv4 submission id")
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)
    status: Mapped[str] = mapped_column(String(32), default=SubmissionStatus.PENDING.value, index=True)

    payload: Mapped[bytes] = mapped_column(LargeBinary, comment="JSON payload, zlib compressed when payload_compressed is set")
    payload_compressed: Mapped[bool] = mapped_column(Boolean, default=False)

    ip_address: Mapped[str] = mapped_column(String(45), default="0.0.0.0")
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    referrer_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_time_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False, comment="Optimistic concurrency counter")

    meta: Mapped[List["SubmissionMeta"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Submission(id={self.id}, form_id={self.form_id}, status={self.status})>"


class SubmissionMeta(Base, AuditMixin):
    """Append-mostly key/value entries attached to a submission."""
    __tablename__ = "submission_meta"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(ForeignKey("submissions.id"), index=True)
    meta_key: Mapped[str] = mapped_column(String(255), index=True)
    meta_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submission: Mapped["Submission"] = relationship(back_populates="meta")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "meta_key": self.meta_key,
            "meta_value": self.meta_value,
        }
