# formflow/forms/models.py

from typing import Any, Dict, Optional

from sqlalchemy import Boolean, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from formflow.core.db import Base
from formflow.core.mixins import AuditMixin


class FormStatus:
    """Form availability states"""
    ACTIVE = "active"
    INACTIVE = "inactive"


class Form(Base, AuditMixin):
    """
    Form configuration. Owned by the configuration admin and read-mostly
    from the submission pipeline.
    """
    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), comment="Display name of the form")
    status: Mapped[str] = mapped_column(String(16), default=FormStatus.ACTIVE, index=True, comment="active or inactive")
    autentique_enabled: Mapped[bool] = mapped_column(Boolean, default=False, comment="Form level switch for digital signatures")
    settings: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, comment="Arbitrary configuration including signer mappings")
    pdf_template_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, comment="PDF template reference")
    email_template_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, comment="Email template reference")

    @property
    def is_active(self) -> bool:
        """Whether the form accepts submissions"""
        return self.status == FormStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        """
        Cacheable snapshot of the form
        """
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "autentique_enabled": bool(self.autentique_enabled),
            "settings": dict(self.settings or {}),
            "pdf_template_id": self.pdf_template_id,
            "email_template_id": self.email_template_id,
        }

    def __repr__(self) -> str:
        return f"<Form(id={self.id}, name={self.name}, status={self.status})>"
