# formflow/forms/repository.py

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from formflow.forms.models import Form, FormStatus


class FormRepository:
    """Data access for form configuration."""

    def __init__(self, db: Session):
        self.db = db

    def get_form(self, form_id) -> Optional[Form]:
        """Get a form regardless of its status."""
        stmt = select(Form).where(Form.id == form_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_active_form(self, form_id) -> Optional[Form]:
        """Get a form only if it accepts submissions."""
        stmt = select(Form).where(Form.id == form_id, Form.status == FormStatus.ACTIVE)
        return self.db.execute(stmt).scalar_one_or_none()
