# formflow/core/mixins.py

from sqlalchemy import Column, DateTime
from sqlalchemy.ext.declarative import declared_attr

from formflow.utils.general import utcnow


class AuditMixin:
    """Mixin for auditing fields."""

    @declared_attr
    def created_on(cls):
        """
        Column for the timestamp when this record was created
        """
        return Column(
            DateTime(timezone=True),
            default=utcnow,
            nullable=False,
            comment="Timestamp when this record was created",
        )

    @declared_attr
    def updated_on(cls):
        """
        Column for the timestamp when this record was last updated
        """
        return Column(
            DateTime(timezone=True),
            onupdate=utcnow,
            nullable=True,
            comment="Timestamp when this record was last updated",
        )
