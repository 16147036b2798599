# formflow/cache/models.py

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from formflow.core.db import Base
from formflow.utils.general import utcnow


class CacheEntry(Base):
    """
    Durable copy of a cache entry. This tier is authoritative; Redis and
    the in-process map are rebuilt from it on demand.
    """
    __tablename__ = "cache_entries"

    cache_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    cache_value: Mapped[str] = mapped_column(Text, comment="Tagged envelope, see formflow.cache.envelope")
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<CacheEntry(cache_key={self.cache_key}, expires_at={self.expires_at})>"
