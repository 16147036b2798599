## formflow/audit_trail/services.py

# Standard library imports
import json
from typing import Any, Dict, List, Optional

# Third party imports
from sqlalchemy import asc, select
from sqlalchemy.orm import Session

# Local imports
from formflow.audit_trail.models import ActivityLog
from formflow.audit_trail.schemas import ActivityCategory, ActivityLevel
from formflow.utils.logger import get_logger

logger = get_logger(__name__)


class ActivityLogService:
    """Service for activity log operations"""

    def log(
        self,
        db: Session,
        message: str,
        category: ActivityCategory,
        level: ActivityLevel = ActivityLevel.INFO,
        submission_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ActivityLog:
        """Add an activity row to the session; the caller commits"""
        entry = ActivityLog(
            submission_id=submission_id,
            level=ActivityLevel(level).value,
            category=ActivityCategory(category).value,
            message=message,
            # round trip keeps datetimes and other objects JSON safe
            context=json.loads(json.dumps(context or {}, default=str)),
        )
        db.add(entry)
        db.flush()
        return entry

    def get_activity_by_submission(self, db: Session, submission_id: str) -> List[ActivityLog]:
        """Get activity for a submission in chronological order"""
        try:
            stmt = (
                select(ActivityLog)
                .where(ActivityLog.submission_id == submission_id)
                .order_by(asc(ActivityLog.created_at), asc(ActivityLog.id))
            )
            return db.execute(stmt).scalars().all()
        except Exception as e:
            logger.error("Error getting activity by submission", submission_id=submission_id, error=str(e))
            raise e

    def get_activity_by_category(self, db: Session, category: ActivityCategory) -> List[ActivityLog]:
        """Get activity for a category in chronological order"""
        try:
            stmt = (
                select(ActivityLog)
                .where(ActivityLog.category == ActivityCategory(category).value)
                .order_by(asc(ActivityLog.created_at), asc(ActivityLog.id))
            )
            return db.execute(stmt).scalars().all()
        except Exception as e:
            logger.error("Error getting activity by category", category=str(category), error=str(e))
            raise e


activity_service = ActivityLogService()
