## formflow/audit_trail/schemas.py

# Standard library imports
from enum import Enum as PyEnum


class ActivityLevel(str, PyEnum):
    """Activity log severities"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ActivityCategory(str, PyEnum):
    """Where an activity originated"""
    PROCESSING = "processing"
    SIGNATURE = "signature"
    WEBHOOK = "webhook"
