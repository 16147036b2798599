# formflow/queue/schemas.py

from enum import Enum, IntEnum
from typing import Dict, FrozenSet


class JobType(str, Enum):
    """Deferred work produced by ingestion and signature orchestration"""
    GENERATE_PDF = "generate_pdf"
    SEND_AUTENTIQUE = "send_autentique"
    SEND_EMAIL = "send_email"
    AUTENTIQUE_STATUS_CHECK = "autentique_status_check"
    AUTENTIQUE_DOWNLOAD = "autentique_download"


class JobStatus(str, Enum):
    """Queue row states"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobPriority(IntEnum):
    """Higher runs first"""
    LOW = 10
    MEDIUM = 50
    HIGH = 80


# Keys each payload must carry for its consumer
JOB_PAYLOAD_KEYS: Dict[JobType, FrozenSet[str]] = {
    JobType.GENERATE_PDF: frozenset({"submission_id", "template_id"}),
    JobType.SEND_AUTENTIQUE: frozenset({"submission_id"}),
    JobType.SEND_EMAIL: frozenset({"submission_id", "template_id"}),
    JobType.AUTENTIQUE_STATUS_CHECK: frozenset({"document_id"}),
    JobType.AUTENTIQUE_DOWNLOAD: frozenset({"document_id"}),
}

SIGNATURE_JOB_TYPES = (
    JobType.SEND_AUTENTIQUE,
    JobType.AUTENTIQUE_STATUS_CHECK,
    JobType.AUTENTIQUE_DOWNLOAD,
)

STATUS_CHECK_DELAY_SECONDS = 300
