# formflow/submissions/schemas.py

"""
Pydantic schemas and state definitions for submissions
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from pydantic import BaseModel, Field


class SubmissionStatus(str, Enum):
    """Lifecycle states of a submission"""
    PENDING = "pending"
    PENDING_SIGNATURE = "pending_signature"
    FULLY_SIGNED = "fully_signed"
    SIGNATURE_REFUSED = "signature_refused"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward-only graph. Terminal states map to an empty set.
ALLOWED_TRANSITIONS: Dict[SubmissionStatus, FrozenSet[SubmissionStatus]] = {
    SubmissionStatus.PENDING: frozenset({
        SubmissionStatus.PENDING_SIGNATURE,
        SubmissionStatus.COMPLETED,
        SubmissionStatus.FAILED,
    }),
    SubmissionStatus.PENDING_SIGNATURE: frozenset({
        SubmissionStatus.FULLY_SIGNED,
        SubmissionStatus.SIGNATURE_REFUSED,
        SubmissionStatus.COMPLETED,
        SubmissionStatus.FAILED,
    }),
    SubmissionStatus.FULLY_SIGNED: frozenset({
        SubmissionStatus.COMPLETED,
        SubmissionStatus.FAILED,
    }),
    SubmissionStatus.SIGNATURE_REFUSED: frozenset({
        SubmissionStatus.COMPLETED,
        SubmissionStatus.FAILED,
    }),
    SubmissionStatus.COMPLETED: frozenset(),
    SubmissionStatus.FAILED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Check the transition graph for a move from current to target"""
    try:
        return SubmissionStatus(target) in ALLOWED_TRANSITIONS[SubmissionStatus(current)]
    except ValueError:
        return False


class ClientContext(BaseModel):
    """Request-derived client details captured with a submission."""
    ip_address: str = "0.0.0.0"
    user_agent: str = ""
    referrer_url: Optional[str] = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        remote_addr: Optional[str] = None,
    ) -> "ClientContext":
        """
        Resolve the client IP as trusted proxy header, then the first
        forwarded-for entry, then the peer address.
        """
        lowered = {k.lower(): v for k, v in (headers or {}).items()}

        ip_address = None
        for candidate in (lowered.get("cf-connecting-ip"), lowered.get("x-forwarded-for"), remote_addr):
            if candidate and candidate.strip():
                ip_address = candidate.split(",")[0].strip()
                if ip_address:
                    break

        user_agent = (lowered.get("user-agent") or "")[:500]
        referrer = lowered.get("referer") or lowered.get("referrer") or None

        return cls(
            ip_address=ip_address or "0.0.0.0",
            user_agent=user_agent,
            referrer_url=referrer,
        )


class SubmissionResult(BaseModel):
    """Outcome of the ingestion pipeline"""
    success: bool
    submission_id: Optional[str] = None
    status: SubmissionStatus
    message: str = ""
    error: Optional[str] = None


class SubmissionCreateRequest(BaseModel):
    """Body of the public submission endpoint"""
    data: Dict[str, Any]
    meta: Dict[str, Any] = Field(default_factory=dict)
