# formflow/esign/schemas.py

from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class WebhookEvent(str, Enum):
    """Provider callbacks the orchestrator reacts to"""
    DOCUMENT_SIGNED = "document.signed"
    DOCUMENT_COMPLETED = "document.completed"
    DOCUMENT_REFUSED = "document.refused"
    DOCUMENT_VIEWED = "document.viewed"


class WebhookLogStatus(str, Enum):
    """Audit states of an inbound webhook"""
    RECEIVED = "received"
    PROCESSED = "processed"
    REJECTED = "rejected"
    ERROR = "error"


class SignerConfig(BaseModel):
    """
    Maps submission fields onto a signer. Stored in the form settings
    under ``autentique_signers``.
    """
    model_config = ConfigDict(extra="ignore")

    email_field: str
    name_field: str
    phone_field: Optional[str] = None
    cpf_field: Optional[str] = None
    # sign, approve or acknowledge
    action: Literal["sign", "approve", "acknowledge"] = "sign"


class Signer(BaseModel):
    """A party sent to the provider"""
    email: str
    name: str = ""
    action: str = "sign"
    phone: Optional[str] = None
    cpf: Optional[str] = None


class WebhookPayload(BaseModel):
    """Inbound provider callback; unknown keys are kept"""
    model_config = ConfigDict(extra="allow")

    event: Optional[str] = None
    document_id: Optional[str] = None
    signer: Optional[Dict[str, Any]] = None
    all_signed: bool = False
    signed_at: Optional[str] = None
    reason: Optional[str] = None
    viewer_email: Optional[str] = None

    @field_validator("document_id", mode="before")
    @classmethod
    def document_id_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("all_signed", mode="before")
    @classmethod
    def missing_flag_is_false(cls, value: Any) -> Any:
        return False if value is None else value


class SignatureResult(BaseModel):
    """Outcome of an orchestrator operation"""
    success: bool
    document_id: Optional[str] = None
    submission_id: Optional[str] = None
    status: Optional[str] = None
    file_url: Optional[str] = None
    file_path: Optional[str] = None
    message: str = ""
    error: Optional[str] = None


class WebhookResult(BaseModel):
    """Acknowledgement for the provider. ``success`` is always true."""
    success: bool = True
    message: str = "Webhook processed"
    error: Optional[str] = None
