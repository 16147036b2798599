# formflow/esign/utils.py

import hashlib
import hmac
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from formflow.core.exceptions import SubmissionValidationException
from formflow.esign.schemas import Signer, SignerConfig
from formflow.utils.logger import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Autentique-Signature"


def compute_signature(raw: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body"""
    return hmac.new(secret.encode("utf-8"), raw, hashlib.sha256).hexdigest()


def verify_signature(
    raw: bytes,
    signature: Optional[str],
    secret: Optional[str],
    require_signature: bool = True,
) -> bool:
    """
    Authenticate an inbound webhook body.

    A missing header or a missing secret is only accepted when signatures
    are not required.
    """
    if not signature:
        return not require_signature
    if not secret:
        return not require_signature
    return hmac.compare_digest(compute_signature(raw, secret), signature.strip())


def extract_signers(data: Dict[str, Any], form_settings: Dict[str, Any]) -> List[Signer]:
    """
    Build the signer list from submission data using the form's field
    mappings. Signers without an email are dropped; at least one must remain.
    """
    signers: List[Signer] = []
    for raw_config in form_settings.get("autentique_signers") or []:
        try:
            config = SignerConfig.model_validate(raw_config)
        except ValidationError as e:
            logger.warning("Skipping invalid signer mapping", mapping=raw_config, error=str(e))
            continue

        email = data.get(config.email_field) or ""
        if not email:
            continue

        signer = Signer(
            email=str(email),
            name=str(data.get(config.name_field) or ""),
            action=config.action,
        )
        if config.phone_field and data.get(config.phone_field) is not None:
            signer.phone = str(data[config.phone_field])
        if config.cpf_field and data.get(config.cpf_field) is not None:
            signer.cpf = str(data[config.cpf_field])
        signers.append(signer)

    if not signers:
        raise SubmissionValidationException("No signers configured")
    return signers
