# formflow/core/exceptions.py

"""
Exception hierarchy shared by the ingestion pipeline, the cache,
the job queue and the signature orchestration.
"""

from typing import Optional

from fastapi import HTTPException, status


class FormFlowBaseException(Exception):
    """Base exception for all FormFlow errors."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class SubmissionValidationException(FormFlowBaseException):
    """Raised when submitted data or form configuration is invalid."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(FormFlowBaseException):
    """Raised when a form, submission or document cannot be resolved."""
    status_code = status.HTTP_404_NOT_FOUND


class FormNotFoundException(NotFoundException):
    """Raised when a form is missing or inactive."""
    def __init__(self, form_id):
        super().__init__(
            f"Form {form_id} not found or inactive", {"form_id": form_id}
        )


class SubmissionNotFoundException(NotFoundException):
    """Raised when a submission id does not resolve."""
    def __init__(self, submission_id: Optional[str] = None, document_id: Optional[str] = None):
        msg = f"Submission {submission_id} not found" if submission_id else \
              f"Submission not found for document {document_id}"
        super().__init__(msg, {"submission_id": submission_id, "document_id": document_id})


class DocumentNotFoundException(NotFoundException):
    """Raised when a provider document cannot be resolved."""
    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} not found", {"document_id": document_id})


class ExternalServiceException(FormFlowBaseException):
    """Raised on non-2xx responses or network failures from the signature provider."""
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, provider_status: Optional[int] = None):
        super().__init__(message, {"provider_status": provider_status})
        self.provider_status = provider_status


class PersistenceException(FormFlowBaseException):
    """Raised when a storage write fails."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class SignatureVerificationException(FormFlowBaseException):
    """Raised when an inbound webhook HMAC is missing or invalid."""
    status_code = status.HTTP_401_UNAUTHORIZED


class InvalidStatusTransitionException(FormFlowBaseException):
    """Raised when a submission status change would move backward or sideways."""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_state: str, attempted_state: str):
        msg = f"Cannot transition from {current_state} to {attempted_state}"
        super().__init__(
            msg, {"current_state": current_state, "attempted_state": attempted_state}
        )


class ConcurrentUpdateException(FormFlowBaseException):
    """Raised when a row changed underneath an optimistic update."""
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, entity: str, entity_id: str):
        super().__init__(
            f"{entity} {entity_id} was modified concurrently",
            {"entity": entity, "entity_id": entity_id},
        )


def convert_to_http_exception(exc: Exception) -> HTTPException:
    """
    Convert a FormFlow exception to an HTTPException with its status code.

    Args:
        exc: The exception to convert

    Returns:
        HTTPException with appropriate status code and detail
    """
    if isinstance(exc, FormFlowBaseException):
        return HTTPException(
            status_code=exc.status_code,
            detail={"message": exc.message, "details": exc.details},
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": str(exc), "details": {}},
    )
