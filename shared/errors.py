"""
Shared error handling for the Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class InvalidConditionError(AccessLayerException):
    """Condition tree is malformed."""

    def __init__(self, message: str = "Invalid condition", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_CONDITION", message, details)


class ClaimUndeterminedError(AccessLayerException):
    """No primary claim could be resolved for an access request."""

    def __init__(self, message: str = "Unable to determine claim for access request",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("CLAIM_UNDETERMINED", message, details)


class MissingPayloadError(AccessLayerException):
    """A response was submitted without a payload."""

    def __init__(self, message: str = "responsePayload required", details: Optional[Dict[str, Any]] = None):
        super().__init__("MISSING_PAYLOAD", message, details)


class NoResponseError(AccessLayerException):
    """Evaluation was requested before the subject responded."""

    def __init__(self, message: str = "No subject response available", details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_RESPONSE", message, details)


class NoCredentialError(AccessLayerException):
    """The response does not reference any usable credential."""

    def __init__(self, message: str = "No verifiable credential supplied in response",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_CREDENTIAL", message, details)


class NotFoundError(AccessLayerException):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Access request not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class CredentialNotFoundError(AccessLayerException):
    """Referenced credential does not exist in the credential store."""

    status_code = 404

    def __init__(self, message: str = "Credential not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("CREDENTIAL_NOT_FOUND", message, details)


class InvalidTransitionError(AccessLayerException):
    """Operation is not allowed from the entity's current state."""

    status_code = 409

    def __init__(self, message: str = "Transition not allowed", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_TRANSITION", message, details)


class ConflictError(AccessLayerException):
    """Entity changed since it was read; re-read and retry."""

    status_code = 409

    def __init__(self, message: str = "Access request was modified concurrently",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
