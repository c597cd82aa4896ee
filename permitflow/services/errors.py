"""Domain errors raised by the workflow services.

Each error carries a stable ``code`` and an HTTP ``status_code`` so the API
layer can render it in the standard envelope without a per-router mapping.
Messages for authorization and OTP failures are deliberately generic.
"""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    code: str = "workflow_error"
    status_code: int = 400
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class ValidationError(WorkflowError):
    code = "validation_error"
    status_code = 422
    default_message = "Validation failed"


class AuthorizationError(WorkflowError):
    code = "unauthorized_actor"
    status_code = 403
    default_message = "You are not authorized to act on this application at its current stage"


UnauthorizedActor = AuthorizationError


class InvalidOrExpiredOtp(WorkflowError):
    code = "invalid_or_expired_otp"
    status_code = 400
    default_message = "Invalid or expired OTP"


class StageMismatch(WorkflowError):
    code = "stage_mismatch"
    status_code = 409
    default_message = "Application is no longer at the expected stage; refresh and try again"


class TerminalStateViolation(WorkflowError):
    code = "terminal_state"
    status_code = 409
    default_message = "Application is in a terminal state and cannot be changed"


class RejectionNotAllowed(WorkflowError):
    code = "rejection_not_allowed"
    status_code = 409
    default_message = "Rejection is not available at the current stage"


class ApplicationNotFound(WorkflowError):
    code = "application_not_found"
    status_code = 404
    default_message = "Application not found"


class PaymentError(WorkflowError):
    code = "payment_invalid"
    status_code = 422
    default_message = "Payment could not be recorded"


class DownloadAccessDenied(WorkflowError):
    code = "download_access_denied"
    status_code = 400
    default_message = "Unable to verify the application details provided"


class OtpRequestLimitExceeded(WorkflowError):
    code = "otp_request_limit"
    status_code = 429
    default_message = "Too many OTP requests for today; try again tomorrow"


class TokenNotFound(WorkflowError):
    code = "token_not_found"
    status_code = 404
    default_message = "Download token not found"


class TokenExpired(WorkflowError):
    code = "token_expired"
    status_code = 410
    default_message = "Download token has expired; request a new OTP"


class DocumentNotAvailable(WorkflowError):
    code = "document_not_available"
    status_code = 404
    default_message = "Requested document is not available"


class OtpDispatchError(WorkflowError):
    code = "otp_dispatch_failed"
    status_code = 502
    default_message = "OTP could not be dispatched; try again shortly"


class SignatureInvalid(WorkflowError):
    code = "signature_invalid"
    status_code = 409
    default_message = "An approval signature on this application could not be verified"
