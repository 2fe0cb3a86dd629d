"""
Provisioning error taxonomy.

Every failure surfaced to a caller is a ProvisioningError carrying:
- kind: admission, authorization, validation, conflict, upstream, not_found
- reason: short machine tag, also written to the audit log
- status_code: HTTP status the API renders it with
"""

from typing import Any, Dict, Optional

from services.rate_limit import AdmissionDecision


class ProvisioningError(Exception):
    """Base class for provisioning failures"""
    kind = "upstream"
    status_code = 500
    default_reason = "internal_error"

    def __init__(self, message: str, reason: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.default_reason
        self.detail = dict(detail or {})

    @property
    def headers(self) -> Dict[str, str]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.reason, "message": self.message, "kind": self.kind}


class AdmissionError(ProvisioningError):
    """Rate budget exceeded; retryable after the window resets"""
    kind = "admission"
    status_code = 429
    default_reason = "rate_limited"

    def __init__(self, decision: AdmissionDecision, message: str = "Too many requests. Please try again later."):
        super().__init__(message)
        self.decision = decision

    @property
    def headers(self) -> Dict[str, str]:
        headers = self.decision.headers()
        headers["Retry-After"] = str(self.decision.retry_after())
        return headers

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.decision.retry_after()
        return data


class AuthorizationError(ProvisioningError):
    """Missing or wrong membership secret, or caller lacks the capability"""
    kind = "authorization"
    status_code = 403
    default_reason = "invalid_token"


class ValidationError(ProvisioningError):
    """Malformed input; the caller must fix it and resubmit"""
    kind = "validation"
    status_code = 400
    default_reason = "invalid_input"


class ConflictError(ProvisioningError):
    """Address already taken locally or remotely"""
    kind = "conflict"
    status_code = 409
    default_reason = "email_taken"


class UpstreamError(ProvisioningError):
    """Remote provider or persistence failure on a fatal step"""
    kind = "upstream"
    status_code = 502
    default_reason = "provisioning_failed"


class AccountNotFoundError(ProvisioningError):
    kind = "not_found"
    status_code = 404
    default_reason = "account_not_found"
