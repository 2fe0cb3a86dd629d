from .errors import (
    ProvisioningError,
    AdmissionError,
    AuthorizationError,
    ValidationError,
    ConflictError,
    UpstreamError,
    AccountNotFoundError,
)

__all__ = [
    'ProvisioningError',
    'AdmissionError',
    'AuthorizationError',
    'ValidationError',
    'ConflictError',
    'UpstreamError',
    'AccountNotFoundError',
]
