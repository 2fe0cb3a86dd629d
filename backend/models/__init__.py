from .enums import CommunityType, CommunityKind, AuditAction, AuditSeverity
from .community import CommunityProfile, DEFAULT_COMMUNITIES, apply_overrides
from .schemas import (
    VerifySecretRequest, VerifySecretResponse,
    UsernameCheckRequest, DeriveUsernameRequest, UsernameAvailability,
    RegistrationRequest, RegistrationResponse,
    ProfilePatch, AccountResponse, AccountPage, DeleteAccountResponse,
    SecretStatus, SecretRotationResponse,
    SOCIAL_FIELDS, PERSON_ONLY_FIELDS, PROFILE_FIELDS,
)

__all__ = [
    'CommunityType', 'CommunityKind', 'AuditAction', 'AuditSeverity',
    'CommunityProfile', 'DEFAULT_COMMUNITIES', 'apply_overrides',
    'VerifySecretRequest', 'VerifySecretResponse',
    'UsernameCheckRequest', 'DeriveUsernameRequest', 'UsernameAvailability',
    'RegistrationRequest', 'RegistrationResponse',
    'ProfilePatch', 'AccountResponse', 'AccountPage', 'DeleteAccountResponse',
    'SecretStatus', 'SecretRotationResponse',
    'SOCIAL_FIELDS', 'PERSON_ONLY_FIELDS', 'PROFILE_FIELDS',
]
