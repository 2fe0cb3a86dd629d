from enum import Enum


class CommunityType(str, Enum):
    cc = "cc"
    ug = "ug"
    cb = "cb"
    hero = "hero"


class CommunityKind(str, Enum):
    """How a community's addresses are named"""
    organization = "organization"
    person = "person"


class AuditAction(str, Enum):
    """Closed set of auditable actions"""
    TOKEN_VALIDATION_SUCCESS = "token_validation_success"
    TOKEN_VALIDATION_FAILED = "token_validation_failed"
    SECRET_ROTATED = "secret_rotated"
    REGISTRATION_SUCCESS = "registration_success"
    REGISTRATION_FAILED = "registration_failed"
    GROUP_PLACEMENT_FAILED = "group_placement_failed"
    AVATAR_SYNC_FAILED = "avatar_sync_failed"
    NOTIFICATION_FAILED = "notification_failed"
    ACCOUNT_DELETED = "account_deleted"
    ACCOUNT_DELETE_FAILED = "account_delete_failed"
    PROFILE_UPDATED = "profile_updated"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
