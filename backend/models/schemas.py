from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import CommunityType


SOCIAL_FIELDS = ("linkedin", "twitter", "github", "instagram", "facebook", "youtube", "website")
PERSON_ONLY_FIELDS = ("company", "job_title")
PROFILE_FIELDS = ("bio", "location", "avatar") + PERSON_ONLY_FIELDS + SOCIAL_FIELDS


# ==================== SECRET VERIFICATION ====================
class VerifySecretRequest(BaseModel):
    type: CommunityType
    token: str = Field(..., min_length=1, max_length=200)


class VerifySecretResponse(BaseModel):
    valid: bool


# ==================== USERNAME ALLOCATION ====================
class UsernameCheckRequest(BaseModel):
    type: CommunityType
    username: str = Field(..., max_length=100)


class DeriveUsernameRequest(BaseModel):
    type: CommunityType
    primary_name: str = Field(..., max_length=100)
    secondary_name: str = Field(..., max_length=100)


class UsernameAvailability(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    available: bool
    error: Optional[str] = None


# ==================== REGISTRATION ====================
class RegistrationRequest(BaseModel):
    """
    Registration payload.

    Field presence and formats are checked by the provisioning pipeline
    (after the secret is verified) rather than here, so that every rejected
    attempt is audited.
    """
    type: CommunityType
    token: str = Field(..., max_length=200)
    username: Optional[str] = Field(None, max_length=100, description="Local-part for organization types")
    # Organization name for org types, given name for person types
    primary_name: Optional[str] = Field(None, max_length=100)
    # Contact name for org types, family name for person types
    secondary_name: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    contact_email: Optional[str] = Field(None, max_length=255)

    bio: Optional[str] = Field(None, max_length=2000)
    location: Optional[str] = Field(None, max_length=100)
    company: Optional[str] = Field(None, max_length=100)
    job_title: Optional[str] = Field(None, max_length=100)
    avatar: Optional[str] = Field(None, description="Image as a data URL")

    linkedin: Optional[str] = Field(None, max_length=255)
    twitter: Optional[str] = Field(None, max_length=255)
    github: Optional[str] = Field(None, max_length=255)
    instagram: Optional[str] = Field(None, max_length=255)
    facebook: Optional[str] = Field(None, max_length=255)
    youtube: Optional[str] = Field(None, max_length=255)
    website: Optional[str] = Field(None, max_length=255)

    def profile_values(self) -> Dict[str, Any]:
        return {name: getattr(self, name) or None for name in PROFILE_FIELDS if name != "avatar"}


class RegistrationResponse(BaseModel):
    success: bool = True
    email: str
    temp_password: str
    added_to_group: bool
    notification_sent: bool


# ==================== PROFILE ====================
class ProfilePatch(BaseModel):
    """
    Partial profile update.

    Fields that are not sent are left untouched; fields sent as null are
    cleared. Use ``changes()`` to get exactly what the caller set.
    """
    model_config = ConfigDict(extra="forbid")

    bio: Optional[str] = Field(None, max_length=2000)
    location: Optional[str] = Field(None, max_length=100)
    company: Optional[str] = Field(None, max_length=100)
    job_title: Optional[str] = Field(None, max_length=100)
    avatar: Optional[str] = None
    linkedin: Optional[str] = Field(None, max_length=255)
    twitter: Optional[str] = Field(None, max_length=255)
    github: Optional[str] = Field(None, max_length=255)
    instagram: Optional[str] = Field(None, max_length=255)
    facebook: Optional[str] = Field(None, max_length=255)
    youtube: Optional[str] = Field(None, max_length=255)
    website: Optional[str] = Field(None, max_length=255)

    def changes(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in self.model_fields_set}


# ==================== ACCOUNTS ====================
class AccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    community_type: str
    local_part: str
    primary_name: str
    secondary_name: Optional[str] = None
    phone: Optional[str] = None
    contact_email: str
    provider_display_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    bio: Optional[str] = None
    location: Optional[str] = None
    avatar: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    linkedin: Optional[str] = None
    twitter: Optional[str] = None
    github: Optional[str] = None
    instagram: Optional[str] = None
    facebook: Optional[str] = None
    youtube: Optional[str] = None
    website: Optional[str] = None


class AccountPage(BaseModel):
    accounts: List[AccountResponse]
    total: int
    page: int
    total_pages: int


class DeleteAccountResponse(BaseModel):
    success: bool = True
    email: str
    remote_already_absent: bool


# ==================== SECRETS ====================
class SecretStatus(BaseModel):
    type: CommunityType
    label: str
    configured: bool
    updated_at: Optional[datetime] = None


class SecretRotationResponse(BaseModel):
    success: bool = True
    type: CommunityType
    token: str = Field(..., description="Plaintext secret; shown only once")
