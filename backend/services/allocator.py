"""
Address Allocator

Produces the local-part and full address for a new account.

Two modes, picked by community kind:
- Derived (person types): first letter of the given name + the family name,
  both folded to lowercase ASCII letters
- Manual (organization types): supplied by the caller, ``[a-z0-9]+`` and at
  least 2 characters

Availability is an exact lookup on accounts.email. It is advisory only; the
unique constraint on that column settles races at insert time.
"""

import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import ProvisioningConfig
from models.enums import CommunityType
from models.schemas import UsernameAvailability
from provisioning.errors import ConflictError, ValidationError
from services.accounts import AccountRepository

logger = logging.getLogger(__name__)

MANUAL_LOCAL_PART = re.compile(r"^[a-z0-9]+$")
MIN_LOCAL_PART_LENGTH = 2
MAX_LOCAL_PART_LENGTH = 64  # RFC 5321

REASON_INVALID_NAME = "invalid_name"
REASON_INVALID_FORMAT = "invalid_format"
REASON_EMAIL_TAKEN = "email_taken"


def normalize_name(value: Optional[str]) -> str:
    """
    Fold a name to lowercase ASCII letters.

    "Ñúñez-Ávila" -> "nunezavila"
    """
    decomposed = unicodedata.normalize("NFKD", value or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^a-z]", "", stripped.lower())


def derive_local_part(given_name: Optional[str], family_name: Optional[str]) -> str:
    given = normalize_name(given_name)
    family = normalize_name(family_name)
    if not given or not family:
        raise ValidationError(
            "Given and family name must contain at least one letter",
            reason=REASON_INVALID_NAME,
        )
    return given[0] + family


def validate_manual_local_part(candidate: Optional[str], prefix: str = "") -> str:
    candidate = candidate or ""
    if not MANUAL_LOCAL_PART.fullmatch(candidate):
        raise ValidationError(
            "Username can only contain lowercase letters and numbers",
            reason=REASON_INVALID_FORMAT,
        )
    if len(candidate) < MIN_LOCAL_PART_LENGTH:
        raise ValidationError(
            f"Username must be at least {MIN_LOCAL_PART_LENGTH} characters",
            reason=REASON_INVALID_FORMAT,
        )
    if len(prefix + candidate) > MAX_LOCAL_PART_LENGTH:
        raise ValidationError(
            f"Username must be at most {MAX_LOCAL_PART_LENGTH - len(prefix)} characters",
            reason=REASON_INVALID_FORMAT,
        )
    return candidate


@dataclass(frozen=True)
class Allocation:
    local_part: str
    email: str


class Allocator:
    """
    Usage:
        allocator = Allocator(db, config)
        allocation = await allocator.allocate(CommunityType.cb, None, "David", "Victoria")
        # allocation.email == "cb.dvictoria@awscommunity.mx"
    """

    def __init__(self, db: AsyncSession, config: ProvisioningConfig, accounts: Optional[AccountRepository] = None):
        self.config = config
        self.accounts = accounts or AccountRepository(db)

    def candidate(
        self,
        community_type: CommunityType,
        username: Optional[str] = None,
        primary_name: Optional[str] = None,
        secondary_name: Optional[str] = None,
    ) -> Allocation:
        """
        Compute the address without touching storage.

        Person types always derive from the names; a supplied username is
        ignored for them.
        """
        profile = self.config.community(community_type)
        if profile.is_person:
            local_part = derive_local_part(primary_name, secondary_name)
            if len(profile.prefix + local_part) > MAX_LOCAL_PART_LENGTH:
                raise ValidationError("Derived username is too long", reason=REASON_INVALID_NAME)
        else:
            local_part = validate_manual_local_part(username, profile.prefix)
        return Allocation(local_part=local_part, email=self.config.full_email(community_type, local_part))

    async def is_available(self, email: str) -> bool:
        return not await self.accounts.email_exists(email)

    async def allocate(
        self,
        community_type: CommunityType,
        username: Optional[str] = None,
        primary_name: Optional[str] = None,
        secondary_name: Optional[str] = None,
    ) -> Allocation:
        """Compute the address and reject it if already registered locally"""
        allocation = self.candidate(community_type, username, primary_name, secondary_name)
        if not await self.is_available(allocation.email):
            raise ConflictError(
                f"{allocation.email} is already registered",
                reason=REASON_EMAIL_TAKEN,
                detail={"local_part": allocation.local_part, "email": allocation.email},
            )
        return allocation

    async def check_username(self, community_type: CommunityType, username: str) -> UsernameAvailability:
        """Format and availability check for a manually chosen local-part"""
        profile = self.config.community(community_type)
        try:
            local_part = validate_manual_local_part(username, profile.prefix)
        except ValidationError as e:
            return UsernameAvailability(username=username, available=False, error=e.message)

        email = self.config.full_email(community_type, local_part)
        return UsernameAvailability(
            username=local_part,
            email=email,
            available=await self.is_available(email),
        )

    async def derive_username(
        self,
        community_type: CommunityType,
        primary_name: str,
        secondary_name: str,
    ) -> UsernameAvailability:
        """Preview the derived local-part for a person-type registration"""
        if not self.config.community(community_type).is_person:
            return UsernameAvailability(available=False, error="Usernames are chosen manually for this community type")
        try:
            allocation = self.candidate(CommunityType(community_type), None, primary_name, secondary_name)
        except ValidationError as e:
            return UsernameAvailability(available=False, error=e.message)

        return UsernameAvailability(
            username=allocation.local_part,
            email=allocation.email,
            available=await self.is_available(allocation.email),
        )
