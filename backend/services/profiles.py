"""
Member profile read and partial update.

Updates take a ProfilePatch: fields the caller did not send are left
untouched, fields sent as null are cleared. A changed avatar goes through
the same best-effort directory sync as registration.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import ProvisioningConfig
from database.models import AccountDB
from directory.client import DirectoryClient
from directory.photos import InvalidAvatarError, parse_data_url, sync_photo
from models.enums import AuditAction, AuditSeverity
from models.schemas import PERSON_ONLY_FIELDS, ProfilePatch
from provisioning.errors import AccountNotFoundError, ValidationError
from services.accounts import AccountRepository
from services.audit import AuditLogger

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(
        self,
        db: AsyncSession,
        config: ProvisioningConfig,
        directory: Optional[DirectoryClient] = None,
    ):
        self.config = config
        self.directory = directory
        self.accounts = AccountRepository(db)
        self.audit = AuditLogger(db)

    async def get_profile(self, email: str) -> AccountDB:
        account = await self.accounts.get_by_email((email or "").strip().lower())
        if account is None:
            raise AccountNotFoundError("No account is registered for this user", reason="profile_not_found")
        return account

    async def update_profile(
        self,
        email: str,
        patch: ProfilePatch,
        source_address: Optional[str] = None,
    ) -> AccountDB:
        account = await self.get_profile(email)
        changes = patch.changes()

        profile = self.config.community(account.community_type)
        if profile.is_organization:
            rejected = [name for name in PERSON_ONLY_FIELDS if changes.get(name)]
            if rejected:
                raise ValidationError(
                    f"{', '.join(rejected)} only apply to person community types",
                    reason="invalid_input",
                )

        detail = {}
        if changes.get("avatar") and changes["avatar"] != account.avatar:
            try:
                photo = parse_data_url(changes["avatar"], self.config.avatar_max_bytes)
            except InvalidAvatarError as e:
                raise ValidationError(str(e), reason="invalid_input")

            if self.directory is not None:
                result = await sync_photo(self.directory, account.email, changes["avatar"], photo)
                changes["avatar"] = result.avatar
                detail["avatar_synced"] = result.synced
                if not result.synced:
                    await self.audit.record(
                        AuditAction.AVATAR_SYNC_FAILED,
                        actor=account.email,
                        details={"email": account.email, "stage": result.stage, "provider_error": result.error},
                        source_address=source_address,
                        severity=AuditSeverity.WARNING,
                    )

        changed_fields = sorted(name for name, value in changes.items() if getattr(account, name) != value)
        if not changed_fields:
            return account

        account = await self.accounts.update(account, {name: changes[name] for name in changed_fields})
        await self.audit.record(
            AuditAction.PROFILE_UPDATED,
            actor=account.email,
            details={"email": account.email, "fields": changed_fields, **detail},
            source_address=source_address,
        )
        logger.info(f"Profile updated for {account.email}: {changed_fields}")
        return account
