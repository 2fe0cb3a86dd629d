"""
Provisioning Orchestrator

Registration pipeline:
 1. admit          rate limit by client address (not audited)
 2. verify         membership secret for the community type
 3. validate       required fields per community kind, contact email, avatar
 4. allocate       derive or validate the local-part; reject if taken locally
 5. remote_check   reject if the address already exists in the directory
 6. remote_create  create the user (retry once without an invalid org unit)
 7. group          add to the community group              (best-effort)
 8. avatar         upload, read back the processed photo   (best-effort)
 9. persist        insert the account row
10. notify         welcome message to the contact address   (best-effort)
11. respond        address + one-time password, returned once

Steps 2-9 run through ``run_steps``. A fatal step writes exactly one
``registration_failed`` entry; otherwise one ``registration_success`` entry
is written after step 9. Degraded steps add their own warning entries.

If step 9 fails, the directory user created in step 6 has no local record.
That orphan is flagged in the audit entry (``orphaned_remote_identity``) and
left for an operator.

Deprovisioning deletes the directory user first and the local row second,
so a retry after a partial failure converges on the same end state.
"""

import logging
from typing import List, Optional, Union

from email_validator import EmailNotValidError, validate_email
from passlib.context import CryptContext
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import ProvisioningConfig
from directory.client import DirectoryClient, DirectoryError, DirectoryErrorCode
from directory.naming import format_workspace_name
from directory.photos import InvalidAvatarError, parse_data_url, sync_photo
from models.enums import AuditAction, AuditSeverity, CommunityType
from models.schemas import (
    PERSON_ONLY_FIELDS,
    AccountPage,
    AccountResponse,
    DeleteAccountResponse,
    RegistrationRequest,
    RegistrationResponse,
    SecretRotationResponse,
    SecretStatus,
    UsernameAvailability,
)
from notifications.welcome import WelcomeNotifier
from services.accounts import AccountRepository, DuplicateAccountError
from services.allocator import Allocator
from services.audit import AuditLogFilter, AuditLogger, AuditLogPage
from services.rate_limit import AdmissionLimiter, AdmissionTier
from services.secret_store import REASON_NOT_CONFIGURED, SecretStore
from .errors import (
    AccountNotFoundError,
    AdmissionError,
    AuthorizationError,
    ConflictError,
    ProvisioningError,
    UpstreamError,
    ValidationError,
)
from .steps import REASON_INTERNAL_ERROR, RegistrationContext, StepResult, run_steps

logger = logging.getLogger(__name__)

REASON_INVALID_TOKEN = "invalid_token"
REASON_INVALID_INPUT = "invalid_input"
REASON_EMAIL_EXISTS_REMOTELY = "email_exists_remotely"
REASON_REMOTE_CHECK_FAILED = "remote_check_failed"
REASON_PROVISIONING_FAILED = "provisioning_failed"
REASON_EMAIL_TAKEN = "email_taken"
REASON_PERSISTENCE_FAILED = "persistence_failed"

_DEGRADED_ACTIONS = {
    "group": AuditAction.GROUP_PLACEMENT_FAILED,
    "avatar": AuditAction.AVATAR_SYNC_FAILED,
}


class ProvisioningService:
    """
    Usage:
        service = ProvisioningService(db, config, directory, limiter)
        response = await service.register(request, actor=None, source_address="203.0.113.7")
    """

    def __init__(
        self,
        db: AsyncSession,
        config: ProvisioningConfig,
        directory: Optional[DirectoryClient],
        limiter: AdmissionLimiter,
        crypt_context: Optional[CryptContext] = None,
        notifier: Optional[WelcomeNotifier] = None,
    ):
        self.db = db
        self.config = config
        self._directory = directory
        self.limiter = limiter
        self.audit = AuditLogger(db)
        self.secrets = SecretStore(db, config, crypt_context, audit=self.audit)
        self.accounts = AccountRepository(db)
        self.allocator = Allocator(db, config, accounts=self.accounts)
        self._notifier = notifier

    @property
    def directory(self) -> DirectoryClient:
        if self._directory is None:
            raise UpstreamError("Directory provider is not configured", reason="directory_not_configured")
        return self._directory

    @property
    def notifier(self) -> WelcomeNotifier:
        if self._notifier is None:
            self._notifier = WelcomeNotifier(self.directory, self.config)
        return self._notifier

    async def admit(self, tier: AdmissionTier, source_address: Optional[str]) -> None:
        decision = await self.limiter.check(tier, source_address or "unknown")
        if not decision.allowed:
            logger.warning(f"Admission rejected: tier={tier.value} source={source_address}")
            raise AdmissionError(decision)

    # ==================== INBOUND OPERATIONS ====================

    async def verify_secret(
        self,
        community_type: CommunityType,
        token: str,
        actor: Optional[str],
        source_address: Optional[str] = None,
    ) -> bool:
        await self.admit(AdmissionTier.VERIFICATION, source_address)
        return await self.secrets.verify(community_type, token, actor=actor, source_address=source_address)

    async def check_username(
        self,
        community_type: CommunityType,
        username: str,
        source_address: Optional[str] = None,
    ) -> UsernameAvailability:
        await self.admit(AdmissionTier.AVAILABILITY, source_address)
        return await self.allocator.check_username(community_type, username)

    async def derive_username(
        self,
        community_type: CommunityType,
        primary_name: str,
        secondary_name: str,
        source_address: Optional[str] = None,
    ) -> UsernameAvailability:
        await self.admit(AdmissionTier.AVAILABILITY, source_address)
        return await self.allocator.derive_username(community_type, primary_name, secondary_name)

    # ==================== REGISTRATION ====================

    async def register(
        self,
        request: RegistrationRequest,
        actor: Optional[str] = None,
        source_address: Optional[str] = None,
    ) -> RegistrationResponse:
        await self.admit(AdmissionTier.REGISTRATION, source_address)

        context = RegistrationContext(
            request=request,
            profile=self.config.community(request.type),
            config=self.config,
            actor=actor or (request.contact_email or "").strip().lower() or "anonymous",
            source_address=source_address,
        )

        steps = [
            ("verify", self._verify),
            ("validate", self._validate),
            ("allocate", self._allocate),
            ("remote_check", self._remote_check),
            ("remote_create", self._remote_create),
            ("group", self._place_in_group),
            ("avatar", self._sync_avatar),
            ("persist", self._persist),
        ]
        outcome = await run_steps(steps, context, on_degraded=self._record_degraded)

        if not outcome.completed:
            await self._record_failure(outcome.failed_step, outcome.failure, context)
            raise outcome.failure.error

        await self.audit.record(
            AuditAction.REGISTRATION_SUCCESS,
            actor=context.actor,
            details=self._success_detail(context),
            source_address=source_address,
        )
        logger.info(f"Registered {context.email}")

        notification_sent = await self._notify(context)

        return RegistrationResponse(
            email=context.email,
            temp_password=context.temp_password,
            added_to_group=context.added_to_group,
            notification_sent=notification_sent,
        )

    async def _verify(self, ctx: RegistrationContext) -> StepResult:
        check = await self.secrets.check(ctx.request.type, ctx.request.token)
        if check.valid:
            return StepResult.ok()
        reason = REASON_NOT_CONFIGURED if check.reason == REASON_NOT_CONFIGURED else REASON_INVALID_TOKEN
        return StepResult.fatal(AuthorizationError("Invalid token", reason=reason))

    async def _validate(self, ctx: RegistrationContext) -> StepResult:
        request = ctx.request

        def invalid(message: str, field_name: str) -> StepResult:
            return StepResult.fatal(ValidationError(message, reason=REASON_INVALID_INPUT), field=field_name)

        if not (request.primary_name or "").strip():
            return invalid("Name is required", "primary_name")
        if ctx.profile.is_person and not (request.secondary_name or "").strip():
            return invalid("Last name is required for this community type", "secondary_name")
        if ctx.profile.is_organization:
            for name in PERSON_ONLY_FIELDS:
                if getattr(request, name):
                    return invalid(f"{name} is only available for person community types", name)

        if not (request.contact_email or "").strip():
            return invalid("Contact email is required", "contact_email")
        try:
            validate_email(request.contact_email.strip(), check_deliverability=False)
        except EmailNotValidError as e:
            return invalid(f"Invalid contact email: {e}", "contact_email")

        if request.avatar:
            try:
                ctx.photo = parse_data_url(request.avatar, self.config.avatar_max_bytes)
            except InvalidAvatarError as e:
                return invalid(str(e), "avatar")

        return StepResult.ok()

    async def _allocate(self, ctx: RegistrationContext) -> StepResult:
        request = ctx.request
        try:
            allocation = await self.allocator.allocate(
                request.type, request.username, request.primary_name, request.secondary_name
            )
        except (ValidationError, ConflictError) as e:
            return StepResult.fatal(e)

        ctx.local_part = allocation.local_part
        ctx.email = allocation.email
        return StepResult.ok()

    async def _remote_check(self, ctx: RegistrationContext) -> StepResult:
        if self._directory is None:
            return StepResult.fatal(
                UpstreamError("Directory provider is not configured", reason="directory_not_configured")
            )
        try:
            exists = await self.directory.exists(ctx.email)
        except DirectoryError as e:
            return StepResult.fatal(
                UpstreamError("Could not check the directory", reason=REASON_REMOTE_CHECK_FAILED),
                provider_error=e.code.value,
            )
        if exists:
            return StepResult.fatal(ConflictError(
                f"{ctx.email} already exists in the directory",
                reason=REASON_EMAIL_EXISTS_REMOTELY,
            ))
        return StepResult.ok()

    async def _remote_create(self, ctx: RegistrationContext) -> StepResult:
        request = ctx.request
        name = format_workspace_name(ctx.profile, request.primary_name, request.secondary_name)
        ctx.display_name = name.display_name
        ctx.org_unit = ctx.profile.org_unit

        try:
            identity = await self.directory.create_user(ctx.email, name.given_name, name.family_name, ctx.org_unit)
        except DirectoryError as e:
            if e.code != DirectoryErrorCode.INVALID_ORG_UNIT or not ctx.org_unit:
                return self._create_failed(e)
            logger.warning(f"Org unit {ctx.org_unit} rejected for {ctx.email}, retrying without it")
            ctx.org_unit_fallback = True
            ctx.org_unit = None
            try:
                identity = await self.directory.create_user(ctx.email, name.given_name, name.family_name, None)
            except DirectoryError as retry_error:
                return self._create_failed(retry_error, org_unit_fallback=True)

        ctx.temp_password = identity.temp_password
        ctx.provider_id = identity.provider_id
        return StepResult.ok()

    def _create_failed(self, e: DirectoryError, **detail) -> StepResult:
        message = f"Failed to create the account: {e.message}"
        if e.code == DirectoryErrorCode.CONFLICT:
            error: ProvisioningError = ConflictError(message, reason=REASON_PROVISIONING_FAILED)
        else:
            error = UpstreamError(message, reason=REASON_PROVISIONING_FAILED)
        return StepResult.fatal(error, provider_error=e.code.value, provider_message=e.message[:200], **detail)

    async def _place_in_group(self, ctx: RegistrationContext) -> StepResult:
        group_email = ctx.profile.group_email
        if not group_email:
            return StepResult.ok()
        try:
            await self.directory.add_to_group(ctx.email, group_email)
        except DirectoryError as e:
            ctx.group_error = e.code.value
            return StepResult.degraded(
                AuditAction.GROUP_PLACEMENT_FAILED.value,
                group_email=group_email,
                group_error=e.code.value,
            )
        ctx.added_to_group = True
        return StepResult.ok()

    async def _sync_avatar(self, ctx: RegistrationContext) -> StepResult:
        if ctx.photo is None:
            return StepResult.ok()

        result = await sync_photo(self.directory, ctx.email, ctx.request.avatar, ctx.photo)
        ctx.avatar = result.avatar
        ctx.avatar_synced = result.synced
        if not result.synced:
            return StepResult.degraded(
                AuditAction.AVATAR_SYNC_FAILED.value,
                stage=result.stage,
                provider_error=result.error,
            )
        return StepResult.ok()

    async def _persist(self, ctx: RegistrationContext) -> StepResult:
        request = ctx.request
        values = {
            "email": ctx.email,
            "community_type": request.type.value,
            "local_part": ctx.local_part,
            "primary_name": request.primary_name.strip(),
            "secondary_name": (request.secondary_name or "").strip() or None,
            "phone": request.phone or None,
            "contact_email": request.contact_email.strip().lower(),
            "provider_display_name": ctx.display_name,
            "provider_id": ctx.provider_id,
            "avatar": ctx.avatar,
        }
        values.update(request.profile_values())

        try:
            account = await self.accounts.insert(values)
        except DuplicateAccountError:
            logger.error(f"Lost registration race for {ctx.email}; directory user has no local record")
            return StepResult.fatal(
                ConflictError(f"{ctx.email} is already registered", reason=REASON_EMAIL_TAKEN),
                orphaned_remote_identity=True,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to persist account {ctx.email}: {e}")
            return StepResult.fatal(
                UpstreamError("Failed to save the account", reason=REASON_PERSISTENCE_FAILED),
                orphaned_remote_identity=True,
            )

        ctx.account_id = account.id
        return StepResult.ok()

    async def _notify(self, ctx: RegistrationContext) -> bool:
        request = ctx.request
        contact_name = request.secondary_name if ctx.profile.is_organization else request.primary_name
        try:
            await self.notifier.send(
                request.contact_email.strip(),
                ctx.email,
                ctx.temp_password,
                contact_name=contact_name,
            )
        except Exception as e:
            logger.warning(f"Welcome notification failed for {ctx.email}: {e}")
            await self.audit.record(
                AuditAction.NOTIFICATION_FAILED,
                actor=ctx.actor,
                details={**ctx.audit_detail(), "error": str(e)[:200]},
                source_address=ctx.source_address,
                severity=AuditSeverity.WARNING,
            )
            return False
        return True

    async def _record_degraded(self, step: str, result: StepResult, ctx: RegistrationContext) -> None:
        await self.audit.record(
            _DEGRADED_ACTIONS[step],
            actor=ctx.actor,
            details={**ctx.audit_detail(), **result.detail},
            source_address=ctx.source_address,
            severity=AuditSeverity.WARNING,
        )

    async def _record_failure(self, step: str, result: StepResult, ctx: RegistrationContext) -> None:
        details = {**ctx.audit_detail(), "reason": result.reason, "step": step, **result.detail}
        if ctx.temp_password is not None:
            # remote_create succeeded; the directory user has no local record
            details["orphaned_remote_identity"] = True
        if result.reason == REASON_INTERNAL_ERROR:
            await self.db.rollback()
        if result.error.kind == "upstream" or details.get("orphaned_remote_identity"):
            severity = AuditSeverity.ERROR
        else:
            severity = AuditSeverity.WARNING
        await self.audit.record(
            AuditAction.REGISTRATION_FAILED,
            actor=ctx.actor,
            details=details,
            source_address=ctx.source_address,
            severity=severity,
        )

    def _success_detail(self, ctx: RegistrationContext) -> dict:
        detail = {
            **ctx.audit_detail(),
            "added_to_group": ctx.added_to_group,
            "group_email": ctx.profile.group_email,
            "display_name": ctx.display_name,
            "org_unit": ctx.org_unit,
            "org_unit_fallback": ctx.org_unit_fallback,
        }
        if ctx.group_error:
            detail["group_error"] = ctx.group_error
        if ctx.avatar_synced is not None:
            detail["avatar_synced"] = ctx.avatar_synced
        return detail

    # ==================== DEPROVISIONING ====================

    async def delete_account(
        self,
        identifier: Union[int, str],
        actor: str,
        source_address: Optional[str] = None,
    ) -> DeleteAccountResponse:
        """
        Remove the directory user, then the local row.

        A directory user that is already gone counts as deleted. Any other
        directory failure keeps the local row, since it may be the only
        record of a user that still exists.
        """
        account = await self.accounts.find(identifier)
        if account is None:
            raise AccountNotFoundError(f"Account not found: {identifier}")

        email = account.email
        snapshot = account.to_dict(include_avatar=False)
        remote_already_absent = False

        if self._directory is None:
            await self._record_delete_failure(account, actor, source_address, "directory_not_configured")
            raise UpstreamError("Directory provider is not configured", reason="directory_not_configured")

        try:
            await self._directory.delete_user(email)
        except DirectoryError as e:
            if e.code != DirectoryErrorCode.NOT_FOUND:
                await self._record_delete_failure(account, actor, source_address, e.code.value)
                raise UpstreamError(f"Failed to delete {email} from the directory", reason="account_delete_failed")
            remote_already_absent = True
            logger.info(f"{email} was already absent from the directory")

        await self.accounts.delete(account)
        await self.audit.record(
            AuditAction.ACCOUNT_DELETED,
            actor=actor,
            details={"email": email, "remote_already_absent": remote_already_absent, "account": snapshot},
            source_address=source_address,
        )
        logger.info(f"Deleted account {email}")
        return DeleteAccountResponse(email=email, remote_already_absent=remote_already_absent)

    async def _record_delete_failure(self, account, actor: str, source_address: Optional[str], error: str) -> None:
        logger.error(f"Failed to delete {account.email} from the directory: {error}")
        await self.audit.record(
            AuditAction.ACCOUNT_DELETE_FAILED,
            actor=actor,
            details={"email": account.email, "account_id": account.id, "provider_error": error},
            source_address=source_address,
            severity=AuditSeverity.ERROR,
        )

    # ==================== ADMINISTRATION ====================

    async def rotate_secret(self, community_type: CommunityType, actor: str) -> SecretRotationResponse:
        token = await self.secrets.rotate(community_type, actor=actor)
        return SecretRotationResponse(type=community_type, token=token)

    async def list_secrets(self) -> List[SecretStatus]:
        return await self.secrets.status()

    async def list_accounts(
        self,
        search: Optional[str] = None,
        community_type: Optional[CommunityType] = None,
        page: int = 1,
    ) -> AccountPage:
        accounts, total, total_pages = await self.accounts.list_accounts(search, community_type, page)
        return AccountPage(
            accounts=[AccountResponse.model_validate(a) for a in accounts],
            total=total,
            page=page,
            total_pages=total_pages,
        )

    async def query_logs(self, filter_params: AuditLogFilter) -> AuditLogPage:
        return await self.audit.query(filter_params)
