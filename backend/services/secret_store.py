"""
Community Secret Store & Verifier

Each community type has one shared membership secret. Only a bcrypt hash is
stored; the plaintext exists exactly once, in the response to a rotation.

Implements:
- verify: audited comparison of a candidate against the stored hash
- check: the same comparison without auditing (used inside registration,
  which audits under its own action)
- rotate: generate, hash and store a new secret; the old one stops working
  immediately
- status: which types have a secret configured
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import ProvisioningConfig
from database.models import SecretDB
from models.enums import AuditAction, AuditSeverity, CommunityType
from models.schemas import SecretStatus
from services.audit import AuditLogger

logger = logging.getLogger(__name__)

SECRET_BYTES = 16

REASON_NOT_CONFIGURED = "no_secret_configured"
REASON_MISMATCH = "invalid_secret"


def build_crypt_context(rounds: int = 12) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


@dataclass
class SecretCheck:
    """Outcome of comparing a candidate secret"""
    valid: bool
    reason: Optional[str] = None


class SecretStore:
    """
    Secret persistence and verification for community types.

    Usage:
        store = SecretStore(db, config, crypt_context)
        if await store.verify(CommunityType.cb, token, actor="me@example.com"):
            ...
    """

    def __init__(
        self,
        db: AsyncSession,
        config: ProvisioningConfig,
        crypt_context: Optional[CryptContext] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.db = db
        self.config = config
        self.crypt = crypt_context or build_crypt_context()
        self.audit = audit or AuditLogger(db)

    async def _get(self, community_type: CommunityType) -> Optional[SecretDB]:
        result = await self.db.execute(
            select(SecretDB).where(SecretDB.community_type == CommunityType(community_type).value)
        )
        return result.scalar_one_or_none()

    async def check(self, community_type: CommunityType, candidate: str) -> SecretCheck:
        """
        Compare ``candidate`` against the stored hash without auditing.

        Fails closed when no secret is configured. A dummy verification keeps
        the response time the same in that case.
        """
        stored = await self._get(community_type)
        if stored is None:
            self.crypt.dummy_verify()
            return SecretCheck(valid=False, reason=REASON_NOT_CONFIGURED)

        try:
            valid = self.crypt.verify(candidate or "", stored.secret_hash)
        except ValueError as e:
            # Unparseable stored hash: treat as not matching, but make it visible
            logger.error(f"Stored secret hash for {stored.community_type} is unusable: {e}")
            valid = False

        return SecretCheck(valid=valid, reason=None if valid else REASON_MISMATCH)

    async def verify(
        self,
        community_type: CommunityType,
        candidate: str,
        actor: Optional[str],
        source_address: Optional[str] = None,
    ) -> bool:
        """Compare a candidate secret and record exactly one audit entry"""
        community_type = CommunityType(community_type)
        outcome = await self.check(community_type, candidate)

        details = {"type": community_type.value}
        if outcome.valid:
            action, severity = AuditAction.TOKEN_VALIDATION_SUCCESS, AuditSeverity.INFO
        else:
            action, severity = AuditAction.TOKEN_VALIDATION_FAILED, AuditSeverity.WARNING
            details["reason"] = outcome.reason

        await self.audit.record(
            action,
            actor=actor,
            details=details,
            source_address=source_address,
            severity=severity,
        )
        return outcome.valid

    async def rotate(self, community_type: CommunityType, actor: str) -> str:
        """
        Replace the secret for ``community_type``.

        Returns:
            The new plaintext secret. It is not stored and cannot be
            retrieved again.
        """
        community_type = CommunityType(community_type)
        plaintext = secrets.token_hex(SECRET_BYTES)
        secret_hash = self.crypt.hash(plaintext)

        existing = await self._get(community_type)
        if existing is not None:
            existing.secret_hash = secret_hash
            existing.updated_at = datetime.now(timezone.utc)
        else:
            self.db.add(SecretDB(community_type=community_type.value, secret_hash=secret_hash))
        await self.db.commit()

        await self.audit.record(
            AuditAction.SECRET_ROTATED,
            actor=actor,
            details={"type": community_type.value, "previously_configured": existing is not None},
        )
        logger.info(f"Secret rotated for community type {community_type.value}")
        return plaintext

    async def status(self) -> List[SecretStatus]:
        """Configuration status for every community type; hashes are never returned"""
        result = await self.db.execute(select(SecretDB))
        stored = {row.community_type: row for row in result.scalars().all()}

        statuses = []
        for community_type in CommunityType:
            row = stored.get(community_type.value)
            statuses.append(SecretStatus(
                type=community_type,
                label=self.config.community(community_type).label,
                configured=row is not None,
                updated_at=row.updated_at if row else None,
            ))
        return statuses
