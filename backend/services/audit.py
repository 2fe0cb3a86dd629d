"""
Centralized Audit Logging for Community Mail

Tracks every security-relevant action:
- Secret verification attempts and rotations
- Registration outcomes, including failed attempts
- Degraded provisioning steps (group placement, avatar sync, notification)
- Account deletion and profile changes

Storage: audit_logs table. Entries are append-only; this module offers no
update or delete path.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AuditLogDB
from models.enums import AuditAction, AuditSeverity

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.ERROR: logging.ERROR,
}

AUDIT_ACTIONS = [a.value for a in AuditAction]


# ==================== MODELS ====================

class AuditLogEntry(BaseModel):
    """Audit log entry model"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    actor: str
    details: Dict[str, Any] = Field(default_factory=dict)
    source_address: Optional[str] = None
    severity: str = AuditSeverity.INFO.value
    created_at: Optional[datetime] = None


class AuditLogFilter(BaseModel):
    """Filter for querying audit logs"""
    search: Optional[str] = None  # substring of actor
    action: Optional[str] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(50, ge=1, le=200)


class AuditLogPage(BaseModel):
    logs: List[AuditLogEntry]
    total: int
    page: int
    total_pages: int
    actions: List[str]


# ==================== AUDIT LOGGER ====================

class AuditLogger:
    """
    Database-backed audit recorder.

    Usage:
        audit = AuditLogger(db)
        await audit.record(
            AuditAction.REGISTRATION_FAILED,
            actor="member@example.com",
            details={"type": "cb", "reason": "invalid_token"},
            source_address="203.0.113.7",
        )

    ``record`` commits immediately so the entry survives whatever the
    caller does to the session afterwards.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record(
        self,
        action: Union[AuditAction, str],
        actor: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        source_address: Optional[str] = None,
        severity: Union[AuditSeverity, str] = AuditSeverity.INFO,
        commit: bool = True,
    ) -> AuditLogEntry:
        """
        Append one audit entry.

        Args:
            action: The action being recorded
            actor: Who triggered it (email or "system")
            details: Action-specific structured payload
            source_address: Client IP address, if known
            severity: info, warning or error
            commit: Commit the session after inserting

        Returns:
            The created audit log entry
        """
        action_value = AuditAction(action).value
        severity = AuditSeverity(severity)

        row = AuditLogDB(
            action=action_value,
            actor=(actor or "anonymous")[:255],
            details=dict(details or {}),
            source_address=source_address[:45] if source_address else None,
            severity=severity.value,
        )
        self.db.add(row)
        if commit:
            await self.db.commit()
            await self.db.refresh(row)
        else:
            await self.db.flush()

        logger.log(
            _LOG_LEVELS[severity],
            f"AUDIT: {action_value} by {row.actor}",
            extra={"audit_action": action_value, "audit_details": row.details},
        )
        return AuditLogEntry.model_validate(row)

    async def query(self, filter_params: AuditLogFilter) -> AuditLogPage:
        """Query audit logs newest first, with optional actor search and action filter"""
        conditions = []
        if filter_params.search:
            conditions.append(AuditLogDB.actor.ilike(f"%{filter_params.search}%"))
        if filter_params.action:
            conditions.append(AuditLogDB.action == filter_params.action)

        total = await self.db.scalar(
            select(func.count()).select_from(AuditLogDB).where(*conditions)
        ) or 0

        offset = (filter_params.page - 1) * filter_params.page_size
        result = await self.db.execute(
            select(AuditLogDB)
            .where(*conditions)
            .order_by(AuditLogDB.created_at.desc(), AuditLogDB.id.desc())
            .limit(filter_params.page_size)
            .offset(offset)
        )
        rows = result.scalars().all()

        return AuditLogPage(
            logs=[AuditLogEntry.model_validate(r) for r in rows],
            total=total,
            page=filter_params.page,
            total_pages=math.ceil(total / filter_params.page_size) if total else 0,
            actions=await self.distinct_actions(),
        )

    async def distinct_actions(self) -> List[str]:
        result = await self.db.execute(select(AuditLogDB.action).distinct())
        return sorted(result.scalars().all())

    async def entries(self, action: Optional[Union[AuditAction, str]] = None) -> List[AuditLogEntry]:
        """All entries oldest first, optionally for one action"""
        stmt = select(AuditLogDB).order_by(AuditLogDB.id)
        if action is not None:
            stmt = stmt.where(AuditLogDB.action == AuditAction(action).value)
        result = await self.db.execute(stmt)
        return [AuditLogEntry.model_validate(r) for r in result.scalars().all()]

    async def count(
        self,
        action: Optional[Union[AuditAction, str]] = None,
        email: Optional[str] = None,
    ) -> int:
        """
        Count entries, optionally for one action and for entries whose
        details mention ``email``.
        """
        entries = await self.entries(action)
        if email is None:
            return len(entries)
        return sum(1 for e in entries if email in e.details.values())
