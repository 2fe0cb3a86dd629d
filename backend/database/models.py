"""
Community Mail - Database Models

Tables:
- secrets: one hashed membership secret per community type
- accounts: provisioned Workspace addresses and their member profiles
- audit_logs: append-only audit trail
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value) -> Any:
    return value.isoformat() if value else None


class SecretDB(Base):
    """
    Community secret.

    Only the bcrypt hash is stored. A rotation overwrites the hash in place,
    so there is never more than one valid secret per community type.
    """
    __tablename__ = "secrets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    community_type = Column(String(20), unique=True, nullable=False)
    secret_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class AccountDB(Base):
    """
    Provisioned account.

    ``email`` is prefix + local_part + domain, unique across the table and
    never changed after creation. The unique constraint is what settles
    concurrent registrations for the same address.
    """
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    community_type = Column(String(20), nullable=False)
    local_part = Column(String(100), nullable=False)
    # Person types: given name. Organization types: organization name.
    primary_name = Column(String(100), nullable=False)
    # Person types: family name. Organization types: contact person.
    secondary_name = Column(String(100))
    phone = Column(String(20))
    contact_email = Column(String(255), nullable=False)
    provider_display_name = Column(String(255))
    provider_id = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    # Profile
    bio = Column(Text)
    location = Column(String(100))
    avatar = Column(Text)  # data URL

    # Person types only
    company = Column(String(100))
    job_title = Column(String(100))

    # Social links
    linkedin = Column(String(255))
    twitter = Column(String(255))
    github = Column(String(255))
    instagram = Column(String(255))
    facebook = Column(String(255))
    youtube = Column(String(255))
    website = Column(String(255))

    def to_dict(self, include_avatar: bool = True) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "id": self.id,
            "email": self.email,
            "community_type": self.community_type,
            "local_part": self.local_part,
            "primary_name": self.primary_name,
            "secondary_name": self.secondary_name,
            "phone": self.phone,
            "contact_email": self.contact_email,
            "provider_display_name": self.provider_display_name,
            "provider_id": self.provider_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "bio": self.bio,
            "location": self.location,
            "company": self.company,
            "job_title": self.job_title,
            "linkedin": self.linkedin,
            "twitter": self.twitter,
            "github": self.github,
            "instagram": self.instagram,
            "facebook": self.facebook,
            "youtube": self.youtube,
            "website": self.website,
        }
        if include_avatar:
            data["avatar"] = self.avatar
        else:
            data["has_avatar"] = bool(self.avatar)
        return data


class AuditLogDB(Base):
    """
    Audit Log - one row per security-relevant step or outcome.

    Rows reference accounts and secrets by value (email, type) so history
    survives account deletion. Rows are never updated or deleted.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(50), nullable=False, index=True)
    actor = Column(String(255), nullable=False)
    details = Column(JSON().with_variant(JSONB(), "postgresql"), default=dict)
    source_address = Column(String(45))
    severity = Column(String(10), nullable=False, default="info")
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "action": self.action,
            "actor": self.actor,
            "details": self.details or {},
            "source_address": self.source_address,
            "severity": self.severity,
            "created_at": _iso(self.created_at),
        }
