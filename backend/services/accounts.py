"""
Account registry.

Thin persistence layer over the accounts table. The unique constraint on
``email`` is the only serialization point for concurrent registrations; a
lost race surfaces here as DuplicateAccountError.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AccountDB
from models.enums import CommunityType

logger = logging.getLogger(__name__)

ACCOUNTS_PAGE_SIZE = 20


class DuplicateAccountError(Exception):
    """Insert rejected by the unique constraint on accounts.email"""

    def __init__(self, email: str):
        super().__init__(f"Account already exists: {email}")
        self.email = email


class AccountRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, account_id: int) -> Optional[AccountDB]:
        return await self.db.get(AccountDB, account_id)

    async def get_by_email(self, email: str) -> Optional[AccountDB]:
        result = await self.db.execute(select(AccountDB).where(AccountDB.email == email))
        return result.scalar_one_or_none()

    async def find(self, identifier: Union[int, str]) -> Optional[AccountDB]:
        """Look up by numeric id or by full email address"""
        if isinstance(identifier, int) or str(identifier).isdigit():
            return await self.get_by_id(int(identifier))
        return await self.get_by_email(str(identifier).strip().lower())

    async def email_exists(self, email: str) -> bool:
        count = await self.db.scalar(
            select(func.count()).select_from(AccountDB).where(AccountDB.email == email)
        )
        return bool(count)

    async def insert(self, values: Dict[str, Any]) -> AccountDB:
        """
        Insert and commit a new account.

        Raises:
            DuplicateAccountError: the email was taken in the meantime; the
                session has been rolled back.
        """
        account = AccountDB(**values)
        self.db.add(account)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateAccountError(values.get("email", ""))
        await self.db.refresh(account)
        return account

    async def update(self, account: AccountDB, changes: Dict[str, Any]) -> AccountDB:
        for key, value in changes.items():
            setattr(account, key, value)
        await self.db.commit()
        await self.db.refresh(account)
        return account

    async def delete(self, account: AccountDB) -> None:
        await self.db.delete(account)
        await self.db.commit()

    async def list_accounts(
        self,
        search: Optional[str] = None,
        community_type: Optional[CommunityType] = None,
        page: int = 1,
        page_size: int = ACCOUNTS_PAGE_SIZE,
    ) -> Tuple[List[AccountDB], int, int]:
        """
        Newest accounts first.

        Returns:
            (accounts, total, total_pages)
        """
        conditions = []
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(AccountDB.email.ilike(pattern), AccountDB.contact_email.ilike(pattern)))
        if community_type:
            conditions.append(AccountDB.community_type == CommunityType(community_type).value)

        total = await self.db.scalar(
            select(func.count()).select_from(AccountDB).where(*conditions)
        ) or 0

        page = max(page, 1)
        result = await self.db.execute(
            select(AccountDB)
            .where(*conditions)
            .order_by(AccountDB.created_at.desc(), AccountDB.id.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        return list(result.scalars().all()), total, math.ceil(total / page_size) if total else 0
