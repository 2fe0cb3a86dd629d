"""
FastAPI dependencies for the provisioning layer.

The directory client and the admission limiter are process-wide singletons
created on first use; everything else is per request.
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from config import ProvisioningConfig, get_provisioning_config, get_settings
from database import get_db
from directory.client import DirectoryClient, DirectoryNotConfiguredError
from directory.google_workspace import GoogleWorkspaceClient
from services.profiles import ProfileService
from services.rate_limit import AdmissionLimiter
from services.secret_store import build_crypt_context
from .service import ProvisioningService

logger = logging.getLogger(__name__)

_directory_client: Optional[DirectoryClient] = None
_directory_checked = False
_admission_limiter: Optional[AdmissionLimiter] = None


def get_directory_client() -> Optional[DirectoryClient]:
    """Google Workspace client, or None when credentials are not configured"""
    global _directory_client, _directory_checked
    if not _directory_checked:
        _directory_checked = True
        try:
            _directory_client = GoogleWorkspaceClient.from_settings(get_settings())
        except DirectoryNotConfiguredError as e:
            logger.warning(f"Directory client unavailable: {e.message}")
            _directory_client = None
    return _directory_client


def get_admission_limiter() -> AdmissionLimiter:
    global _admission_limiter
    if _admission_limiter is None:
        _admission_limiter = AdmissionLimiter.from_settings(get_settings())
    return _admission_limiter


@lru_cache()
def get_crypt_context() -> CryptContext:
    return build_crypt_context(get_settings().SECRET_HASH_ROUNDS)


async def close_clients() -> None:
    """Release pooled connections on shutdown"""
    global _directory_client, _directory_checked
    if _directory_client is not None:
        await _directory_client.close()
    _directory_client = None
    _directory_checked = False


def get_provisioning_service(
    db: AsyncSession = Depends(get_db),
    config: ProvisioningConfig = Depends(get_provisioning_config),
    directory: Optional[DirectoryClient] = Depends(get_directory_client),
    limiter: AdmissionLimiter = Depends(get_admission_limiter),
    crypt_context: CryptContext = Depends(get_crypt_context),
) -> ProvisioningService:
    return ProvisioningService(db, config, directory, limiter, crypt_context=crypt_context)


def get_profile_service(
    db: AsyncSession = Depends(get_db),
    config: ProvisioningConfig = Depends(get_provisioning_config),
    directory: Optional[DirectoryClient] = Depends(get_directory_client),
) -> ProfileService:
    return ProfileService(db, config, directory)
