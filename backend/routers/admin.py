from fastapi import APIRouter, Depends, Query, Request
from typing import List, Optional
import logging

from middleware.auth import require_admin, AuthUser
from models import (
    AccountPage,
    CommunityType,
    DeleteAccountResponse,
    SecretRotationResponse,
    SecretStatus,
)
from provisioning.dependencies import get_provisioning_service
from provisioning.service import ProvisioningService
from services.audit import AuditLogFilter, AuditLogPage
from utils.request import get_client_ip

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["Admin"])

# All /admin endpoints require an email listed in ADMIN_EMAILS.


# ==================== ACCOUNTS ====================

@router.get("/accounts", response_model=AccountPage)
async def list_accounts(
    search: Optional[str] = Query(None, description="Substring of the address or contact email"),
    type: Optional[CommunityType] = Query(None, description="Filter by community type"),
    page: int = Query(1, ge=1),
    current_user: AuthUser = Depends(require_admin),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """List provisioned accounts, newest first, 20 per page"""
    return await service.list_accounts(search=search, community_type=type, page=page)


@router.delete("/accounts/{account_id}", response_model=DeleteAccountResponse)
async def delete_account(
    account_id: int,
    request: Request,
    current_user: AuthUser = Depends(require_admin),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """
    Deprovision an account.

    Removes the directory user, then the local record. A user already absent
    from the directory counts as removed.
    """
    return await service.delete_account(
        account_id,
        actor=current_user.email,
        source_address=get_client_ip(request),
    )


# ==================== SECRETS ====================

@router.get("/secrets", response_model=List[SecretStatus])
async def list_secrets(
    current_user: AuthUser = Depends(require_admin),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """Which community types have a secret configured. Hashes are never returned."""
    return await service.list_secrets()


@router.post("/secrets/{community_type}/rotate", response_model=SecretRotationResponse)
async def rotate_secret(
    community_type: CommunityType,
    current_user: AuthUser = Depends(require_admin),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """
    Generate a new secret for a community type.

    The previous secret stops working immediately. The plaintext is returned
    once and cannot be retrieved again.
    """
    logger.info(f"Secret rotation for {community_type.value} requested by {current_user.email}")
    return await service.rotate_secret(community_type, actor=current_user.email)


# ==================== AUDIT LOG ====================

@router.get("/logs", response_model=AuditLogPage)
async def list_audit_logs(
    search: Optional[str] = Query(None, description="Substring of the actor"),
    action: Optional[str] = Query(None, description="Filter by action"),
    page: int = Query(1, ge=1),
    current_user: AuthUser = Depends(require_admin),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """Audit log, newest first, 50 per page"""
    return await service.query_logs(AuditLogFilter(search=search, action=action, page=page))
