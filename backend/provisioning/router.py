"""
Provisioning API

Endpoints:
- POST /api/validate-token    check a membership secret (signed in)
- POST /api/check-username    format + availability of a chosen local-part (signed in)
- POST /api/derive-username   preview the derived local-part for person types (signed in)
- POST /api/register          provision a new address (public, rate limited)

Failures are raised as ProvisioningError and rendered by the handler in
server.py as {"error": reason, "message": ..., "kind": ...}.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from middleware.auth import AuthUser, get_current_user, get_current_user_required
from models.schemas import (
    DeriveUsernameRequest,
    RegistrationRequest,
    RegistrationResponse,
    UsernameAvailability,
    UsernameCheckRequest,
    VerifySecretRequest,
    VerifySecretResponse,
)
from utils.request import get_client_ip
from .dependencies import get_provisioning_service
from .service import ProvisioningService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Provisioning"])


@router.post("/validate-token", response_model=VerifySecretResponse)
async def validate_token(
    payload: VerifySecretRequest,
    request: Request,
    current_user: AuthUser = Depends(get_current_user_required),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """Check a community secret. Every attempt is audited."""
    valid = await service.verify_secret(
        payload.type,
        payload.token,
        actor=current_user.email,
        source_address=get_client_ip(request),
    )
    return VerifySecretResponse(valid=valid)


@router.post("/check-username", response_model=UsernameAvailability)
async def check_username(
    payload: UsernameCheckRequest,
    request: Request,
    current_user: AuthUser = Depends(get_current_user_required),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    return await service.check_username(payload.type, payload.username, source_address=get_client_ip(request))


@router.post("/derive-username", response_model=UsernameAvailability)
async def derive_username(
    payload: DeriveUsernameRequest,
    request: Request,
    current_user: AuthUser = Depends(get_current_user_required),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    return await service.derive_username(
        payload.type,
        payload.primary_name,
        payload.secondary_name,
        source_address=get_client_ip(request),
    )


@router.post("/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegistrationRequest,
    request: Request,
    current_user: Optional[AuthUser] = Depends(get_current_user),
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """
    Provision a new address.

    The temporary password in the response is shown exactly once; it is not
    stored and cannot be retrieved again.
    """
    return await service.register(
        payload,
        actor=current_user.email if current_user else None,
        source_address=get_client_ip(request),
    )
