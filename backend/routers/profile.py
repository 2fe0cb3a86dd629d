from fastapi import APIRouter, Depends, Request
import logging

from middleware.auth import get_current_user_required, AuthUser
from models import AccountResponse, ProfilePatch
from provisioning.dependencies import get_profile_service
from services.profiles import ProfileService
from utils.request import get_client_ip

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/profile", tags=["Profile"])


@router.get("", response_model=AccountResponse)
async def get_profile(
    current_user: AuthUser = Depends(get_current_user_required),
    service: ProfileService = Depends(get_profile_service),
):
    """Profile of the account matching the signed-in address"""
    return await service.get_profile(current_user.email)


@router.patch("", response_model=AccountResponse)
async def update_profile(
    patch: ProfilePatch,
    request: Request,
    current_user: AuthUser = Depends(get_current_user_required),
    service: ProfileService = Depends(get_profile_service),
):
    """
    Partial profile update.

    Omitted fields are unchanged; fields sent as null are cleared.
    """
    return await service.update_profile(current_user.email, patch, source_address=get_client_ip(request))
