from fastapi import APIRouter, Depends
from pydantic import BaseModel

from shared.models.user import User
from apps.billing.services import BillingServices
from ..dependencies import get_services, get_current_user

router = APIRouter()


class QuotaResponse(BaseModel):
    user_id: str
    plan_id: str
    used: int
    limit: int
    remaining: int
    percent: int
    near_limit: bool
    max_file_size: int
    can_upgrade: bool


class SizeRequest(BaseModel):
    size: int


@router.get("", response_model=QuotaResponse)
async def get_quota(
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    """Storage usage for the current user's plan"""
    usage = await services.quota.get_usage(user.id)
    return usage.to_dict()


@router.post("/reserve", response_model=QuotaResponse)
async def reserve(
    request: SizeRequest,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    """Called by the upload flow before accepting a file"""
    usage = await services.quota.check_and_reserve(user.id, request.size)
    return usage.to_dict()


@router.post("/release", response_model=QuotaResponse)
async def release(
    request: SizeRequest,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    usage = await services.quota.release(user.id, request.size)
    return usage.to_dict()
