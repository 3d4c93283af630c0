from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List, Optional
from decimal import Decimal

from shared.models.user import User
from apps.billing.services import BillingServices
from ..dependencies import get_services, require_admin

router = APIRouter()


class PlanResponse(BaseModel):
    id: str
    name: str
    storage_quota_bytes: int
    max_file_size_bytes: int
    monthly_price: Decimal
    annual_price: Decimal
    features: List[str] = []
    sort_order: int
    is_popular: bool
    sharing_enabled: bool
    priority_support: bool
    is_active: bool

    class Config:
        from_attributes = True


class PlanCreate(BaseModel):
    id: Optional[str] = None
    name: str
    storage_quota_bytes: int
    max_file_size_bytes: int
    monthly_price: Decimal
    annual_price: Decimal
    features: List[str] = []
    sort_order: Optional[int] = None
    is_popular: bool = False
    sharing_enabled: bool = True
    priority_support: bool = False
    is_active: bool = True


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    storage_quota_bytes: Optional[int] = None
    max_file_size_bytes: Optional[int] = None
    monthly_price: Optional[Decimal] = None
    annual_price: Optional[Decimal] = None
    features: Optional[List[str]] = None
    sort_order: Optional[int] = None
    is_popular: Optional[bool] = None
    sharing_enabled: Optional[bool] = None
    priority_support: Optional[bool] = None
    is_active: Optional[bool] = None


@router.get("", response_model=List[PlanResponse])
async def list_plans(services: BillingServices = Depends(get_services)):
    """Active plans in tier order"""
    return await services.plans.list_active_plans()


@router.get("/all", response_model=List[PlanResponse])
async def list_all_plans(
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    return await services.plans.list_plans()


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: str, services: BillingServices = Depends(get_services)):
    return await services.plans.get_plan(plan_id)


@router.post("", response_model=PlanResponse, status_code=201)
async def create_plan(
    data: PlanCreate,
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    return await services.plans.create_plan(data.model_dump(exclude_none=True))


@router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    patch: PlanUpdate,
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    return await services.plans.update_plan(plan_id, patch.model_dump(exclude_unset=True))


@router.post("/{plan_id}/deactivate", response_model=PlanResponse)
async def deactivate_plan(
    plan_id: str,
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    return await services.plans.deactivate_plan(plan_id)


@router.delete("/{plan_id}", status_code=204)
async def delete_plan(
    plan_id: str,
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    await services.plans.delete_plan(plan_id)
