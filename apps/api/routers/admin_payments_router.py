"""
Manual verification queue for administrators
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import Dict, List, Optional
from decimal import Decimal

from shared.models.user import User
from apps.billing.services import BillingServices
from ..dependencies import get_services, require_admin
from .payments_router import IntentResponse

router = APIRouter()


class ResolveRequest(BaseModel):
    outcome: str  # verified, rejected
    notes: Optional[str] = None


class RefundRequest(BaseModel):
    notes: Optional[str] = None


class PaymentAnalyticsResponse(BaseModel):
    total_revenue: Decimal
    success_rate: float
    pending_count: int
    counts: Dict[str, int]


@router.get("/pending", response_model=List[IntentResponse])
async def list_pending(
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    """Submitted intents waiting for a decision, oldest first"""
    return await services.payments.list_pending(admin)


@router.get("/analytics", response_model=PaymentAnalyticsResponse)
async def payment_analytics(
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    return await services.payments.payment_analytics(admin)


@router.post("/{intent_id}/resolve", response_model=IntentResponse)
async def resolve_payment(
    intent_id: str,
    data: ResolveRequest,
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    return await services.payments.resolve_verification(
        intent_id, data.outcome, notes=data.notes, actor=admin
    )


@router.post("/{intent_id}/refund", response_model=IntentResponse)
async def refund_payment(
    intent_id: str,
    data: Optional[RefundRequest] = None,
    services: BillingServices = Depends(get_services),
    admin: User = Depends(require_admin)
):
    notes = data.notes if data else None
    return await services.payments.refund_intent(intent_id, actor=admin, notes=notes)
