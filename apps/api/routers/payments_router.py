"""
User-facing payment intent routes: create, pay by UPI, submit the UTR
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from decimal import Decimal

from shared.models.user import User
from apps.billing.services import BillingServices
from ..dependencies import get_services, get_current_user

router = APIRouter()


class IntentResponse(BaseModel):
    id: str
    user_id: str
    plan_id: str
    billing_cycle: str
    amount: Decimal
    currency: str
    status: str
    external_reference: Optional[str] = None
    payment_channel: Optional[str] = None
    proof_url: Optional[str] = None
    verification_notes: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IntentCreate(BaseModel):
    plan_id: str
    billing_cycle: str = "monthly"
    idempotency_key: Optional[str] = None


class ReferenceSubmit(BaseModel):
    reference: str
    channel: str
    proof_url: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class UpiLinkResponse(BaseModel):
    intent_id: str
    upi_url: str
    payee_id: str
    amount: str
    currency: str
    expires_at: Optional[datetime] = None


def _owner_filter(user: User) -> Optional[str]:
    # Admins may look at anyone's intent
    return None if user.is_admin else user.id


@router.post("/intents", response_model=IntentResponse, status_code=201)
async def create_intent(
    data: IntentCreate,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    return await services.payments.create_intent(
        user.id, data.plan_id, data.billing_cycle, idempotency_key=data.idempotency_key
    )


@router.get("/intents", response_model=List[IntentResponse])
async def list_intents(
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    """Payment history, newest first"""
    return await services.payments.list_for_user(user.id)


@router.get("/intents/{intent_id}", response_model=IntentResponse)
async def get_intent(
    intent_id: str,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    return await services.payments.get_intent(intent_id, _owner_filter(user))


@router.get("/intents/{intent_id}/upi", response_model=UpiLinkResponse)
async def get_upi_link(
    intent_id: str,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    """Deep link the client renders as a QR code"""
    return await services.payments.build_upi_link(intent_id, _owner_filter(user))


@router.post("/intents/{intent_id}/submit", response_model=IntentResponse)
async def submit_reference(
    intent_id: str,
    data: ReferenceSubmit,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    return await services.retry.process_payment(
        intent_id, data.reference, data.channel, data.proof_url, user_id=user.id
    )


@router.post("/intents/{intent_id}/retry", response_model=IntentResponse)
async def retry_submission(
    intent_id: str,
    data: ReferenceSubmit,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    """Another attempt after a failed submit; answers 429 once the budget is spent"""
    return await services.retry.retry_payment(
        intent_id, data.reference, data.channel, data.proof_url, user_id=user.id
    )


@router.post("/intents/{intent_id}/cancel", response_model=IntentResponse)
async def cancel_intent(
    intent_id: str,
    data: Optional[CancelRequest] = None,
    services: BillingServices = Depends(get_services),
    user: User = Depends(get_current_user)
):
    reason = data.reason if data else None
    return await services.payments.cancel_intent(intent_id, actor=user, reason=reason)
