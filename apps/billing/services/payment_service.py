"""
Payment service: UPI payment intents from creation to admin verification
"""
from contextlib import nullcontext
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional
from urllib.parse import quote
import logging
import uuid

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.config.settings import Settings, settings as default_settings
from shared.models.payment import PaymentIntent, PaymentStatus, BillingCycle, PaymentChannel
from shared.models.subscription import Subscription
from ..exceptions import (
    InactivePlan,
    IntentExpired,
    IntentNotFound,
    InvalidTransition,
    PermissionDenied,
    ValidationError,
)
from . import event_service as events
from .event_service import EventService, EventPublisher
from .keyed_locks import KeyedLocks
from .payment_repository import PaymentIntentRepository
from .payment_states import ensure_transition, CREATED, PENDING, VERIFIED, REJECTED, REFUNDED
from .plan_service import load_plan
from .quota_service import get_or_create_subscription, user_lock_key
from .transaction import transaction, read_only

logger = logging.getLogger(__name__)

BILLING_CYCLES = {cycle.value for cycle in BillingCycle}
PAYMENT_CHANNELS = {channel.value for channel in PaymentChannel}
RESOLUTION_OUTCOMES = {VERIFIED, REJECTED}
CYCLE_LENGTH = {"monthly": timedelta(days=30), "annual": timedelta(days=365)}


def intent_lock_key(intent_id: str):
    return ("intent", intent_id)


def _require_admin(actor):
    if actor is None or not getattr(actor, "is_admin", False):
        raise PermissionDenied("Only administrators can do this")


class PaymentService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings = default_settings,
        locks: Optional[KeyedLocks] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.locks = locks or KeyedLocks()
        self.publisher = publisher or EventPublisher()

    async def create_intent(
        self,
        user_id: str,
        plan_id: str,
        billing_cycle: str,
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        """Open a payment intent with the plan price captured now"""
        if not user_id:
            raise ValidationError("user_id is required")
        if billing_cycle not in BILLING_CYCLES:
            raise ValidationError(
                f"Unknown billing cycle {billing_cycle}",
                details={"billing_cycle": billing_cycle, "allowed": sorted(BILLING_CYCLES)},
            )

        # Same-key retries from one user must not both insert
        guard = self.locks.hold(("idempotency", user_id, idempotency_key)) if idempotency_key else nullcontext()
        async with guard:
            async with transaction(self.session_factory) as session:
                repository = PaymentIntentRepository(session)

                if idempotency_key:
                    existing = await repository.find_by_idempotency_key(user_id, idempotency_key)
                    if existing:
                        if existing.plan_id != plan_id or existing.billing_cycle != billing_cycle:
                            raise ValidationError(
                                "Idempotency key was already used for a different plan",
                                details={"idempotency_key": idempotency_key, "intent_id": existing.id},
                            )
                        logger.info(f"Returning existing intent {existing.id} for idempotency key")
                        return existing

                plan = await load_plan(session, plan_id)
                if not plan.is_active:
                    raise InactivePlan(plan_id)

                amount = Decimal(plan.price_for(billing_cycle))
                if amount <= 0:
                    raise ValidationError(
                        f"Plan {plan_id} has no {billing_cycle} price to pay",
                        details={"plan_id": plan_id, "billing_cycle": billing_cycle},
                    )

                now = datetime.utcnow()
                intent = PaymentIntent(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    plan_id=plan.id,
                    billing_cycle=billing_cycle,
                    amount=amount,
                    currency=self.settings.currency,
                    status=CREATED,
                    idempotency_key=idempotency_key,
                    created_at=now,
                    expires_at=now + timedelta(minutes=self.settings.payment_intent_ttl_minutes),
                )
                await repository.create(intent)
                event = EventService(session).record(
                    user_id, events.PAYMENT_CREATED, intent.id,
                    {"plan_id": plan.id, "billing_cycle": billing_cycle, "amount": str(amount)},
                )

        logger.info(f"Created payment intent {intent.id} for user {user_id}: {plan_id}/{billing_cycle} {amount}")
        await self.publisher.publish([event])
        return intent

    async def submit_reference(
        self,
        intent_id: str,
        reference: str,
        channel: str,
        proof_url: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> PaymentIntent:
        """Attach the user's UTR and move the intent to pending verification.

        References are unique across all users. Sending the same reference
        again for an intent that already holds it returns the intent as-is,
        so a client retry after a lost response is harmless.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("Transaction reference must not be empty", details={"field": "reference"})
        if channel not in PAYMENT_CHANNELS:
            raise ValidationError(
                f"Unknown payment app {channel}",
                details={"channel": channel, "allowed": sorted(PAYMENT_CHANNELS)},
            )
        proof_url = (proof_url or "").strip() or None

        async with self.locks.hold(intent_lock_key(intent_id)):
            async with transaction(self.session_factory) as session:
                repository = PaymentIntentRepository(session)
                intent = await self._load_owned(repository, intent_id, user_id, for_update=True)

                if intent.status == PENDING and intent.external_reference == reference:
                    return intent

                await repository.ensure_reference_free(reference, intent.id)
                ensure_transition(intent.status, PENDING)

                now = datetime.utcnow()
                if intent.expires_at and now >= intent.expires_at:
                    raise IntentExpired(
                        "Payment intent expired, start a new payment",
                        current=intent.status,
                        target=PENDING,
                    )

                intent.external_reference = reference
                intent.payment_channel = channel
                intent.proof_url = proof_url
                intent.submitted_at = now
                intent.status = PENDING
                await repository.update(intent)
                event = EventService(session).record(
                    intent.user_id, events.PAYMENT_SUBMITTED, intent.id,
                    {"reference": reference, "channel": channel},
                )

        logger.info(f"Payment intent {intent_id} submitted with reference {reference} via {channel}")
        await self.publisher.publish([event])
        return intent

    async def resolve_verification(
        self,
        intent_id: str,
        outcome: str,
        notes: Optional[str] = None,
        actor=None,
    ) -> PaymentIntent:
        """Apply the administrator's verdict on a pending intent.

        On verified, the subscription switch and the intent write commit in
        the same transaction, so no reader sees one without the other.
        """
        _require_admin(actor)
        if outcome not in RESOLUTION_OUTCOMES:
            raise ValidationError(
                f"Unknown verification outcome {outcome}",
                details={"outcome": outcome, "allowed": sorted(RESOLUTION_OUTCOMES)},
            )

        owner_id = (await self.get_intent(intent_id)).user_id

        async with self.locks.hold(intent_lock_key(intent_id)):
            async with self.locks.hold(user_lock_key(owner_id)):
                async with transaction(self.session_factory) as session:
                    repository = PaymentIntentRepository(session)
                    intent = await repository.find_by_id(intent_id, for_update=True)
                    # Cancelling may reject a created intent, an administrator may not
                    if intent.status != PENDING:
                        raise InvalidTransition(
                            f"Payment intent {intent_id} is {intent.status}, only submitted payments can be resolved",
                            current=intent.status,
                            target=outcome,
                        )
                    ensure_transition(intent.status, outcome)

                    now = datetime.utcnow()
                    intent.resolved_by = actor.id
                    intent.completed_at = now
                    if notes:
                        intent.verification_notes = notes

                    if outcome == VERIFIED:
                        # Subscription first; the intent write only lands with it
                        await self._apply_plan(session, intent, now)
                        intent.status = VERIFIED
                        intent.verified_at = now
                        event_type = events.PAYMENT_VERIFIED
                    else:
                        intent.status = REJECTED
                        intent.failure_reason = notes or "Rejected by administrator"
                        event_type = events.PAYMENT_REJECTED

                    await repository.update(intent)
                    event = EventService(session).record(
                        intent.user_id, event_type, intent.id,
                        {"plan_id": intent.plan_id, "resolved_by": actor.id, "notes": notes},
                    )

        logger.info(f"Payment intent {intent_id} {outcome} by {actor.id}")
        await self.publisher.publish([event])
        return intent

    async def cancel_intent(self, intent_id: str, actor, reason: Optional[str] = None) -> PaymentIntent:
        """User abandons, or an admin voids, an intent that is not yet resolved"""
        async with self.locks.hold(intent_lock_key(intent_id)):
            async with transaction(self.session_factory) as session:
                repository = PaymentIntentRepository(session)
                intent = await repository.find_by_id(intent_id, for_update=True)
                if not getattr(actor, "is_admin", False) and intent.user_id != getattr(actor, "id", None):
                    raise IntentNotFound(intent_id)
                ensure_transition(intent.status, REJECTED)

                intent.status = REJECTED
                intent.failure_reason = reason or "cancelled"
                intent.completed_at = datetime.utcnow()
                await repository.update(intent)
                event = EventService(session).record(
                    intent.user_id, events.PAYMENT_REJECTED, intent.id,
                    {"cancelled": True, "cancelled_by": actor.id, "reason": intent.failure_reason},
                )

        logger.info(f"Payment intent {intent_id} cancelled by {actor.id}")
        await self.publisher.publish([event])
        return intent

    async def refund_intent(self, intent_id: str, actor, notes: Optional[str] = None) -> PaymentIntent:
        """Mark a verified payment refunded and take back the plan it bought"""
        _require_admin(actor)
        owner_id = (await self.get_intent(intent_id)).user_id

        async with self.locks.hold(intent_lock_key(intent_id)):
            async with self.locks.hold(user_lock_key(owner_id)):
                async with transaction(self.session_factory) as session:
                    repository = PaymentIntentRepository(session)
                    intent = await repository.find_by_id(intent_id, for_update=True)
                    ensure_transition(intent.status, REFUNDED)

                    now = datetime.utcnow()
                    await self._revert_plan(session, intent, now)
                    intent.status = REFUNDED
                    intent.refunded_at = now
                    intent.resolved_by = actor.id
                    if notes:
                        intent.verification_notes = notes
                    await repository.update(intent)
                    event = EventService(session).record(
                        intent.user_id, events.PAYMENT_REFUNDED, intent.id,
                        {"amount": str(intent.amount), "refunded_by": actor.id, "notes": notes},
                    )

        logger.info(f"Payment intent {intent_id} refunded by {actor.id}")
        await self.publisher.publish([event])
        return intent

    async def get_intent(self, intent_id: str, user_id: Optional[str] = None) -> PaymentIntent:
        async with read_only(self.session_factory) as session:
            return await self._load_owned(PaymentIntentRepository(session), intent_id, user_id)

    async def list_for_user(self, user_id: str) -> List[PaymentIntent]:
        async with read_only(self.session_factory) as session:
            return await PaymentIntentRepository(session).list_by_user(user_id)

    async def list_pending(self, actor) -> List[PaymentIntent]:
        """Admin queue of submitted intents, oldest first"""
        _require_admin(actor)
        async with read_only(self.session_factory) as session:
            return await PaymentIntentRepository(session).list_by_status(PENDING)

    async def payment_analytics(self, actor) -> Dict:
        _require_admin(actor)
        async with read_only(self.session_factory) as session:
            result = await session.execute(
                select(PaymentIntent.status, func.count(PaymentIntent.id), func.sum(PaymentIntent.amount))
                .group_by(PaymentIntent.status)
            )
            counts = {status.value: 0 for status in PaymentStatus}
            revenue = Decimal("0")
            for status, count, total in result.all():
                counts[status] = count
                if status == VERIFIED and total is not None:
                    revenue = Decimal(total)

        resolved = counts[VERIFIED] + counts[PENDING] + counts[REJECTED]
        success_rate = round(counts[VERIFIED] / max(1, resolved) * 100, 2)
        return {
            "total_revenue": revenue,
            "success_rate": success_rate,
            "pending_count": counts[PENDING],
            "counts": counts,
        }

    async def build_upi_link(self, intent_id: str, user_id: Optional[str] = None) -> Dict:
        """UPI deep link the client turns into a QR code"""
        async with read_only(self.session_factory) as session:
            intent = await self._load_owned(PaymentIntentRepository(session), intent_id, user_id)
            if intent.status != CREATED:
                raise InvalidTransition(
                    "Payment intent is no longer awaiting payment",
                    current=intent.status,
                    target=PENDING,
                )
            plan = await load_plan(session, intent.plan_id)

        amount = f"{Decimal(intent.amount):.2f}"
        upi_url = (
            f"upi://pay?pa={quote(self.settings.upi_payee_id)}"
            f"&pn={quote(self.settings.upi_payee_name)}"
            f"&am={amount}"
            f"&tn={quote('Upgrade to ' + plan.name)}"
            f"&tr={intent.id}"
            f"&cu={intent.currency}"
        )
        return {
            "intent_id": intent.id,
            "upi_url": upi_url,
            "payee_id": self.settings.upi_payee_id,
            "amount": amount,
            "currency": intent.currency,
            "expires_at": intent.expires_at,
        }

    async def expire_stale_intents(self, now: Optional[datetime] = None) -> int:
        """Reject created intents whose payment window has closed"""
        now = now or datetime.utcnow()
        async with read_only(self.session_factory) as session:
            result = await session.execute(
                select(PaymentIntent.id)
                .where(PaymentIntent.status == CREATED)
                .where(PaymentIntent.expires_at <= now)
            )
            candidates = list(result.scalars().all())

        expired = []
        for intent_id in candidates:
            async with self.locks.hold(intent_lock_key(intent_id)):
                async with transaction(self.session_factory) as session:
                    repository = PaymentIntentRepository(session)
                    intent = await repository.find_by_id(intent_id, for_update=True)
                    # Submitted or cancelled since the scan
                    if intent.status != CREATED:
                        continue
                    intent.status = REJECTED
                    intent.failure_reason = "expired"
                    intent.completed_at = now
                    await repository.update(intent)
                    expired.append(EventService(session).record(
                        intent.user_id, events.PAYMENT_EXPIRED, intent.id,
                        {"expires_at": intent.expires_at.isoformat()},
                    ))

        if expired:
            logger.info(f"Expired {len(expired)} unpaid payment intents")
            await self.publisher.publish(expired)
        return len(expired)

    async def _load_owned(
        self,
        repository: PaymentIntentRepository,
        intent_id: str,
        user_id: Optional[str],
        for_update: bool = False,
    ) -> PaymentIntent:
        intent = await repository.find_by_id(intent_id, for_update=for_update)
        # Other users' intents look missing rather than forbidden
        if user_id is not None and intent.user_id != user_id:
            raise IntentNotFound(intent_id)
        return intent

    async def _apply_plan(self, session: AsyncSession, intent: PaymentIntent, now: datetime) -> Subscription:
        """Move the user onto the intent's plan; bytes already stored stay counted"""
        subscription = await get_or_create_subscription(session, intent.user_id, self.settings.default_plan_id)
        if subscription.source_intent_id == intent.id:
            return subscription

        subscription.plan_id = intent.plan_id
        subscription.billing_cycle = intent.billing_cycle
        subscription.starts_at = now
        subscription.ends_at = now + CYCLE_LENGTH[intent.billing_cycle]
        subscription.is_active = True
        subscription.last_payment_at = now
        subscription.source_intent_id = intent.id
        await session.flush()
        logger.info(f"User {intent.user_id} moved to plan {intent.plan_id} ({intent.billing_cycle})")
        return subscription

    async def _revert_plan(self, session: AsyncSession, intent: PaymentIntent, now: datetime):
        subscription = await get_or_create_subscription(session, intent.user_id, self.settings.default_plan_id)
        if subscription.source_intent_id != intent.id:
            # A later purchase replaced this plan already
            return

        subscription.plan_id = self.settings.default_plan_id
        subscription.billing_cycle = "monthly"
        subscription.starts_at = now
        subscription.ends_at = None
        subscription.source_intent_id = None
        await session.flush()
        logger.info(f"User {intent.user_id} moved back to {self.settings.default_plan_id} after refund")
