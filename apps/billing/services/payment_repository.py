"""
Payment intent store
"""
from typing import List, Optional

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.payment import PaymentIntent
from ..exceptions import DuplicateReference, IntentNotFound


class PaymentIntentRepository:
    """Reads and writes intents inside the caller's session.

    The repository never decides whether a change is legal; PaymentService
    mutates the loaded intent and hands the whole row back to update().
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, intent: PaymentIntent) -> PaymentIntent:
        if intent.external_reference:
            await self.ensure_reference_free(intent.external_reference, intent.id)
        self.session.add(intent)
        await self._flush(intent)
        return intent

    async def find_by_id(self, intent_id: str, for_update: bool = False) -> PaymentIntent:
        query = select(PaymentIntent).where(PaymentIntent.id == intent_id)
        if for_update:
            # Row lock on PostgreSQL, ignored by SQLite
            query = query.with_for_update()
        result = await self.session.execute(query)
        intent = result.scalar_one_or_none()
        if not intent:
            raise IntentNotFound(intent_id)
        return intent

    async def find_by_reference(self, reference: str) -> Optional[PaymentIntent]:
        result = await self.session.execute(
            select(PaymentIntent).where(PaymentIntent.external_reference == reference)
        )
        return result.scalar_one_or_none()

    async def find_by_idempotency_key(self, user_id: str, key: str) -> Optional[PaymentIntent]:
        result = await self.session.execute(
            select(PaymentIntent)
            .where(PaymentIntent.user_id == user_id)
            .where(PaymentIntent.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> List[PaymentIntent]:
        """Newest first"""
        result = await self.session.execute(
            select(PaymentIntent)
            .where(PaymentIntent.user_id == user_id)
            .order_by(desc(PaymentIntent.created_at))
        )
        return list(result.scalars().all())

    async def list_by_status(self, *statuses: str) -> List[PaymentIntent]:
        result = await self.session.execute(
            select(PaymentIntent)
            .where(PaymentIntent.status.in_(statuses))
            .order_by(PaymentIntent.created_at)
        )
        return list(result.scalars().all())

    async def ensure_reference_free(self, reference: str, intent_id: Optional[str] = None):
        holder = await self.find_by_reference(reference)
        if holder and holder.id != intent_id:
            raise DuplicateReference(reference)

    async def update(self, intent: PaymentIntent) -> PaymentIntent:
        """Write the intent back; the version column rejects a concurrent writer"""
        await self._flush(intent)
        return intent

    async def _flush(self, intent: PaymentIntent):
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Lost a race on the unique reference index
            if intent.external_reference and "external_reference" in str(e.orig):
                raise DuplicateReference(intent.external_reference) from e
            raise
