"""
Outcome events: audit rows written inside the caller's transaction,
published to Redis once the transaction has committed
"""
from typing import Iterable, Optional
import logging

from redis.exceptions import RedisError
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.redis import RedisPublisher
from shared.models.analytics import Event

logger = logging.getLogger(__name__)

PAYMENT_CREATED = "payment.created"
PAYMENT_SUBMITTED = "payment.submitted"
PAYMENT_VERIFIED = "payment.verified"
PAYMENT_REJECTED = "payment.rejected"
PAYMENT_REFUNDED = "payment.refunded"
PAYMENT_EXPIRED = "payment.expired"
PAYMENT_SUBMISSION_FAILED = "payment.submission_failed"
QUOTA_OVER_RELEASE = "quota.over_release"


class EventService:
    def __init__(self, session: AsyncSession):
        self.session = session
    
    def record(self, user_id: str, event_type: str, intent_id: Optional[str] = None, properties: dict = None) -> Event:
        """Stage an event; it commits together with the caller's changes"""
        event = Event(
            user_id=user_id,
            event_type=event_type,
            intent_id=intent_id,
            properties=properties
        )
        self.session.add(event)
        return event
    
    async def count(self, event_type: str, intent_id: str) -> int:
        result = await self.session.execute(
            select(func.count(Event.id))
            .where(Event.event_type == event_type)
            .where(Event.intent_id == intent_id)
        )
        return result.scalar() or 0
    
    async def list_for_intent(self, intent_id: str):
        result = await self.session.execute(
            select(Event)
            .where(Event.intent_id == intent_id)
            .order_by(Event.created_at, Event.id)
        )
        return result.scalars().all()


class EventPublisher:
    """Fans committed events out to the notification layer"""
    
    def __init__(self, publisher: Optional[RedisPublisher] = None):
        self.publisher = publisher
    
    async def publish(self, events: Iterable[Event]):
        if not self.publisher:
            return
        
        for event in events:
            payload = {
                "type": event.event_type,
                "user_id": event.user_id,
                "intent_id": event.intent_id,
                "properties": event.properties or {},
                "created_at": event.created_at,
            }
            try:
                await self.publisher.publish(payload)
            except RedisError as e:
                # The change is committed; subscribers fall back to polling
                logger.warning(f"Could not publish {event.event_type} for intent {event.intent_id}: {e}")
