"""
Wires the billing services to one engine, one lock registry and one publisher
"""
from dataclasses import dataclass
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from shared.config.database import build_engine, build_session_factory, init_db
from shared.config.redis import RedisPublisher, init_redis
from shared.config.settings import Settings, settings as default_settings
from .event_service import EventPublisher
from .keyed_locks import KeyedLocks
from .payment_polling_service import PaymentPollingService
from .payment_retry_service import PaymentRetryService
from .payment_service import PaymentService
from .plan_service import PlanService
from .quota_service import QuotaService

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker
    locks: KeyedLocks
    publisher: EventPublisher
    plans: PlanService
    quota: QuotaService
    payments: PaymentService
    retry: PaymentRetryService
    polling: PaymentPollingService

    async def start(self, create_tables: bool = False, seed_plans: bool = True):
        """Open outside connections; safe to skip in tests"""
        if create_tables:
            await init_db(self.engine)
            logger.info("Database initialized")
        if seed_plans:
            await self.plans.seed_default_plans()

        client = await init_redis(self.settings.redis_url)
        if client:
            self.publisher.publisher = RedisPublisher(client, self.settings.events_channel)

    async def close(self):
        if self.publisher.publisher:
            await self.publisher.publisher.close()
            self.publisher.publisher = None
        await self.engine.dispose()


def build_services(settings: Settings = default_settings, engine: Optional[AsyncEngine] = None) -> BillingServices:
    engine = engine or build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    # Quota and payments share the registry so user locks cover both
    locks = KeyedLocks()
    publisher = EventPublisher()

    payments = PaymentService(session_factory, settings, locks, publisher)
    return BillingServices(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        locks=locks,
        publisher=publisher,
        plans=PlanService(session_factory),
        quota=QuotaService(session_factory, settings, locks, publisher),
        payments=payments,
        retry=PaymentRetryService(payments, session_factory, settings, publisher),
        polling=PaymentPollingService(payments, settings),
    )
