"""
Storage quota ledger and the pre-upload guard
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import select, update, exists, case
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shared.config.settings import Settings, settings as default_settings
from shared.models.plan import Plan
from shared.models.subscription import Subscription
from ..exceptions import QuotaExceeded, FileTooLarge, ValidationError
from .event_service import EventService, EventPublisher, QUOTA_OVER_RELEASE
from .keyed_locks import KeyedLocks
from .plan_service import load_plan
from .transaction import transaction

logger = logging.getLogger(__name__)


@dataclass
class QuotaUsage:
    user_id: str
    plan_id: str
    used: int
    limit: int
    max_file_size: int
    can_upgrade: bool = False

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    @property
    def percent(self) -> int:
        if not self.limit:
            return 100
        return min(int((self.used / self.limit) * 100), 100)

    @property
    def near_limit(self) -> bool:
        return self.percent >= 99

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update(remaining=self.remaining, percent=self.percent, near_limit=self.near_limit)
        return data


def user_lock_key(user_id: str):
    return ("user", user_id)


async def get_or_create_subscription(session: AsyncSession, user_id: str, default_plan_id: str) -> Subscription:
    """Load the user's ledger entry, creating a default-plan one on first access.

    Callers must hold the user's lock; two creators for one user would
    collide on the unique user_id index.
    """
    result = await session.execute(
        select(Subscription).where(Subscription.user_id == user_id)
    )
    subscription = result.scalar_one_or_none()

    if not subscription:
        await load_plan(session, default_plan_id)
        subscription = Subscription(
            user_id=user_id,
            plan_id=default_plan_id,
            billing_cycle="monthly",
            starts_at=datetime.utcnow(),
            is_active=True,
            storage_used_bytes=0,
        )
        session.add(subscription)
        await session.flush()
        logger.info(f"Created {default_plan_id} subscription for user {user_id}")

    return subscription


def _validate_size(size) -> int:
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        raise ValidationError("Size must be a non-negative number of bytes", details={"size": size})
    return size


class QuotaService:
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

    async def check_and_reserve(self, user_id: str, size: int) -> QuotaUsage:
        """Reserve size bytes for an upload or raise QuotaExceeded.

        The increment is a single UPDATE guarded by the plan quota, so it
        cannot overshoot even if another process races this one; the per-user
        lock keeps same-process callers from contending on the row.
        """
        _validate_size(size)

        async with self.locks.hold(user_lock_key(user_id)):
            async with transaction(self.session_factory) as session:
                subscription = await get_or_create_subscription(session, user_id, self.settings.default_plan_id)
                plan = await load_plan(session, subscription.plan_id)

                # Running out of space is reported ahead of the per-file ceiling
                if subscription.storage_used_bytes + size > plan.storage_quota_bytes:
                    raise QuotaExceeded(plan.id, subscription.storage_used_bytes, size, plan.storage_quota_bytes)
                if size > plan.max_file_size_bytes:
                    raise FileTooLarge(plan.id, subscription.storage_used_bytes, size, plan.max_file_size_bytes)

                quota_limit = (
                    select(Plan.storage_quota_bytes)
                    .where(Plan.id == Subscription.plan_id)
                    .correlate(Subscription)
                    .scalar_subquery()
                )
                result = await session.execute(
                    update(Subscription)
                    .where(Subscription.id == subscription.id)
                    .where(Subscription.storage_used_bytes + size <= quota_limit)
                    .values(storage_used_bytes=Subscription.storage_used_bytes + size)
                    .execution_options(synchronize_session=False)
                )
                await session.refresh(subscription)

                if result.rowcount != 1:
                    logger.info(
                        f"Quota exceeded for user {user_id}: used {subscription.storage_used_bytes}, "
                        f"requested {size}, limit {plan.storage_quota_bytes}"
                    )
                    raise QuotaExceeded(plan.id, subscription.storage_used_bytes, size, plan.storage_quota_bytes)

                usage = self._usage(subscription, plan)

        logger.debug(f"Reserved {size} bytes for user {user_id}, now {usage.used}/{usage.limit}")
        return usage

    async def release(self, user_id: str, size: int) -> QuotaUsage:
        """Give back size bytes after a hard delete; the counter never drops below zero"""
        _validate_size(size)
        events = []

        async with self.locks.hold(user_lock_key(user_id)):
            async with transaction(self.session_factory) as session:
                subscription = await get_or_create_subscription(session, user_id, self.settings.default_plan_id)
                plan = await load_plan(session, subscription.plan_id)
                used_before = subscription.storage_used_bytes

                await session.execute(
                    update(Subscription)
                    .where(Subscription.id == subscription.id)
                    .values(
                        storage_used_bytes=case(
                            (Subscription.storage_used_bytes >= size, Subscription.storage_used_bytes - size),
                            else_=0,
                        )
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.refresh(subscription)

                if size > used_before:
                    # Accounting drift: something released bytes it never reserved
                    logger.error(
                        f"Over-release for user {user_id}: released {size} bytes with only {used_before} used, "
                        f"counter clamped to 0"
                    )
                    events.append(EventService(session).record(
                        user_id, QUOTA_OVER_RELEASE,
                        properties={"used": used_before, "released": size},
                    ))

                usage = self._usage(subscription, plan)

        await self.publisher.publish(events)
        return usage

    async def get_usage(self, user_id: str) -> QuotaUsage:
        async with self.locks.hold(user_lock_key(user_id)):
            async with transaction(self.session_factory) as session:
                subscription = await get_or_create_subscription(session, user_id, self.settings.default_plan_id)
                plan = await load_plan(session, subscription.plan_id)

                higher_tier = await session.execute(
                    select(
                        exists()
                        .where(Plan.is_active == True)
                        .where(Plan.sort_order > plan.sort_order)
                    )
                )
                return self._usage(subscription, plan, can_upgrade=bool(higher_tier.scalar()))

    async def get_or_create_subscription(self, user_id: str) -> Subscription:
        async with self.locks.hold(user_lock_key(user_id)):
            async with transaction(self.session_factory) as session:
                return await get_or_create_subscription(session, user_id, self.settings.default_plan_id)

    @staticmethod
    def _usage(subscription: Subscription, plan: Plan, can_upgrade: bool = False) -> QuotaUsage:
        return QuotaUsage(
            user_id=subscription.user_id,
            plan_id=plan.id,
            used=subscription.storage_used_bytes,
            limit=plan.storage_quota_bytes,
            max_file_size=plan.max_file_size_bytes,
            can_upgrade=can_upgrade,
        )
