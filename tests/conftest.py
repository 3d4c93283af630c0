"""Pytest configuration and fixtures for billing tests."""

import pytest
import pytest_asyncio
from sqlalchemy import update

from shared.config.database import init_db
from shared.config.settings import Settings
from shared.models.subscription import Subscription
from shared.models.user import User
from apps.billing.services import build_services
from apps.billing.services.transaction import transaction


class RecordingPublisher:
    """Stands in for the Redis publisher and keeps every payload."""

    def __init__(self):
        self.payloads = []

    async def publish(self, payload: dict) -> bool:
        self.payloads.append(payload)
        return True

    async def close(self):
        pass

    @property
    def types(self):
        return [payload["type"] for payload in self.payloads]


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a throwaway SQLite file with instant retries."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/billing.db",
        redis_url=None,
        payment_retry_backoff_base=0.0,
        payment_processing_timeout=5.0,
        payment_poll_interval=0.01,
        payment_max_retries=3,
    )


@pytest_asyncio.fixture
async def services(test_settings):
    """Service container over a fresh database with the default catalog."""
    services = build_services(test_settings)
    await init_db(services.engine)
    await services.plans.seed_default_plans()
    yield services
    await services.engine.dispose()


@pytest.fixture
def published(services):
    """Outcome events published after commit."""
    publisher = RecordingPublisher()
    services.publisher.publisher = publisher
    return publisher


async def create_user(services, user_id: str, role: str = "user") -> User:
    async with transaction(services.session_factory) as session:
        user = User(
            id=user_id,
            email=f"{user_id}@clouddrive.test",
            role=role,
            api_token=f"token-{user_id}",
            is_active=True,
        )
        session.add(user)
    return user


async def set_storage_used(services, user_id: str, used: int):
    """Put bytes on a user's ledger without going through the guard."""
    await services.quota.get_or_create_subscription(user_id)
    async with transaction(services.session_factory) as session:
        await session.execute(
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .values(storage_used_bytes=used)
        )


@pytest_asyncio.fixture
async def user(services):
    return await create_user(services, "user-1")


@pytest_asyncio.fixture
async def other_user(services):
    return await create_user(services, "user-2")


@pytest_asyncio.fixture
async def admin(services):
    return await create_user(services, "admin-1", role="admin")


@pytest_asyncio.fixture
async def pending_intent(services, user):
    """A basic monthly intent with UTR12345 submitted."""
    intent = await services.payments.create_intent(user.id, "basic", "monthly")
    return await services.payments.submit_reference(intent.id, "UTR12345", "gpay", user_id=user.id)


@pytest.fixture
def set_used(services):
    async def _set(user_id: str, used: int):
        await set_storage_used(services, user_id, used)
    return _set
