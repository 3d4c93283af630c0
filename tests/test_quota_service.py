"""Tests for the storage quota guard and ledger."""

import asyncio
import pytest

from shared.models.plan import GB, MB
from apps.billing.exceptions import QuotaExceeded, FileTooLarge, ValidationError
from apps.billing.services.event_service import QUOTA_OVER_RELEASE


class TestCheckAndReserve:
    """Pre-upload guard."""

    @pytest.mark.asyncio
    async def test_first_access_creates_free_subscription(self, services):
        usage = await services.quota.check_and_reserve("user-1", 10 * MB)

        assert usage.plan_id == "free"
        assert usage.used == 10 * MB
        assert usage.limit == 15 * GB
        assert usage.remaining == 15 * GB - 10 * MB

    @pytest.mark.asyncio
    async def test_reservations_accumulate(self, services):
        await services.quota.check_and_reserve("user-1", 40 * MB)
        usage = await services.quota.check_and_reserve("user-1", 60 * MB)

        assert usage.used == 100 * MB

    @pytest.mark.asyncio
    async def test_quota_rejection_reports_ledger(self, services, set_used):
        """Free plan with 14.9 GB used cannot take 200 MB more."""
        used = int(14.9 * GB)
        await set_used("user-1", used)

        with pytest.raises(QuotaExceeded) as exc_info:
            await services.quota.check_and_reserve("user-1", 200 * MB)

        error = exc_info.value
        assert not isinstance(error, FileTooLarge)
        assert error.details == {
            "plan": "free",
            "used": used,
            "requested": 200 * MB,
            "limit": 15 * GB,
        }
        usage = await services.quota.get_usage("user-1")
        assert usage.used == used

    @pytest.mark.asyncio
    async def test_exact_fit_is_allowed(self, services, set_used):
        await set_used("user-1", 15 * GB - 50 * MB)

        usage = await services.quota.check_and_reserve("user-1", 50 * MB)

        assert usage.used == usage.limit
        assert usage.remaining == 0

    @pytest.mark.asyncio
    async def test_file_over_plan_ceiling(self, services):
        with pytest.raises(FileTooLarge) as exc_info:
            await services.quota.check_and_reserve("user-1", 101 * MB)

        assert exc_info.value.limit == 100 * MB
        assert isinstance(exc_info.value, QuotaExceeded)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [-1, 1.5, "100", True])
    async def test_bad_sizes(self, services, size):
        with pytest.raises(ValidationError):
            await services.quota.check_and_reserve("user-1", size)

    @pytest.mark.asyncio
    async def test_concurrent_reserves_never_overshoot(self, services, set_used):
        """Ten 100 MB uploads race for 350 MB of room: exactly three fit."""
        await set_used("user-1", 15 * GB - 350 * MB)

        results = await asyncio.gather(
            *[services.quota.check_and_reserve("user-1", 100 * MB) for _ in range(10)],
            return_exceptions=True,
        )

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 3
        assert all(isinstance(e, QuotaExceeded) for e in failed)
        usage = await services.quota.get_usage("user-1")
        assert usage.used == 15 * GB - 50 * MB

    @pytest.mark.asyncio
    async def test_concurrent_users_do_not_block_each_other(self, services):
        users = [f"user-{i}" for i in range(5)]

        await asyncio.gather(*[services.quota.check_and_reserve(u, 5 * MB) for u in users])

        for user_id in users:
            assert (await services.quota.get_usage(user_id)).used == 5 * MB
        assert len(services.locks) == 0


class TestRelease:
    """Hard delete bookkeeping."""

    @pytest.mark.asyncio
    async def test_release_decrements(self, services):
        await services.quota.check_and_reserve("user-1", 80 * MB)

        usage = await services.quota.release("user-1", 30 * MB)

        assert usage.used == 50 * MB

    @pytest.mark.asyncio
    async def test_over_release_clamps_and_is_recorded(self, services, published, caplog):
        await services.quota.check_and_reserve("user-1", 10 * MB)

        with caplog.at_level("ERROR"):
            usage = await services.quota.release("user-1", 25 * MB)

        assert usage.used == 0
        assert "Over-release" in caplog.text
        assert published.types == [QUOTA_OVER_RELEASE]
        assert published.payloads[0]["properties"] == {"used": 10 * MB, "released": 25 * MB}


class TestUsage:
    """Dashboard view of the ledger."""

    @pytest.mark.asyncio
    async def test_usage_percent_and_near_limit(self, services, set_used):
        await set_used("user-1", int(15 * GB * 0.995))

        usage = await services.quota.get_usage("user-1")

        assert usage.percent == 99
        assert usage.near_limit
        assert usage.can_upgrade
        data = usage.to_dict()
        assert data["plan_id"] == "free"
        assert data["near_limit"] is True

    @pytest.mark.asyncio
    async def test_top_plan_cannot_upgrade(self, services, admin):
        intent = await services.payments.create_intent("user-1", "premium", "annual")
        await services.payments.submit_reference(intent.id, "UTR-TOP", "phonepe")
        await services.payments.resolve_verification(intent.id, "verified", actor=admin)

        usage = await services.quota.get_usage("user-1")

        assert usage.plan_id == "premium"
        assert not usage.can_upgrade
