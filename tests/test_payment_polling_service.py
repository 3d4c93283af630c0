"""Tests for waiting on the administrator's decision."""

import asyncio
import pytest

from apps.billing.exceptions import PollingTimeout, IntentNotFound
from apps.billing.services.payment_polling_service import PaymentPollingService


class TestWaitForResolution:

    @pytest.mark.asyncio
    async def test_returns_once_verified(self, services, admin, pending_intent):
        waiter = asyncio.create_task(
            services.polling.wait_for_resolution(pending_intent.id, interval=0.01, timeout=5)
        )
        await asyncio.sleep(0.05)
        assert not waiter.done()

        await services.payments.resolve_verification(pending_intent.id, "verified", actor=admin)
        resolved = await waiter

        assert resolved.status == "verified"

    @pytest.mark.asyncio
    async def test_already_rejected_returns_immediately(self, services, admin, pending_intent):
        await services.payments.resolve_verification(pending_intent.id, "rejected", actor=admin)

        resolved = await services.polling.wait_for_resolution(pending_intent.id, interval=10)

        assert resolved.status == "rejected"

    @pytest.mark.asyncio
    async def test_timeout(self, services, pending_intent):
        with pytest.raises(PollingTimeout):
            await services.polling.wait_for_resolution(pending_intent.id, interval=0.01, timeout=0.05)

        stored = await services.payments.get_intent(pending_intent.id)
        assert stored.status == "pending_verification"

    @pytest.mark.asyncio
    async def test_cancel_stops_only_the_poller(self, services, admin, pending_intent):
        waiter = asyncio.create_task(services.polling.wait_for_resolution(pending_intent.id, interval=0.01))
        await asyncio.sleep(0.05)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        stored = await services.payments.get_intent(pending_intent.id)
        assert stored.status == "pending_verification"
        # The administrator can still decide afterwards
        resolved = await services.payments.resolve_verification(pending_intent.id, "verified", actor=admin)
        assert resolved.status == "verified"

    @pytest.mark.asyncio
    async def test_stop_polling_returns_last_seen(self, services, test_settings, pending_intent):
        poller = PaymentPollingService(services.payments, test_settings)
        waiter = asyncio.create_task(poller.wait_for_resolution(pending_intent.id, interval=0.01))
        await asyncio.sleep(0.05)

        poller.stop_polling()
        intent = await asyncio.wait_for(waiter, timeout=1)

        assert intent.status == "pending_verification"
        assert not poller.running

    @pytest.mark.asyncio
    async def test_other_users_intent(self, services, other_user, pending_intent):
        with pytest.raises(IntentNotFound):
            await services.polling.wait_for_resolution(pending_intent.id, user_id=other_user.id, timeout=1)

    @pytest.mark.asyncio
    async def test_concurrent_waiters_are_independent(self, services, user, admin, pending_intent):
        other = await services.payments.create_intent(user.id, "pro", "monthly")
        await services.payments.submit_reference(other.id, "UTR-OTHER", "phonepe")

        first = asyncio.create_task(services.polling.wait_for_resolution(pending_intent.id, interval=0.01, timeout=5))
        second = asyncio.create_task(services.polling.wait_for_resolution(other.id, interval=0.01, timeout=5))
        await asyncio.sleep(0.05)

        await services.payments.resolve_verification(pending_intent.id, "verified", actor=admin)
        assert (await first).status == "verified"
        await asyncio.sleep(0.05)

        assert not second.done()
        assert services.polling.running

        await services.payments.resolve_verification(other.id, "rejected", actor=admin)
        assert (await second).status == "rejected"
        assert not services.polling.running

    @pytest.mark.asyncio
    async def test_stop_polling_one_intent(self, services, user, pending_intent):
        other = await services.payments.create_intent(user.id, "pro", "monthly")
        await services.payments.submit_reference(other.id, "UTR-OTHER", "phonepe")
        first = asyncio.create_task(services.polling.wait_for_resolution(pending_intent.id, interval=0.01))
        second = asyncio.create_task(services.polling.wait_for_resolution(other.id, interval=0.01))
        await asyncio.sleep(0.05)

        services.polling.stop_polling(pending_intent.id)
        stopped = await asyncio.wait_for(first, timeout=1)
        await asyncio.sleep(0.05)

        assert stopped.status == "pending_verification"
        assert not second.done()

        services.polling.stop_polling()
        await asyncio.wait_for(second, timeout=1)
