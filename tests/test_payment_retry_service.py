"""Tests for bounded submission retries."""

import asyncio
import pytest

from apps.billing.exceptions import (
    DuplicateReference,
    InternalError,
    RetriesExhausted,
    SubmissionTimeout,
)
from apps.billing.services import event_service as events, payment_retry_service


class FlakySubmit:
    """Fails the first ``failures`` calls with InternalError, then submits for real."""

    def __init__(self, real_submit, failures: int):
        self.real_submit = real_submit
        self.failures = failures
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise InternalError("Database operation failed")
        return await self.real_submit(*args, **kwargs)


@pytest.fixture
def flaky(services, monkeypatch):
    def _install(failures: int) -> FlakySubmit:
        submit = FlakySubmit(services.payments.submit_reference, failures)
        monkeypatch.setattr(services.payments, "submit_reference", submit)
        return submit
    return _install


@pytest.fixture
def intent_factory(services, user):
    async def _create():
        return await services.payments.create_intent(user.id, "basic", "monthly")
    return _create


class TestBackoff:

    @pytest.mark.asyncio
    async def test_delay_doubles_per_retry(self, services, test_settings):
        test_settings.payment_retry_backoff_base = 1.0

        delays = [services.retry.backoff_delay(n) for n in (0, 1, 2)]

        assert delays == [1.0, 2.0, 4.0]
        assert services.retry.max_attempts == 4

    @pytest.mark.asyncio
    async def test_retries_wait_one_two_four(self, services, flaky, intent_factory, test_settings, monkeypatch):
        test_settings.payment_retry_backoff_base = 1.0
        intent = await intent_factory()
        flaky(10)
        waits = []

        async def fake_sleep(delay):
            waits.append(delay)

        monkeypatch.setattr(payment_retry_service.asyncio, "sleep", fake_sleep)

        with pytest.raises(RetriesExhausted):
            await services.retry.submit_with_retry(intent.id, "UTR0", "gpay")

        assert waits == [1.0, 2.0, 4.0]


class TestSubmitWithRetry:
    """Retry loop around submit_reference."""

    @pytest.mark.asyncio
    async def test_success_first_time(self, services, user, intent_factory):
        intent = await intent_factory()

        submitted = await services.retry.submit_with_retry(intent.id, "UTR1", "gpay", user_id=user.id)

        assert submitted.status == "pending_verification"
        assert await services.retry.failure_count(intent.id) == 0

    @pytest.mark.asyncio
    async def test_recovers_from_transient_failures(self, services, flaky, intent_factory, published):
        intent = await intent_factory()
        submit = flaky(2)

        submitted = await services.retry.submit_with_retry(intent.id, "UTR2", "gpay")

        assert submitted.status == "pending_verification"
        assert submit.calls == 3
        assert await services.retry.failure_count(intent.id) == 2
        assert published.types.count(events.PAYMENT_SUBMISSION_FAILED) == 2

    @pytest.mark.asyncio
    async def test_budget_spent(self, services, flaky, intent_factory):
        intent = await intent_factory()
        submit = flaky(10)

        with pytest.raises(RetriesExhausted) as exc_info:
            await services.retry.submit_with_retry(intent.id, "UTR3", "gpay")

        assert exc_info.value.attempts == 4
        assert submit.calls == 4
        stored = await services.payments.get_intent(intent.id)
        assert stored.status == "created"

    @pytest.mark.asyncio
    async def test_non_retryable_errors_are_not_counted(self, services, user, other_user, intent_factory):
        taken = await services.payments.create_intent(other_user.id, "pro", "monthly")
        await services.payments.submit_reference(taken.id, "UTR-TAKEN", "gpay")
        intent = await intent_factory()

        with pytest.raises(DuplicateReference):
            await services.retry.submit_with_retry(intent.id, "UTR-TAKEN", "gpay")

        assert await services.retry.failure_count(intent.id) == 0

    @pytest.mark.asyncio
    async def test_cancelled_between_attempts(self, services, flaky, intent_factory, test_settings):
        test_settings.payment_retry_backoff_base = 30.0
        intent = await intent_factory()
        submit = flaky(10)

        task = asyncio.create_task(services.retry.submit_with_retry(intent.id, "UTR4", "gpay"))
        while submit.calls < 1 or await services.retry.failure_count(intent.id) < 1:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert submit.calls == 1
        assert (await services.payments.get_intent(intent.id)).status == "created"


class TestRetryPayment:
    """Single user-triggered retry."""

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, services, flaky, intent_factory):
        intent = await intent_factory()
        flaky(1)

        with pytest.raises(InternalError):
            await services.retry.process_payment(intent.id, "UTR5", "gpay")
        submitted = await services.retry.retry_payment(intent.id, "UTR5", "gpay")

        assert submitted.status == "pending_verification"

    @pytest.mark.asyncio
    async def test_exhausted_retry_does_not_attempt(self, services, flaky, intent_factory):
        intent = await intent_factory()
        submit = flaky(10)
        with pytest.raises(RetriesExhausted):
            await services.retry.submit_with_retry(intent.id, "UTR6", "gpay")
        calls_before = submit.calls

        with pytest.raises(RetriesExhausted):
            await services.retry.retry_payment(intent.id, "UTR6", "gpay")

        assert submit.calls == calls_before

    @pytest.mark.asyncio
    async def test_verification_rejection_keeps_budget(self, services, user, admin, pending_intent):
        await services.payments.resolve_verification(pending_intent.id, "rejected", actor=admin)

        assert await services.retry.failure_count(pending_intent.id) == 0


class TestProcessingTimeout:

    @pytest.mark.asyncio
    async def test_slow_submission_times_out(self, services, intent_factory, test_settings, monkeypatch):
        test_settings.payment_processing_timeout = 0.05
        intent = await intent_factory()

        async def slow_submit(*args, **kwargs):
            await asyncio.sleep(5)

        monkeypatch.setattr(services.payments, "submit_reference", slow_submit)

        with pytest.raises(SubmissionTimeout) as exc_info:
            await services.retry.process_payment(intent.id, "UTR7", "gpay")

        assert isinstance(exc_info.value, InternalError)
        assert await services.retry.failure_count(intent.id) == 1
        assert (await services.payments.get_intent(intent.id)).status == "created"
