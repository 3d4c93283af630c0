"""
Payment submission retry and failure handling service
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from shared.config.settings import Settings, settings as default_settings
from shared.models.payment import PaymentIntent
from ..exceptions import BillingError, RETRYABLE_ERRORS, RetriesExhausted, SubmissionTimeout
from .event_service import EventService, EventPublisher, PAYMENT_SUBMISSION_FAILED
from .payment_service import PaymentService
from .transaction import transaction, read_only

logger = logging.getLogger(__name__)


class PaymentRetryService:
    """Bounded submission attempts with exponential backoff.

    Failed attempts are stored as ``payment.submission_failed`` events, so the
    budget survives restarts and is shared by every caller of one intent.
    Only infrastructure failures count; a rejected or duplicate reference is
    the user's answer, not a failed attempt.
    """

    def __init__(
        self,
        payment_service: PaymentService,
        session_factory: async_sessionmaker,
        settings: Settings = default_settings,
        publisher: Optional[EventPublisher] = None,
    ):
        self.payment_service = payment_service
        self.session_factory = session_factory
        self.settings = settings
        self.publisher = publisher or EventPublisher()

    @property
    def max_attempts(self) -> int:
        """The first attempt plus ``payment_max_retries`` retries"""
        return self.settings.payment_max_retries + 1

    def backoff_delay(self, retry_index: int) -> float:
        """Seconds to wait before retry number ``retry_index`` (0-based): base, 2*base, 4*base..."""
        return self.settings.payment_retry_backoff_base * (2 ** max(retry_index, 0))

    async def failure_count(self, intent_id: str) -> int:
        async with read_only(self.session_factory) as session:
            return await EventService(session).count(PAYMENT_SUBMISSION_FAILED, intent_id)

    async def process_payment(
        self,
        intent_id: str,
        reference: str,
        channel: str,
        proof_url: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> PaymentIntent:
        """One submission attempt bounded by the processing timeout"""
        timeout = self.settings.payment_processing_timeout
        try:
            return await asyncio.wait_for(
                self.payment_service.submit_reference(intent_id, reference, channel, proof_url, user_id),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            error = SubmissionTimeout(
                f"Payment submission did not finish within {timeout} seconds",
                details={"intent_id": intent_id, "timeout": timeout},
            )
            await self._record_failure(intent_id, error)
            raise error from e
        except RETRYABLE_ERRORS as e:
            await self._record_failure(intent_id, e)
            raise

    async def retry_payment(
        self,
        intent_id: str,
        reference: str,
        channel: str,
        proof_url: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> PaymentIntent:
        """Wait out the backoff for this intent and attempt once more"""
        failures = await self.failure_count(intent_id)
        if failures >= self.max_attempts:
            logger.warning(f"Retry budget spent for intent {intent_id}: {failures}/{self.max_attempts} failures")
            raise RetriesExhausted(intent_id, failures)

        delay = self.backoff_delay(failures - 1)
        logger.info(f"Retrying submission for intent {intent_id} in {delay}s (failures so far: {failures})")
        await asyncio.sleep(delay)
        return await self.process_payment(intent_id, reference, channel, proof_url, user_id)

    async def submit_with_retry(
        self,
        intent_id: str,
        reference: str,
        channel: str,
        proof_url: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> PaymentIntent:
        """Submit, retrying retryable failures until success or the budget is spent"""
        max_attempts = self.max_attempts
        failures = await self.failure_count(intent_id)
        last_error = None

        while failures < max_attempts:
            if failures:
                await asyncio.sleep(self.backoff_delay(failures - 1))
            try:
                return await self.process_payment(intent_id, reference, channel, proof_url, user_id)
            except RETRYABLE_ERRORS as e:
                # Count locally too in case the failure could not be stored
                failures = max(failures + 1, await self.failure_count(intent_id))
                logger.warning(
                    f"Submission attempt for intent {intent_id} failed ({failures}/{max_attempts}): "
                    f"{e.__class__.__name__}"
                )
                last_error = e

        logger.error(f"Payment submission for intent {intent_id} failed after {failures} attempts")
        raise RetriesExhausted(intent_id, failures) from last_error

    async def _record_failure(self, intent_id: str, error: BillingError):
        """Store a failed attempt in its own transaction; the attempt's own one rolled back"""
        try:
            intent = await self.payment_service.get_intent(intent_id)
            async with transaction(self.session_factory) as session:
                event = EventService(session).record(
                    intent.user_id, PAYMENT_SUBMISSION_FAILED, intent_id,
                    {"error": error.__class__.__name__, "message": error.message},
                )
        except BillingError as record_error:
            # Store is down as well; the attempt still failed for the caller
            logger.error(f"Could not record submission failure for intent {intent_id}: {record_error.message}")
            return

        await self.publisher.publish([event])
