"""
Payment verification polling service
"""
import asyncio
import logging
from typing import Dict, Optional, Set

from shared.config.settings import Settings, settings as default_settings
from shared.models.payment import PaymentIntent
from ..exceptions import InternalError, PollingTimeout
from .payment_service import PaymentService
from .payment_states import TERMINAL_STATES

logger = logging.getLogger(__name__)


class PaymentPollingService:
    def __init__(self, payment_service: PaymentService, settings: Settings = default_settings):
        self.payment_service = payment_service
        self.settings = settings
        # One stop flag per waiting call, grouped by intent
        self._waiters: Dict[str, Set[asyncio.Event]] = {}

    @property
    def running(self) -> bool:
        return bool(self._waiters)

    async def wait_for_resolution(
        self,
        intent_id: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> PaymentIntent:
        """
        Poll an intent until the administrator has resolved it.

        Only reads the intent. Cancelling the calling task stops this poller
        and nothing else. Returns the last seen intent if stop_polling() is
        called for it first; raises PollingTimeout once ``timeout`` seconds pass.
        """
        if interval is None:
            interval = self.settings.payment_poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        stopped = asyncio.Event()
        self._waiters.setdefault(intent_id, set()).add(stopped)
        logger.info(f"Started polling payment intent {intent_id}")
        intent = None

        try:
            while not stopped.is_set():
                try:
                    intent = await self.payment_service.get_intent(intent_id, user_id)
                except InternalError as e:
                    logger.warning(f"Error polling payment intent {intent_id}: {e.message}")
                else:
                    if intent.status in TERMINAL_STATES:
                        logger.info(f"Payment intent {intent_id} resolved as {intent.status}")
                        return intent

                delay = interval
                if deadline is not None:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise PollingTimeout(
                            f"Payment intent {intent_id} was not resolved within {timeout} seconds",
                            details={"intent_id": intent_id, "timeout": timeout},
                        )
                    delay = min(interval, remaining)
                try:
                    await asyncio.wait_for(stopped.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            waiters = self._waiters.get(intent_id)
            if waiters is not None:
                waiters.discard(stopped)
                if not waiters:
                    del self._waiters[intent_id]

        if intent is None:
            intent = await self.payment_service.get_intent(intent_id, user_id)
        return intent

    def stop_polling(self, intent_id: Optional[str] = None):
        """Stop the pollers waiting on one intent, or every poller when no id is given"""
        if intent_id is None:
            targets = [event for waiters in self._waiters.values() for event in waiters]
        else:
            targets = list(self._waiters.get(intent_id, ()))
        for stopped in targets:
            stopped.set()
        logger.info(f"Stopped payment polling for {intent_id or 'all intents'} ({len(targets)} waiters)")
