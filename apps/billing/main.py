import asyncio
import logging

from shared.config.settings import settings
from apps.billing.exceptions import BillingError
from apps.billing.services import BillingServices, build_services

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


async def intent_expiry_scheduler(services: BillingServices):
    """Background task rejecting payment intents that were never paid"""
    while True:
        try:
            expired = await services.payments.expire_stale_intents()
            if expired:
                logger.info(f"Expiry sweep rejected {expired} intents")
        except BillingError as e:
            logger.error(f"Error in intent expiry scheduler: {e.error_code}: {e.message}")

        await asyncio.sleep(settings.intent_expiry_sweep_interval)


async def main():
    services = build_services(settings)
    await services.start(create_tables=True)
    logger.info("Billing services initialized")

    expiry_task = asyncio.create_task(intent_expiry_scheduler(services))
    logger.info("Background schedulers started")

    try:
        await expiry_task
    finally:
        expiry_task.cancel()
        await services.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Billing worker stopped")
