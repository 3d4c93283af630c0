from .event_service import EventService, EventPublisher
from .keyed_locks import KeyedLocks
from .plan_service import PlanService
from .quota_service import QuotaService, QuotaUsage
from .payment_repository import PaymentIntentRepository
from .payment_service import PaymentService
from .payment_retry_service import PaymentRetryService
from .payment_polling_service import PaymentPollingService
from .container import BillingServices, build_services

__all__ = [
    "EventService",
    "EventPublisher",
    "KeyedLocks",
    "PlanService",
    "QuotaService",
    "QuotaUsage",
    "PaymentIntentRepository",
    "PaymentService",
    "PaymentRetryService",
    "PaymentPollingService",
    "BillingServices",
    "build_services",
]
