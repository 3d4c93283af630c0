from .user import User
from .plan import Plan
from .subscription import Subscription
from .payment import PaymentIntent, PaymentStatus, BillingCycle, PaymentChannel
from .analytics import Event

__all__ = [
    "User",
    "Plan",
    "Subscription",
    "PaymentIntent",
    "PaymentStatus",
    "BillingCycle",
    "PaymentChannel",
    "Event",
]
