"""Error kinds raised by the billing core.

Every public operation either returns its value or raises one of these.
Each kind carries a machine-readable ``error_code``, a ``details`` dict for
structured context, and the HTTP status the API layer should answer with.
"""

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for every billing error"""

    http_status = 500
    user_facing = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}


class ValidationError(BillingError):
    """Bad input shape or values; the caller can fix the input and retry"""
    http_status = 422


class NotFound(BillingError):
    http_status = 404


class PlanNotFound(NotFound):
    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id} not found", details={"plan_id": plan_id})


class IntentNotFound(NotFound):
    def __init__(self, intent_id: str):
        super().__init__(f"Payment intent {intent_id} not found", details={"intent_id": intent_id})


class InactivePlan(BillingError):
    http_status = 409

    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id} is not available", details={"plan_id": plan_id})


class PlanInUse(BillingError):
    http_status = 409

    def __init__(self, plan_id: str):
        super().__init__(
            f"Plan {plan_id} is referenced by subscriptions or payments; deactivate it instead",
            details={"plan_id": plan_id},
        )


class InvalidTransition(BillingError):
    """State machine guard violation; the caller holds a stale view"""
    http_status = 409

    def __init__(self, message: str, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message, details={"current": current, "target": target})
        self.current = current
        self.target = target


class IntentExpired(InvalidTransition):
    pass


class DuplicateReference(BillingError):
    http_status = 409
    user_facing = True

    def __init__(self, reference: str):
        super().__init__(
            "This UPI transaction ID was already used. Enter the reference of an unused payment.",
            details={"reference": reference},
        )
        self.reference = reference


class QuotaExceeded(BillingError):
    http_status = 413
    user_facing = True

    def __init__(self, plan_id: str, used: int, requested: int, limit: int, message: Optional[str] = None):
        super().__init__(
            message or "Storage limit exceeded. Please upgrade your plan or delete files.",
            details={"plan": plan_id, "used": used, "requested": requested, "limit": limit},
        )
        self.plan_id = plan_id
        self.used = used
        self.requested = requested
        self.limit = limit


class FileTooLarge(QuotaExceeded):
    def __init__(self, plan_id: str, used: int, requested: int, limit: int):
        super().__init__(
            plan_id, used, requested, limit,
            message="File exceeds the maximum file size of your plan.",
        )


class PermissionDenied(BillingError):
    http_status = 403


class RetriesExhausted(BillingError):
    http_status = 429
    user_facing = True

    def __init__(self, intent_id: str, attempts: int):
        super().__init__(
            "Payment submission failed after several attempts. Please contact support.",
            details={"intent_id": intent_id, "attempts": attempts},
        )
        self.attempts = attempts


class PollingTimeout(BillingError):
    http_status = 504


class InternalError(BillingError):
    """Persistence or infrastructure failure; safe to retry the whole operation"""
    http_status = 503


class SubmissionTimeout(InternalError):
    http_status = 504


# Failures a submission retry may recover from
RETRYABLE_ERRORS = (InternalError,)


def create_error_response(exception: BillingError) -> Dict[str, Any]:
    """Render an error the way the API returns it.

    Kinds that are not meant for end users keep their code but get a generic
    message; the original message is only logged.
    """
    message = exception.message if exception.user_facing else "Something went wrong. Please try again."
    return {
        "error": {
            "code": exception.error_code,
            "message": message,
            "details": exception.details,
            "type": exception.__class__.__name__,
        }
    }
