from . import plans_router, quota_router, payments_router, admin_payments_router

__all__ = ["plans_router", "quota_router", "payments_router", "admin_payments_router"]
