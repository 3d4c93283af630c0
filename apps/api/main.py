from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config.settings import settings
from apps.billing.exceptions import BillingError, create_error_response
from apps.billing.services import BillingServices, build_services
from .dependencies import require_admin
from .routers import plans_router, quota_router, payments_router, admin_payments_router

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


def create_app(services: Optional[BillingServices] = None) -> FastAPI:
    """Build the API around a service container.

    When no container is passed the app builds its own from settings and
    opens and closes it with the lifespan.
    """
    owns_services = services is None
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_services:
            await services.start(create_tables=True)
            logger.info("Billing services started")
        yield
        if owns_services:
            await services.close()

    app = FastAPI(
        title="CloudDrive Billing API",
        description="Storage plans, quota and UPI payment verification",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.admin_cors_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.error_code}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.error_code}: {exc.message}")
        return JSONResponse(
            status_code=exc.http_status,
            content=jsonable_encoder(create_error_response(exc))
        )

    app.include_router(
        plans_router.router,
        prefix="/api/plans",
        tags=["Plans"]
    )

    app.include_router(
        quota_router.router,
        prefix="/api/quota",
        tags=["Quota"]
    )

    app.include_router(
        payments_router.router,
        prefix="/api/payments",
        tags=["Payments"]
    )

    app.include_router(
        admin_payments_router.router,
        prefix="/api/admin/payments",
        tags=["Payment Verification"],
        dependencies=[Depends(require_admin)]
    )

    @app.get("/")
    async def root():
        return {
            "message": "CloudDrive Billing API",
            "version": "1.0.0",
            "docs": "/docs"
        }

    @app.get("/api/health")
    async def health_check():
        return {"status": "healthy", "service": "billing-api"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
