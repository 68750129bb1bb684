from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from creditdesk.api.routes import coupons, health, users, wallet
from creditdesk.core.config import settings
from creditdesk.core.errors import BillingError
from creditdesk.core.logging_setup import logger
from creditdesk.db.session import init_db
from creditdesk.services.notification import NotificationService
from creditdesk.services.payments import build_gateway
from creditdesk.services.vat import ViesClient


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncGenerator[None, None]:
    init_db()

    application.state.payment_gateway = build_gateway(settings.stripe_api_key)
    application.state.vat_registry = ViesClient(
        settings.vat_service_url,
        timeout_seconds=settings.vat_timeout_seconds,
    )
    application.state.notifier = NotificationService.from_settings(settings)
    logger.info(
        "Clients ready gateway=%s vat_registry=%s email=%s",
        application.state.payment_gateway.name,
        settings.vat_service_url,
        "on" if application.state.notifier.email_config else "off",
    )

    yield


def _normalize_origin(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = value.strip().rstrip("/")
    return cleaned or None


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.project_name,
        debug=settings.debug,
        lifespan=lifespan,
    )

    logger.info("CreditDesk API initialised")

    # ===============================================================
    # CORS
    # ===============================================================
    origins: list[str] = []
    for item in settings.allowed_origins:
        normalized = _normalize_origin(item)
        if normalized and normalized not in origins:
            origins.append(normalized)

    logger.info("CORS origins: %s", origins)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ===============================================================
    # ERRORS
    # ===============================================================
    @application.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.message, exc.details)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, **exc.details})

    @application.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )

    # ===============================================================
    # ROUTES
    # ===============================================================
    application.include_router(health.router, prefix="/health")
    application.include_router(wallet.router, prefix=settings.api_v1_str)
    application.include_router(coupons.router, prefix=settings.api_v1_str)
    application.include_router(users.router, prefix=settings.api_v1_str)

    @application.get("/")
    def root():
        return {"service": settings.project_name}

    return application


app = create_app()
