import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from photovouchers.api.v1 import api_router
from photovouchers.core.config import settings
from photovouchers.core.errors import PaymentProviderError, ServiceError
from photovouchers.core.logging_config import configure_logging
from photovouchers.core.sentry import init_sentry
from photovouchers.core.startup_checks import validate_production_settings
from photovouchers.middleware import RequestLoggingMiddleware
from photovouchers.schemas.error import ErrorResponse
from photovouchers.services import delivery_scheduler

logger = logging.getLogger("photovouchers.errors")


@asynccontextmanager
async def lifespan(app: FastAPI):
    delivery_scheduler.start(app)
    try:
        yield
    finally:
        await delivery_scheduler.stop(app)


def get_application() -> FastAPI:
    validate_production_settings()
    configure_logging(settings.log_json)
    init_sentry()
    tags_metadata = [
        {"name": "checkout", "description": "Cart checkout and payment completion"},
        {"name": "coupons", "description": "Discount codes"},
        {"name": "vouchers", "description": "Customer voucher downloads"},
        {"name": "admin", "description": "Fulfillment queue and coupon administration"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        extra = {"path": request.url.path, "code": exc.code, "detail": exc.detail}
        if isinstance(exc, PaymentProviderError):
            extra.update(provider_status=exc.provider_status, provider_message=exc.provider_message)
        if exc.status_code >= 500:
            logger.error("service_error", extra=extra)
        else:
            logger.info("service_error", extra=extra)
        payload = ErrorResponse(detail=exc.public_detail, code=exc.code)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(payload.model_dump()),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
