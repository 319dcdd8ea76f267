"""
FastAPI application entry point.

Wires logging, Sentry, CORS, the error envelope and the intake / packets /
admin routers.
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import intake, packets, admin
from core.config import settings
from core.database import check_db_connection
from core.logging import setup_logging
from core.exceptions import APIException, ValidationError
from core.security import WEBHOOK_SECRET_HEADER
import logging
import time

setup_logging()
logger = logging.getLogger(__name__)

SCRUBBED_HEADERS = ("authorization", "cookie", WEBHOOK_SECRET_HEADER.lower())


def _scrub_event(event, hint):
    """Drop credentials from Sentry events; request bodies are never sent."""
    headers = event.get("request", {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in SCRUBBED_HEADERS:
                headers.pop(name)
    return event


def _init_sentry() -> None:
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        profiles_sample_rate=settings.SENTRY_PROFILES_SAMPLE_RATE,
        integrations=[FastApiIntegration(transaction_style="endpoint"), SqlalchemyIntegration()],
        # Intake answers are health data
        send_default_pii=False,
        max_request_body_size="never",
        before_send=_scrub_event,
    )
    logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")


if settings.SENTRY_DSN:
    try:
        _init_sentry()
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


app = FastAPI(
    title="Afya Intake & Packet API",
    description="Client intake, packet routing and packet lifecycle management",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


def _allowed_origins():
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return [settings.WEB_APP_BASE_URL.rstrip("/")]


# The intake page posts abandon beacons cross-origin without credentials
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    context = {"method": request.method, "path": request.url.path}
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            exc_info=True,
            extra={"extra_fields": {**context, "error": str(e)}},
        )
        raise

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
        extra={"extra_fields": {**context, "status_code": response.status_code, "process_time_ms": elapsed_ms}},
    )
    response.headers["X-Process-Time"] = str(elapsed_ms / 1000)
    return response


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    if exc.status_code >= 500:
        logger.error(
            f"{exc.error_code}: {exc.detail}",
            exc_info=exc.__cause__ is not None,
            extra={"extra_fields": {"method": request.method, "path": request.url.path}},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are 400s like every other validation failure."""
    error = ValidationError.from_errors(exc.errors())
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"extra_fields": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
            "detail": "Internal server error",
        },
    )


@app.get("/health")
async def health():
    """200 when the database answers, 503 otherwise."""
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "email_enabled": settings.EMAIL_ENABLED,
        "dispatch_enabled": settings.PACKET_DISPATCH_ENABLED,
    }


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(intake.router)
app.include_router(packets.router)
app.include_router(admin.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
