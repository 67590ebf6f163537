import time
import uuid

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from fanpay.core.config import get_settings
from fanpay.core.exceptions import (
    AppError,
    app_exception_handler,
    generic_exception_handler,
    validation_exception_handler,
)
from fanpay.core.logging import bind_request_context, configure_logging, get_logger
from fanpay.db.init import init_db
from fanpay.routers import checkout, cron, gifts, live, payments, wallet

settings = get_settings()
configure_logging(debug=settings.debug)
log = get_logger(__name__)

app = FastAPI(
    title="fanpay API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    bind_request_context(request_id)
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    log.info(
        "request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.add_exception_handler(AppError, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Routers
app.include_router(checkout.router, prefix="/v1/checkout", tags=["checkout"])
app.include_router(payments.router, prefix="/v1/stripe", tags=["stripe"])
app.include_router(gifts.router, prefix="/v1/gifts", tags=["gifts"])
app.include_router(gifts.legacy_router, prefix="/v1/gift", tags=["gifts"])
app.include_router(wallet.router, prefix="/v1/wallet", tags=["wallet"])
app.include_router(live.router, prefix="/v1/live", tags=["live"])
app.include_router(cron.router, prefix="/v1/cron", tags=["cron"])


@app.on_event("startup")
async def startup():
    if settings.sentry_dsn:
        import sentry_sdk
        sentry_sdk.init(dsn=settings.sentry_dsn, environment=settings.env, traces_sample_rate=0.1)
        log.info("startup", msg="Sentry enabled")
    missing = [
        name
        for name, value in (
            ("STRIPE_SECRET_KEY", settings.stripe_secret_key),
            ("STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret),
            ("SITE_URL", settings.site_url),
            ("OWNER_PROFILE_ID", settings.owner_profile_id),
        )
        if not value
    ]
    if missing:
        log.warning("startup", msg="Payment core not configured", missing=missing)
    await init_db()
    log.info("startup", msg="Store ready", backend=settings.store_backend)


@app.get("/health")
async def health():
    """Health check for load balancers and monitoring."""
    return {"status": "ok"}
