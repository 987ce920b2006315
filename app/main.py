import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Registers every table on Base.metadata
from . import models  # noqa: F401
from .config import ALLOWED_ORIGINS
from .database import Base, engine
from .domain.appointments.router import router as appointments_router
from .domain.billing.router import admin_router as reconciliation_admin_router
from .domain.billing.router import router as billing_router
from .domain.billing.router import webhooks_router as payment_webhooks_router
from .domain.scheduling.router import admin_router as slots_admin_router
from .domain.scheduling.router import router as slots_router
from .security_headers import SecurityHeadersMiddleware

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# The payment SDK logs every HTTP call at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

SLOW_REQUEST_SECONDS = 2.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 PhysioCare booking API starting")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("✅ Database schema ready")
    except Exception as e:
        # Several workers may race to create the same tables
        if "already exists" in str(e) or "duplicate key" in str(e):
            logger.info("Database schema already created by another worker")
        else:
            logger.error(f"❌ Could not create database schema: {e}")

    try:
        from .rate_limiter import get_redis_client

        get_redis_client().ping()
        logger.info("✅ Redis reachable, rate limiting active")
    except Exception as e:
        logger.warning(f"⚠️ Redis unreachable, rate limiting fails open: {e}")

    yield
    logger.info("PhysioCare booking API stopped")


app = FastAPI(title="PhysioCare Booking API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """A malformed Authorization header is an auth failure (401), everything else a 422"""
    errors = exc.errors()
    if any("authorization" in str(error.get("loc", "")).lower() for error in errors):
        logger.warning(f"🔒 Bad Authorization header on {request.method} {request.url.path}")
        return JSONResponse(status_code=401, content={"detail": "Missing or invalid bearer token"})

    logger.warning(f"Validation error for {request.url.path}: {errors}")
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(errors)})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} failed: {e}")
        raise
    elapsed = time.perf_counter() - started
    if elapsed > SLOW_REQUEST_SECONDS:
        logger.warning(f"🐌 {request.method} {request.url.path} took {elapsed:.2f}s ({response.status_code})")
    return response


app.add_middleware(SecurityHeadersMiddleware, exclude_paths=["/health", "/docs", "/openapi.json"])

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

for router in (
    slots_router,
    slots_admin_router,
    appointments_router,
    billing_router,
    reconciliation_admin_router,
    payment_webhooks_router,
):
    app.include_router(router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
