import asyncio
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from dotenv import load_dotenv
from sqlmodel import Session
import logging

# Load environment variables as early as possible
load_dotenv()

from .routers import auth_router, admin_router
from .database import create_db_and_tables, engine
from .config import settings
from .middleware import SecurityMiddleware, LoggingMiddleware, ErrorHandlingMiddleware
from .exceptions import http_exception_handler, validation_exception_handler
from .infrastructure.persistence.sqlalchemy.repositories.otp_repository_sql import SqlOtpStore
from .infrastructure.persistence.sqlalchemy.repositories.token_repository_sql import SqlTokenStore
from .utils import utcnow

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


def cleanup_expired_records() -> dict:
    """Delete expired or superseded OTP records and expired token bookkeeping"""
    now = utcnow()
    with Session(engine) as session:
        otps = SqlOtpStore(session).cleanup_expired(now)
        tokens = SqlTokenStore(session).cleanup_expired(now)
    if otps or tokens:
        logger.info(f"Cleanup removed {otps} OTP records and {tokens} token records")
    return {"otp_codes": otps, "auth_tokens": tokens}


async def _cleanup_loop(interval: int) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(cleanup_expired_records)
        except Exception:
            logger.exception("Periodic cleanup failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {settings.APP_NAME}...")
    app.state.db_init_ok = True
    app.state.db_init_error = None
    try:
        create_db_and_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        # Do not crash the app; report via health endpoint
        app.state.db_init_ok = False
        app.state.db_init_error = str(e)
        logger.exception("Database initialization failed")

    if not settings.signing_secret_configured:
        logger.warning("TOKEN_SIGNING_SECRET is using the default value; set it in production")

    cleanup_task = None
    if settings.CLEANUP_INTERVAL_SECONDS > 0 and app.state.db_init_ok:
        cleanup_task = asyncio.create_task(_cleanup_loop(settings.CLEANUP_INTERVAL_SECONDS))
    yield
    # Shutdown
    if cleanup_task:
        cleanup_task.cancel()
    logger.info(f"Shutting down {settings.APP_NAME}...")

# Initialize FastAPI
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    docs_url=("/docs" if settings.DOCS_ENABLED else None),
    redoc_url=("/redoc" if settings.DOCS_ENABLED else None),
    openapi_url=("/openapi.json" if settings.DOCS_ENABLED else None)
)

# Add custom exception handlers
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Add middleware
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(SecurityMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.allowed_methods_list,
    allow_headers=settings.allowed_headers_list,
    expose_headers=["Retry-After", "X-Request-ID"],
)

app.include_router(auth_router.router)
app.include_router(admin_router.router)


@app.get("/health")
def health_check():
    return {
        "status": "healthy" if getattr(app.state, "db_init_ok", True) else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": utcnow().isoformat(),
        "database": {
            "ok": getattr(app.state, "db_init_ok", True),
            "error": getattr(app.state, "db_init_error", None)
        },
        "auth": {
            "signing_secret_configured": settings.signing_secret_configured,
            "token_algorithm": settings.TOKEN_ALGORITHM,
            "access_token_ttl": settings.ACCESS_TOKEN_TTL,
            "sms_provider": "twilio" if settings.twilio_configured else "console",
            "rate_limit_backend": "redis" if settings.REDIS_URL else "memory",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, workers=settings.WORKERS)
