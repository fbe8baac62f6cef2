from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from sqlalchemy import text
from starlette.middleware.cors import CORSMiddleware

from tierkeeper.apps.tiers.dependencies import tier_reconciler
from tierkeeper.apps.tiers.routers import (
    billing_router,
    tier_router,
    usage_router,
    webhook_router,
)
from tierkeeper.apps.tiers.services.operation_lock import BillingOperationLock
from tierkeeper.core.config import app_logger, settings
from tierkeeper.core.db import AsyncSessionLocal, dispose_db, init_db
from tierkeeper.core.exceptions.handlers import (
    authentication_exception_handler,
    billing_processor_exception_handler,
    exception_schema,
    general_exception_handler,
    no_active_subscription_exception_handler,
    operation_in_progress_exception_handler,
    store_unavailable_exception_handler,
)
from tierkeeper.core.exceptions.types import (
    AppException,
    AuthenticationException,
    BillingOperationInProgressException,
    BillingProcessorException,
    NoActiveSubscriptionException,
    StoreUnavailableException,
)
from tierkeeper.core.services import RedisService, Stripe
from tierkeeper.infrastructure.scheduler import scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info("Starting application...")

    app_logger.info("Creating database tables...")
    await init_db()
    app_logger.info("Database tables ready.")

    # Redis only backs the distributed billing lock
    if settings.OPERATION_LOCK_BACKEND == "redis":
        app_logger.info("Initializing Redis service...")
        await RedisService.init(settings.REDIS_URL)
        app_logger.info("Redis service initialized successfully.")

    BillingOperationLock.init(
        backend=settings.OPERATION_LOCK_BACKEND,
        ttl=settings.OPERATION_LOCK_TTL_SECONDS,
    )

    # Start the scheduler (only if enabled)
    if settings.ENABLE_SCHEDULER:
        app_logger.info("Starting scheduler...")
        scheduler.start()
        app_logger.info("Scheduler started successfully.")
    else:
        app_logger.info("Scheduler disabled via ENABLE_SCHEDULER setting.")

    # Yield control back to the application
    yield

    # Cleanup on shutdown
    app_logger.info("Shutting down application...")

    app_logger.info("Cancelling background tier refreshes...")
    await tier_reconciler.aclose()

    if settings.ENABLE_SCHEDULER and scheduler.running:
        app_logger.info("Stopping scheduler...")
        scheduler.shutdown()
        app_logger.info("Scheduler stopped successfully.")

    app_logger.info("Closing Stripe client...")
    await Stripe.aclose()

    if RedisService.is_connected():
        app_logger.info("Closing Redis service...")
        await RedisService.aclose()
        app_logger.info("Redis service closed successfully.")

    await dispose_db()
    app_logger.info("Application shutdown complete.")


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=settings.APP_DESCRIPTION,
    debug=settings.DEBUG,
    openapi_url="/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    responses=exception_schema,
    root_path_in_servers=False,
    servers=[
        {
            "url": f"{settings.API_DOMAIN}",
        },
    ],
)

# Register exception handlers (order matters - more specific first)
app.add_exception_handler(StoreUnavailableException, store_unavailable_exception_handler)
app.add_exception_handler(AuthenticationException, authentication_exception_handler)
app.add_exception_handler(
    NoActiveSubscriptionException, no_active_subscription_exception_handler
)
app.add_exception_handler(
    BillingOperationInProgressException, operation_in_progress_exception_handler
)
app.add_exception_handler(BillingProcessorException, billing_processor_exception_handler)
# Generic fallback
app.add_exception_handler(AppException, general_exception_handler)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tier_router)
app.include_router(usage_router)
app.include_router(billing_router)
app.include_router(webhook_router)


@app.get("/", include_in_schema=False)
async def root(request: Request):
    base_url = str(request.base_url).rstrip("/")
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "documentations": {
            "swagger": f"{base_url}/docs",
            "redoc": f"{base_url}/redoc",
        },
        "version": settings.APP_VERSION,
    }


@app.head("/health", include_in_schema=False)
@app.get("/health")
async def health_check():
    """
    Health check endpoint to verify if the API is running.

    Checks:
        - Database connectivity
        - Redis connectivity (only with the Redis lock backend)
    """
    health_status = {
        "status": "ok",
        "message": f"{settings.APP_NAME} is running.",
        "checks": {"database": "ok"},
    }

    try:
        async with AsyncSessionLocal.begin() as session:
            result = await session.execute(text("SELECT 1"))
            if result.scalar() != 1:
                health_status["checks"]["database"] = "unhealthy"
                health_status["status"] = "degraded"
    except Exception as e:
        app_logger.error(f"Database health check failed: {e}")
        health_status["checks"]["database"] = "unhealthy"
        health_status["status"] = "degraded"

    if settings.OPERATION_LOCK_BACKEND == "redis":
        health_status["checks"]["redis"] = "ok"
        if not await RedisService.ping():
            health_status["checks"]["redis"] = "unhealthy"
            health_status["status"] = "degraded"

    if health_status["status"] != "ok":
        raise AppException(
            "One or more health checks failed.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=health_status,
        )

    return health_status
