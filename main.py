"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers and startup/shutdown hooks.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.database import close_db, init_db
from config.logging import configure_logging
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from shared.utils.errors import register_exception_handlers

# Service routers
from services.admin.router import router as admin_router
from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.content.router import router as content_router
from services.driver.router import router as driver_router
from services.feedback.router import router as feedback_router
from services.hotpoint.router import router as hotpoint_router
from services.notification.router import router as notification_router
from services.payment.router import router as payment_router
from services.promo_code.router import router as promo_code_router
from services.review.router import router as review_router
from services.route.router import router as route_router
from services.support_ticket.router import router as support_ticket_router
from services.trip.router import router as trip_router
from services.user.router import router as user_router
from services.vehicle.router import router as vehicle_router

configure_logging()
logger = logging.getLogger(__name__)

ROUTERS = (
    auth_router,
    user_router,
    driver_router,
    vehicle_router,
    hotpoint_router,
    route_router,
    trip_router,
    booking_router,
    payment_router,
    review_router,
    notification_router,
    support_ticket_router,
    promo_code_router,
    content_router,
    feedback_router,
    admin_router,
)

RATE_LIMIT_SKIP_PATHS = {"/health", "/metrics", "/docs", "/redoc", "/openapi.json"}


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.APP_ENV})")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## RideLink Transportation API

- **Auth**: JWT access tokens (15 min) + rotating refresh tokens, lockout after failed logins
- **Network**: hotpoints (pickup/dropoff points), priced routes, schedules
- **Fleet**: driver onboarding and approval, vehicles, availability and location
- **Rides**: trips, bookings with idempotent creation, mock payments and refunds
- **Engagement**: reviews, notifications, support tickets, promo codes, content, feedback
- **Admin**: dashboard, reports, settings, audit log

### Authentication
Protected endpoints require `Authorization: Bearer <access_token>`.
Get a token from `POST /auth/login`.

### Roles
- `user`: book rides, request trips, review drivers
- `driver`: manage availability, vehicles and assigned trips
- `admin`: full platform access
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (added last runs outermost) ─────────────────
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=["*"])
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Fixed one-minute window per client IP in Redis.
        Authenticated callers get the higher limit. Fails open if Redis is down.
        """
        if request.url.path in RATE_LIMIT_SKIP_PATHS:
            return await call_next(request)

        from config.redis_client import redis_client
        if redis_client:
            client_ip = request.client.host if request.client else "unknown"
            if request.headers.get("Authorization", "").startswith("Bearer "):
                key, limit = f"rate:auth:{client_ip}", settings.RATE_LIMIT_PER_MINUTE
            else:
                key, limit = f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
            try:
                allowed = await RedisCache(redis_client).check_rate_limit(key, limit)
            except Exception as e:
                logger.error(f"Rate limit check failed: {e}")
                allowed = True

            if not allowed:
                logger.warning(f"Rate limit exceeded for {key}")
                return JSONResponse(
                    status_code=429,
                    content={"success": False, "message": "Too many requests. Please slow down."},
                    headers={"Retry-After": "60"},
                )

        return await call_next(request)

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add a unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────

    @app.get("/health", tags=["Health"])
    async def health_check():
        from sqlalchemy import text

        from config.database import AsyncSessionLocal
        from config.redis_client import redis_client

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client is None:
                raise RuntimeError("Redis not initialized")
            await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
            "api": settings.API_PREFIX,
        }

    for router in ROUTERS:
        app.include_router(router, prefix=settings.API_PREFIX)

    # ── Prometheus Metrics ────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
