"""
main.py
FastAPI application entry point.
Registers all routers, middleware, exception handlers and startup/shutdown events.

Production-ready features:
- Multiple stateless instances behind NGINX; all coordination in PostgreSQL
- Atomic seat accounting with compensation and periodic reconciliation
- Per-IP rate limiting backed by Redis
- Circuit breaker around the payment gateway
- Prometheus metrics
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.database import close_db, init_db
from config.redis_client import close_redis, init_redis
from config.settings import settings
from shared.exceptions import BusPassError
from shared.middleware.rate_limit import client_ip, has_valid_admin_token
from shared.utils.responses import error_response

# Service routers
from services.analytics.router import router as analytics_router
from services.auth.router import router as auth_router
from services.booking.router import admin_router as booking_admin_router
from services.booking.router import router as booking_router
from services.bus.router import admin_router as bus_admin_router
from services.bus.router import router as bus_router
from services.catalog.router import router as catalog_router
from services.payment.router import router as payment_router
from services.rounds.router import router as rounds_router
from services.seats.router import router as seats_router
from services.settings.router import admin_router as settings_admin_router
from services.settings.router import router as settings_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


# Configure structured logging
handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    handlers=[handler],
)
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info(f"Starting {settings.APP_NAME} API...")

    # Initialize connections
    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    # Seed admin, settings and sample routes: only in dev
    if settings.APP_ENV == "development":
        await seed_initial_data()

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} is ready")
    yield

    # Cleanup
    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Student Bus Pass Booking API

- **Bookings**: one seat per booking, atomic seat accounting, fare snapshot
- **Catalog**: routes, stops and fares
- **Payments**: Razorpay order creation and signature verification
- **Admin**: buses, stops, bookings, settings, round reset, reports

### Authentication
Admin endpoints require `Authorization: Bearer <token>` or the `admin_token`
cookie. Get a token from `POST /api/admin/login`.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (order matters: outermost first) ────────────────
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

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """
        Coarse per-IP limit for unauthenticated traffic.
        Requests with a verified admin token and ops endpoints are not limited here.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths:
            return await call_next(request)

        if has_valid_admin_token(request):
            return await call_next(request)

        try:
            from config.redis_client import redis_client
            if redis_client:
                ip = client_ip(request)
                key = f"rate:unauth:{ip}"

                count = await redis_client.incr(key)
                if count == 1:
                    await redis_client.expire(key, 60)

                if count > settings.RATE_LIMIT_UNAUTH_PER_MINUTE:
                    logger.warning(f"Rate limit exceeded for IP {ip}")
                    return error_response(
                        429,
                        "Rate limit exceeded. Please slow down.",
                        headers={"Retry-After": "60"},
                    )
        except Exception as e:
            # Redis down: fail open
            logger.error(f"Rate limit check failed: {str(e)}")

        return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(BusPassError)
    async def bus_pass_error_handler(request: Request, exc: BusPassError):
        if exc.status_code >= 500:
            logger.error(
                f"[{getattr(request.state, 'request_id', None)}] {type(exc).__name__}: {exc.message}"
            )
        return error_response(exc.status_code, exc.message, exc.details, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
        return error_response(400, "Validation failed", details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all. Admin callers see the error text; public callers a generic message."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {str(exc)}", exc_info=True)

        if request.url.path.startswith("/api/admin") or settings.DEBUG:
            detail = str(exc)
        else:
            detail = "An internal server error occurred"
        return error_response(500, detail, request_id=request_id)

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from config.redis_client import redis_client
        from sqlalchemy import text
        from config.database import AsyncSessionLocal

        checks = {"status": "ok", "version": settings.APP_VERSION}

        # DB check
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            logger.error(f"Health check: database unreachable: {str(e)}")
            checks["database"] = "error"
            checks["status"] = "degraded"

        # Redis check
        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception as e:
            logger.error(f"Health check: redis unreachable: {str(e)}")
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
        }

    # Register all service routers
    app.include_router(settings_router)
    app.include_router(bus_router)
    app.include_router(booking_router)
    app.include_router(payment_router)
    app.include_router(auth_router)
    app.include_router(bus_admin_router)
    app.include_router(catalog_router)
    app.include_router(booking_admin_router)
    app.include_router(settings_admin_router)
    app.include_router(rounds_router)
    app.include_router(seats_router)
    app.include_router(analytics_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Dev Data Seeder ───────────────────────────────────────────

SEED_ROUTES = {
    "bus-1": ("Bus 1", [("Kottayam", 50), ("Changanassery", 40), ("Thiruvalla", 60), ("Chengannur", 70)]),
    "bus-2": ("Bus 2", [("Ernakulam", 80), ("Aluva", 70), ("Perumbavoor", 60), ("Muvattupuzha", 50)]),
    "bus-3": ("Bus 3", [("Thodupuzha", 45), ("Idukki", 65), ("Kumily", 85), ("Vandiperiyar", 75)]),
}


async def seed_initial_data():
    """Seed the settings row, an admin account and sample routes on first run (development only)."""
    from config.database import get_db_context
    from shared.models.models import AdminSettings, AdminRole, AdminUser, Bus, RouteStop
    from shared.utils.security import hash_password
    from sqlalchemy import select, func

    async with get_db_context() as db:
        if not await db.get(AdminSettings, AdminSettings.SINGLETON_ID):
            db.add(AdminSettings(id=AdminSettings.SINGLETON_ID, booking_enabled=False))

        if settings.SEED_ADMIN_PASSWORD:
            existing = await db.scalar(
                select(AdminUser.id).where(AdminUser.username == settings.SEED_ADMIN_USERNAME)
            )
            if not existing:
                db.add(
                    AdminUser(
                        username=settings.SEED_ADMIN_USERNAME,
                        password_hash=hash_password(settings.SEED_ADMIN_PASSWORD),
                        email=f"{settings.SEED_ADMIN_USERNAME}@localhost",
                        full_name="Administrator",
                        role=AdminRole.SUPER_ADMIN.value,
                    )
                )
                logger.info(f"Seeded admin user '{settings.SEED_ADMIN_USERNAME}'")

        count = await db.scalar(select(func.count(Bus.id)))
        if not count:
            for route_code, (name, stops) in SEED_ROUTES.items():
                db.add(
                    Bus(
                        name=name,
                        route_code=route_code,
                        total_seats=settings.DEFAULT_TOTAL_SEATS,
                        available_seats=settings.DEFAULT_TOTAL_SEATS,
                    )
                )
                for order, (stop_name, fare) in enumerate(stops, start=1):
                    db.add(
                        RouteStop(route_code=route_code, stop_name=stop_name, fare=fare, stop_order=order)
                    )
            logger.info(f"Seeded {len(SEED_ROUTES)} sample routes")


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
