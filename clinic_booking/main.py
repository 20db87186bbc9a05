from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
import time
import logging
import os

from .api.v1.appointments import router as appointments_router
from .api.v1.schedules import router as schedules_router
from .core.config import settings
from .core.database import check_db_connection, check_redis_connection, get_redis, init_db
from .scheduling.errors import BookingError, ErrorKind
from .scheduling.schedule import InvalidScheduleError

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Kinds not listed here are client errors (400)
ERROR_STATUS_CODES = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SLOT_ALREADY_BOOKED: 409,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
}

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Slot availability, booking and appointment lifecycle for clinics",
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH"],
    allow_headers=["Authorization", "Content-Type"],
)

# TestClient sends Host: testserver; host checks only apply outside tests
if not os.getenv("TESTING"):
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost"]
    )

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"

    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
    return response

@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """Rejected scheduling requests become {error, message, details} bodies."""
    status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.kind.value} ({exc.message})")
    return JSONResponse(status_code=status_code, content=exc.to_dict())

@app.exception_handler(InvalidScheduleError)
async def invalid_schedule_handler(request: Request, exc: InvalidScheduleError):
    logger.warning(f"Stored schedule template is malformed ({request.url.path}): {exc.errors}")
    return JSONResponse(
        status_code=422,
        content={
            "error": "INVALID_SCHEDULE",
            "message": str(exc),
            "details": {"errors": exc.errors}
        }
    )

@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=404,
        content={
            "error": "NOT_FOUND",
            "message": getattr(exc, "detail", None) or "Not Found",
            "details": {"path": request.url.path}
        }
    )

@app.exception_handler(500)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
            "details": {}
        }
    )

app.include_router(appointments_router, prefix="/api/v1")
app.include_router(schedules_router, prefix="/api/v1")

@app.on_event("startup")
async def startup_event():
    """Create tables and report which database backs the service."""
    db_url = settings.get_database_url
    backend = db_url.split(":", 1)[0]
    logger.info(f"{settings.APP_NAME} {settings.VERSION} starting on {backend}")

    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info(f"Clinic policy defaults: slot={settings.DEFAULT_SLOT_DURATION}min "
                f"advance={settings.DEFAULT_BOOKING_ADVANCE_DAYS}d "
                f"cancel_before={settings.DEFAULT_CANCEL_BEFORE_HOURS}h tz={settings.DEFAULT_TIMEZONE}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"{settings.APP_NAME} shutting down")

@app.get("/health")
def health_check(redis_client = Depends(get_redis)):
    """Liveness plus database and Redis reachability."""
    checks = {
        "database": check_db_connection(),
        "redis": check_redis_connection(redis_client),
    }
    # Bookings need the database; Redis only backs rate limiting
    healthy = checks["database"]

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": ("healthy" if all(checks.values()) else "degraded") if healthy else "unhealthy",
            "checks": checks,
            "timestamp": time.time(),
            "version": settings.VERSION
        }
    )

@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.VERSION,
        "docs": "/docs",
        "health": "/health",
        "info": "/api/v1/info"
    }

@app.get("/api/v1/info")
async def api_info():
    """Available endpoints and the booking policy defaults."""
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "endpoints": {
            "appointments": "/api/v1/appointments",
            "slots": "/api/v1/appointments/slots",
            "status": "/api/v1/appointments/{appointment_id}/status",
            "cancel": "/api/v1/appointments/{appointment_id}/cancel",
            "reschedule": "/api/v1/appointments/{appointment_id}/reschedule",
            "schedules": "/api/v1/doctors/{doctor_id}/clinics/{clinic_id}/schedule",
            "openapi": "/api/v1/openapi.json"
        },
        "policy_defaults": {
            "slot_duration": settings.DEFAULT_SLOT_DURATION,
            "booking_advance_days": settings.DEFAULT_BOOKING_ADVANCE_DAYS,
            "cancel_before_hours": settings.DEFAULT_CANCEL_BEFORE_HOURS,
            "timezone": settings.DEFAULT_TIMEZONE
        }
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clinic_booking.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
