from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from functools import lru_cache
import logging
import redis

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.security import (
    security, verify_token, actor_from_token, AuthenticationError,
    Actor, TokenPayload
)
from ..services.appointment_service import AppointmentService
from ..services.events import EventDispatcher, build_dispatcher
from ..services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")
    return token_payload

async def get_current_actor(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> Actor:
    """Caller identity and role taken from the access token."""
    return actor_from_token(token_payload)

def get_clock() -> Clock:
    """Clock used for booking windows and cancellation cutoffs."""
    return system_clock

@lru_cache()
def get_event_dispatcher() -> EventDispatcher:
    """Process-wide dispatcher for appointment events."""
    return build_dispatcher(settings)

def get_appointment_service(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    dispatcher: EventDispatcher = Depends(get_event_dispatcher)
) -> AppointmentService:
    return AppointmentService(db, clock=clock, dispatcher=dispatcher)

def get_schedule_service(db: Session = Depends(get_db)) -> ScheduleService:
    return ScheduleService(db)

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Per-client rate limiting for booking requests."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:booking:{client_ip}"

    try:
        current_requests = redis_client.get(key)
        if current_requests is None:
            redis_client.setex(key, 3600, 1)  # one hour window
            return
        over_limit = int(current_requests) >= settings.BOOKING_RATE_LIMIT_PER_HOUR
        if not over_limit:
            redis_client.incr(key)
    except redis.RedisError as e:
        # Bookings proceed unthrottled while Redis is down
        logger.warning(f"Rate limit check skipped for {client_ip}: {e}")
        return

    if over_limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later."
        )
