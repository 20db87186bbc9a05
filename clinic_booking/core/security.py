from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from pydantic import BaseModel
from enum import Enum

from .config import settings

# Bearer tokens are issued by the authentication service
security = HTTPBearer()

class ActorRole(str, Enum):
    ADMIN = "admin"
    CLINIC_STAFF = "clinic_staff"
    DOCTOR = "doctor"
    PATIENT = "patient"

STAFF_ROLES = frozenset({ActorRole.ADMIN, ActorRole.CLINIC_STAFF})

def is_staff(role: ActorRole) -> bool:
    """Clinic staff and platform admins share staff capabilities."""
    return role in STAFF_ROLES

class TokenPayload(BaseModel):
    sub: Optional[str] = None
    role: Optional[str] = None
    exp: Optional[int] = None
    token_type: Optional[str] = None

class Actor(BaseModel):
    """The authenticated caller of a scheduling operation."""
    user_id: int
    role: ActorRole

    @property
    def is_staff(self) -> bool:
        return is_staff(self.role)

class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class AuthorizationError(HTTPException):
    def __init__(self, detail: str = "Not enough permissions"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )

def create_actor_token(
    user_id: int,
    role: ActorRole,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Sign an access token with the claims the scheduling API reads.

    Used by tooling and tests that share the signing key with the
    authentication service.
    """
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_id),  # jose requires a string subject
        "role": role.value,
        "exp": datetime.now(timezone.utc) + lifetime,
        "token_type": "access",
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def verify_token(token: str) -> Optional[TokenPayload]:
    """Decode a bearer token, or None when the signature or expiry is bad."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    return TokenPayload(**payload)

def actor_from_token(token_payload: TokenPayload) -> Actor:
    if token_payload.token_type not in (None, "access"):
        raise AuthenticationError("Invalid token type")
    if not token_payload.sub or not token_payload.role:
        raise AuthenticationError("Invalid token payload")

    try:
        return Actor(user_id=int(token_payload.sub), role=ActorRole(token_payload.role))
    except ValueError:
        raise AuthenticationError("Invalid token payload")
