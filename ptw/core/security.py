from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from uuid import UUID

from jose import JWTError, jwt

from ptw.common.timeutil import utcnow
from ptw.core.config import Settings, get_settings


@dataclass(frozen=True)
class TokenClaims:
    user_id: UUID
    role: Optional[str]


def create_access_token(
    user_id: UUID,
    role: str,
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Create a JWT access token carrying the user id and role claim."""
    settings = settings or get_settings()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str, settings: Optional[Settings] = None) -> Optional[TokenClaims]:
    """Decode and validate a JWT token. Returns None when it is invalid or expired."""
    settings = settings or get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if subject is None or payload.get("type") != "access":
        return None
    try:
        user_id = UUID(subject)
    except ValueError:
        return None
    return TokenClaims(user_id=user_id, role=payload.get("role"))
