from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt

from tunesync.core.config import settings

ALGORITHM = "HS256"


def create_access_token(
    subject: str,
    display_name: str,
    is_anonymous: bool = False,
    expires_delta: Optional[timedelta] = None,
) -> str:
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {
        "exp": expire,
        "sub": str(subject),
        "name": display_name,
        "anon": is_anonymous,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Raises jose.JWTError on a bad signature or an expired token."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
