"""
Rate limiting using SlowAPI
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from jose import JWTError, jwt

from showbuddy.core.config import settings
import logging

logger = logging.getLogger(__name__)


def get_identifier(request: Request) -> str:
    """
    Rate limit key: the authenticated user when the bearer token decodes,
    otherwise the client IP
    """
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        try:
            claims = jwt.decode(auth[7:], settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        except JWTError:
            claims = {}
        if claims.get("sub"):
            return f"user:{claims['sub']}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_identifier,
    default_limits=["100/minute"],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)
