# app/core/limiter.py
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from app.core.config import RATE_LIMIT_ENABLED, RATE_LIMITS


def get_rate_limit_key(request: Request) -> str:
    """
    Rate limiting key for key and token endpoints

    Uses a combination of:
    - Client IP address (primary)
    - User-Agent hash (to separate players behind one NAT)

    Returns:
        Combined key for rate limiting
    """
    ip = get_remote_address(request)

    user_agent = request.headers.get("user-agent", "unknown")
    user_agent_hash = hash(user_agent) % 10000  # Simple hash for grouping

    return f"{ip}:{user_agent_hash}"

limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[RATE_LIMITS["default"]],
    enabled=RATE_LIMIT_ENABLED,
)
