"""Client-IP keyed rate limiting shared by the app and its routers."""

from __future__ import annotations

import os

from fastapi import Request
from slowapi import Limiter

CHAT_RATE_LIMIT = os.getenv("CHAT_RATE_LIMIT", "30/minute")


def get_client_ip(request: Request) -> str:
    """Prefer the first ``X-Forwarded-For`` hop, else the socket peer."""

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_client_ip)
