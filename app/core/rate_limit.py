from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

from app.core.config import settings


def account_or_remote_address(request: Request) -> str:
    account_id = request.headers.get("x-account-id", "").strip()
    if account_id:
        return f"account:{account_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=account_or_remote_address, enabled=settings.rate_limit_enabled)


def rate_limit():
    if settings.rate_limit_enabled:
        return limiter.limit(settings.rate_limit)

    def decorator(func):
        return func

    return decorator
