from __future__ import annotations

import re

from fastapi import HTTPException, status

from app.core.config import settings

_ACCOUNT_ID_RE = re.compile(r"^[A-Za-z0-9_.:@-]{1,128}$")


def check_api_key(x_api_key: str | None) -> None:
    if not settings.api_key:
        return
    if x_api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Please provide a valid API key.",
        )


def require_account_id(x_account_id: str | None) -> str:
    account_id = (x_account_id or "").strip()
    if not account_id or not _ACCOUNT_ID_RE.match(account_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid X-Account-Id header.",
        )
    return account_id
