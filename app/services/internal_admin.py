import secrets

from fastapi import Header, HTTPException

from app.core.config import settings


async def require_internal_admin(x_internal_admin_key: str | None = Header(default=None)) -> None:
    expected = settings.internal_admin_key
    # the placeholder default never authorizes anything
    if not x_internal_admin_key or expected == "IN_ENV" or not secrets.compare_digest(x_internal_admin_key, expected):
        raise HTTPException(status_code=403, detail="Internal admin key required")
