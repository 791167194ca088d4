"""API key authentication dependencies."""

import hmac

from fastapi import Header, HTTPException


async def require_api_key(
    x_admin_api_key: str = Header(..., alias="X-Admin-Api-Key"),
) -> str:
    """FastAPI dependency that validates the admin API key from header."""
    from entitlement_engine.common.config import get_settings

    settings = get_settings()
    if not hmac.compare_digest(x_admin_api_key.encode(), settings.api_key.encode()):
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_admin_api_key
