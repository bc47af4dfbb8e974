"""
Admin authentication dependencies.
"""

import hmac

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from birthbot.core.config import settings

API_KEY_HEADER = "X-Admin-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_admin_auth(api_key: str | None = Security(api_key_header)) -> bool:
    """
    Verify admin API key from header.

    Without a configured admin_api_key access is open (dev only; startup
    refuses production without one).

    Raises:
        HTTPException: 401 if the header is missing, 403 if the key is wrong
    """
    if not settings.admin_api_key:
        return True

    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API key. Provide X-Admin-API-Key header.")

    if not hmac.compare_digest(api_key, settings.admin_api_key):
        raise HTTPException(status_code=403, detail="Invalid API key.")

    return True
