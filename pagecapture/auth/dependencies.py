"""API key validation (FastAPI dependency)."""

import hmac

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader, APIKeyQuery

from pagecapture.config import Settings, get_settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
# Browsers cannot set headers on EventSource connections.
_api_key_query = APIKeyQuery(name="api_key", auto_error=False)


async def require_api_key(
    header_key: str | None = Security(_api_key_header),
    query_key: str | None = Security(_api_key_query),
    settings: Settings = Depends(get_settings),
) -> str:
    """Validate the X-API-Key header (or ``api_key`` query parameter)."""
    api_key = header_key or query_key
    if not api_key or not hmac.compare_digest(api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )
    return api_key
