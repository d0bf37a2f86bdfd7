"""
API key authentication.

Uses constant-time comparison to prevent timing attacks.
"""

import hmac
from typing import Optional

from fastapi import Header, Request

from sandctl.config import Settings
from sandctl.server.exceptions import AuthenticationError


def verify_api_key(api_key: str, settings: Settings) -> bool:
    """
    Verify an API key against the configured key.

    Returns:
        True if valid, False otherwise.
    """
    if settings.api_key is None:
        return True  # No key configured = no auth required

    return hmac.compare_digest(api_key.encode(), settings.api_key.encode())


def get_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    FastAPI dependency to extract and validate API key.

    Raises:
        AuthenticationError: If auth is required but key is missing or invalid.

    Returns:
        The validated API key, or None if auth not required.
    """
    settings: Settings = request.app.state.services.settings

    if not settings.auth_required:
        return None

    if x_api_key is None:
        raise AuthenticationError("Missing X-API-Key header")

    if not verify_api_key(x_api_key, settings):
        raise AuthenticationError("Invalid API key")

    return x_api_key
