"""
Authentication module for Google ID Token verification.

Owners authenticate with a Google ID token. Trusted backends may instead
send the admin secret together with X-User-ID. Recipients never
authenticate here; their access is the opaque token in the signing link.
"""
import asyncio
import logging
import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

from signflow.config import Settings
from signflow.dependencies import get_app_settings
from signflow.models import AuthenticatedUser
from signflow.utils.logging import set_context

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


class AuthenticationError(HTTPException):
    """Custom authentication error."""
    def __init__(self, message: str, code: str = "AUTH_ERROR"):
        super().__init__(
            status_code=401,
            detail={"code": code, "message": message},
        )


def verify_google_id_token(token: str, settings: Settings) -> dict:
    """
    Verifies a Google ID Token against Google's public keys.
    Returns the decoded payload if valid.
    """
    audience = settings.oauth_client_id
    if not audience:
        logger.error("OAUTH_CLIENT_ID is not configured.")
        raise AuthenticationError("Authentication is not configured correctly.", "AUTH_CONFIG_ERROR")

    try:
        return google_id_token.verify_oauth2_token(
            token, google_requests.Request(), audience=audience
        )
    except ValueError as e:
        # Raised by the library for bad format, expiry or wrong audience
        logger.warning(f"Google ID token verification failed: {e}")
        raise AuthenticationError("Invalid or expired token", "INVALID_TOKEN")
    except Exception as e:
        logger.error(f"Unexpected error during token verification: {e}")
        raise AuthenticationError("Authentication service error", "AUTH_SERVICE_ERROR")


def verify_admin_secret(presented: str, settings: Settings) -> None:
    """Constant-time check of the X-Admin-Secret header."""
    if not settings.admin_api_secret:
        logger.warning("X-Admin-Secret presented but ADMIN_API_SECRET is not configured")
        raise AuthenticationError("Admin authentication is not enabled", "ADMIN_AUTH_DISABLED")
    if not secrets.compare_digest(presented.encode(), settings.admin_api_secret.encode()):
        logger.warning("Admin secret mismatch")
        raise AuthenticationError("Invalid admin secret", "INVALID_ADMIN_SECRET")


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_app_settings),
) -> AuthenticatedUser:
    """
    Dependency that resolves the owner from a Google ID Token, or from the
    X-User-ID header when a valid X-Admin-Secret is provided.
    """
    admin_secret = request.headers.get("X-Admin-Secret")
    if admin_secret:
        verify_admin_secret(admin_secret, settings)
        user_id_header = request.headers.get("X-User-ID")
        if not user_id_header:
            raise AuthenticationError("X-User-ID header required with X-Admin-Secret", "MISSING_USER_ID")

        user = AuthenticatedUser(
            user_id=user_id_header,
            email=request.headers.get("X-User-Email"),
            name=request.headers.get("X-User-Name"),
        )
        logger.info(f"Admin call on behalf of user {user_id_header[:8]}...")
        set_context(user_id=user.user_id)
        return user

    if not credentials:
        raise AuthenticationError("Authorization header required", "MISSING_AUTH")

    # Certificate fetch and verification are blocking
    payload = await asyncio.to_thread(verify_google_id_token, credentials.credentials, settings)

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token: missing subject", "INVALID_TOKEN")

    user = AuthenticatedUser(
        user_id=user_id,
        email=payload.get("email"),
        name=payload.get("name"),
    )
    set_context(user_id=user.user_id)
    return user
