"""
Dependency injection for the Session Core service.

This module provides FastAPI dependency functions that hand out the
components wired by :func:`session_core.app.create_app`, plus the client
address, bearer credential and rate-limit gates used by the routes.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from session_core.auth import AuthenticationManager
from session_core.config import Settings
from session_core.throttling import CATEGORY_GENERAL, RateLimiter, RateLimitTicket

# Security scheme for access tokens
security = HTTPBearer(auto_error=False)


# PUBLIC_INTERFACE
def get_app_settings(request: Request) -> Settings:
    """Settings the running application was created with."""
    return request.app.state.settings


# PUBLIC_INTERFACE
def get_auth_manager(request: Request) -> AuthenticationManager:
    """Authentication manager of the running application."""
    return request.app.state.auth_manager


# PUBLIC_INTERFACE
def get_rate_limiter(request: Request) -> RateLimiter:
    """Rate limiter of the running application."""
    return request.app.state.rate_limiter


# PUBLIC_INTERFACE
def get_client_address(request: Request) -> str:
    """
    Address of the calling client.

    Returns:
        The peer IP address, or ``"unknown"`` when the transport does not expose one.
    """
    if request.client is None:
        return "unknown"
    return request.client.host


# PUBLIC_INTERFACE
def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """Access token from the ``Authorization: Bearer`` header, if any."""
    if credentials is None:
        return None
    return credentials.credentials


# PUBLIC_INTERFACE
def get_refresh_cookie(request: Request, app_settings: Settings = Depends(get_app_settings)) -> Optional[str]:
    """Refresh token from the refresh cookie, if any."""
    return request.cookies.get(app_settings.REFRESH_COOKIE_NAME)


# PUBLIC_INTERFACE
def general_rate_limit(
    client_address: str = Depends(get_client_address),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitTicket:
    """
    Count the request against the ``general`` window of its client.

    Raises:
        RateLimitedError: If the window is full.
    """
    return limiter.hit(CATEGORY_GENERAL, limiter.make_key(client_address))
