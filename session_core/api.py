"""
API router and Pydantic models for the Session Core service.

This module provides the FastAPI router with the session endpoints and the
Pydantic models for request/response validation. The refresh token travels
only in an http-only, SameSite=Strict cookie.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from session_core.auth import AuthenticationManager
from session_core.config import Settings
from session_core.dependencies import (general_rate_limit, get_app_settings, get_auth_manager,
                                       get_bearer_token, get_client_address, get_rate_limiter,
                                       get_refresh_cookie)
from session_core.errors import InternalError, TokenRejectedError
from session_core.identity import IdentityProjection
from session_core.throttling import CATEGORY_LOGIN, CATEGORY_REFRESH, CATEGORY_REGISTER, RateLimiter

logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(tags=["authentication"])


# Pydantic models for request/response
class LoginRequest(BaseModel):
    """Request model for user login."""
    email: str = Field(..., description="Login email")
    password: str = Field(..., description="User password")


class RegistrationRequest(BaseModel):
    """Request model for user registration."""
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=1, description="Password")
    username: Optional[str] = Field(None, min_length=3, max_length=50, description="Display name")


class UserResponse(BaseModel):
    """Public user projection."""
    id: int
    email: str

    @classmethod
    def from_identity(cls, identity: IdentityProjection) -> "UserResponse":
        return cls(id=identity.id, email=identity.email)


class LoginResponse(BaseModel):
    """Response model for login."""
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken", description="JWT access token")
    user: UserResponse


class RegistrationResponse(LoginResponse):
    """Response model for registration, with a warning on partial success."""
    message: Optional[str] = Field(None, description="Outcome message")
    warning: Optional[str] = Field(None, description="Downstream failure, on partial success")


class RefreshResponse(BaseModel):
    """Response model for token refresh."""
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken", description="JWT access token")


class VerifyResponse(BaseModel):
    """Response model for token verification."""
    valid: bool
    user: Optional[UserResponse] = None


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str = Field(..., description="Error detail")
    code: Optional[str] = Field(None, description="Error code")


class RateLimitResponse(ErrorResponse):
    retry_after: int = Field(..., description="Seconds until the window resets")


def set_refresh_cookie(response: Response, refresh_token: str, max_age: int, app_settings: Settings) -> None:
    """Attach the refresh token cookie to a response."""
    response.set_cookie(
        key=app_settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=max_age,
        path=app_settings.REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="strict",
        secure=app_settings.is_production,
    )


def clear_refresh_cookie(response: Response, app_settings: Settings) -> None:
    """Expire the refresh token cookie immediately."""
    response.delete_cookie(
        key=app_settings.REFRESH_COOKIE_NAME,
        path=app_settings.REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="strict",
        secure=app_settings.is_production,
    )


# API endpoints
@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {"model": ErrorResponse, "description": "Missing fields"},
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": RateLimitResponse, "description": "Too many attempts"},
    },
    summary="Authenticate user and open a session",
    description="Authenticate with email and password. Returns an access token and sets the refresh cookie.",
)
def login(
    login_data: LoginRequest,
    response: Response,
    client_address: str = Depends(get_client_address),
    manager: AuthenticationManager = Depends(get_auth_manager),
    limiter: RateLimiter = Depends(get_rate_limiter),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    Authenticate a user and generate access and refresh tokens.

    Only failed attempts consume the login rate-limit budget.
    """
    ticket = limiter.hit(CATEGORY_LOGIN, limiter.make_key(client_address, login_data.email))
    result = manager.login(login_data.email, login_data.password, client_address)
    limiter.record_success(ticket)

    set_refresh_cookie(response, result.tokens.refresh_token, manager.issuer.refresh_ttl_seconds, app_settings)
    return LoginResponse(access_token=result.tokens.access_token, user=UserResponse.from_identity(result.user))


@router.post(
    "/verify",
    response_model=VerifyResponse,
    responses={401: {"model": VerifyResponse, "description": "Token rejected"}},
    summary="Verify an access token",
    description="Verify the bearer access token and return the user it belongs to.",
)
def verify(
    _ticket=Depends(general_rate_limit),
    access_token: Optional[str] = Depends(get_bearer_token),
    manager: AuthenticationManager = Depends(get_auth_manager),
):
    """
    Verify an access token.

    Every failure reason collapses into the same ``401 {"valid": false}``.
    """
    if not access_token:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"valid": False})
    try:
        user = manager.verify(access_token)
    except TokenRejectedError:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"valid": False})
    return VerifyResponse(valid=True, user=UserResponse.from_identity(user))


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    responses={
        401: {"model": ErrorResponse, "description": "No refresh token"},
        403: {"model": ErrorResponse, "description": "Invalid or expired refresh token"},
        429: {"model": RateLimitResponse, "description": "Too many attempts"},
    },
    summary="Get a new access token",
    description="Exchange the refresh cookie for a new access token. The refresh token is not rotated.",
)
def refresh(
    client_address: str = Depends(get_client_address),
    refresh_token: Optional[str] = Depends(get_refresh_cookie),
    manager: AuthenticationManager = Depends(get_auth_manager),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Mint a new access token from the refresh cookie."""
    limiter.hit(CATEGORY_REFRESH, limiter.make_key(client_address))
    result = manager.refresh(refresh_token)
    return RefreshResponse(access_token=result.access_token)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={500: {"model": ErrorResponse, "description": "Session store failure"}},
    summary="Close the current session",
    description="Delete the user's session and clear the refresh cookie.",
)
def logout(
    _ticket=Depends(general_rate_limit),
    refresh_token: Optional[str] = Depends(get_refresh_cookie),
    access_token: Optional[str] = Depends(get_bearer_token),
    manager: AuthenticationManager = Depends(get_auth_manager),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    Log out.

    The refresh cookie is cleared whatever happens to the store delete. A
    request carrying no usable credential counts as already logged out.
    """
    try:
        user_id = manager.resolve_session_user(refresh_token=refresh_token, access_token=access_token)
        if user_id is not None:
            manager.logout(user_id)
    except InternalError as e:
        logger.error(f"Logout failed: {e.message}")
        failure = JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Server error", "code": e.code},
        )
        clear_refresh_cookie(failure, app_settings)
        return failure

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(response, app_settings)
    return response


@router.post(
    "/register",
    response_model=RegistrationResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Validation failure"},
        429: {"model": RateLimitResponse, "description": "Too many attempts"},
    },
    summary="Register a new user",
    description="Create an account, open its first session and set the refresh cookie.",
)
def register(
    registration: RegistrationRequest,
    response: Response,
    client_address: str = Depends(get_client_address),
    manager: AuthenticationManager = Depends(get_auth_manager),
    limiter: RateLimiter = Depends(get_rate_limiter),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    Register a new user.

    A downstream failure after the account exists still answers 201, with a
    message and a warning.
    """
    limiter.hit(CATEGORY_REGISTER, limiter.make_key(client_address, registration.email))
    result = manager.register(registration.email, registration.password, registration.username)

    set_refresh_cookie(response, result.tokens.refresh_token, manager.issuer.refresh_ttl_seconds, app_settings)
    message = None
    if result.partial_success:
        message = "Registration partially successful. Some features may be limited."
    return RegistrationResponse(
        access_token=result.tokens.access_token,
        user=UserResponse.from_identity(result.user),
        message=message,
        warning=result.warning,
    )


def validation_details(errors: List[dict]) -> List[dict]:
    """Flatten pydantic errors to ``{field, message}`` pairs."""
    return [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in errors
    ]
