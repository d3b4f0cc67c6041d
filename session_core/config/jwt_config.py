"""
JWT configuration helpers for the Session Core service.

This module derives token signing parameters and lifetimes from the
application settings.
"""
from datetime import timedelta
from typing import Dict, Optional, Union

from session_core.config.settings import Settings, get_settings

# Token settings
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
TOKEN_TYPE_SERVICE = "service"


# PUBLIC_INTERFACE
def get_jwt_settings(app_settings: Optional[Settings] = None) -> Dict[str, Union[str, int]]:
    """
    Get JWT configuration settings.

    Args:
        app_settings: Settings to read from. Defaults to the global settings.

    Returns:
        Dictionary containing JWT configuration settings.
    """
    s = app_settings or get_settings()
    return {
        "access_secret": s.ACCESS_TOKEN_SECRET,
        "refresh_secret": s.REFRESH_TOKEN_SECRET,
        "algorithm": s.JWT_ALGORITHM,
        "issuer": s.JWT_ISSUER,
        "audience": s.JWT_AUDIENCE,
        "access_token_expire_minutes": s.ACCESS_TOKEN_EXPIRE_MINUTES,
        "refresh_token_expire_days": s.REFRESH_TOKEN_EXPIRE_DAYS,
    }


# PUBLIC_INTERFACE
def get_token_expiry(token_type: str, app_settings: Optional[Settings] = None) -> timedelta:
    """
    Get token expiry time based on token type.

    Args:
        token_type: Type of token (access, refresh or service).
        app_settings: Settings to read from. Defaults to the global settings.

    Returns:
        Timedelta representing token expiry time.
    """
    s = app_settings or get_settings()
    if token_type == TOKEN_TYPE_ACCESS:
        return timedelta(minutes=s.ACCESS_TOKEN_EXPIRE_MINUTES)
    elif token_type == TOKEN_TYPE_REFRESH:
        return timedelta(days=s.REFRESH_TOKEN_EXPIRE_DAYS)
    elif token_type == TOKEN_TYPE_SERVICE:
        return timedelta(minutes=s.SERVICE_TOKEN_EXPIRE_MINUTES)
    else:
        raise ValueError(f"Invalid token type: {token_type}")
