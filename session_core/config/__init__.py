"""
Configuration module for the Session Core service.

This module provides configuration settings for the Session Core service.
"""

from session_core.config.jwt_config import (
    get_jwt_settings,
    get_token_expiry,
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    TOKEN_TYPE_SERVICE,
)
from session_core.config.settings import Settings, settings, get_settings

__all__ = [
    "get_jwt_settings",
    "get_token_expiry",
    "TOKEN_TYPE_ACCESS",
    "TOKEN_TYPE_REFRESH",
    "TOKEN_TYPE_SERVICE",
    "Settings",
    "settings",
    "get_settings",
]
