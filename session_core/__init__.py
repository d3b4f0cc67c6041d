"""
Session Core Component.

This package provides the session lifecycle of the authentication service:
- Credential validation against bcrypt password hashes
- Signed access and refresh token issuance
- Single-session refresh token persistence
- Access token verification through an in-memory LRU cache
- Rate limiting, failed-login lockout and background cleanup of stale sessions
"""

__version__ = "0.1.0"

# Export config constants first to avoid circular imports
from session_core.config import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_REFRESH,
    Settings,
    get_settings,
)

# Export database next as it's needed by the stores
from session_core.database import (
    Base,
    Database,
)

from session_core.errors import (
    AuthServiceError,
    IdentityNotFoundError,
    InternalError,
    InvalidCredentialsError,
    RateLimitedError,
    TokenRejectedError,
    UserExistsError,
    ValidationError,
)

from session_core.models import SessionToken, User

from session_core.identity import IdentityProjection, SqlIdentitySource
from session_core.token import (
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    TokenIssuer,
    TokenPair,
)
from session_core.token_store import TokenStore
from session_core.cache import VerificationCache
from session_core.throttling import LockoutTracker, RateLimiter

__all__ = [
    # Config
    "TOKEN_TYPE_ACCESS",
    "TOKEN_TYPE_REFRESH",
    "Settings",
    "get_settings",

    # Database
    "Base",
    "Database",

    # Errors
    "AuthServiceError",
    "IdentityNotFoundError",
    "InternalError",
    "InvalidCredentialsError",
    "RateLimitedError",
    "TokenRejectedError",
    "UserExistsError",
    "ValidationError",

    # Models
    "SessionToken",
    "User",

    # Components
    "IdentityProjection",
    "SqlIdentitySource",
    "TokenError",
    "TokenExpiredError",
    "TokenInvalidError",
    "TokenIssuer",
    "TokenPair",
    "TokenStore",
    "VerificationCache",
    "LockoutTracker",
    "RateLimiter",
]
