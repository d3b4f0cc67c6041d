"""
JWT token management module for the Session Core service.

This module mints signed access/refresh token pairs and decodes them again.
Access and refresh tokens are signed with distinct secrets; both carry the
configured issuer and audience.
"""
import datetime
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from session_core.config import (TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH, TOKEN_TYPE_SERVICE,
                                 Settings, get_jwt_settings, get_settings, get_token_expiry)
from session_core.errors import TokenIssuanceError
from session_core.identity import IdentityProjection

# Configure logger
logger = logging.getLogger(__name__)

# Signing both halves of a pair in parallel
_signing_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="token-signing")


class TokenError(Exception):
    """Base exception for token decoding errors."""
    pass


class TokenExpiredError(TokenError):
    """Exception raised when a token has expired."""
    pass


class TokenInvalidError(TokenError):
    """Exception raised when a token is malformed, badly signed, or has wrong claims."""
    pass


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh token minted together."""
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime.datetime
    token_type: str = "bearer"


class TokenIssuer:
    """
    Mints and decodes signed tokens.

    Access tokens carry ``sub`` (user id), ``email``, ``iss``, ``aud`` and a
    short expiry. Refresh tokens carry ``sub``, ``type=refresh``, ``iss``,
    ``aud`` and a long expiry. Every token gets a unique ``jti`` so two tokens
    minted in the same second still differ.
    """

    def __init__(self, app_settings: Optional[Settings] = None):
        s = app_settings or get_settings()
        jwt_settings = get_jwt_settings(s)
        self.access_secret = jwt_settings["access_secret"]
        self.refresh_secret = jwt_settings["refresh_secret"]
        self.algorithm = jwt_settings["algorithm"]
        self.issuer = jwt_settings["issuer"]
        self.audience = jwt_settings["audience"]
        self.access_ttl = get_token_expiry(TOKEN_TYPE_ACCESS, s)
        self.refresh_ttl = get_token_expiry(TOKEN_TYPE_REFRESH, s)
        self.service_ttl = get_token_expiry(TOKEN_TYPE_SERVICE, s)

    def _sign(self, claims: Dict[str, Any], secret: str) -> str:
        try:
            return jwt.encode(claims, secret, algorithm=self.algorithm)
        except Exception as e:
            logger.error(f"Error signing {claims.get('type')} token: {str(e)}")
            raise TokenIssuanceError("Failed to issue token") from e

    def _claims(self, user_id: int, token_type: str, expires_at: datetime.datetime,
                issued_at: datetime.datetime) -> Dict[str, Any]:
        return {
            "sub": str(user_id),
            "type": token_type,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": issued_at,
            "exp": expires_at,
            "jti": str(uuid.uuid4()),
        }

    # PUBLIC_INTERFACE
    def create_access_token(self, identity: IdentityProjection) -> str:
        """
        Create a new access token for a user.

        Args:
            identity: Projection of the user the token is issued to.

        Returns:
            JWT access token string.

        Raises:
            TokenIssuanceError: If signing fails.
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        claims = self._claims(identity.id, TOKEN_TYPE_ACCESS, now + self.access_ttl, now)
        claims["email"] = identity.email
        return self._sign(claims, self.access_secret)

    # PUBLIC_INTERFACE
    def create_refresh_token(self, user_id: int) -> Tuple[str, datetime.datetime]:
        """
        Create a new refresh token for a user.

        Returns:
            Tuple of the JWT refresh token string and its absolute expiry (UTC).

        Raises:
            TokenIssuanceError: If signing fails.
        """
        now = datetime.datetime.now(datetime.timezone.utc)
        expires_at = now + self.refresh_ttl
        claims = self._claims(user_id, TOKEN_TYPE_REFRESH, expires_at, now)
        return self._sign(claims, self.refresh_secret), expires_at

    # PUBLIC_INTERFACE
    def create_token_pair(self, identity: IdentityProjection) -> TokenPair:
        """
        Create both access and refresh tokens for a user.

        The two signatures are computed concurrently; a failure in either
        fails the whole pair.

        Args:
            identity: Projection of the user the tokens are issued to.

        Returns:
            The token pair, including the refresh token's absolute expiry.

        Raises:
            TokenIssuanceError: If either signature fails.
        """
        access_future = _signing_pool.submit(self.create_access_token, identity)
        refresh_future = _signing_pool.submit(self.create_refresh_token, identity.id)
        access_token = access_future.result()
        refresh_token, refresh_expires_at = refresh_future.result()
        logger.debug(f"Issued token pair for user {identity.id}")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            refresh_expires_at=refresh_expires_at,
        )

    # PUBLIC_INTERFACE
    def create_service_token(self, service_name: str = "auth-service") -> str:
        """Create a short-lived token identifying this service to downstream services."""
        now = datetime.datetime.now(datetime.timezone.utc)
        claims = {
            "service": service_name,
            "type": TOKEN_TYPE_SERVICE,
            "iss": self.issuer,
            "iat": now,
            "exp": now + self.service_ttl,
        }
        return self._sign(claims, self.access_secret)

    def _decode(self, token: str, secret: str, expected_type: str) -> Dict[str, Any]:
        if not token:
            raise TokenInvalidError("Token cannot be empty")
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub"]},
            )
        except ExpiredSignatureError:
            raise TokenExpiredError("Token has expired")
        except InvalidTokenError as e:
            raise TokenInvalidError(f"Invalid token: {str(e)}")

        if payload.get("type") != expected_type:
            raise TokenInvalidError(f"Invalid token type. Expected {expected_type}, got {payload.get('type')}")
        try:
            payload["user_id"] = int(payload["sub"])
        except (ValueError, TypeError):
            raise TokenInvalidError("Token contains an invalid user ID")
        return payload

    # PUBLIC_INTERFACE
    def decode_access_token(self, token: str) -> Dict[str, Any]:
        """
        Verify an access token's signature, expiry, issuer and audience.

        Returns:
            The decoded claims with an added integer ``user_id``.

        Raises:
            TokenExpiredError: If the token has expired.
            TokenInvalidError: If the token is invalid.
        """
        return self._decode(token, self.access_secret, TOKEN_TYPE_ACCESS)

    # PUBLIC_INTERFACE
    def decode_refresh_token(self, token: str) -> Dict[str, Any]:
        """
        Verify a refresh token's signature, expiry, issuer and audience.

        Returns:
            The decoded claims with an added integer ``user_id``.

        Raises:
            TokenExpiredError: If the token has expired.
            TokenInvalidError: If the token is invalid.
        """
        return self._decode(token, self.refresh_secret, TOKEN_TYPE_REFRESH)

    @property
    def refresh_ttl_seconds(self) -> int:
        """Refresh token lifetime in seconds, used for the cookie max-age."""
        return int(self.refresh_ttl.total_seconds())

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())
