"""
Refresh protocol for the Session Core service.

A presented refresh token moves through::

    PRESENTED -> SIGNATURE_VERIFIED -> STORE_VALIDATED -> ACCESS_REISSUED
         \\               \\                  \\
          +---------------+------------------+-> REJECTED

Only a new access token is minted on success. The refresh token is not
rotated: the same token keeps working until it expires or its session row is
invalidated or deleted. A rejected token never deletes its row.
"""
import enum
import logging
from dataclasses import dataclass

from session_core.errors import IdentityNotFoundError, TokenRejectedError
from session_core.identity import IdentityProjection
from session_core.token import TokenError

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("session_core.audit")


class RefreshState(enum.Enum):
    PRESENTED = "presented"
    SIGNATURE_VERIFIED = "signature_verified"
    STORE_VALIDATED = "store_validated"
    ACCESS_REISSUED = "access_reissued"
    REJECTED = "rejected"


class RefreshRejection(enum.Enum):
    """Why a refresh attempt was rejected, with the HTTP status it maps to."""
    NO_TOKEN = ("no_token", 401, "Refresh token not provided")
    INVALID_TOKEN = ("invalid_token", 403, "Invalid refresh token")
    INVALID_OR_EXPIRED = ("invalid_or_expired", 403, "Invalid or expired refresh token")

    def __init__(self, reason: str, status_code: int, message: str):
        self.reason = reason
        self.status_code = status_code
        self.message = message


class RefreshRejectedError(TokenRejectedError):
    """Terminal rejection of a refresh attempt."""

    def __init__(self, rejection: RefreshRejection):
        super().__init__(rejection.message, reason=rejection.reason, status_code=rejection.status_code)
        self.rejection = rejection


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    identity: IdentityProjection
    state: RefreshState = RefreshState.ACCESS_REISSUED


class RefreshRotationProtocol:
    """Validates a refresh token against the token store and reissues an access token."""

    def __init__(self, issuer, token_store, identity_cache):
        """
        Args:
            issuer: :class:`~session_core.token.TokenIssuer`.
            token_store: :class:`~session_core.token_store.TokenStore`.
            identity_cache: :class:`~session_core.cache.VerificationCache` used to
                resolve the user's email for the new access token.
        """
        self.issuer = issuer
        self.token_store = token_store
        self.identity_cache = identity_cache

    def _reject(self, state: RefreshState, rejection: RefreshRejection, detail: str = "") -> None:
        if rejection is not RefreshRejection.NO_TOKEN:
            audit_logger.warning(f"Refresh rejected in state {state.value}: {rejection.reason} {detail}".rstrip())
        raise RefreshRejectedError(rejection)

    # PUBLIC_INTERFACE
    def run(self, raw_token: str) -> RefreshResult:
        """
        Run one refresh attempt.

        Args:
            raw_token: The refresh token as presented by the client.

        Returns:
            The new access token and the identity it was issued to.

        Raises:
            RefreshRejectedError: With ``NO_TOKEN`` (401) if nothing was presented,
                ``INVALID_TOKEN`` (403) if the signature or claims do not verify, or
                ``INVALID_OR_EXPIRED`` (403) if the store holds no active matching row.
            InternalError: If the token store is unavailable.
        """
        state = RefreshState.PRESENTED
        if not raw_token:
            self._reject(state, RefreshRejection.NO_TOKEN)

        try:
            claims = self.issuer.decode_refresh_token(raw_token)
        except TokenError as e:
            self._reject(state, RefreshRejection.INVALID_TOKEN, str(e))
        user_id = claims["user_id"]
        state = RefreshState.SIGNATURE_VERIFIED
        logger.debug(f"Refresh token signature verified for user {user_id}")

        if self.token_store.find_active_session(raw_token, user_id) is None:
            self._reject(state, RefreshRejection.INVALID_OR_EXPIRED, f"(user {user_id})")
        state = RefreshState.STORE_VALIDATED

        try:
            identity = self.identity_cache.get(user_id)
        except IdentityNotFoundError:
            self._reject(state, RefreshRejection.INVALID_OR_EXPIRED, f"(user {user_id} no longer exists)")

        access_token = self.issuer.create_access_token(identity)
        logger.debug(f"Access token reissued for user {user_id}")
        return RefreshResult(access_token=access_token, identity=identity)
