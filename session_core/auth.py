"""
Authentication functionality for the Session Core service.

This module orchestrates the session lifecycle: login, access-token
verification, refresh, logout, registration and forced session termination.

Only the identity and token operations decide whether an operation succeeds.
Cache warming and event publishing are best effort: their failures are
logged and never reach the caller.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from session_core import events
from session_core.cache import VerificationCache
from session_core.errors import (IdentityNotFoundError, InvalidCredentialsError, TokenRejectedError,
                                 ValidationError)
from session_core.identity import IdentityProjection, normalize_email
from session_core.metrics import AUTH_OPERATION_SECONDS, LOCKOUT_ANNOTATIONS, record_operation
from session_core.refresh import RefreshResult, RefreshRotationProtocol
from session_core.security import CredentialValidator, PasswordManager
from session_core.throttling import LockoutTracker
from session_core.token import TokenError, TokenIssuer, TokenPair
from session_core.token_store import TokenStore
from session_core.user_service import UserServiceClient, UserServiceError

# Configure logging
logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("session_core.audit")


@dataclass(frozen=True)
class LoginResult:
    tokens: TokenPair
    user: IdentityProjection


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of a registration.

    ``partial_success`` is set when the local account and session exist but a
    downstream step failed; ``warning`` then says which.
    """
    tokens: TokenPair
    user: IdentityProjection
    partial_success: bool = False
    warning: Optional[str] = None


class AuthenticationManager:
    """
    Authentication manager for the session lifecycle.

    Composes the credential validator, token issuer, token store, verification
    cache, lockout tracker and the optional collaborators.
    """

    def __init__(
        self,
        identity_source,
        password_manager: PasswordManager,
        issuer: TokenIssuer,
        token_store: TokenStore,
        cache: VerificationCache,
        lockout_tracker: Optional[LockoutTracker] = None,
        publisher: Optional[events.EventPublisher] = None,
        user_service: Optional[UserServiceClient] = None,
    ):
        """
        Initialize the authentication manager.

        Args:
            identity_source: Object exposing ``find_by_email``, ``find_by_id`` and ``create``.
            password_manager: Password hashing and policy.
            issuer: Token issuer.
            token_store: Refresh-session store.
            cache: Verification cache in front of ``identity_source.find_by_id``.
            lockout_tracker: Failed-login tracker.
            publisher: Optional event publisher.
            user_service: Optional downstream profile service, called on registration.
        """
        self.identity_source = identity_source
        self.password_manager = password_manager
        self.issuer = issuer
        self.token_store = token_store
        self.cache = cache
        self.lockout_tracker = lockout_tracker
        self.publisher = publisher
        self.user_service = user_service
        self.credential_validator = CredentialValidator(identity_source, password_manager, lockout_tracker)
        self.refresh_protocol = RefreshRotationProtocol(issuer, token_store, cache)

    def _warm_cache(self, user: IdentityProjection) -> None:
        try:
            self.cache.set(user.id, user)
        except Exception as e:
            logger.warning(f"Failed to warm verification cache for user {user.id}: {str(e)}")

    def _publish(self, event_type: str, payload: dict) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.publish(event_type, payload)
        except Exception as e:
            logger.warning(f"Failed to publish {event_type}: {str(e)}")

    def _open_session(self, user: IdentityProjection) -> TokenPair:
        """Issue a token pair, persist the refresh session and warm the cache."""
        tokens = self.issuer.create_token_pair(user)
        self.token_store.upsert_session(user.id, tokens.refresh_token, tokens.refresh_expires_at)
        self._warm_cache(user)
        return tokens

    # PUBLIC_INTERFACE
    def login(self, email: str, password: str, client_address: Optional[str] = None) -> LoginResult:
        """
        Authenticate a user and open a new session.

        A successful login overwrites any previous session row of the user, so
        an earlier refresh token stops working. Access tokens already handed
        out stay valid until their own expiry.

        Args:
            email: Login identifier.
            password: Submitted secret.
            client_address: Client IP, for the audit trail.

        Returns:
            The token pair and the user projection.

        Raises:
            ValidationError: If a field is empty.
            InvalidCredentialsError: If the credentials do not match, possibly
                with the temporarily-locked annotation.
            TokenIssuanceError: If signing fails.
            InternalError: If the token store is unavailable.
        """
        with AUTH_OPERATION_SECONDS.labels(operation="login").time():
            try:
                user = self.credential_validator.validate(email, password)
            except InvalidCredentialsError as e:
                record_operation("login", "invalid_credentials")
                if e.locked:
                    LOCKOUT_ANNOTATIONS.inc()
                if client_address:
                    audit_logger.warning(f"Failed login from {client_address}")
                raise
            except ValidationError:
                record_operation("login", "validation_error")
                raise

            tokens = self._open_session(user)
            record_operation("login", "success")
            logger.info(f"User {user.id} logged in")
            self._publish(events.USER_LOGGED_IN, {"userId": user.id, "email": user.email})
            return LoginResult(tokens=tokens, user=user)

    # PUBLIC_INTERFACE
    def verify(self, access_token: str) -> IdentityProjection:
        """
        Verify an access token and resolve its user.

        Verification never reads the token store: a logged-out user's access
        token keeps verifying until it expires.

        Raises:
            TokenRejectedError: For any failure; the reason is only logged.
        """
        with AUTH_OPERATION_SECONDS.labels(operation="verify").time():
            try:
                claims = self.issuer.decode_access_token(access_token)
                user = self.cache.get(claims["user_id"])
            except TokenError as e:
                record_operation("verify", "invalid_token")
                logger.info(f"Access token rejected: {str(e)}")
                raise TokenRejectedError("Invalid token", reason="invalid_token", status_code=401)
            except IdentityNotFoundError as e:
                record_operation("verify", "user_not_found")
                logger.info(f"Access token rejected: {str(e)}")
                raise TokenRejectedError("Invalid token", reason="user_not_found", status_code=401)
            record_operation("verify", "success")
            return user

    # PUBLIC_INTERFACE
    def refresh(self, refresh_token: Optional[str]) -> RefreshResult:
        """
        Mint a new access token from a refresh token.

        Raises:
            RefreshRejectedError: See :meth:`RefreshRotationProtocol.run`.
            InternalError: If the token store is unavailable.
        """
        with AUTH_OPERATION_SECONDS.labels(operation="refresh").time():
            try:
                result = self.refresh_protocol.run(refresh_token)
            except TokenRejectedError as e:
                record_operation("refresh", e.reason)
                raise
            record_operation("refresh", "success")
            return result

    # PUBLIC_INTERFACE
    def resolve_session_user(self, refresh_token: Optional[str] = None,
                             access_token: Optional[str] = None) -> Optional[int]:
        """
        Work out whose session a logout request refers to.

        The access token is preferred. A refresh token only counts while it
        is still the user's active session, so a token superseded by a newer
        login cannot end that newer session. Returns None when neither
        identifies a user.

        Raises:
            InternalError: If the session lookup fails.
        """
        if access_token:
            try:
                return self.issuer.decode_access_token(access_token)["user_id"]
            except TokenError:
                pass
        if refresh_token:
            try:
                user_id = self.issuer.decode_refresh_token(refresh_token)["user_id"]
            except TokenError:
                return None
            if self.token_store.find_active_session(refresh_token, user_id) is not None:
                return user_id
        return None

    # PUBLIC_INTERFACE
    def logout(self, user_id: int) -> int:
        """
        Delete every session row of a user and evict the user from the cache.

        Returns:
            Number of session rows deleted (0 if already logged out).

        Raises:
            InternalError: If the token store delete fails.
        """
        with AUTH_OPERATION_SECONDS.labels(operation="logout").time():
            try:
                deleted = self.token_store.delete_all(user_id)
            except Exception:
                record_operation("logout", "error")
                raise
            try:
                self.cache.evict_one(user_id)
            except Exception as e:
                logger.warning(f"Failed to evict user {user_id} from cache: {str(e)}")
            record_operation("logout", "success")
            logger.info(f"User {user_id} logged out ({deleted} session(s) removed)")
            self._publish(events.USER_LOGGED_OUT, {"userId": user_id})
            return deleted

    # PUBLIC_INTERFACE
    def terminate_sessions(self, user_id: int) -> int:
        """
        Force-terminate a user's sessions without deleting the rows.

        The rows are marked invalid (the sweeper removes them later) and the
        user is evicted from the cache.

        Returns:
            Number of rows invalidated.
        """
        count = self.token_store.invalidate_all(user_id)
        self.cache.evict_one(user_id)
        record_operation("terminate_sessions", "success")
        self._publish(events.USER_SESSIONS_TERMINATED, {"userId": user_id, "sessions": count})
        return count

    # PUBLIC_INTERFACE
    def register(self, email: str, password: str, username: Optional[str] = None) -> RegistrationResult:
        """
        Register a new user and open their first session.

        The local account is never rolled back. If the downstream user service
        fails after the account and session exist, the result is a partial
        success carrying a warning.

        Raises:
            ValidationError: If a field is missing or the password is weak.
            UserExistsError: If the email is already registered.
            TokenIssuanceError: If signing fails.
            InternalError: If the identity source or token store is unavailable.
        """
        with AUTH_OPERATION_SECONDS.labels(operation="register").time():
            if not email or not email.strip() or not password:
                record_operation("register", "validation_error")
                raise ValidationError("Email and password are required")

            try:
                password_hash = self.password_manager.hash_password(password)
                user = self.identity_source.create(normalize_email(email), password_hash)
            except ValidationError:
                record_operation("register", "validation_error")
                raise

            tokens = self._open_session(user)
            self._publish(events.USER_REGISTERED, {"userId": user.id, "email": user.email, "username": username})

            warning = None
            if self.user_service is not None:
                try:
                    self.user_service.create_profile(user.id, username)
                except UserServiceError as e:
                    warning = str(e)
                    logger.warning(f"Registration of user {user.id} partially succeeded: {warning}")

            record_operation("register", "partial" if warning else "success")
            logger.info(f"Registered user {user.id}")
            return RegistrationResult(tokens=tokens, user=user, partial_success=warning is not None, warning=warning)
